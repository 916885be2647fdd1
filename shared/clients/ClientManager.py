from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface


class ClientManager:
    """
    Instantiates the client of one collaborator type from the engine named in
    the "<TYPE>_ENGINE" environment variable.

    The engine class is looked up by convention:
    shared.clients.<type>.<engine>.<Type>Client<Engine>
    """

    client_type: str = ""

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the engine from ENV configuration.

        Returns:
            str: The name of the engine, capitalized (e.g. "Qdrant").

        Raises:
            ValueError: If no engine is specified in the configuration.
        """
        key = f"{self.client_type.upper()}_ENGINE"
        engine = self.helper_config.get_string_val(key, default="")
        if not engine:
            raise ValueError(f"No {self.client_type.capitalize()} engine specified in configuration ({key}).")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> ClientInterface:
        """
        Initializes the client based on the engine specified in the configuration.

        Returns:
            ClientInterface: The instantiated client.

        Raises:
            ValueError: If the engine is unknown.
        """
        engine = self._get_engine_from_env()
        type_name = self.client_type.capitalize()
        class_name = f"{type_name}Client{engine}"
        try:
            module = __import__(
                f"shared.clients.{self.client_type.lower()}.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported {type_name} engine specified: '{engine}'. Error: {e}")

        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated %s client for engine: %s", type_name, engine)
        return client

    def get_client(self) -> ClientInterface:
        """
        Returns the instantiated client.
        """
        return self.client
