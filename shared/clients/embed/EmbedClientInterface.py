from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.ClientError import ClientError
from shared.models.embedding import EmbeddingOutcome

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default="nomic-embed-text")
        self.embed_dimensions = helper_config.get_number_val(f"{self.get_client_type().upper()}_DIMENSIONS", default=0)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]} (already ordered)
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]} (needs sorting)

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response format is invalid or embeddings are empty.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed_batch(self, texts: list[str]) -> list[EmbeddingOutcome]:
        """Embed a batch of texts with a single request.

        Never raises for backend failures: a failed request marks every text of
        the batch as failed, a short response marks the missing tail as failed.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            list[EmbeddingOutcome]: One outcome per input text, in input order.
        """
        if not texts:
            return []
        try:
            response = await self.do_request(
                method="POST",
                endpoint=self.get_endpoint_embedding(),
                json=self.get_embed_payload(texts),
                raise_on_error=True,
                step="embedBatch",
            )
            vectors = self.extract_embeddings_from_response(response.json())
        except (ClientError, ValueError) as e:
            self.logging.error("Embedding request to %s failed for %d texts: %s", self.get_engine_name(), len(texts), e)
            return [EmbeddingOutcome(text=text, success=False, error=str(e)) for text in texts]

        outcomes: list[EmbeddingOutcome] = []
        for i, text in enumerate(texts):
            vector = vectors[i] if i < len(vectors) else None
            if not vector:
                outcomes.append(EmbeddingOutcome(text=text, success=False, error=f"Missing embedding at index {i}"))
            else:
                outcomes.append(EmbeddingOutcome(text=text, vector=vector, success=True))
        return outcomes
