from abc import ABC, abstractmethod

import httpx
from httpx._types import QueryParamTypes, RequestContent, RequestData, RequestFiles
from typing import Any
from shared.models.config import EnvConfig
from shared.clients.ClientError import ClientError

from shared.helper.HelperConfig import HelperConfig


class ClientInterface(ABC):
    """
    Base of every collaborator client (blob store, decryption gateway, embedding
    provider, vector store). Owns the httpx.AsyncClient, the per-engine env
    configuration and the translation of transport and status failures into
    ClientError.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)

        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """Fail at construction when a required <TYPE>_<ENGINE>_<KEY> variable is unset or malformed."""
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """Collaborator kind, first segment of the env keys ("blob", "decrypt", "embed", "vector")."""
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """Backend name, second segment of the env keys (e.g. "Walrus")."""
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        # BLOB_WALRUS_AGGREGATOR_URL, VECTOR_QDRANT_COLLECTION, ...
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """Read an engine-scoped setting.

        Args:
            raw_key (str): Key without the type and engine prefix (e.g. "BASE_URL").
            default (Any): Returned when the variable is unset; None makes it required.
            val_type (str): "string" or "number".
        """
        key = self._get_config_key_name(raw_key)
        if val_type == "string":
            return self._helper_config.get_string_val(key, default=default)
        elif val_type == "number":
            return self._helper_config.get_number_val(key, default=default)
        else:
            raise ValueError(f"Unsupported config value type '{val_type}' for {key}.")

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers sent with every request; empty when the engine needs no credentials."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """GET the engine's health endpoint.

        Raises:
            ClientError: If the backend is unreachable or answers with a non-2xx status.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck(), raise_on_error=True, step="healthcheck")

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Open the HTTP client. Tests pass an httpx.MockTransport."""
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        data: RequestData | None = None,
        files: RequestFiles | None = None,
        json: Any | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
        step: str = "request",
    ) -> httpx.Response:
        """Send one request to `<base url><endpoint>` with the engine's auth headers.

        At most one of content, data, files and json is sent as the body.

        Args:
            step: Operation name used in raised ClientErrors ("<step> failed: <cause>").
            raise_on_error: Turn a status >= 300 into a ClientError carrying the status code.

        Returns:
            The raw httpx.Response.

        Raises:
            ClientError: If the client was not booted, the transport fails, or
                raise_on_error is set and the status is >= 300.
        """
        if self._client is None:
            raise ClientError(step, "HTTP client not initialised. Call boot() before making requests.", engine=self.get_engine_name())

        endpoint = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""

        # httpx derives Content-Type from the body argument
        headers: dict = {**self._get_auth_header(), **(additional_headers or {})}

        kwargs: dict = {
            "url": f"{self._get_base_url().rstrip('/')}{endpoint}",
            "headers": headers,
            "timeout": self.timeout,
            "params": params,
        }
        body = next(
            ((name, value) for name, value in (("content", content), ("data", data), ("files", files), ("json", json)) if value is not None),
            None,
        )
        if body:
            kwargs[body[0]] = body[1]

        try:
            response = await self._client.request(method, **kwargs)
        except httpx.HTTPError as e:
            raise ClientError(step, f"{type(e).__name__}: {e}", engine=self.get_engine_name()) from e

        if raise_on_error and response.status_code >= 300:
            self.logging.debug("%s %s answered %d: %s", method, kwargs["url"], response.status_code, response.text[:200])
            raise ClientError(
                step,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                engine=self.get_engine_name(),
            )

        return response
