from shared.helper.HelperConfig import HelperConfig
from shared.clients.vector.VectorClientInterface import VectorClientInterface
from shared.models.config import EnvConfig
from shared.models.embedding import VectorRecord


class VectorClientQdrant(VectorClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default=None)
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_points(self) -> str:
        return f"/collections/{self._collection_name}/points"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    def _get_endpoint_collection(self) -> str:
        return f"/collections/{self._collection_name}"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_point_payload(self, record: VectorRecord, ingested_at: str) -> dict:
        payload = record.metadata.model_dump()
        payload["ingested_at"] = ingested_at
        return {"id": record.id, "vector": record.vector, "payload": payload}

    def get_create_collection_payload(self, vector_size: int) -> dict:
        return {"vectors": {"size": vector_size, "distance": self.distance}}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_vector_size(self, raw_response: dict) -> int | None:
        vectors = raw_response.get("result", {}).get("config", {}).get("params", {}).get("vectors", {})
        # named vectors are not used by this collection layout
        size = vectors.get("size") if isinstance(vectors, dict) else None
        return int(size) if size is not None else None
