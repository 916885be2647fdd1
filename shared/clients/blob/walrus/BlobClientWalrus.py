from shared.helper.HelperConfig import HelperConfig
from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.models.config import EnvConfig


class BlobClientWalrus(BlobClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._aggregator_url = self.get_config_val("AGGREGATOR_URL", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Walrus"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="AGGREGATOR_URL", val_type="string", default=None)
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        # public aggregator
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._aggregator_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/v1/api"

    def _get_endpoint_patches(self, quilt_id: str) -> str:
        return f"/v1/quilts/{quilt_id}/patches"

    def _get_endpoint_patch_blob(self, patch_id: str) -> str:
        return f"/v1/blobs/by-quilt-patch-id/{patch_id}"

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_patches(self, raw_response: dict | list) -> list[dict]:
        if not isinstance(raw_response, list):
            raise ValueError("expected array of patches")
        return raw_response
