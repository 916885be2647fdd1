import base64
import json
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.clients.decrypt.DecryptClientInterface import DecryptClientInterface
from shared.models.config import EnvConfig


class DecryptClientGateway(DecryptClientInterface):
    """Talks to a key-release gateway that performs policy approval and threshold decryption."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._threshold = self.get_config_val("THRESHOLD", default=2, val_type="number")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Gateway"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="THRESHOLD", val_type="number", default=2)
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/health"

    def _get_endpoint_parse_envelope(self) -> str:
        return "/v1/envelopes/parse"

    def _get_endpoint_decrypt(self) -> str:
        return "/v1/decrypt"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_decrypt_payload(self, envelope_id: str, ciphertext: bytes, policy_id: str) -> dict:
        return {
            "envelope_id": envelope_id,
            "policy_id": policy_id,
            "threshold": int(self._threshold),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        }

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_plaintext(self, raw_response: dict) -> Any:
        if "plaintext" in raw_response:
            # utf-8 JSON text
            return json.loads(raw_response["plaintext"])
        if "data" in raw_response:
            return raw_response["data"]
        raise ValueError(f"No plaintext in decrypt response. Response keys: {list(raw_response.keys())}")
