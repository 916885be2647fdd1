from abc import abstractmethod
from typing import Any

from shared.clients.ClientInterface import ClientInterface
from shared.clients.ClientError import ClientError
from shared.models.patch import EnvelopeInfo

from shared.helper.HelperConfig import HelperConfig


class DecryptClientInterface(ClientInterface):
    """Key-release / decryption service. Holds the keys, this process only ever sees plaintext JSON."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "decrypt"
        """
        return "decrypt"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_parse_envelope(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_decrypt(self) -> str:
        pass

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    @abstractmethod
    def get_decrypt_payload(self, envelope_id: str, ciphertext: bytes, policy_id: str) -> dict:
        """Build the request body of a decrypt call.

        Args:
            envelope_id (str): Id reported by do_parse_envelope().
            ciphertext (bytes): The encrypted blob.
            policy_id (str): Access policy guarding the blob.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_plaintext(self, raw_response: dict) -> Any:
        """Pull the decrypted JSON document out of a decrypt response.

        Raises:
            ValueError: If the response carries no plaintext.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_parse_envelope(self, ciphertext: bytes) -> EnvelopeInfo:
        """Read the envelope header of an encrypted blob.

        Args:
            ciphertext (bytes): The encrypted blob.

        Returns:
            EnvelopeInfo: The envelope header.

        Raises:
            ClientError: If the service rejects the blob.
        """
        step = "parseEnvelope"
        response = await self.do_request(
            method="POST",
            content=ciphertext,
            endpoint=self._get_endpoint_parse_envelope(),
            additional_headers={"Content-Type": "application/octet-stream"},
            raise_on_error=True,
            step=step,
        )
        envelope_id = response.json().get("id")
        if not envelope_id:
            raise ClientError(step, "envelope id missing in response", engine=self.get_engine_name())
        return EnvelopeInfo(id=str(envelope_id))

    async def do_decrypt(self, envelope_id: str, ciphertext: bytes, policy_id: str) -> Any:
        """Decrypt a blob and return its JSON content.

        Args:
            envelope_id (str): Id reported by do_parse_envelope().
            ciphertext (bytes): The encrypted blob.
            policy_id (str): Access policy guarding the blob.

        Returns:
            Any: The decrypted JSON document.

        Raises:
            ClientError: If approval, key release or decryption fails.
        """
        step = "decrypt"
        response = await self.do_request(
            method="POST",
            json=self.get_decrypt_payload(envelope_id, ciphertext, policy_id),
            endpoint=self._get_endpoint_decrypt(),
            raise_on_error=True,
            step=step,
        )
        try:
            return self.extract_plaintext(response.json())
        except ValueError as e:
            raise ClientError(step, str(e), engine=self.get_engine_name()) from e
