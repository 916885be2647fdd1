from abc import abstractmethod

from pydantic import ValidationError

from shared.clients.ClientInterface import ClientInterface
from shared.clients.ClientError import ClientError
from shared.models.patch import Patch

from shared.helper.HelperConfig import HelperConfig


class BlobClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "blob"
        """
        return "blob"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_patches(self, quilt_id: str) -> str:
        """
        Returns the endpoint path listing the patches of a quilt.

        Args:
            quilt_id (str): The quilt to list.

        Returns:
            str: The endpoint path (e.g. "/v1/quilts/<id>/patches")
        """
        pass

    @abstractmethod
    def _get_endpoint_patch_blob(self, patch_id: str) -> str:
        """
        Returns the endpoint path serving the raw blob of one patch.

        Args:
            patch_id (str): The patch to fetch.

        Returns:
            str: The endpoint path (e.g. "/v1/blobs/by-quilt-patch-id/<id>")
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_patches(self, raw_response: dict | list) -> list[dict]:
        """Pull the raw patch entries out of a patch listing response.

        Args:
            raw_response (dict | list): Parsed response body.

        Returns:
            list[dict]: Raw patch entries.

        Raises:
            ValueError: If the response does not contain a patch list.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_list_patches(self, quilt_id: str) -> list[Patch]:
        """List every patch of a quilt.

        Args:
            quilt_id (str): The quilt to list.

        Returns:
            list[Patch]: The patches in listing order.

        Raises:
            ClientError: If the listing cannot be fetched or parsed.
        """
        step = "listPatches"
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_patches(quilt_id), raise_on_error=True, step=step)
        try:
            patches = [Patch.model_validate(raw) for raw in self.extract_patches(response.json())]
        except (ValueError, ValidationError) as e:
            raise ClientError(step, f"Invalid response format: {e}", engine=self.get_engine_name()) from e
        self.logging.info("Fetched %d patches from quilt %s", len(patches), quilt_id)
        return patches

    async def do_fetch_ciphertext(self, patch_id: str) -> bytes:
        """Download the encrypted blob of one patch.

        Args:
            patch_id (str): The patch to fetch.

        Returns:
            bytes: The raw ciphertext.

        Raises:
            ClientError: If the download fails or returns an empty body.
        """
        step = "fetchCiphertext"
        response = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_patch_blob(patch_id),
            additional_headers={"Accept": "application/octet-stream"},
            raise_on_error=True,
            step=step,
        )
        if not response.content:
            raise ClientError(step, "Empty response from blob store", engine=self.get_engine_name())
        return response.content
