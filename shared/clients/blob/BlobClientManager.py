from shared.clients.ClientManager import ClientManager
from shared.clients.blob.BlobClientInterface import BlobClientInterface


class BlobClientManager(ClientManager):
    """
    Manager class to handle the Blob client based on configuration (BLOB_ENGINE).
    """

    client_type = "blob"

    def get_client(self) -> BlobClientInterface:
        return self.client
