from shared.clients.ClientManager import ClientManager
from shared.clients.decrypt.DecryptClientInterface import DecryptClientInterface


class DecryptClientManager(ClientManager):
    """
    Manager class to handle the Decrypt client based on configuration (DECRYPT_ENGINE).
    """

    client_type = "decrypt"

    def get_client(self) -> DecryptClientInterface:
        return self.client
