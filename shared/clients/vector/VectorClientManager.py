from shared.clients.ClientManager import ClientManager
from shared.clients.vector.VectorClientInterface import VectorClientInterface


class VectorClientManager(ClientManager):
    """
    Manager class to handle the Vector client based on configuration (VECTOR_ENGINE).
    """

    client_type = "vector"

    def get_client(self) -> VectorClientInterface:
        return self.client
