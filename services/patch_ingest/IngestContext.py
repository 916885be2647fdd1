"""Run-scoped bundle of collaborators handed to every pipeline stage."""

from shared.clients.blob.BlobClientManager import BlobClientManager
from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.clients.decrypt.DecryptClientManager import DecryptClientManager
from shared.clients.decrypt.DecryptClientInterface import DecryptClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.vector.VectorClientManager import VectorClientManager
from shared.clients.vector.VectorClientInterface import VectorClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.IdUnmasker import IdUnmasker
from shared.models.config import IngestSettings

from services.patch_ingest.RunAggregator import RunAggregator


class IngestContext:
    """
    Everything one ingest run needs, constructed once and passed by reference.

    Clients may be shared between runs (the API server boots them once);
    the aggregator and the run arguments belong to exactly one run.

    Attributes:
        helper_config (HelperConfig): Configuration and logger access.
        settings (IngestSettings): Pipeline tunables.
        blob_client (BlobClientInterface): Patch listing and ciphertext download.
        decrypt_client (DecryptClientInterface): Envelope parsing and decryption.
        embed_client (EmbedClientInterface): Embedding provider.
        vector_client (VectorClientInterface): Vector store.
        id_unmasker (IdUnmasker): Recovers clear-text ids from patch tags.
        aggregator (RunAggregator): Run-wide counters and error statistics.
        quilt_id (str): Quilt being ingested.
        policy_id (str): Access policy guarding the quilt's patches.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        settings: IngestSettings,
        blob_client: BlobClientInterface,
        decrypt_client: DecryptClientInterface,
        embed_client: EmbedClientInterface,
        vector_client: VectorClientInterface,
        id_unmasker: IdUnmasker,
        quilt_id: str,
        policy_id: str,
        aggregator: RunAggregator | None = None,
    ) -> None:
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.settings = settings
        self.blob_client = blob_client
        self.decrypt_client = decrypt_client
        self.embed_client = embed_client
        self.vector_client = vector_client
        self.id_unmasker = id_unmasker
        self.quilt_id = quilt_id
        self.policy_id = policy_id
        self.aggregator = aggregator or RunAggregator(helper_config=helper_config)

    @classmethod
    def for_run(
        cls,
        helper_config: HelperConfig,
        clients: "IngestClients",
        quilt_id: str,
        policy_id: str,
        settings: IngestSettings | None = None,
    ) -> "IngestContext":
        """Build a fresh context (new aggregator, settings from env unless given) around shared clients."""
        settings = settings or IngestSettings.from_helper_config(helper_config)
        return cls(
            helper_config=helper_config,
            settings=settings,
            blob_client=clients.blob_client,
            decrypt_client=clients.decrypt_client,
            embed_client=clients.embed_client,
            vector_client=clients.vector_client,
            id_unmasker=IdUnmasker(helper_config=helper_config, salt=settings.id_mask_salt),
            quilt_id=quilt_id,
            policy_id=policy_id,
        )


class IngestClients:
    """The four HTTP collaborators of the pipeline, with a shared lifecycle."""

    def __init__(
        self,
        blob_client: BlobClientInterface,
        decrypt_client: DecryptClientInterface,
        embed_client: EmbedClientInterface,
        vector_client: VectorClientInterface,
    ) -> None:
        self.blob_client = blob_client
        self.decrypt_client = decrypt_client
        self.embed_client = embed_client
        self.vector_client = vector_client

    @classmethod
    def from_env(cls, helper_config: HelperConfig) -> "IngestClients":
        """Instantiate every client from the <TYPE>_ENGINE environment variables.

        Raises:
            ValueError: If an engine is missing, unknown or misconfigured.
        """
        return cls(
            blob_client=BlobClientManager(helper_config).get_client(),
            decrypt_client=DecryptClientManager(helper_config).get_client(),
            embed_client=EmbedClientManager(helper_config).get_client(),
            vector_client=VectorClientManager(helper_config).get_client(),
        )

    def all(self) -> list:
        return [self.blob_client, self.decrypt_client, self.embed_client, self.vector_client]

    async def boot(self) -> None:
        for client in self.all():
            await client.boot()

    async def healthcheck(self) -> None:
        """Check every backend except the vector store, which is connected lazily before the first store.

        Raises:
            ClientError: If a backend is unreachable or unhealthy.
        """
        for client in (self.blob_client, self.decrypt_client, self.embed_client):
            await client.do_healthcheck()

    async def close(self) -> None:
        for client in self.all():
            await client.close()
