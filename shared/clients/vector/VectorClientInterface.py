import asyncio
import math
from abc import abstractmethod
from datetime import datetime, timezone

from shared.clients.ClientInterface import ClientInterface
from shared.clients.ClientError import ClientError
from shared.models.embedding import StoreOutcome, VectorRecord

from shared.helper.HelperConfig import HelperConfig


class VectorClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.distance = helper_config.get_string_val(f"{self.get_client_type().upper()}_DISTANCE", default="Cosine")

        # connection state
        self._connected = False
        self._collection_exists = False
        self._vector_size: int | None = None
        # serialises connect and collection creation across concurrent batches
        self._setup_lock = asyncio.Lock()

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "vector"
        """
        return "vector"

    def get_vector_size(self) -> int | None:
        """
        Returns the vector size of the collection, once known.
        """
        return self._vector_size

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_points(self) -> str:
        """
        Returns the endpoint path for point upserts.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/points")
        """
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self) -> str:
        """
        Returns the endpoint path for collection existence check requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/exists")
        """
        pass

    @abstractmethod
    def _get_endpoint_collection(self) -> str:
        """
        Returns the endpoint path used to create and describe the collection.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col")
        """
        pass

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    @abstractmethod
    def get_point_payload(self, record: VectorRecord, ingested_at: str) -> dict:
        """Build the backend-specific representation of one vector record.

        Args:
            record (VectorRecord): The record to store.
            ingested_at (str): ISO timestamp of the store call, added to the point payload.

        Returns:
            dict: JSON-serialisable point.
        """
        pass

    @abstractmethod
    def get_create_collection_payload(self, vector_size: int) -> dict:
        """Build the request body that creates the collection.

        Args:
            vector_size (int): Dimension of the vectors the collection will hold.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_vector_size(self, raw_response: dict) -> int | None:
        """Read the configured vector dimension from a collection description.

        Args:
            raw_response (dict): Parsed response of the collection description request.

        Returns:
            int | None: The vector size, or None if the backend does not report one.
        """
        pass

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def is_connected(self) -> bool:
        return self._connected

    def validate_vectors(self, records: list[VectorRecord]) -> str | None:
        """Check that every vector is finite and matches the collection dimension.

        Args:
            records (list[VectorRecord]): The records about to be stored.

        Returns:
            str | None: A description of the first problem found, or None if all vectors are valid.
        """
        expected = self._vector_size if self._vector_size else (len(records[0].vector) if records else 0)
        for record in records:
            if not record.vector:
                return f"Vector of point {record.id} is empty"
            if len(record.vector) != expected:
                return f"Vector dimension mismatch for point {record.id}: expected {expected}, got {len(record.vector)}"
            for value in record.vector:
                if not isinstance(value, (int, float)) or not math.isfinite(value):
                    return f"Vector of point {record.id} contains a non-finite value: {value!r}"
        return None

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def connect(self) -> None:
        """Verify the backend is reachable and read the collection layout if the collection exists.

        The collection itself is created lazily by do_store_batch() once the vector size is known.
        Concurrent callers share one connect; later calls return immediately.

        Raises:
            ClientError: If the backend is unreachable.
        """
        async with self._setup_lock:
            if self._connected:
                return
            await self.do_healthcheck()
            self._collection_exists = await self.do_existence_check()
            if self._collection_exists:
                self._vector_size = await self._read_vector_size()
                self.logging.debug("Vector collection exists with vector size %s.", self._vector_size)
            self._connected = True
            self.logging.info("Connected to %s vector store.", self._get_engine_name())

    async def _read_vector_size(self) -> int | None:
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_collection(), raise_on_error=True, step="describeCollection")
        return self.extract_vector_size(resp.json())

    async def do_existence_check(self) -> bool:
        """Check if the collection exists in the vector backend.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_check_collection_existence(), raise_on_error=True, step="collectionExists")
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_ensure_collection(self, vector_size: int) -> None:
        """Create the collection if it does not exist yet, otherwise verify its vector size.

        Only the first of several concurrent callers creates the collection. A 409
        answer means another process created it first; its layout is read back instead.

        Args:
            vector_size (int): Dimension of the vectors about to be stored.

        Raises:
            ClientError: If creation fails or the existing collection has a different vector size.
        """
        async with self._setup_lock:
            if not self._collection_exists:
                try:
                    await self.do_request(
                        method="PUT",
                        json=self.get_create_collection_payload(vector_size),
                        endpoint=self._get_endpoint_collection(),
                        raise_on_error=True,
                        step="createCollection",
                    )
                except ClientError as e:
                    if e.status_code != 409:
                        raise
                    self.logging.info("Vector collection already exists, reading its layout.")
                    self._vector_size = await self._read_vector_size()
                else:
                    self.logging.info("Created vector collection with vector size %d.", vector_size)
                    self._vector_size = vector_size
                self._collection_exists = True

            if self._vector_size is not None and self._vector_size != vector_size:
                raise ClientError(
                    "ensureCollection",
                    f"collection vector size {self._vector_size} does not match embedding size {vector_size}",
                    engine=self.get_engine_name(),
                )
            self._vector_size = vector_size

    async def do_store_batch(self, records: list[VectorRecord]) -> list[StoreOutcome]:
        """Upsert a batch of vector records.

        The batch is stored as a whole: a validation or request failure marks
        every record of the batch as failed.

        Args:
            records (list[VectorRecord]): The records to store.

        Returns:
            list[StoreOutcome]: One outcome per record, in input order.
        """
        if not records:
            return []

        problem = self.validate_vectors(records)
        if problem:
            self.logging.error("Refusing to store %d vectors: %s", len(records), problem)
            return [StoreOutcome(id=record.id, success=False, error=problem) for record in records]

        ingested_at = datetime.now(timezone.utc).isoformat()
        try:
            await self.do_ensure_collection(len(records[0].vector))
            await self.do_request(
                method="PUT",
                json={"points": [self.get_point_payload(record, ingested_at) for record in records]},
                params={"wait": "true"},
                endpoint=self._get_endpoint_points(),
                raise_on_error=True,
                step="storeBatch",
            )
        except ClientError as e:
            self.logging.error("Storing %d vectors failed: %s", len(records), e)
            return [StoreOutcome(id=record.id, success=False, error=str(e)) for record in records]

        self.logging.debug("Stored %d vectors.", len(records))
        return [StoreOutcome(id=record.id, success=True) for record in records]
