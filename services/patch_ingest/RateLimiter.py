import asyncio
from collections import deque
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict

from shared.clients.ClientError import ClientError
from shared.helper.HelperConfig import HelperConfig

RATE_LIMIT_MARKERS = ("429", "Rate Limit", "Too Many Requests")
MAX_RETRY_DELAY_MS = 10000


class RateLimitedOutcome(BaseModel):
    """Settled result of one operation passed to RateLimiter.execute_all()."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _QueuedOperation:
    def __init__(self, operation: Callable[[], Awaitable[Any]], future: asyncio.Future):
        self.operation = operation
        self.future = future
        self.retry_count = 0


class RateLimiter:
    """
    Bounded-concurrency FIFO executor for async operations.

    At most max_concurrent operations run at once. Operations failing with a
    rate-limit error are retried with capped exponential backoff and re-enter
    the queue at the back. Every completion that is not retried is followed by
    a fixed pause before the next operation is admitted.
    """

    def __init__(self, helper_config: HelperConfig, max_concurrent: int = 30, delay_ms: int = 10, max_retries: int = 3):
        self.logging = helper_config.get_logger()
        self.max_concurrent = max(1, int(max_concurrent))
        self.delay_ms = delay_ms
        self.max_retries = max_retries

        self._running = 0
        self._queue: deque[_QueuedOperation] = deque()
        self._tasks: set[asyncio.Task] = set()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @staticmethod
    def is_rate_limit_error(error: BaseException | None) -> bool:
        """Check whether a failure signals upstream rate limiting.

        Args:
            error (BaseException | None): The failure raised by an operation.

        Returns:
            bool: True for ClientErrors carrying status 429 and for errors whose message mentions rate limiting.
        """
        if error is None:
            return False
        if isinstance(error, ClientError) and error.is_rate_limited():
            return True
        if getattr(error, "status_code", None) == 429:
            return True
        message = str(error)
        return any(marker in message for marker in RATE_LIMIT_MARKERS)

    ##########################################
    ################ GETTER ##################
    ##########################################

    @staticmethod
    def get_retry_delay(retry_count: int) -> int:
        """Backoff in ms before retry attempt retry_count + 1: 1s, 2s, 4s, ... capped at 10s."""
        return min(1000 * 2 ** retry_count, MAX_RETRY_DELAY_MS)

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "queued": len(self._queue),
            "max_concurrent": self.max_concurrent,
        }

    ##########################################
    ################# EXECUTE ################
    ##########################################

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Run one operation under the concurrency bound.

        Args:
            operation (Callable[[], Awaitable[Any]]): Zero-argument coroutine factory. It is called
                again for every retry, so it must be safe to repeat.

        Returns:
            Any: The operation's result.

        Raises:
            Exception: The operation's last failure, once it is terminal.
        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedOperation(operation, future))
        self._process()
        return await future

    async def execute_all(self, operations: list[Callable[[], Awaitable[Any]]]) -> list[RateLimitedOutcome]:
        """Run every operation and wait until all of them have settled.

        A failing operation never cancels its siblings. Cancelling the call cancels
        every queued and running operation of this limiter.

        Args:
            operations (list[Callable[[], Awaitable[Any]]]): Coroutine factories.

        Returns:
            list[RateLimitedOutcome]: One outcome per operation, in input order.
        """
        try:
            results = await asyncio.gather(*(self.execute(op) for op in operations), return_exceptions=True)
        except asyncio.CancelledError:
            self.cancel_all()
            raise
        outcomes: list[RateLimitedOutcome] = []
        for result in results:
            if isinstance(result, BaseException):
                outcomes.append(RateLimitedOutcome(error=result))
            else:
                outcomes.append(RateLimitedOutcome(value=result))
        return outcomes

    ##########################################
    ################ QUEUE ###################
    ##########################################

    def cancel_all(self) -> None:
        """Drop every queued operation and cancel the running ones."""
        while self._queue:
            self._queue.popleft().future.cancel()
        for task in list(self._tasks):
            task.cancel()

    def _process(self) -> None:
        while self._running < self.max_concurrent and self._queue:
            queued = self._queue.popleft()
            self._running += 1
            task = asyncio.ensure_future(self._run(queued))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, queued: _QueuedOperation) -> None:
        holds_slot = True
        try:
            try:
                result = await queued.operation()
            except Exception as e:
                if not self.is_rate_limit_error(e) or queued.retry_count >= self.max_retries:
                    if not queued.future.done():
                        queued.future.set_exception(e)
                else:
                    delay = self.get_retry_delay(queued.retry_count)
                    self.logging.warning(
                        "Rate limit error, retrying in %dms (attempt %d/%d)...",
                        delay,
                        queued.retry_count + 1,
                        self.max_retries,
                    )
                    # slot is free while backing off
                    self._running -= 1
                    holds_slot = False
                    self._process()
                    await asyncio.sleep(delay / 1000)
                    queued.retry_count += 1
                    self._queue.append(queued)
                    self._process()
                    return
            else:
                if not queued.future.done():
                    queued.future.set_result(result)
        except asyncio.CancelledError:
            queued.future.cancel()
            raise
        finally:
            if holds_slot:
                self._running -= 1

        if self.delay_ms > 0:
            await asyncio.sleep(self.delay_ms / 1000)
        self._process()
