import asyncio
from typing import Any, Awaitable, Callable, Sequence


async def run_concurrent(
    items: Sequence[Any],
    operation: Callable[[Any, int], Awaitable[Any]],
    concurrency: int = 4,
) -> None:
    """Apply operation(item, index) to every item with at most `concurrency` calls in flight.

    Workers share one cursor and claim items in input order. After the first
    failure no worker claims another item; items already claimed still run to
    completion. Once every worker has stopped, the first failure is re-raised.

    Args:
        items (Sequence[Any]): The work items.
        operation (Callable[[Any, int], Awaitable[Any]]): Coroutine function called with the item and its index.
        concurrency (int): Maximum number of concurrent calls.

    Raises:
        Exception: The first failure raised by operation.
    """
    if not items:
        return

    cursor = 0
    failures: list[BaseException] = []

    async def worker() -> None:
        nonlocal cursor
        while cursor < len(items) and not failures:
            index = cursor
            cursor += 1
            try:
                await operation(items[index], index)
            except Exception as e:
                failures.append(e)
                return

    workers = [worker() for _ in range(min(max(1, concurrency), len(items)))]
    await asyncio.gather(*workers)

    if failures:
        raise failures[0]
