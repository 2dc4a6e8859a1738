"""
Bounded-concurrency execution of independent coroutines.
"""
import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Iterable[T], size: int) -> List[List[T]]:
    """
    Splits items into consecutive batches of at most ``size`` elements.
    """
    if size < 1:
        raise ValueError("batch size must be at least 1")
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]


async def run_in_batches(
    items: Iterable[T],
    batch_size: int,
    worker: Callable[[T], Awaitable[R]],
) -> List[R]:
    """
    Runs ``worker`` over items, ``batch_size`` at a time.

    Batch *i* is fully awaited before batch *i+1* is dispatched, so no more
    than ``batch_size`` workers are ever in flight. Results keep input order.
    Workers are expected to capture their own failures; an exception escaping
    a worker propagates after its batch settles.
    """
    results: List[R] = []
    for batch in chunked(items, batch_size):
        settled = await asyncio.gather(
            *(worker(item) for item in batch), return_exceptions=True
        )
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        results.extend(settled)
    return results
