"""Bounded-concurrency batch execution."""

import asyncio
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class AnalysisCancelled(Exception):
    """Raised when a run is cancelled through its CancellationToken."""

    pass


class CancellationToken:
    """Cooperative cancellation flag.

    Thread-safe, so a signal handler or another thread can trip it while
    the event loop is running.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelled(self.reason or "cancelled")


@dataclass(frozen=True)
class BatchContext:
    """Where a task sits in the batch schedule. Used for progress text only."""

    batch_number: int
    total_batches: int
    index_in_batch: int
    batch_size: int
    total_items: int


async def run_in_batches(
    items: Sequence[T],
    task_fn: Callable[[T, BatchContext], Awaitable[R]],
    concurrency: int,
    *,
    on_batch: Optional[Callable[[int, int, int], None]] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> list[R]:
    """Run ``task_fn`` over ``items`` in sequential batches of ``concurrency``.

    Tasks inside a batch run concurrently and the batch waits for every one
    of them to settle. If any task raised, the first exception (in input
    order) is re-raised and the remaining batches are not started.

    Args:
        items: Work items, processed in order
        task_fn: Coroutine function called as ``task_fn(item, context)``
        concurrency: Maximum tasks in flight
        on_batch: Called with (batch_number, total_batches, batch_size)
            before each batch starts
        cancel_token: Checked before each batch

    Returns:
        Results in input order

    Raises:
        ValueError: If concurrency is less than 1
        AnalysisCancelled: If the token is cancelled between batches
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    results: list[R] = []
    total_items = len(items)
    total_batches = (total_items + concurrency - 1) // concurrency

    for start in range(0, total_items, concurrency):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        batch = items[start : start + concurrency]
        batch_number = start // concurrency + 1

        if on_batch is not None:
            on_batch(batch_number, total_batches, len(batch))

        outcomes = await asyncio.gather(
            *(
                task_fn(
                    item,
                    BatchContext(
                        batch_number=batch_number,
                        total_batches=total_batches,
                        index_in_batch=index,
                        batch_size=len(batch),
                        total_items=total_items,
                    ),
                )
                for index, item in enumerate(batch)
            ),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        results.extend(outcomes)

    return results
