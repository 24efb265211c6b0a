"""
Bounded-concurrency batch processing for the load phases.

The calling thread consumes the row stream and cuts it into batches; a
fixed pool of workers hashes and persists them. A semaphore with one
permit per worker blocks the producer while every worker is busy, so a
slow store applies backpressure to the database cursor instead of rows
piling up in memory.
"""

import itertools
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield successive lists of at most `size` items."""
    iterator = iter(items)
    while True:
        batch = list(itertools.islice(iterator, size))
        if not batch:
            return
        yield batch


class BatchProcessor:
    """
    Processes an item stream in batches with a bounded number of workers.

    Args:
        batch_size: Items per batch
        concurrency: Maximum batches in flight at once
        name: Thread name prefix for the workers
    """

    def __init__(self, batch_size: int = 1000, concurrency: int = 5, name: str = "batch"):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")

        self.batch_size = batch_size
        self.concurrency = concurrency
        self.name = name

    def process(self, items: Iterable[T], handler: Callable[[list[T]], None]) -> int:
        """
        Feed every item to `handler` in batches.

        The first handler error stops the producer; batches already in
        flight are allowed to finish and the error is then re-raised.
        Errors raised by the item iterator itself propagate the same way.

        Args:
            items: Item stream, consumed on the calling thread
            handler: Called with each batch on a worker thread

        Returns:
            Number of items handled
        """
        permits = threading.BoundedSemaphore(self.concurrency)
        lock = threading.Lock()
        failed = threading.Event()
        errors: list[BaseException] = []
        handled = 0

        def run(batch: list[T]) -> None:
            nonlocal handled
            try:
                handler(batch)
                with lock:
                    handled += len(batch)
            except BaseException as e:
                with lock:
                    errors.append(e)
                failed.set()
            finally:
                permits.release()

        with ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix=self.name,
        ) as executor:
            for batch in chunked(items, self.batch_size):
                permits.acquire()
                if failed.is_set():
                    permits.release()
                    break
                executor.submit(run, batch)

        if errors:
            if len(errors) > 1:
                logger.debug(f"{len(errors) - 1} further batch error(s) suppressed after the first")
            raise errors[0]

        return handled
