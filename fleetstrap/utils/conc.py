"""Thread-pool helpers for fanning work out across regions."""

import contextvars
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor


def map_concurrent[I, O](
    fn: Callable[[I], O],
    items: Iterable[I],
    concurrency: int | None = None,
) -> list[O]:
    """Apply function to items concurrently, preserving order.

    Every submitted call runs to completion before this returns, so a
    failure in one item never abandons side effects of the others. The
    first failure, in input order, is then re-raised.

    Args:
        fn: Function to apply to each item.
        items: Items to process.
        concurrency: Max concurrent workers. None = len(items), 1 = sequential.

    Returns:
        Results in the same order as the input items.

    Example:
        >>> map_concurrent(lambda r: r.find_image(release), regions)
        [BootImage(...), None, ...]
    """
    items_list = list(items)
    if not items_list:
        return []

    workers = concurrency if concurrency is not None else len(items_list)
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        # ctx.run cannot be shared between threads, copy per task
        futures = [
            executor.submit(contextvars.copy_context().run, fn, item)
            for item in items_list
        ]

    return [future.result() for future in futures]


def for_each_concurrent[I](
    fn: Callable[[I], object],
    items: Iterable[I],
    concurrency: int | None = None,
) -> None:
    """Apply a side-effecting function to items concurrently."""
    map_concurrent(fn, items, concurrency)
