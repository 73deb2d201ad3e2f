"""
Batch operation utilities for ivfflat.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterator, List, Sequence, Tuple, TypeVar

T = TypeVar('T')


def iter_slices(total: int, batch_size: int) -> Iterator[Tuple[int, int]]:
    """
    Yield ``(start, end)`` bounds covering ``range(total)`` in batches.
    
    Example:
        >>> list(iter_slices(5, 2))
        [(0, 2), (2, 4), (4, 5)]
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    
    for start in range(0, total, batch_size):
        yield start, min(start + batch_size, total)


def parallel_map(
    fn: Callable[[T], Any],
    items: Sequence[T],
    max_workers: int = 4,
) -> List[Any]:
    """
    Apply ``fn`` to every item using a thread pool.
    
    Results keep the order of ``items`` regardless of completion order.
    The first exception raised by a worker is re-raised after all
    submitted work has finished.
    
    Args:
        fn: Function applied to each item
        items: Items to process
        max_workers: Number of parallel workers (1 runs inline)
        
    Returns:
        List of results, one per item
    """
    if max_workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    
    results: List[Any] = [None] * len(items)
    
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(fn, item): i
            for i, item in enumerate(items)
        }
        
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    
    return results
