"""
Batching Helpers — Split batch-job writes to the store's per-commit cap.
"""
from itertools import islice
from typing import Iterable, Iterator, List, TypeVar

T = TypeVar("T")


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive lists of at most ``size`` items."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def items_per_commit(requested: int, ops_per_item: int, batch_limit: int) -> int:
    """Largest chunk not exceeding ``requested`` that keeps a commit within
    ``batch_limit`` write operations."""
    return max(1, min(requested, batch_limit // ops_per_item))
