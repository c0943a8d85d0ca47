"""Lazy offset/limit over the filtered read stream."""

from itertools import islice
from typing import Iterable, Iterator, Optional, TypeVar

T = TypeVar('T')


def paginate(items: Iterable[T], offset: int = 0, limit: Optional[int] = None) -> Iterator[T]:
    """
    Skip ``offset`` items then take at most ``limit``.

    Nothing past the last requested item is pulled from ``items``.
    """
    stop = None if limit is None else offset + limit
    return islice(items, offset, stop)
