"""
Bounded newest-first log
Ring buffer used for transfer, conversion and fee-collection history
"""

from collections import deque
from typing import Any, Deque, Generic, Iterable, Iterator, List, TypeVar

T = TypeVar("T")


class CappedLog(Generic[T]):
    """O(1) append with eviction of the oldest entry once the cap is reached"""

    def __init__(self, capacity: int, items: Iterable[T] = ()):
        if capacity < 1:
            raise ValueError(f"CappedLog capacity must be positive, got {capacity}")
        self.capacity = capacity
        # Newest entry sits at index 0
        self._entries: Deque[T] = deque(maxlen=capacity)
        self._entries.extend(list(items)[:capacity])
        self.stats = {"appends": 0, "evictions": 0}

    def append(self, entry: T) -> None:
        if len(self._entries) == self.capacity:
            self.stats["evictions"] += 1
        self._entries.appendleft(entry)
        self.stats["appends"] += 1

    def newest(self) -> T:
        if not self._entries:
            raise IndexError("newest() on empty CappedLog")
        return self._entries[0]

    def to_list(self) -> List[T]:
        """Entries newest first"""
        return list(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry: Any) -> bool:
        return entry in self._entries
