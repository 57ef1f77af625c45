"""Stable max-priority queue."""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class _Entry(Generic[T]):
    item: T
    priority: int


class PriorityQueue(Generic[T]):
    """Queue that yields higher priorities first, FIFO within a priority.

    A new item is inserted before the first entry with a strictly lower
    priority, so equal priorities keep their arrival order.
    """

    def __init__(self) -> None:
        """Initialize an empty queue."""
        self._entries: list[_Entry[T]] = []

    def enqueue(self, item: T, priority: int) -> None:
        """Add an item.

        Args:
            item: Item to add.
            priority: Higher values are dequeued first.

        """
        entry = _Entry(item=item, priority=priority)
        for index, existing in enumerate(self._entries):
            if existing.priority < priority:
                self._entries.insert(index, entry)
                return
        self._entries.append(entry)

    def dequeue(self) -> T | None:
        """Remove and return the highest priority item, None when empty."""
        if not self._entries:
            return None
        return self._entries.pop(0).item

    def peek(self) -> T | None:
        """Return the highest priority item without removing it."""
        if not self._entries:
            return None
        return self._entries[0].item

    def is_empty(self) -> bool:
        """Check whether the queue has no items."""
        return not self._entries

    def to_list(self) -> list[T]:
        """Return the items in dequeue order."""
        return [entry.item for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
