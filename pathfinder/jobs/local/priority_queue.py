import heapq
import itertools
import queue
from typing import Any, Optional


class LocalPriorityQueue:
    """An in-memory min-heap of items ordered by (priority, sequence).

    Lower priority values pop first; items with equal priority pop in insertion (FIFO) order. Callers may pass an
    explicit ``seq`` to keep an item's original position when it is re-inserted. Removal is lazy: removed items stay in
    the heap as tombstones and are skipped on pop.

    The queue does no locking of its own; the owning broker guards it with its condition variable.
    """

    def __init__(self):
        self._heap: list[tuple[int, int, Any]] = []
        self._entries: dict[Any, tuple[int, int]] = {}
        self._counter = itertools.count()

    def next_seq(self) -> int:
        return next(self._counter)

    def push(self, item: Any, priority: int = 0, seq: Optional[int] = None) -> int:
        """Insert an item, replacing any earlier entry for the same item. Returns the sequence number used."""
        if seq is None:
            seq = self.next_seq()
        self._entries[item] = (priority, seq)
        heapq.heappush(self._heap, (priority, seq, item))
        return seq

    def pop(self) -> Any:
        """Remove and return the lowest (priority, seq) item.

        Raises:
            queue.Empty: If the queue holds no live items.
        """
        while self._heap:
            priority, seq, item = heapq.heappop(self._heap)
            if self._entries.get(item) == (priority, seq):
                del self._entries[item]
                return item
        raise queue.Empty

    def peek(self) -> tuple[int, Any]:
        """Return the (priority, item) pair that would pop next, without removing it.

        Raises:
            queue.Empty: If the queue holds no live items.
        """
        while self._heap:
            priority, seq, item = self._heap[0]
            if self._entries.get(item) == (priority, seq):
                return priority, item
            heapq.heappop(self._heap)
        raise queue.Empty

    def remove(self, item: Any) -> bool:
        return self._entries.pop(item, None) is not None

    def __contains__(self, item: Any) -> bool:
        return item in self._entries

    def qsize(self) -> int:
        return len(self._entries)

    def empty(self) -> bool:
        return not self._entries

    def clean(self) -> int:
        """Remove all items. Returns the number of live items removed."""
        count = len(self._entries)
        self._heap.clear()
        self._entries.clear()
        return count
