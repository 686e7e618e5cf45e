"""
Ring Buffer - Fixed-size circular buffer for rolling histories.

Backs every bounded history in the engines (latency samples, OFI results,
order book snapshots). O(1) append, oldest entry evicted when full.
"""

from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar('T')


class RingBuffer(Generic[T]):
    """
    Fixed-size circular buffer with FIFO eviction.

    Example:
        buf = RingBuffer[float](maxlen=3)
        for v in (1.0, 2.0, 3.0, 4.0):
            buf.append(v)
        buf.to_list()  # [2.0, 3.0, 4.0]
    """

    __slots__ = ('_buffer', '_maxlen', '_head', '_size')

    def __init__(self, maxlen: int):
        """
        Initialize ring buffer.

        Args:
            maxlen: Maximum number of elements (must be > 0)
        """
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self._buffer: List[Optional[T]] = [None] * maxlen
        self._maxlen = maxlen
        self._head = 0  # Next write position
        self._size = 0

    def append(self, item: T) -> None:
        """Append item, evicting the oldest when full."""
        self._buffer[self._head] = item
        self._head = (self._head + 1) % self._maxlen
        if self._size < self._maxlen:
            self._size += 1

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    def __getitem__(self, index: int) -> T:
        """
        Get item by index. Supports negative indexing.

        buf[0] = oldest item
        buf[-1] = newest item
        """
        if index < 0:
            index = self._size + index
        if index < 0 or index >= self._size:
            raise IndexError(f"index {index} out of range for size {self._size}")

        start = (self._head - self._size) % self._maxlen
        return self._buffer[(start + index) % self._maxlen]

    def __iter__(self) -> Iterator[T]:
        """Iterate from oldest to newest."""
        for i in range(self._size):
            yield self[i]

    @property
    def maxlen(self) -> int:
        return self._maxlen

    @property
    def is_full(self) -> bool:
        return self._size == self._maxlen

    def clear(self) -> None:
        self._buffer = [None] * self._maxlen
        self._head = 0
        self._size = 0

    def resize(self, maxlen: int) -> None:
        """Change capacity, keeping the newest items that still fit."""
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        kept = self.last(maxlen)
        self._buffer = [None] * maxlen
        self._maxlen = maxlen
        self._head = 0
        self._size = 0
        for item in kept:
            self.append(item)

    def to_list(self) -> List[T]:
        """Convert to list (oldest first)."""
        return list(self)

    def last(self, n: int) -> List[T]:
        """Get last n items (oldest first of the n)."""
        if n <= 0:
            return []
        n = min(n, self._size)
        start = self._size - n
        return [self[i] for i in range(start, self._size)]

    def newest(self) -> Optional[T]:
        return self[-1] if self._size > 0 else None

    def oldest(self) -> Optional[T]:
        return self[0] if self._size > 0 else None
