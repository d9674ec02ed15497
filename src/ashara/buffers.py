"""Pool of reusable byte buffers used while assembling request bodies."""

from __future__ import annotations

import threading

MIN_SIZE_CLASS = 4096
MAX_POOLED_SIZE = 4 * 1024 * 1024
MAX_BUFFERS_PER_CLASS = 8


def size_class(size: int, minimum: int = MIN_SIZE_CLASS) -> int:
    """Return the smallest power-of-two multiple of ``minimum`` holding ``size`` bytes."""
    cls = minimum
    while cls < size:
        cls *= 2
    return cls


class BufferPool:
    """Free lists of pre-sized ``bytearray`` objects keyed by size class."""

    def __init__(
        self,
        *,
        min_size: int = MIN_SIZE_CLASS,
        max_pooled_size: int = MAX_POOLED_SIZE,
        max_per_class: int = MAX_BUFFERS_PER_CLASS,
    ) -> None:
        if min_size <= 0:
            raise ValueError("min_size must be greater than 0")
        if max_per_class < 0:
            raise ValueError("max_per_class must be non-negative")
        self.min_size = min_size
        self.max_pooled_size = max(max_pooled_size, min_size)
        self.max_per_class = max_per_class
        self._free: dict[int, list[bytearray]] = {}
        self._lock = threading.Lock()

    def acquire(self, size_hint: int = 0) -> bytearray:
        cls = size_class(max(size_hint, 1), self.min_size)
        with self._lock:
            bucket = self._free.get(cls)
            if bucket:
                return bucket.pop()
        return bytearray(cls)

    def release(self, buffer: bytearray) -> None:
        size = len(buffer)
        if size > self.max_pooled_size or size != size_class(size, self.min_size):
            return
        with self._lock:
            bucket = self._free.setdefault(size, [])
            if len(bucket) < self.max_per_class:
                bucket.append(buffer)

    def available(self, size: int) -> int:
        """Number of free buffers in the class that would serve ``size`` bytes."""
        with self._lock:
            return len(self._free.get(size_class(max(size, 1), self.min_size), ()))


class BufferWriter:
    """Append-only writer backed by a pooled buffer.

    The buffer goes back to the pool on :meth:`close`; data written before
    that is only reachable through :meth:`getvalue`, which returns a copy.
    """

    def __init__(self, pool: BufferPool, size_hint: int = 0) -> None:
        self._pool = pool
        self._buffer = pool.acquire(size_hint)
        self._length = 0
        self._closed = False

    def __enter__(self) -> "BufferWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __len__(self) -> int:
        return self._length

    def write(self, data: bytes | bytearray | memoryview) -> int:
        if self._closed:
            raise ValueError("write to closed BufferWriter")
        size = len(data)
        end = self._length + size
        if end > len(self._buffer):
            grown = self._pool.acquire(end)
            grown[: self._length] = self._buffer[: self._length]
            self._pool.release(self._buffer)
            self._buffer = grown
        self._buffer[self._length : end] = data
        self._length = end
        return size

    def getvalue(self) -> bytes:
        with memoryview(self._buffer) as view:
            return bytes(view[: self._length])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pool.release(self._buffer)
        self._buffer = bytearray()
        self._length = 0
