"""Linear byte storage: in memory or backed by a file, with optional caches."""

from __future__ import annotations

import io
import os
import threading
from collections import OrderedDict
from typing import BinaryIO, Iterable, Optional

from fwstorage.node import Node


def _check_offset(offset: int) -> None:
    if offset < 0:
        raise ValueError(f"offset {offset} is negative")


class _LruCache:
    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"cache size must be positive, got {capacity}")
        self._capacity = capacity
        self._items: OrderedDict = OrderedDict()

    def get(self, key):
        if key not in self._items:
            return None
        self._items.move_to_end(key)
        return self._items[key]

    def put(self, key, value) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self._capacity:
            self._items.popitem(last=False)

    def pop(self, key):
        return self._items.pop(key, None)


class _StreamView(io.RawIOBase):
    """A read-only stream over a shared handle, starting at a given offset."""

    def __init__(self, handle: BinaryIO, lock: threading.Lock, start: int) -> None:
        super().__init__()
        self._handle = handle
        self._lock = lock
        self._pos = start

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            pos = offset
        elif whence == os.SEEK_CUR:
            pos = self._pos + offset
        elif whence == os.SEEK_END:
            with self._lock:
                pos = self._handle.seek(0, os.SEEK_END) + offset
        else:
            raise ValueError(f"invalid whence {whence}")
        _check_offset(pos)
        self._pos = pos
        return pos

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        with self._lock:
            self._handle.seek(self._pos)
            data = self._handle.read(len(view)) or b""
        view[: len(data)] = data
        self._pos += len(data)
        return len(data)


class ReadableStorage:
    """A linear store of bytes that can be read from any offset.

    The bytes live in a seekable binary handle shared under a lock. Caches of
    nodes and of free-list pointers are kept only when given a size.
    """

    def __init__(
        self,
        handle: BinaryIO,
        node_cache_size: Optional[int] = None,
        free_list_cache_size: Optional[int] = None,
    ) -> None:
        self._handle = handle
        self._lock = threading.Lock()
        self._cache = None if node_cache_size is None else _LruCache(node_cache_size)
        self._free_list_cache = (
            None if free_list_cache_size is None else _LruCache(free_list_cache_size)
        )
        self._cache_lock = threading.Lock()
        self._free_lock = threading.Lock()

    def stream_from(self, addr: int) -> BinaryIO:
        """Return a binary stream positioned at addr."""
        _check_offset(addr)
        return io.BufferedReader(_StreamView(self._handle, self._lock, addr))

    def size(self) -> int:
        """Return the size of the underlying storage in bytes."""
        with self._lock:
            return self._handle.seek(0, os.SEEK_END)

    def read_cached_node(self, addr: int) -> Optional[Node]:
        """Return the cached node at addr, or None if it is not cached."""
        if self._cache is None:
            return None
        with self._cache_lock:
            return self._cache.get(addr)

    def free_list_cache(self, addr: int) -> Optional[int]:
        """Remove and return the cached next pointer of the free area at addr.

        Returns None on a miss; a cached end of list is returned as 0.
        """
        if self._free_list_cache is None:
            return None
        with self._free_lock:
            return self._free_list_cache.pop(addr)


class WritableStorage(ReadableStorage):
    """A linear store of bytes that can also be written."""

    def write(self, offset: int, data: bytes) -> int:
        """Write data at offset and return the number of bytes written."""
        _check_offset(offset)
        data = bytes(data)
        view = memoryview(data)
        with self._lock:
            end = self._handle.seek(0, os.SEEK_END)
            if offset > end:
                self._handle.write(bytes(offset - end))
            self._handle.seek(offset)
            while view:
                written = self._handle.write(view)
                view = view[written:]
        return len(data)

    def write_cached_nodes(self, nodes: Iterable[tuple[int, Node]]) -> None:
        """Store (address, node) pairs in the node cache, if there is one."""
        if self._cache is None:
            return
        with self._cache_lock:
            for addr, node in nodes:
                self._cache.put(addr, node)

    def invalidate_cached_nodes(self, addresses: Iterable[int]) -> None:
        """Drop the given addresses from the node cache, if there is one."""
        if self._cache is None:
            return
        with self._cache_lock:
            for addr in addresses:
                self._cache.pop(addr)

    def add_to_free_list_cache(self, addr: int, next_addr: Optional[int]) -> None:
        """Remember the next free area after addr, if there is a cache."""
        if self._free_list_cache is None:
            return
        with self._free_lock:
            self._free_list_cache.put(addr, next_addr or 0)


class MemStore(WritableStorage):
    """Storage held in a growable in-memory buffer."""

    def __init__(self, data: bytes = b"") -> None:
        super().__init__(io.BytesIO(bytes(data)))


class FileBacked(WritableStorage):
    """Storage in a file, with LRU caches of nodes and free-list pointers."""

    def __init__(
        self,
        path: str | os.PathLike,
        node_cache_size: int,
        free_list_cache_size: int,
        truncate: bool,
    ) -> None:
        if node_cache_size < 1:
            raise ValueError(f"cache size must be positive, got {node_cache_size}")
        if free_list_cache_size < 1:
            raise ValueError(f"cache size must be positive, got {free_list_cache_size}")
        self._path = os.fspath(path)
        flags = os.O_RDWR | os.O_CREAT | getattr(os, "O_BINARY", 0)
        if truncate:
            flags |= os.O_TRUNC
        fd = os.open(self._path, flags, 0o666)
        super().__init__(
            os.fdopen(fd, "r+b", buffering=0), node_cache_size, free_list_cache_size
        )

    def close(self) -> None:
        """Close the underlying file."""
        with self._lock:
            self._handle.close()

    def __enter__(self) -> FileBacked:
        return self

    def __exit__(self, *args) -> None:
        self.close()