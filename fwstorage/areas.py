"""Area sizes, free areas and the persisted header of a node store."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Optional

# Every valid block size the linear store is divided into.
AREA_SIZES: tuple[int, ...] = (
    16,
    32,
    64,
    96,
    128,
    256,
    512,
    768,
    1024,
    1024 << 1,
    1024 << 2,
    1024 << 3,
    1024 << 4,
    1024 << 5,
    1024 << 6,
    1024 << 7,
    1024 << 8,
    1024 << 9,
    1024 << 10,
    1024 << 11,
    1024 << 12,
    1024 << 13,
    1024 << 14,
)
NUM_AREA_SIZES = len(AREA_SIZES)
MIN_AREA_SIZE = AREA_SIZES[0]
MAX_AREA_SIZE = AREA_SIZES[-1]

STORE_VERSION = "0.0.4"
VERSION_SIZE = 16

# version, endian_test, size, free lists, root address; all little-endian.
_HEADER_FORMAT = struct.Struct(f"<{VERSION_SIZE}sQQ{NUM_AREA_SIZES}QQ")
_FREE_LISTS_FORMAT = struct.Struct(f"<{NUM_AREA_SIZES}Q")

HEADER_STRUCT_SIZE = _HEADER_FORMAT.size
HEADER_SIZE = 2048
HEADER_EXTRA_BYTES = HEADER_SIZE - HEADER_STRUCT_SIZE
FREE_LISTS_OFFSET = VERSION_SIZE + 8 + 8


class InvalidDataError(ValueError):
    """Stored data is malformed or cannot be used."""


def area_size_to_index(n: int) -> int:
    """Return the index in AREA_SIZES of the smallest area size >= n."""
    if n > MAX_AREA_SIZE:
        raise InvalidDataError(f"Node size {n} is too large")
    if n <= MIN_AREA_SIZE:
        return 0
    return next(index for index, size in enumerate(AREA_SIZES) if size >= n)


def index_name(index: int) -> str:
    """Return the area size at index as text, or "unknown" if out of range."""
    if 0 <= index < NUM_AREA_SIZES:
        return str(AREA_SIZES[index])
    return "unknown"


def version_bytes() -> bytes:
    """Return the 16-byte version marker stored at the start of every store."""
    text = f"firewood {STORE_VERSION}".encode()[:VERSION_SIZE]
    return text.ljust(VERSION_SIZE, b"\x00")


@dataclass(frozen=True)
class FreeArea:
    """Stored at the start of an area whose node has been freed."""

    next_free_block: Optional[int] = None


def _addr(value: int) -> Optional[int]:
    return value or None


@dataclass
class NodeStoreHeader:
    """Persisted metadata kept at the start of the storage."""

    version: bytes = field(default_factory=version_bytes)
    endian_test: int = 1
    size: int = HEADER_SIZE
    free_lists: list = field(default_factory=lambda: [None] * NUM_AREA_SIZES)
    root_address: Optional[int] = None

    def __post_init__(self) -> None:
        self.version = bytes(self.version)
        if len(self.version) != VERSION_SIZE:
            raise ValueError(f"version must be {VERSION_SIZE} bytes")
        self.free_lists = list(self.free_lists)
        if len(self.free_lists) != NUM_AREA_SIZES:
            raise ValueError(f"there must be {NUM_AREA_SIZES} free lists")

    @classmethod
    def new(cls) -> NodeStoreHeader:
        """Return the header of an empty store: no root and empty free lists."""
        return cls()

    def __copy__(self) -> NodeStoreHeader:
        return NodeStoreHeader(
            self.version,
            self.endian_test,
            self.size,
            list(self.free_lists),
            self.root_address,
        )

    def to_bytes(self) -> bytes:
        """Return the header's fixed-size binary form, without padding."""
        return _HEADER_FORMAT.pack(
            self.version,
            self.endian_test,
            self.size,
            *(addr or 0 for addr in self.free_lists),
            self.root_address or 0,
        )

    def padded_bytes(self) -> bytes:
        """Return the header zero-padded to the full reserved header size."""
        return self.to_bytes() + bytes(HEADER_EXTRA_BYTES)

    def free_lists_bytes(self) -> bytes:
        """Return the binary form of the free lists alone."""
        return _FREE_LISTS_FORMAT.pack(*(addr or 0 for addr in self.free_lists))

    @classmethod
    def from_bytes(cls, data: bytes) -> NodeStoreHeader:
        """Parse and validate a header read from the start of the storage."""
        data = bytes(data)
        if len(data) < HEADER_STRUCT_SIZE:
            raise InvalidDataError("failed to fill whole buffer")
        version, endian_test, size, *rest = _HEADER_FORMAT.unpack_from(data)
        free_lists = [_addr(value) for value in rest[:NUM_AREA_SIZES]]
        root_address = _addr(rest[NUM_AREA_SIZES])
        if version != version_bytes():
            raise InvalidDataError("Incompatible firewood version")
        if endian_test != 1:
            raise InvalidDataError(
                "Database cannot be opened due to difference in endianness"
            )
        return cls(version, endian_test, size, free_lists, root_address)