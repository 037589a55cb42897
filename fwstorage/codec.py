"""Compact binary encoding of nodes and storage areas.

Integers use a variable-length form: values below 251 take one byte;
larger values are a tag byte (251, 252, 253 or 254) followed by a
little-endian integer of 2, 4, 8 or 16 bytes. Single bytes such as child
indices and area size indices are written raw. Sequences are prefixed by
their length, options by a 0/1 tag, and enum variants by their index.
"""

from __future__ import annotations

import io
from typing import BinaryIO, Optional, Union

from fwstorage.areas import FreeArea, InvalidDataError
from fwstorage.node import AddressWithHash, BranchNode, LeafNode, Node
from fwstorage.path import Path
from fwstorage.trie_hash import HASH_LEN, TrieHash

_SINGLE_BYTE_LIMIT = 251
_TAG_WIDTHS = {251: 2, 252: 4, 253: 8, 254: 16}
_U32_MAX = (1 << 32) - 1
_U64_MAX = (1 << 64) - 1
_U128_MAX = (1 << 128) - 1

_BRANCH_TAG = 0
_LEAF_TAG = 1
_AREA_NODE_TAG = 0
_AREA_FREE_TAG = 1

Area = Union[Node, FreeArea]
Readable = Union[BinaryIO, bytes, bytearray, memoryview]


def encode_uint(value: int) -> bytes:
    """Encode an unsigned integer in the variable-length integer form."""
    if not 0 <= value <= _U128_MAX:
        raise ValueError(f"{value} cannot be encoded as an unsigned integer")
    if value < _SINGLE_BYTE_LIMIT:
        return bytes([value])
    for tag, width in _TAG_WIDTHS.items():
        if value < 1 << (8 * width):
            return bytes([tag]) + value.to_bytes(width, "little")
    raise AssertionError("unreachable")


def _as_stream(stream: Readable) -> BinaryIO:
    if isinstance(stream, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(stream))
    return stream


def _read(stream: BinaryIO, n: int) -> bytes:
    data = stream.read(n)
    if data is None or len(data) != n:
        raise InvalidDataError("unexpected end of data")
    return bytes(data)


def _read_u8(stream: BinaryIO) -> int:
    return _read(stream, 1)[0]


def decode_uint(stream: Readable) -> int:
    """Read one variable-length unsigned integer from stream."""
    stream = _as_stream(stream)
    tag = _read_u8(stream)
    if tag < _SINGLE_BYTE_LIMIT:
        return tag
    width = _TAG_WIDTHS.get(tag)
    if width is None:
        raise InvalidDataError(f"invalid integer tag {tag}")
    return int.from_bytes(_read(stream, width), "little")


def _decode_bounded(stream: BinaryIO, limit: int, what: str) -> int:
    value = decode_uint(stream)
    if value > limit:
        raise InvalidDataError(f"{what} {value} is out of range")
    return value


def _decode_address(stream: BinaryIO) -> int:
    addr = _decode_bounded(stream, _U64_MAX, "address")
    if addr == 0:
        raise InvalidDataError("address must not be zero")
    return addr


def _encode_address(addr: int) -> bytes:
    if not 0 < addr <= _U64_MAX:
        raise ValueError(f"address {addr} must be a non-zero unsigned 64-bit integer")
    return encode_uint(addr)


def _encode_seq(data: bytes) -> bytes:
    return encode_uint(len(data)) + bytes(data)


def _decode_seq(stream: BinaryIO) -> bytes:
    length = _decode_bounded(stream, _U64_MAX, "length")
    return _read(stream, length)


def _decode_option_tag(stream: BinaryIO) -> bool:
    tag = _read_u8(stream)
    if tag > 1:
        raise InvalidDataError(f"invalid option tag {tag}")
    return tag == 1


def _encode_path(path: Path) -> bytes:
    return _encode_seq(bytes(path))


def _encode_branch(branch: BranchNode) -> bytes:
    parts = [_encode_path(branch.partial_path)]
    if branch.value is None:
        parts.append(b"\x00")
    else:
        parts.append(b"\x01" + _encode_seq(branch.value))

    children = []
    for index, child in enumerate(branch.children):
        if child is None:
            continue
        if not isinstance(child, AddressWithHash):
            raise ValueError("serializing in-memory node for disk storage")
        children.append(
            bytes([index])
            + _encode_address(child.address)
            + _encode_seq(bytes(child.hash))
        )
    parts.append(encode_uint(len(children)))
    parts.extend(children)
    return b"".join(parts)


def serialize_node(node: Node) -> bytes:
    """Return the binary form of a leaf or a fully hashed branch."""
    if isinstance(node, BranchNode):
        return encode_uint(_BRANCH_TAG) + _encode_branch(node)
    if isinstance(node, LeafNode):
        return (
            encode_uint(_LEAF_TAG)
            + _encode_path(node.partial_path)
            + _encode_seq(node.value)
        )
    raise TypeError(f"cannot serialize {type(node).__name__}")


def _decode_branch(stream: BinaryIO) -> BranchNode:
    partial_path = Path(_decode_seq(stream))
    value: Optional[bytes] = _decode_seq(stream) if _decode_option_tag(stream) else None
    branch = BranchNode(partial_path=partial_path, value=value)
    count = _decode_bounded(stream, _U64_MAX, "child count")
    for _ in range(count):
        offset = _read_u8(stream)
        addr = _decode_address(stream)
        raw_hash = _decode_seq(stream)
        if len(raw_hash) != HASH_LEN:
            raise InvalidDataError(
                f"invalid length {len(raw_hash)}, expected an array of u8 hash bytes"
            )
        if offset >= BranchNode.MAX_CHILDREN:
            raise InvalidDataError(f"child index {offset} out of range")
        branch.children[offset] = AddressWithHash(addr, TrieHash(raw_hash))
    return branch


def deserialize_node(stream: Readable) -> Node:
    """Read one node from stream."""
    stream = _as_stream(stream)
    tag = _decode_bounded(stream, _U32_MAX, "variant index")
    if tag == _BRANCH_TAG:
        return _decode_branch(stream)
    if tag == _LEAF_TAG:
        partial_path = Path(_decode_seq(stream))
        return LeafNode(partial_path=partial_path, value=_decode_seq(stream))
    raise InvalidDataError(f"invalid node variant {tag}")


def serialize_area(area: Area) -> bytes:
    """Return the binary form of an area holding a node or a free-list link."""
    if isinstance(area, FreeArea):
        body = (
            b"\x00"
            if area.next_free_block is None
            else b"\x01" + _encode_address(area.next_free_block)
        )
        return encode_uint(_AREA_FREE_TAG) + body
    if isinstance(area, Node):
        return encode_uint(_AREA_NODE_TAG) + serialize_node(area)
    raise TypeError(f"cannot serialize {type(area).__name__} as an area")


def deserialize_area(stream: Readable) -> Area:
    """Read one area from stream: a Node or a FreeArea."""
    stream = _as_stream(stream)
    tag = _decode_bounded(stream, _U32_MAX, "variant index")
    if tag == _AREA_NODE_TAG:
        return deserialize_node(stream)
    if tag == _AREA_FREE_TAG:
        next_free = _decode_address(stream) if _decode_option_tag(stream) else None
        return FreeArea(next_free)
    raise InvalidDataError(f"invalid area variant {tag}")


def serialize_stored_area(area_size_index: int, area: Area) -> bytes:
    """Return the area prefixed by its one-byte area size index."""
    if not 0 <= area_size_index <= 0xFF:
        raise ValueError(f"area size index {area_size_index} does not fit in a byte")
    return bytes([area_size_index]) + serialize_area(area)


def deserialize_stored_area(stream: Readable) -> tuple[int, Area]:
    """Read a stored area and return (area_size_index, area)."""
    stream = _as_stream(stream)
    index = _read_u8(stream)
    return index, deserialize_area(stream)