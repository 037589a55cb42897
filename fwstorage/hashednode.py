"""Hash pre-images and hashes of trie nodes."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from itertools import chain
from typing import Iterable, Optional

from fwstorage.node import BranchNode, LeafNode, Node
from fwstorage.path import Path
from fwstorage.trie_hash import TrieHash

BITS_PER_NIBBLE = 4
MAX_VARINT_SIZE = 10
_U64_MAX = (1 << 64) - 1
# Values at least this long are replaced by their SHA-256 digest in a pre-image.
_INLINE_VALUE_LIMIT = 32


@dataclass(frozen=True)
class ValueDigest:
    """A node's value, or the hash of that value when is_hash is set."""

    data: bytes
    is_hash: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))


def encode_varint(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as a little-endian base-128 varint."""
    if not 0 <= value <= _U64_MAX:
        raise ValueError(f"{value} is not an unsigned 64-bit integer")
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def _value_digest_bytes(value_digest: Optional[ValueDigest]) -> bytes:
    if value_digest is None:
        return b"\x00"
    data = value_digest.data
    if not value_digest.is_hash and len(data) >= _INLINE_VALUE_LIMIT:
        data = hashlib.sha256(data).digest()
    return b"\x01" + bytes([len(data) & 0xFF]) + data


def write_preimage(
    key: Iterable[int],
    value_digest: Optional[ValueDigest],
    children: Iterable[tuple[int, TrieHash]],
) -> bytes:
    """Return the pre-image for a node with the given key nibbles, value and child hashes."""
    child_list = list(children)
    nibbles = list(key)

    parts = [encode_varint(len(child_list))]
    for index, child_hash in child_list:
        parts.append(encode_varint(index))
        parts.append(bytes(child_hash))

    parts.append(_value_digest_bytes(value_digest))
    parts.append(encode_varint(BITS_PER_NIBBLE * len(nibbles)))

    it = iter(nibbles)
    parts.append(bytes(((high << 4) | next(it, 0)) & 0xFF for high in it))
    return b"".join(parts)


def preimage_hash(
    key: Iterable[int],
    value_digest: Optional[ValueDigest],
    children: Iterable[tuple[int, TrieHash]],
) -> TrieHash:
    """Return the SHA-256 hash of the pre-image built from the given parts."""
    return TrieHash(hashlib.sha256(write_preimage(key, value_digest, children)).digest())


def _parts(node: Node, path_prefix: Optional[Path]):
    prefix = path_prefix if path_prefix is not None else Path()
    key = chain(prefix, node.partial_path)
    if isinstance(node, LeafNode):
        return key, ValueDigest(node.value), ()
    if isinstance(node, BranchNode):
        digest = None if node.value is None else ValueDigest(node.value)
        return key, digest, list(node.children_iter())
    raise TypeError(f"cannot hash {type(node).__name__}")


def hash_node(node: Node, path_prefix: Optional[Path] = None) -> TrieHash:
    """Return the hash of node, which sits at path_prefix; all children must be hashed."""
    return preimage_hash(*_parts(node, path_prefix))


def hash_preimage(node: Node, path_prefix: Optional[Path] = None) -> bytes:
    """Return the bytes that are hashed to produce the hash of node at path_prefix."""
    return write_preimage(*_parts(node, path_prefix))