"""Fixed-size hash values used to identify trie nodes."""

from __future__ import annotations

HASH_LEN = 32


class TrieHash:
    """An immutable 32-byte hash of a node in the merkle trie."""

    __slots__ = ("_data",)

    def __init__(self, data: bytes | bytearray | memoryview = bytes(HASH_LEN)) -> None:
        raw = bytes(data)
        if len(raw) != HASH_LEN:
            raise ValueError(
                f"invalid length {len(raw)}, expected an array of {HASH_LEN} hash bytes"
            )
        self._data = raw

    def is_empty(self) -> bool:
        """Return True if every byte of the hash is zero."""
        return not any(self._data)

    def __bytes__(self) -> bytes:
        return self._data

    def hex(self) -> str:
        """Return the hash as lower-case hexadecimal."""
        return self._data.hex()

    def __len__(self) -> int:
        return HASH_LEN

    def __iter__(self):
        return iter(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TrieHash):
            return self._data == other._data
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._data)

    def __repr__(self) -> str:
        return f"TrieHash({self.hex()})"

    def __str__(self) -> str:
        return self.hex()