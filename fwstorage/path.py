"""Nibble paths and iteration over the nibbles of byte strings."""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

ODD_LEN = 0b0001


class Path:
    """Part or all of a node's path in the trie; each element is a nibble."""

    __slots__ = ("_nibbles",)

    def __init__(self, nibbles: Iterable[int] = ()) -> None:
        self._nibbles: list[int] = []
        self.extend(nibbles)

    def iter_encoded(self) -> Iterator[int]:
        """Yield the flag byte, a padding byte for even lengths, then the nibbles."""
        odd = len(self._nibbles) % 2 == 1
        yield ODD_LEN if odd else 0
        if not odd:
            yield 0
        yield from self._nibbles

    @classmethod
    def from_encoded(cls, encoded: Iterable[int]) -> Path:
        """Decode a path produced by iter_encoded."""
        it = iter(encoded)
        flags = next(it, 0)
        if not flags & ODD_LEN:
            next(it, None)
        return cls(it)

    def extend(self, nibbles: Iterable[int]) -> None:
        """Append nibbles to the end of the path."""
        for nibble in nibbles:
            if not 0 <= nibble <= 0xFF:
                raise ValueError(f"path element {nibble} does not fit in a byte")
            self._nibbles.append(nibble)

    def truncate(self, length: int) -> None:
        """Shorten the path to at most length nibbles."""
        if length < 0:
            raise ValueError(f"cannot truncate a path to negative length {length}")
        self._nibbles = self._nibbles[:length]

    def bytes_iter(self) -> Iterator[int]:
        """Yield pairs of nibbles combined into bytes; a trailing odd nibble is dropped."""
        it = iter(self._nibbles)
        for hi in it:
            lo = next(it, None)
            if lo is None:
                return
            yield hi * 16 + lo

    def to_bytes(self) -> bytes:
        """Return the path packed two nibbles per byte."""
        return bytes(self.bytes_iter())

    def __len__(self) -> int:
        return len(self._nibbles)

    def __iter__(self) -> Iterator[int]:
        return iter(self._nibbles)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Path(self._nibbles[index])
        return self._nibbles[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Path):
            return self._nibbles == other._nibbles
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Path({self._nibbles!r})"

    def __str__(self) -> str:
        return "".join(
            f"[invalid {nib:02x}] " if nib > 0xF else f"{nib:x} " for nib in self._nibbles
        )


class NibblesIterator:
    """Iterates over the nibbles of a byte string, high nibble first, from both ends."""

    __slots__ = ("_data", "_head", "_tail")

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._head = 0
        self._tail = 2 * len(self._data)

    def __iter__(self) -> NibblesIterator:
        return self

    def _front(self) -> Optional[int]:
        if self.is_empty():
            return None
        byte = self._data[self._head // 2]
        result = byte >> 4 if self._head % 2 == 0 else byte & 0xF
        self._head += 1
        return result

    def __next__(self) -> int:
        result = self._front()
        if result is None:
            raise StopIteration
        return result

    def __len__(self) -> int:
        return self._tail - self._head

    def __reversed__(self) -> Iterator[int]:
        while (value := self.next_back()) is not None:
            yield value

    def next_back(self) -> Optional[int]:
        """Return the last remaining nibble, or None when exhausted."""
        if self.is_empty():
            return None
        if self._tail % 2 == 0:
            result = self._data[self._tail // 2 - 1] & 0xF
        else:
            result = self._data[self._tail // 2] >> 4
        self._tail -= 1
        return result

    def nth(self, n: int) -> Optional[int]:
        """Skip n nibbles from the front and return the next one, or None."""
        self._head += min(n, len(self))
        return self._front()

    def nth_back(self, n: int) -> Optional[int]:
        """Skip n nibbles from the back and return the next one from the back, or None."""
        self._tail -= min(n, len(self))
        return self.next_back()

    def size_hint(self) -> tuple[int, int]:
        """Return the exact remaining count as a (lower, upper) pair."""
        remaining = len(self)
        return remaining, remaining

    def is_empty(self) -> bool:
        """Return True if no nibbles remain."""
        return self._head == self._tail