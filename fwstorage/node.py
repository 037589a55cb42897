"""Trie node types: leaves, branches and their children."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

from fwstorage.path import Path
from fwstorage.trie_hash import TrieHash


@dataclass(frozen=True)
class AddressWithHash:
    """A child whose storage address and hash are known."""

    address: int
    hash: TrieHash


class Node:
    """Base class of trie nodes."""

    __slots__ = ()

    partial_path: Path

    def with_partial_path(self, partial_path: Path) -> Node:
        """Return a copy of this node with the given partial path."""
        return dataclasses.replace(self, partial_path=partial_path)


Child = Union[Node, AddressWithHash]


@dataclass(repr=False)
class LeafNode(Node):
    """A leaf holding a value; partial_path is the remaining nibbles of its key."""

    partial_path: Path = field(default_factory=Path)
    value: bytes = b""

    def __post_init__(self) -> None:
        self.value = bytes(self.value)

    def __repr__(self) -> str:
        return f"[Leaf {self.partial_path} {self.value.hex()}]"


@dataclass(repr=False)
class BranchNode(Node):
    """A branch with an optional value and up to MAX_CHILDREN children."""

    MAX_CHILDREN = 16

    partial_path: Path = field(default_factory=Path)
    value: Optional[bytes] = None
    children: list = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.value is not None:
            self.value = bytes(self.value)
        if self.children is None:
            self.children = [None] * self.MAX_CHILDREN
        else:
            self.children = list(self.children)
        if len(self.children) != self.MAX_CHILDREN:
            raise ValueError(
                f"a branch has exactly {self.MAX_CHILDREN} child slots, "
                f"got {len(self.children)}"
            )

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.MAX_CHILDREN:
            raise IndexError(f"child index {index} out of range")

    def child(self, index: int) -> Optional[Child]:
        """Return the child at index, or None if the slot is empty."""
        self._check_index(index)
        return self.children[index]

    def update_child(self, index: int, child: Optional[Child]) -> None:
        """Replace the child at index; None removes it."""
        self._check_index(index)
        self.children[index] = child

    def children_iter(self) -> Iterator[tuple[int, TrieHash]]:
        """Yield (index, hash) for every child; all children must already be hashed."""
        for index, child in enumerate(self.children):
            if child is None:
                continue
            if not isinstance(child, AddressWithHash):
                raise ValueError(f"child {index} has not been hashed")
            yield index, child.hash

    @classmethod
    def from_leaf(cls, leaf: LeafNode) -> BranchNode:
        """Build a childless branch carrying the leaf's path and value."""
        return cls(partial_path=Path(leaf.partial_path), value=leaf.value)

    def __repr__(self) -> str:
        parts = [f'[Branch path="{self.partial_path}"']
        for index, child in enumerate(self.children):
            if isinstance(child, AddressWithHash):
                parts.append(
                    f'(index: {index}), address={child.address}, hash="{child.hash.hex()}")'
                )
        value = "nil" if self.value is None else self.value.hex()
        parts.append(f" v={value}]")
        return "".join(parts)


def default_node() -> LeafNode:
    """Return an empty leaf with no path and no value."""
    return LeafNode(Path(), b"")


@dataclass
class PathIterItem:
    """A node met while walking a key, with the key nibbles leading to it."""

    key_nibbles: bytes
    node: Node
    next_nibble: Optional[int] = None