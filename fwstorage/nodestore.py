"""Revisions of the trie laid out in linear storage, with free-space management.

A node store is in one of three states, held in its ``kind``:

* ``Committed``: a revision whose nodes all live in storage.
* ``MutableProposal``: a revision still being changed; its root is in memory.
* ``ImmutableProposal``: a hashed revision whose new nodes have addresses
  but may not yet be written to storage.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from itertools import chain
from typing import Optional, Union

from fwstorage.areas import (
    AREA_SIZES,
    FREE_LISTS_OFFSET,
    HEADER_STRUCT_SIZE,
    NUM_AREA_SIZES,
    FreeArea,
    InvalidDataError,
    NodeStoreHeader,
    area_size_to_index,
)
from fwstorage.codec import (
    deserialize_area,
    deserialize_stored_area,
    serialize_area,
    serialize_stored_area,
)
from fwstorage.hashednode import hash_node
from fwstorage.node import AddressWithHash, BranchNode, LeafNode, Node
from fwstorage.path import Path
from fwstorage.storage import ReadableStorage, WritableStorage
from fwstorage.trie_hash import TrieHash

logger = logging.getLogger(__name__)


def _clone_node(node: Node) -> Node:
    if isinstance(node, BranchNode):
        children = [
            _clone_node(child) if isinstance(child, Node) else child
            for child in node.children
        ]
        return BranchNode(Path(node.partial_path), node.value, children)
    if isinstance(node, LeafNode):
        return LeafNode(Path(node.partial_path), node.value)
    raise TypeError(f"cannot copy {type(node).__name__}")


@dataclass(frozen=True, eq=False)
class NodeStoreParent:
    """The parent of a proposal: another proposal, or a committed revision's root hash."""

    proposal: Optional["ImmutableProposal"] = None
    root_hash: Optional[TrieHash] = None

    @property
    def is_committed(self) -> bool:
        return self.proposal is None

    def read_in_memory_node(self, addr: int) -> Optional[Node]:
        """Return the node at addr held in memory by a parent proposal, if any."""
        if self.proposal is None:
            return None
        return self.proposal.read_in_memory_node(addr)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NodeStoreParent):
            return NotImplemented
        if self.proposal is not None or other.proposal is not None:
            return self.proposal is other.proposal
        return self.root_hash == other.root_hash

    __hash__ = None  # type: ignore[assignment]


@dataclass
class Committed:
    """A committed revision; it has no in-memory nodes."""

    deleted: tuple = ()
    root_hash: Optional[TrieHash] = None

    def read_in_memory_node(self, addr: int) -> Optional[Node]:
        """A committed revision keeps all its nodes in storage."""
        return None

    def as_nodestore_parent(self) -> NodeStoreParent:
        """Return a parent reference to this committed revision."""
        return NodeStoreParent(root_hash=self.root_hash)


@dataclass
class MutableProposal:
    """A proposal that is still being modified."""

    root: Optional[Node] = None
    deleted: list = field(default_factory=list)
    parent: NodeStoreParent = field(default_factory=NodeStoreParent)

    def read_in_memory_node(self, addr: int) -> Optional[Node]:
        """Look for the node in the parent proposals."""
        return self.parent.read_in_memory_node(addr)


@dataclass(eq=False)
class ImmutableProposal:
    """A hashed proposal: new nodes by address, deleted addresses and its parent."""

    new: dict = field(default_factory=dict)
    deleted: tuple = ()
    parent: NodeStoreParent = field(default_factory=NodeStoreParent)
    root_hash: Optional[TrieHash] = None

    def parent_hash_is(self, hash: Optional[TrieHash]) -> bool:
        """Return True if the parent is committed and has the given root hash."""
        parent = self.parent
        return parent.is_committed and parent.root_hash == hash

    def read_in_memory_node(self, addr: int) -> Optional[Node]:
        """Return a node created in this proposal or one of its proposed ancestors."""
        entry = self.new.get(addr)
        if entry is not None:
            return entry[1]
        return self.parent.read_in_memory_node(addr)

    def as_nodestore_parent(self) -> NodeStoreParent:
        """Return a parent reference to this proposal."""
        return NodeStoreParent(proposal=self)


Kind = Union[Committed, MutableProposal, ImmutableProposal]


@dataclass(eq=False)
class NodeStore:
    """One revision of the trie: its header, its state and the storage beneath it."""

    header: NodeStoreHeader
    kind: Kind
    storage: ReadableStorage

    # ----- construction -------------------------------------------------

    @classmethod
    def open(cls, storage: ReadableStorage) -> NodeStore:
        """Open an existing store whose header is already written to storage."""
        with storage.stream_from(0) as stream:
            data = stream.read(HEADER_STRUCT_SIZE)
        header = NodeStoreHeader.from_bytes(data)
        store = cls(header, Committed(), storage)
        if header.root_address is not None:
            root = store.read_node_from_disk(header.root_address)
            store.kind.root_hash = hash_node(root, Path())
        return store

    @classmethod
    def new_empty_committed(cls, storage: ReadableStorage) -> NodeStore:
        """Return an empty committed revision with no root and empty free lists."""
        return cls(NodeStoreHeader.new(), Committed(), storage)

    @classmethod
    def new_empty_proposal(cls, storage: WritableStorage) -> NodeStore:
        """Return an empty mutable proposal, writing an empty header to storage."""
        header = NodeStoreHeader.new()
        _writable(storage).write(0, header.to_bytes())
        return cls(header, MutableProposal(), storage)

    @classmethod
    def propose(cls, parent: NodeStore) -> NodeStore:
        """Start a mutable proposal on top of a committed revision or a hashed proposal."""
        if not isinstance(parent.kind, (Committed, ImmutableProposal)):
            raise TypeError("a proposal needs a committed or hashed parent")
        deleted: list = []
        root = None
        root_addr = parent.header.root_address
        if root_addr is not None:
            deleted.append(root_addr)
            root = _clone_node(parent.read_node(root_addr))
        kind = MutableProposal(
            root=root, deleted=deleted, parent=parent.kind.as_nodestore_parent()
        )
        return cls(copy.copy(parent.header), kind, parent.storage)

    # ----- reading ------------------------------------------------------

    def _require(self, kind_cls: type, operation: str):
        if not isinstance(self.kind, kind_cls):
            raise TypeError(
                f"{operation} requires a {kind_cls.__name__} node store, "
                f"not {type(self.kind).__name__}"
            )
        return self.kind

    def _area_index_and_size(self, addr: int) -> tuple[int, int]:
        with self.storage.stream_from(addr) as stream:
            raw = stream.read(1)
        if not raw:
            raise InvalidDataError("unexpected end of data")
        index = raw[0]
        if index >= NUM_AREA_SIZES:
            raise InvalidDataError(f"Invalid area size index {index}")
        return index, AREA_SIZES[index]

    def read_node_from_disk(self, addr: int) -> Node:
        """Read the node stored in the area at addr, using the storage's cache."""
        cached = self.storage.read_cached_node(addr)
        if cached is not None:
            return cached
        # Skip the area size index byte.
        with self.storage.stream_from(addr + 1) as stream:
            area = deserialize_area(stream)
        if isinstance(area, FreeArea):
            raise InvalidDataError("Attempted to read a freed area")
        return area

    def read_node(self, addr: int) -> Node:
        """Return the node at addr, from memory if a proposal holds it, else from storage."""
        node = self.kind.read_in_memory_node(addr)
        if node is not None:
            return node
        return self.read_node_from_disk(addr)

    def root_node(self) -> Optional[Node]:
        """Return the root node, or None if there is none or it cannot be read."""
        if isinstance(self.kind, MutableProposal):
            return None if self.kind.root is None else _clone_node(self.kind.root)
        addr = self.header.root_address
        if addr is None:
            return None
        try:
            return self.read_node(addr)
        except (InvalidDataError, OSError):
            return None

    def root_address_and_hash(self) -> Optional[tuple[int, TrieHash]]:
        """Return the root's address and hash, or None for an empty trie."""
        addr = self.header.root_address
        if addr is None:
            return None
        return addr, hash_node(self.read_node(addr), Path())

    def root_hash(self) -> Optional[TrieHash]:
        """Return the hash of the root node, or None for an empty trie."""
        found = self.root_address_and_hash()
        return None if found is None else found[1]

    # ----- mutable proposals --------------------------------------------

    def set_root(self, node: Optional[Node]) -> None:
        """Replace the root of a mutable proposal; None empties the trie."""
        self._require(MutableProposal, "set_root").root = node

    def mark_deleted(self, addr: int) -> None:
        """Record that the node at addr is deleted by this proposal."""
        kind = self._require(MutableProposal, "mark_deleted")
        logger.debug("Pending delete at %d", addr)
        kind.deleted.append(addr)

    def read_for_update(self, addr: int) -> Node:
        """Mark the node at addr as deleted and return a private copy of it."""
        self.mark_deleted(addr)
        return _clone_node(self.read_node(addr))

    def freeze(self) -> NodeStore:
        """Hash a mutable proposal, assign addresses to its new nodes and return it hashed."""
        kind = self._require(MutableProposal, "freeze")
        frozen = NodeStore(
            copy.copy(self.header),
            ImmutableProposal(deleted=tuple(kind.deleted), parent=kind.parent),
            self.storage,
        )
        if kind.root is None:
            frozen.header.root_address = None
            return frozen

        new_nodes: dict = {}
        root_addr, root_hash = frozen._hash_helper(
            _clone_node(kind.root), Path(), new_nodes
        )
        frozen.header.root_address = root_addr
        frozen.kind.new = new_nodes
        frozen.kind.root_hash = root_hash
        return frozen

    def _hash_helper(
        self, node: Node, path_prefix: Path, new_nodes: dict
    ) -> tuple[int, TrieHash]:
        if isinstance(node, BranchNode):
            for nibble, child in enumerate(node.children):
                if not isinstance(child, Node):
                    continue
                original_length = len(path_prefix)
                path_prefix.extend(chain(node.partial_path, (nibble,)))
                child_addr, child_hash = self._hash_helper(child, path_prefix, new_nodes)
                node.children[nibble] = AddressWithHash(child_addr, child_hash)
                path_prefix.truncate(original_length)

        node_hash = hash_node(node, path_prefix)
        addr, index = self.allocate_node(node)
        new_nodes[addr] = (index, node)
        return addr, node_hash

    # ----- hashed proposals ---------------------------------------------

    def commit_reparent(self, other: NodeStore) -> bool:
        """Point other at this proposal's committed hash if this proposal is its parent."""
        kind = self._require(ImmutableProposal, "commit_reparent")
        other_kind = other._require(ImmutableProposal, "commit_reparent")
        if other_kind.parent.proposal is kind:
            other_kind.parent = NodeStoreParent(root_hash=kind.root_hash)
            return True
        return False

    @staticmethod
    def stored_len(node: Node) -> int:
        """Return the number of bytes the stored area of node takes."""
        return len(serialize_area(node)) + 1

    def _allocate_from_freed(self, n: int) -> Optional[tuple[int, int]]:
        index_wanted = area_size_to_index(n)
        free_lists = self.header.free_lists
        index = next(
            (i for i in range(index_wanted, NUM_AREA_SIZES) if free_lists[i] is not None),
            None,
        )
        if index is None:
            logger.debug("No free blocks of sufficient size %d found", index_wanted)
            return None

        address = free_lists[index]
        free_lists[index] = None
        cached = self.storage.free_list_cache(address)
        if cached is not None:
            free_lists[index] = cached or None
        else:
            with self.storage.stream_from(address) as stream:
                _, area = deserialize_stored_area(stream)
            if not isinstance(area, FreeArea):
                raise InvalidDataError("Attempted to read a non-free area")
            free_lists[index] = area.next_free_block

        logger.debug("Allocating from free list: addr: %d, size: %d", address, index)
        return address, index

    def _allocate_from_end(self, n: int) -> tuple[int, int]:
        index = area_size_to_index(n)
        addr = self.header.size
        if addr == 0:
            raise InvalidDataError("node store size can't be 0")
        self.header.size += AREA_SIZES[index]
        logger.debug("Allocating from end: addr: %d, size: %d", addr, index)
        return addr, index

    def allocate_node(self, node: Node) -> tuple[int, int]:
        """Reserve an area for node and return (address, area size index)."""
        self._require(ImmutableProposal, "allocate_node")
        n = self.stored_len(node)
        found = self._allocate_from_freed(n)
        return found if found is not None else self._allocate_from_end(n)

    # ----- committed revisions ------------------------------------------

    def free_node(self, addr: int) -> None:
        """Free the area at addr and put it at the head of its free list."""
        self._require(Committed, "free_node")
        storage = _writable(self.storage)
        index, _ = self._area_index_and_size(addr)
        logger.debug("Deleting node at %d of size %d", addr, index)
        next_free = self.header.free_lists[index]
        storage.write(addr, serialize_stored_area(index, FreeArea(next_free)))
        storage.add_to_free_list_cache(addr, next_free)
        self.header.free_lists[index] = addr

    def reap_deleted(self, proposal: NodeStore) -> None:
        """Free, in proposal, every node this committed revision deleted."""
        kind = self._require(Committed, "reap_deleted")
        _writable(self.storage).invalidate_cached_nodes(kind.deleted)
        logger.debug("There are %d nodes to reap", len(kind.deleted))
        deleted, kind.deleted = kind.deleted, ()
        for addr in deleted:
            proposal.free_node(addr)

    def as_committed(self) -> NodeStore:
        """Return the committed revision this hashed proposal becomes."""
        kind = self._require(ImmutableProposal, "as_committed")
        return NodeStore(
            copy.copy(self.header),
            Committed(deleted=tuple(kind.deleted), root_hash=kind.root_hash),
            self.storage,
        )

    # ----- persistence --------------------------------------------------

    def flush_header(self) -> None:
        """Write the header to the start of storage."""
        _writable(self.storage).write(0, self.header.to_bytes())

    def flush_header_with_padding(self) -> None:
        """Write the header zero-padded to its full reserved size."""
        _writable(self.storage).write(0, self.header.padded_bytes())

    def flush_freelist(self) -> None:
        """Write only the free lists of this proposal's header."""
        self._require(ImmutableProposal, "flush_freelist")
        _writable(self.storage).write(FREE_LISTS_OFFSET, self.header.free_lists_bytes())

    def flush_nodes(self) -> None:
        """Write every new node of this proposal to storage and cache them."""
        kind = self._require(ImmutableProposal, "flush_nodes")
        storage = _writable(self.storage)
        for addr, (index, node) in kind.new.items():
            storage.write(addr, serialize_stored_area(index, node))
        storage.write_cached_nodes((addr, node) for addr, (_, node) in kind.new.items())


def _writable(storage: ReadableStorage) -> WritableStorage:
    if not isinstance(storage, WritableStorage):
        raise TypeError(f"{type(storage).__name__} is not writable")
    return storage