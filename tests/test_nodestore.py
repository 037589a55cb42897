import pytest

from fwstorage.areas import (
    HEADER_SIZE,
    HEADER_STRUCT_SIZE,
    MAX_AREA_SIZE,
    NUM_AREA_SIZES,
    InvalidDataError,
    NodeStoreHeader,
    version_bytes,
)
from fwstorage.codec import serialize_area
from fwstorage.hashednode import hash_node
from fwstorage.node import AddressWithHash, BranchNode, LeafNode
from fwstorage.nodestore import (
    Committed,
    ImmutableProposal,
    MutableProposal,
    NodeStore,
    NodeStoreParent,
)
from fwstorage.path import Path
from fwstorage.storage import FileBacked, MemStore
from fwstorage.trie_hash import TrieHash


def _read_header(storage):
    with storage.stream_from(0) as stream:
        return NodeStoreHeader.from_bytes(stream.read(HEADER_STRUCT_SIZE))


def _commit_leaf(storage, leaf):
    proposal = NodeStore.new_empty_proposal(storage)
    proposal.set_root(leaf)
    frozen = proposal.freeze()
    frozen.flush_nodes()
    frozen.flush_header()
    return frozen


def test_reparent():
    base = NodeStore.new_empty_committed(MemStore())

    r1 = NodeStore.propose(base).freeze()
    assert r1.kind.parent == NodeStoreParent(root_hash=None)
    assert r1.kind.parent.is_committed
    assert r1.kind.parent_hash_is(None)

    r2 = NodeStore.propose(r1).freeze()
    assert r2.kind.parent.proposal is r1.kind
    assert not r2.kind.parent_hash_is(None)

    assert r1.commit_reparent(r2) is True

    parent = r2.kind.parent
    assert parent.is_committed
    assert parent.root_hash == r1.root_hash()
    assert parent.root_hash is None
    assert r1.commit_reparent(r2) is False


def test_node_store_new():
    store = MemStore()
    node_store = NodeStore.new_empty_proposal(store)
    header = _read_header(node_store.storage)
    assert header.version == version_bytes()
    assert header.free_lists == [None] * NUM_AREA_SIZES
    assert header.root_address is None
    assert store.size() == HEADER_STRUCT_SIZE


def _branch_with_one_child():
    children = [None] * BranchNode.MAX_CHILDREN
    children[15] = AddressWithHash(1, TrieHash(bytes(range(32))))
    return BranchNode(Path([6, 7, 8]), bytes([9, 10, 11]), children)


@pytest.mark.parametrize(
    "node, expected",
    [
        (_branch_with_one_child(), 48),
        (LeafNode(Path([0, 1, 2]), bytes([3, 4, 5])), 11),
    ],
    ids=["branch node with 1 child", "leaf node"],
)
def test_serialized_len(node, expected):
    assert NodeStore.stored_len(node) == expected
    assert NodeStore.stored_len(node) == len(serialize_area(node)) + 1


def test_giant_node():
    node_store = NodeStore.new_empty_proposal(MemStore())
    giant_leaf = LeafNode(Path([0, 1, 2]), bytes(MAX_AREA_SIZE))
    node_store.set_root(giant_leaf)
    with pytest.raises(InvalidDataError, match="Node size 16777228 is too large"):
        node_store.freeze()


def test_freeze_empty_trie():
    frozen = NodeStore.new_empty_proposal(MemStore()).freeze()
    assert frozen.header.root_address is None
    assert frozen.kind.root_hash is None
    assert frozen.root_address_and_hash() is None
    assert frozen.kind.new == {}


def test_freeze_leaf_allocates_after_header():
    leaf = LeafNode(Path([1, 2]), b"abc")
    proposal = NodeStore.new_empty_proposal(MemStore())
    proposal.set_root(leaf)
    frozen = proposal.freeze()
    assert frozen.header.root_address == HEADER_SIZE
    assert frozen.header.size == HEADER_SIZE + 16
    assert frozen.kind.root_hash == hash_node(leaf, Path())
    assert frozen.root_hash() == frozen.kind.root_hash
    assert frozen.read_node(HEADER_SIZE) == leaf


def test_freeze_hashes_child_nodes():
    child = LeafNode(Path([7]), b"child")
    branch = BranchNode(Path(), b"root")
    branch.update_child(5, child)
    proposal = NodeStore.new_empty_proposal(MemStore())
    proposal.set_root(branch)
    frozen = proposal.freeze()

    assert len(frozen.kind.new) == 2
    root = frozen.root_node()
    hashed_child = root.child(5)
    assert isinstance(hashed_child, AddressWithHash)
    assert hashed_child.hash == hash_node(child, Path([5]))
    assert frozen.read_node(hashed_child.address) == child
    assert frozen.kind.root_hash == hash_node(root, Path())
    # The proposal's own root is left untouched.
    assert proposal.kind.root.child(5) is child


def test_mutable_root_node_is_a_copy():
    leaf = LeafNode(Path([3]), b"v")
    proposal = NodeStore.new_empty_proposal(MemStore())
    proposal.set_root(leaf)
    root = proposal.root_node()
    assert root == leaf
    assert root is not leaf


def test_open_round_trip_memstore():
    store = MemStore()
    leaf = LeafNode(Path([1, 2, 3]), b"value")
    frozen = _commit_leaf(store, leaf)
    reopened = NodeStore.open(store)
    assert isinstance(reopened.kind, Committed)
    assert reopened.kind.root_hash == frozen.kind.root_hash
    assert reopened.root_node() == leaf
    assert reopened.root_address_and_hash() == (HEADER_SIZE, frozen.kind.root_hash)


def test_open_empty_storage_fails():
    with pytest.raises(InvalidDataError):
        NodeStore.open(MemStore())


def test_open_wrong_version_fails():
    header = NodeStoreHeader(version=b"x" * 16)
    with pytest.raises(InvalidDataError, match="Incompatible firewood version"):
        NodeStore.open(MemStore(header.to_bytes()))


def test_open_wrong_endianness_fails():
    header = NodeStoreHeader(endian_test=2)
    with pytest.raises(InvalidDataError, match="endianness"):
        NodeStore.open(MemStore(header.to_bytes()))


def test_propose_marks_root_deleted_and_read_for_update():
    store = MemStore()
    leaf = LeafNode(Path([1, 2]), b"abc")
    committed = _commit_leaf(store, leaf).as_committed()
    root_addr = committed.header.root_address

    proposal = NodeStore.propose(committed)
    assert isinstance(proposal.kind, MutableProposal)
    assert proposal.kind.deleted == [root_addr]
    assert proposal.kind.root == leaf

    node = proposal.read_for_update(root_addr)
    assert node == leaf
    assert proposal.kind.deleted == [root_addr, root_addr]


def test_reap_and_reuse_free_area():
    store = MemStore()
    first = _commit_leaf(store, LeafNode(Path([1, 2]), b"abc"))
    c1 = first.as_committed()
    root_addr = c1.header.root_address

    p2 = NodeStore.propose(c1)
    p2.set_root(LeafNode(Path([3]), b"xyz"))
    i2 = p2.freeze()
    i2.flush_nodes()
    i2.flush_header()
    assert i2.kind.deleted == (root_addr,)

    c2 = i2.as_committed()
    target = i2.as_committed()
    c2.reap_deleted(target)

    assert c2.kind.deleted == ()
    assert target.header.free_lists[0] == root_addr
    with pytest.raises(InvalidDataError, match="Attempted to read a freed area"):
        target.read_node_from_disk(root_addr)

    size_before = target.header.size
    p3 = NodeStore.propose(target)
    p3.set_root(LeafNode(Path([4]), b"q"))
    i3 = p3.freeze()
    assert i3.header.root_address == root_addr
    assert i3.header.free_lists[0] is None
    assert i3.header.size == size_before


def test_free_node_requires_committed():
    proposal = NodeStore.new_empty_proposal(MemStore())
    with pytest.raises(TypeError):
        proposal.free_node(HEADER_SIZE)


def test_set_root_requires_mutable():
    committed = NodeStore.new_empty_committed(MemStore())
    with pytest.raises(TypeError):
        committed.set_root(LeafNode(Path(), b""))


def test_flush_header_with_padding():
    store = MemStore()
    proposal = NodeStore.new_empty_proposal(store)
    proposal.flush_header_with_padding()
    assert store.size() == HEADER_SIZE
    assert _read_header(store) == NodeStoreHeader.new()


def test_flush_freelist():
    store = MemStore()
    frozen = NodeStore.new_empty_proposal(store).freeze()
    frozen.header.free_lists[3] = 4096
    frozen.flush_freelist()
    header = _read_header(store)
    assert header.free_lists[3] == 4096
    assert header.root_address is None


def test_immutable_proposal_reads_from_proposed_parent():
    leaf = LeafNode(Path([9]), b"parent")
    proposal = NodeStore.new_empty_proposal(MemStore())
    proposal.set_root(leaf)
    parent = proposal.freeze()
    addr = parent.header.root_address

    child = NodeStore.propose(parent).freeze()
    assert isinstance(child.kind, ImmutableProposal)
    assert child.read_node(addr) == leaf
    assert child.kind.read_in_memory_node(addr + 1000) is None


def test_file_backed_round_trip_and_free_list_cache(tmp_path):
    path = tmp_path / "db"
    leaf = LeafNode(Path([1, 2, 3]), b"value")
    with FileBacked(path, 8, 8, True) as storage:
        proposal = NodeStore.new_empty_proposal(storage)
        proposal.set_root(leaf)
        frozen = proposal.freeze()
        frozen.flush_nodes()
        frozen.flush_header_with_padding()
        addr = frozen.header.root_address
        expected = frozen.kind.root_hash
        assert storage.read_cached_node(addr) is frozen.kind.new[addr][1]

    with FileBacked(path, 8, 8, False) as storage:
        reopened = NodeStore.open(storage)
        assert reopened.kind.root_hash == expected
        assert reopened.root_node() == leaf

        reopened.free_node(addr)
        assert reopened.header.free_lists[0] == addr
        p2 = NodeStore.propose(NodeStore.new_empty_committed(storage))
        p2.header = reopened.header
        p2.set_root(LeafNode(Path([5]), b"x"))
        i2 = p2.freeze()
        assert i2.header.root_address == addr
        assert i2.header.free_lists[0] is None