import pytest

from fwstorage.node import LeafNode
from fwstorage.path import Path
from fwstorage.storage import FileBacked, MemStore


@pytest.mark.parametrize(
    "writes, expected",
    [
        ([(0, [1, 2, 3])], (0, [1, 2, 3])),
        ([(0, [1, 2, 3])], (1, [2, 3])),
        ([(0, [1, 2, 3])], (2, [3])),
        ([(0, [1, 2, 3])], (3, [])),
        ([(0, [1, 2, 3]), (3, [4, 5, 6])], (0, [1, 2, 3, 4, 5, 6])),
        ([(0, [1, 2, 3]), (0, [4])], (0, [4, 2, 3])),
        ([(0, [1, 2, 3]), (1, [4])], (0, [1, 4, 3])),
        ([(0, [1, 2, 3]), (2, [4])], (0, [1, 2, 4])),
        ([(0, [1, 2, 3]), (2, [4, 5])], (0, [1, 2, 4, 5])),
    ],
    ids=[
        "write to empty store",
        "read from middle of store",
        "read from end of store",
        "read past end of store",
        "write to end of store",
        "overwrite start of store",
        "overwrite middle of store",
        "overwrite end of store",
        "overwrite/extend end of store",
    ],
)
def test_in_mem_write_linear_store(writes, expected):
    store = MemStore()
    assert store.size() == 0
    for offset, data in writes:
        assert store.write(offset, bytes(data)) == len(data)
    assert store.stream_from(expected[0]).read() == bytes(expected[1])


def test_mem_write_past_end_zero_fills():
    store = MemStore(b"\x01")
    store.write(3, b"\x09")
    assert store.stream_from(0).read() == b"\x01\x00\x00\x09"
    assert store.size() == 4


def test_mem_read_far_past_end_is_empty():
    assert MemStore(b"abc").stream_from(100).read() == b""


def test_mem_negative_offset_rejected():
    with pytest.raises(ValueError):
        MemStore().write(-1, b"x")


def test_mem_has_no_caches():
    store = MemStore()
    node = LeafNode(Path([1]), b"v")
    store.write_cached_nodes([(16, node)])
    store.add_to_free_list_cache(16, 32)
    assert store.read_cached_node(16) is None
    assert store.free_list_cache(16) is None


@pytest.fixture
def filestore(tmp_path):
    with FileBacked(tmp_path / "db", 2, 2, True) as store:
        yield store


def test_file_write_and_read(filestore):
    filestore.write(0, b"\x01\x02\x03")
    filestore.write(5, b"\x09")
    assert filestore.size() == 6
    with filestore.stream_from(1) as stream:
        assert stream.read() == b"\x02\x03\x00\x00\x09"


def test_file_reopen_keeps_or_truncates(tmp_path):
    path = tmp_path / "db"
    with FileBacked(path, 1, 1, True) as store:
        store.write(0, b"hello")
    with FileBacked(path, 1, 1, False) as store:
        assert store.size() == 5
        with store.stream_from(0) as stream:
            assert stream.read() == b"hello"
    with FileBacked(path, 1, 1, True) as store:
        assert store.size() == 0


def test_file_node_cache_is_lru(filestore):
    n1, n2, n3 = (LeafNode(Path([i]), b"v") for i in range(3))
    filestore.write_cached_nodes([(16, n1), (32, n2)])
    assert filestore.read_cached_node(16) is n1
    filestore.write_cached_nodes([(48, n3)])
    assert filestore.read_cached_node(32) is None
    assert filestore.read_cached_node(16) is n1
    assert filestore.read_cached_node(48) is n3


def test_file_invalidate_cached_nodes(filestore):
    node = LeafNode(Path([1]), b"v")
    filestore.write_cached_nodes([(16, node), (32, node)])
    filestore.invalidate_cached_nodes([16])
    assert filestore.read_cached_node(16) is None
    assert filestore.read_cached_node(32) is node


def test_file_free_list_cache_pops(filestore):
    filestore.add_to_free_list_cache(16, 32)
    filestore.add_to_free_list_cache(32, None)
    assert filestore.free_list_cache(16) == 32
    assert filestore.free_list_cache(16) is None
    assert filestore.free_list_cache(32) == 0


def test_file_cache_size_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        FileBacked(tmp_path / "db", 0, 1, True)