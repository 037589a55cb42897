import pytest

from fwstorage.trie_hash import TrieHash


def test_default_is_empty():
    assert TrieHash().is_empty() is True
    assert bytes(TrieHash()) == bytes(32)


def test_nonzero_is_not_empty():
    data = bytes(31) + b"\x01"
    assert TrieHash(data).is_empty() is False


@pytest.mark.parametrize("length", [0, 1, 31, 33, 64])
def test_wrong_length_rejected(length):
    with pytest.raises(ValueError):
        TrieHash(bytes(length))


def test_bytes_round_trip():
    data = bytes(range(32))
    assert bytes(TrieHash(data)) == data


def test_hex_round_trip():
    data = bytes(range(32))
    h = TrieHash(data)
    assert bytes.fromhex(h.hex()) == data
    assert len(h.hex()) == 64
    assert str(h) == h.hex()


def test_equality_and_hashing():
    a = TrieHash(bytes(range(32)))
    b = TrieHash(bytearray(range(32)))
    c = TrieHash()
    assert a == b
    assert a != c
    assert len({a, b, c}) == 2


def test_length_and_iteration():
    data = bytes(range(32))
    h = TrieHash(data)
    assert len(h) == 32
    assert list(h) == list(data)