# fwstorage

The storage layer for a merkle trie. It lays trie nodes out in a linear
byte store, hashes them with SHA-256 and keeps revisions of the trie
apart from one another. Freed space is reused through per-size free lists.

## What is in the package

- `fwstorage.trie_hash.TrieHash`: an immutable 32-byte hash with
  `is_empty()`, `hex()` and `bytes()` support.
- `fwstorage.path`:
  - `Path`: a list of nibbles with `extend`, `truncate`, `iter_encoded` and
    `Path.from_encoded`. `bytes_iter` and `to_bytes` pack two nibbles into
    one byte and drop a trailing odd nibble.
  - `NibblesIterator`: walks the nibbles of a byte string, high nibble
    first, from either end. It has `next_back`, `nth`, `nth_back`,
    `size_hint`, `is_empty` and `reversed()`.
- `fwstorage.node`:
  - `LeafNode` and `BranchNode`. A branch has 16 child slots, read and set
    with `child` and `update_child`. `children_iter` yields the hashed
    children, and `BranchNode.from_leaf` builds a branch from a leaf.
  - `AddressWithHash`: a child whose address and hash are known.
  - `Node.with_partial_path`, `default_node()` and `PathIterItem`.
- `fwstorage.hashednode`:
  - `hash_node(node, path_prefix)` and `hash_preimage(node, path_prefix)`:
    a node's hash, and the exact bytes that are hashed to make it.
  - The lower-level `write_preimage`, `preimage_hash`, `encode_varint` and
    `ValueDigest`.
  - Values of 32 bytes or more go into the pre-image as their SHA-256
    digest.
- `fwstorage.storage`:
  - `MemStore`: an in-memory store.
  - `FileBacked(path, node_cache_size, free_list_cache_size, truncate)`: a
    store in a file, with LRU caches of nodes and of free-list pointers. It
    can be used as a context manager or closed with `close()`.
  - Both offer `stream_from`, `size`, `write`, `write_cached_nodes`,
    `invalidate_cached_nodes` and `add_to_free_list_cache`.
- `fwstorage.areas`:
  - The 23 area sizes, from 16 bytes to 16 MiB, with `area_size_to_index`
    and `index_name`.
  - `FreeArea` and `NodeStoreHeader`, the header kept in the first
    2048 bytes of a store. It holds a version marker, an endianness check,
    the store size, the free-list heads and the root address.
  - `InvalidDataError`, raised for malformed or unusable stored data.
- `fwstorage.codec`: the binary form of nodes, areas and stored areas
  (`serialize_*` / `deserialize_*`), plus `encode_uint` / `decode_uint`
  for its variable-length integers.
- `fwstorage.nodestore`:
  - `NodeStore`, whose `kind` is one of `Committed`, `MutableProposal` or
    `ImmutableProposal`.
  - `NodeStoreParent`, which links a proposal to its parent.

## Example

```python
from fwstorage.storage import MemStore
from fwstorage.nodestore import NodeStore
from fwstorage.node import LeafNode
from fwstorage.path import Path

store = MemStore(b"")
proposal = NodeStore.new_empty_proposal(store)
proposal.set_root(LeafNode(partial_path=Path([1, 2, 3]), value=b"value"))

frozen = proposal.freeze()      # hashes the nodes and gives them addresses
frozen.flush_nodes()
frozen.flush_header()
print(frozen.root_hash())

reopened = NodeStore.open(store)  # committed revision read back from storage
assert reopened.root_hash() == frozen.root_hash()
```

## Revisions

1. `NodeStore.new_empty_committed(storage)` gives an empty committed
   revision. `NodeStore.open(storage)` reads one from storage: it checks
   the header and computes the root hash.
2. `NodeStore.propose(parent)` starts a mutable proposal on a committed
   revision or a frozen proposal. The parent's root address is recorded as
   deleted.
   - `set_root` replaces the root.
   - `read_for_update` and `mark_deleted` record further deletions.
3. `freeze()` hashes every in-memory node and allocates areas for them.
   Areas come from the free lists first, otherwise from the end of the
   store. The result is an immutable proposal.
   - `flush_nodes`, `flush_freelist` and `flush_header` (or
     `flush_header_with_padding` on first write) persist it.
   - `commit_reparent(other)` points a child proposal at this proposal's
     root hash once the proposal is committed.
4. `as_committed()` turns a frozen proposal into a committed revision.
   - `reap_deleted(proposal)` frees that revision's deleted nodes in
     another committed store with `free_node`, putting their areas on the
     free lists.

`read_node` looks in the in-memory nodes of the proposal chain first, then
in storage. Nodes larger than the largest area size raise
`InvalidDataError`.

## What the package does not do

- It has no key/value interface: no insert, get, delete or proofs over keys.
  Callers build and change the node tree themselves and hand the root to a
  proposal.
- It does not write anything on commit by itself. Flushing nodes, free lists
  and the header is left to the caller.
- It has no command-line tool and no server.

## Running the tests

```
pip install .[test]
pytest
```