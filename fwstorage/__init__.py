"""Revisioned node storage for a merkle trie: paths, nodes, hashing, linear stores and node stores."""

__version__ = "0.1.0"
__all__ = ["__version__"]