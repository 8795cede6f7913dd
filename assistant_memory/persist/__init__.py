"""
Persistence helpers for the memory subsystem.

Provides:
- Stable hashing for cache keys and query fingerprints
- Atomic JSON document writes with backup/restore
- SQLite-backed KV store for the embedding cache
"""

from .hashing import stable_hash, query_hash
from .json_file import read_json, write_json_atomic
from .sqlite_store import KVStore

__all__ = [
    "stable_hash",
    "query_hash",
    "read_json",
    "write_json_atomic",
    "KVStore",
]
