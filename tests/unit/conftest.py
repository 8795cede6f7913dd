"""
Shared fixtures for unit tests.
"""
import pytest

from assistant_memory.persist.sqlite_store import KVStore


@pytest.fixture
def kv(tmp_path):
    """Create a temporary KVStore instance."""
    store = KVStore(tmp_path / "cache.db")
    yield store
    store.close()

