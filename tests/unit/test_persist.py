"""
Unit tests for assistant_memory/persist (hashing, atomic JSON files, KVStore).
"""
import json

import pytest

from assistant_memory.errors import StorageError
from assistant_memory.persist.hashing import query_hash, stable_hash
from assistant_memory.persist.json_file import backup_path, read_json, temp_path, write_json_atomic
from assistant_memory.persist.sqlite_store import KVStore


# ============================================================================
# Hashing
# ============================================================================


def test_stable_hash_ignores_key_order():
    assert stable_hash({"b": 2, "a": 1}) == stable_hash({"a": 1, "b": 2})


def test_stable_hash_normalises_unicode():
    # "ü" precomposed vs. "u" + combining diaeresis
    assert stable_hash("M\u00fcnchen") == stable_hash("Mu\u0308nchen")


def test_stable_hash_digest_size():
    assert len(stable_hash("x")) == 64
    assert len(stable_hash(b"x", digest_size=8)) == 16


def test_stable_hash_rejects_other_types():
    with pytest.raises(TypeError):
        stable_hash(42)


def test_query_hash_is_short_and_case_insensitive():
    h = query_hash("  Was ist meine Lieblingsfarbe? ")
    assert h == query_hash("was ist meine lieblingsfarbe?")
    assert len(h) == 16


# ============================================================================
# Atomic JSON
# ============================================================================


def test_json_round_trip(tmp_path):
    path = tmp_path / "nested" / "doc.json"
    write_json_atomic(path, {"farbe": "grün"})

    assert read_json(path) == {"farbe": "grün"}
    assert not temp_path(path).exists()
    assert not backup_path(path).exists()


def test_read_missing_returns_none(tmp_path):
    assert read_json(tmp_path / "missing.json") is None


def test_read_corrupt_raises(tmp_path):
    path = tmp_path / "doc.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StorageError):
        read_json(path)


def test_failed_write_restores_previous(tmp_path):
    path = tmp_path / "doc.json"
    write_json_atomic(path, {"version": 1})

    with pytest.raises(StorageError):
        write_json_atomic(path, {"version": 2, "bad": {1, 2}})

    assert json.loads(path.read_text(encoding="utf-8")) == {"version": 1}
    assert not temp_path(path).exists()
    assert not backup_path(path).exists()


# ============================================================================
# KVStore
# ============================================================================


def test_kv_set_get_delete(kv):
    kv.set("embeddings", "k1", b"\x00\x01")
    assert kv.get("embeddings", "k1") == b"\x00\x01"

    kv.delete("embeddings", "k1")
    assert kv.get("embeddings", "k1") is None


def test_kv_replace_and_stats(kv):
    kv.set("embeddings", "k1", b"abc")
    kv.set("embeddings", "k1", b"abcd")
    kv.set("embeddings", "k2", b"x")

    assert kv.stats("embeddings") == {"count": 2, "total_bytes": 5}


def test_kv_purge_table(kv):
    kv.set("embeddings", "k1", b"a")
    kv.set("embeddings", "k2", b"b")

    assert kv.purge_table("embeddings") == 2
    assert kv.stats("embeddings") == {"count": 0, "total_bytes": 0}


def test_kv_unknown_table(kv):
    with pytest.raises(KeyError):
        kv.get("answers", "k1")


def test_kv_persists_across_connections(tmp_path):
    path = tmp_path / "cache.db"
    with KVStore(path) as first:
        first.set("embeddings", "k1", b"v")

    with KVStore(path) as second:
        assert second.get("embeddings", "k1") == b"v"


def test_kv_custom_tables(tmp_path):
    with KVStore(tmp_path / "cache.db", tables=("vectors",)) as store:
        store.set("vectors", "k", b"v")
        assert store.get("vectors", "k") == b"v"
        with pytest.raises(KeyError):
            store.get("embeddings", "k")
