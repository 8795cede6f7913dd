"""
Stable hashing for cache keys and privacy-preserving log fields.
"""

import hashlib
import json
import unicodedata


def stable_hash(obj: dict | list | str | bytes, digest_size: int = 32) -> str:
    """
    Deterministic blake2b hex digest of ``obj``.

    - Dicts and lists: canonical JSON (sorted keys)
    - Strings: NFC-normalised UTF-8
    - Bytes: used directly

    Examples:
        >>> stable_hash({"b": 2, "a": 1}) == stable_hash({"a": 1, "b": 2})
        True
    """
    if isinstance(obj, (dict, list)):
        data = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    elif isinstance(obj, str):
        data = unicodedata.normalize("NFC", obj).encode("utf-8")
    elif isinstance(obj, bytes):
        data = obj
    else:
        raise TypeError(f"Cannot hash type {type(obj)}: {obj}")

    return hashlib.blake2b(data, digest_size=digest_size).hexdigest()


def query_hash(text: str) -> str:
    """Short hash of a user query so metrics never carry raw text."""
    return stable_hash(text.strip().lower(), digest_size=8)
