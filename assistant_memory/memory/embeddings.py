"""
Text embedders used by the retriever.

``HashingEmbedder`` needs nothing beyond numpy and is deterministic, which
makes it the default for tests and small deployments. Install the
``embeddings`` extra to use ``SentenceTransformerEmbedder``.
"""

import asyncio
import hashlib
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from ..persist.hashing import stable_hash
from ..persist.sqlite_store import KVStore
from ..telemetry import get_logger
from .text_utils import normalize_text

logger = get_logger(__name__)

EMBED_TABLE = "embeddings"


class Embedder(Protocol):
    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]: ...


def cosine(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity, 0.0 for mismatched shapes or zero vectors."""
    if a.shape != b.shape:
        return 0.0
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


class HashingEmbedder:
    """
    Character-trigram feature hashing into a fixed-size vector.

    Usage:
        >>> embedder = HashingEmbedder(dim=256)
        >>> [vec] = await embedder.embed(["lieblingsfarbe: blau"])
        >>> vec.shape
        (256,)
    """

    def __init__(self, dim: int = 256):
        self.dim = dim

    def _bucket(self, feature: str) -> int:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=4).digest()
        return int.from_bytes(digest, "little") % self.dim

    def embed_one(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dim, dtype=np.float32)
        for word in normalize_text(text).split():
            padded = f"#{word}#"
            for i in range(len(padded) - 2):
                vec[self._bucket(padded[i:i + 3])] += 1.0
            vec[self._bucket(f"w:{word}")] += 2.0

        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec

    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        return [self.embed_one(t) for t in texts]


class SentenceTransformerEmbedder:
    """Wraps a sentence-transformers model; encoding runs in the default executor."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", model: Any = None):
        if model is None:
            from sentence_transformers import SentenceTransformer
            model = SentenceTransformer(model_name)
        self.model = model
        self.model_name = model_name

    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        if not texts:
            return []
        loop = asyncio.get_running_loop()
        vectors = await loop.run_in_executor(
            None,
            lambda: self.model.encode(list(texts), normalize_embeddings=True, show_progress_bar=False),
        )
        return [np.asarray(v, dtype=np.float32) for v in vectors]


class CachingEmbedder:
    """
    Exact-text embedding cache in front of another embedder.

    Key = blake2b(text + model_name)
    Value = float32 vector bytes

    Vectors live in a ``KVStore`` table when one is given, otherwise in a
    process-local dict.
    """

    def __init__(self, embedder: Embedder, kv: Optional[KVStore] = None, model_name: str = "hashing"):
        """
        Args:
            embedder: Embedder to call on cache misses
            kv: Optional SQLite store with an ``embeddings`` table
            model_name: Model identifier for cache key
        """
        self.embedder = embedder
        self.kv = kv
        self.model_name = model_name
        self._local: Dict[str, np.ndarray] = {}

        self.hits = 0
        self.misses = 0

    def _cache_key(self, text: str) -> str:
        return stable_hash({"text": text, "model": self.model_name})

    def _lookup(self, key: str) -> Optional[np.ndarray]:
        if self.kv is None:
            return self._local.get(key)
        raw = self.kv.get(EMBED_TABLE, key)
        return np.frombuffer(raw, dtype=np.float32) if raw is not None else None

    def _store(self, key: str, vector: np.ndarray) -> None:
        vector = np.asarray(vector, dtype=np.float32)
        if self.kv is None:
            self._local[key] = vector
        else:
            self.kv.set(EMBED_TABLE, key, vector.tobytes())

    async def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        results: List[Optional[np.ndarray]] = [None] * len(texts)
        missing_idx: List[int] = []

        for i, text in enumerate(texts):
            cached = self._lookup(self._cache_key(text))
            if cached is not None:
                self.hits += 1
                results[i] = cached
            else:
                self.misses += 1
                missing_idx.append(i)

        if missing_idx:
            fresh = await self.embedder.embed([texts[i] for i in missing_idx])
            for i, vector in zip(missing_idx, fresh):
                self._store(self._cache_key(texts[i]), vector)
                results[i] = np.asarray(vector, dtype=np.float32)

        return results

    def get_stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "total": total,
            "hit_rate": self.hits / total if total > 0 else 0.0,
        }
