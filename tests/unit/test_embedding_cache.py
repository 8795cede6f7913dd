"""
Unit tests for assistant_memory/memory/embeddings.py

Tests CachingEmbedder with a mock embedder, plus the hashing embedder.
"""
import numpy as np
import pytest
from unittest.mock import AsyncMock, MagicMock

from assistant_memory.memory.embeddings import (
    CachingEmbedder,
    HashingEmbedder,
    SentenceTransformerEmbedder,
    cosine,
)


def mock_embedder(dim=4):
    """Embedder returning a distinct vector per text."""
    embedder = MagicMock()

    async def _embed(texts):
        return [np.full(dim, float(len(t)), dtype=np.float32) for t in texts]

    embedder.embed = AsyncMock(side_effect=_embed)
    return embedder


@pytest.mark.asyncio
async def test_first_embed_miss_then_hit():
    """Second call for the same text should be served from cache."""
    base = mock_embedder()
    encoder = CachingEmbedder(base, model_name="test-model")

    first = await encoder.embed(["lieblingsfarbe: blau"])
    assert encoder.misses == 1
    assert encoder.hits == 0

    second = await encoder.embed(["lieblingsfarbe: blau"])
    assert encoder.hits == 1
    base.embed.assert_awaited_once()
    np.testing.assert_array_equal(first[0], second[0])


@pytest.mark.asyncio
async def test_mixed_batch_only_embeds_misses():
    base = mock_embedder()
    encoder = CachingEmbedder(base)
    await encoder.embed(["a"])

    result = await encoder.embed(["a", "bb", "ccc"])

    assert base.embed.await_args_list[-1].args[0] == ["bb", "ccc"]
    assert [float(v[0]) for v in result] == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_model_name_is_part_of_key(kv):
    base = mock_embedder()
    await CachingEmbedder(base, kv, "model-a").embed(["wohnort: berlin"])
    other = CachingEmbedder(base, kv, "model-b")
    await other.embed(["wohnort: berlin"])

    assert other.misses == 1
    assert base.embed.await_count == 2


@pytest.mark.asyncio
async def test_kv_cache_survives_instances(kv):
    """A new wrapper over the same KVStore should hit."""
    await CachingEmbedder(mock_embedder(), kv, "m").embed(["wohnort: berlin"])

    base = mock_embedder()
    encoder = CachingEmbedder(base, kv, "m")
    [vector] = await encoder.embed(["wohnort: berlin"])

    base.embed.assert_not_awaited()
    assert vector.dtype == np.float32
    assert vector.shape == (4,)
    assert kv.stats("embeddings")["count"] == 1


@pytest.mark.asyncio
async def test_stats():
    encoder = CachingEmbedder(mock_embedder())
    assert encoder.get_stats()["hit_rate"] == 0.0

    await encoder.embed(["a"])
    await encoder.embed(["a"])

    assert encoder.get_stats() == {"hits": 1, "misses": 1, "total": 2, "hit_rate": 0.5}


# ============================================================================
# HashingEmbedder
# ============================================================================


def test_hashing_embedder_is_deterministic_and_normalised():
    embedder = HashingEmbedder(dim=64)
    a = embedder.embed_one("Meine Lieblingsfarbe ist blau")
    b = embedder.embed_one("Meine Lieblingsfarbe ist blau")

    assert a.shape == (64,)
    np.testing.assert_array_equal(a, b)
    assert float(np.linalg.norm(a)) == pytest.approx(1.0, abs=1e-5)


def test_hashing_embedder_empty_text():
    assert not HashingEmbedder(dim=16).embed_one("").any()


def test_hashing_embedder_similarity_ordering():
    embedder = HashingEmbedder()
    query = embedder.embed_one("Lieblingsfarbe")
    colour = embedder.embed_one("lieblingsfarbe: blau")
    city = embedder.embed_one("wohnort: berlin")

    assert cosine(query, colour) > cosine(query, city)


def test_cosine_edge_cases():
    a = np.array([1.0, 0.0], dtype=np.float32)
    assert cosine(a, a) == pytest.approx(1.0)
    assert cosine(a, np.array([0.0, 1.0], dtype=np.float32)) == pytest.approx(0.0)
    assert cosine(a, np.zeros(2, dtype=np.float32)) == 0.0
    assert cosine(a, np.ones(3, dtype=np.float32)) == 0.0


@pytest.mark.asyncio
async def test_sentence_transformer_wrapper_uses_model():
    model = MagicMock()
    model.encode.return_value = np.array([[0.6, 0.8]], dtype=np.float32)
    embedder = SentenceTransformerEmbedder("test-model", model=model)

    [vector] = await embedder.embed(["wohnort: berlin"])

    model.encode.assert_called_once()
    assert model.encode.call_args.args[0] == ["wohnort: berlin"]
    assert vector.tolist() == pytest.approx([0.6, 0.8])
    assert await embedder.embed([]) == []
