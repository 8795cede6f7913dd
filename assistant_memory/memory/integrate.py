"""
Wiring for the memory subsystem.

Builds store, manager, retriever and summarizer from one MemorySettings
so callers do not have to assemble the collaborators themselves.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config.settings import MemorySettings
from ..metrics import MetricsLogger
from ..persist.sqlite_store import KVStore
from .adaptive import AdaptiveLearning, JsonLearningStore
from .consent import ConsentRegistry
from .embeddings import CachingEmbedder, Embedder, HashingEmbedder, SentenceTransformerEmbedder
from .manager import MemoryManager
from .retriever import MemoryRetriever
from .store import MemoryStore
from .summarizer import MemorySummarizer


@dataclass
class MemorySystem:
    """All long-lived memory services sharing one store and metrics log."""

    settings: MemorySettings
    store: MemoryStore
    metrics: MetricsLogger
    manager: MemoryManager
    retriever: MemoryRetriever
    summarizer: MemorySummarizer
    consent: ConsentRegistry
    learning: Optional[AdaptiveLearning] = None
    kv: Optional[KVStore] = None

    def close(self) -> None:
        self.manager.close()
        if self.kv is not None:
            self.kv.close()


def build_embedder(settings: MemorySettings, kv: Optional[KVStore] = None) -> Embedder:
    """Hashing embedder by default, sentence-transformers when a model is configured."""
    if settings.embedding_model:
        base = SentenceTransformerEmbedder(settings.embedding_model)
        model_name = settings.embedding_model
    else:
        base = HashingEmbedder()
        model_name = "hashing"
    return CachingEmbedder(base, kv, model_name)


def create_memory_system(
    settings: Optional[MemorySettings] = None,
    embedder: Optional[Embedder] = None,
) -> MemorySystem:
    """
    Factory function to create the memory subsystem.

    Args:
        settings: Paths, thresholds and feature switches (default: from environment)
        embedder: Embedder for retrieval, overriding the configured one

    Returns:
        MemorySystem
    """
    settings = settings or MemorySettings.from_env()
    paths = settings.paths

    metrics = MetricsLogger(Path(paths.metrics))
    store = MemoryStore(Path(paths.store), cache_ttl_seconds=settings.cache_ttl_seconds, metrics=metrics)
    consent = ConsentRegistry(Path(paths.consent))

    learning = None
    if settings.enhanced:
        learning = AdaptiveLearning(
            store=JsonLearningStore(Path(paths.learning)) if paths.learning else None,
            pattern_threshold=settings.thresholds.pattern,
            prediction_threshold=settings.thresholds.prediction,
        )
        learning.init()

    kv = KVStore(Path(paths.embedding_cache)) if paths.embedding_cache else None
    if embedder is None:
        embedder = build_embedder(settings, kv)

    manager = MemoryManager(
        store,
        metrics=metrics,
        settings=settings,
        learning=learning,
        consent=consent,
    )
    retriever = MemoryRetriever(store, embedder, metrics, settings.retrieval)
    summarizer = MemorySummarizer(store, metrics, settings.summarizer)

    return MemorySystem(
        settings=settings,
        store=store,
        metrics=metrics,
        manager=manager,
        retriever=retriever,
        summarizer=summarizer,
        consent=consent,
        learning=learning,
        kv=kv,
    )
