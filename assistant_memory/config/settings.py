"""Memory subsystem settings and configuration schema."""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field


class Paths(BaseModel):
    """File and directory paths configuration."""
    store: str = "data/memory/memories.json"
    metrics: str = "data/memory/metrics.ndjson"
    consent: str = "data/memory/consent.json"
    learning: Optional[str] = None
    embedding_cache: Optional[str] = None


class Thresholds(BaseModel):
    """Decision thresholds shared by scorer, consolidator and learning."""
    auto: float = 0.75
    ask: float = 0.5
    very_high: float = 0.9
    similar: float = 0.7
    cleanup: float = 0.8
    pattern: float = 0.7
    prediction: float = 0.6


class RetrievalCfg(BaseModel):
    """Retriever ranking parameters."""
    limit: int = 5
    similarity_weight: float = 0.7
    recency_weight: float = 0.3
    recency_half_days: float = 90.0


class SummarizerCfg(BaseModel):
    """Summarization pass parameters."""
    min_age_days: int = 30
    min_cluster_size: int = 3
    pacing_seconds: float = 1.0


class MemorySettings(BaseModel):
    """Main memory subsystem settings."""
    paths: Paths = Paths()
    thresholds: Thresholds = Thresholds()
    retrieval: RetrievalCfg = RetrievalCfg()
    summarizer: SummarizerCfg = SummarizerCfg()
    cache_ttl_seconds: float = 5.0
    enhanced: bool = False
    embedding_model: Optional[str] = None
    ttl_overrides: Dict[str, Optional[str]] = Field(default_factory=dict)
    learning_max_age_months: int = 12

    @classmethod
    def from_env(cls) -> "MemorySettings":
        """
        Build settings from MEMORY_* environment variables.

        Recognised variables:
            MEMORY_STORE_PATH, MEMORY_METRICS_PATH, MEMORY_CONSENT_PATH,
            MEMORY_LEARNING_PATH, MEMORY_EMBED_CACHE, MEMORY_EMBEDDING_MODEL,
            MEMORY_AUTO_THRESHOLD, MEMORY_ASK_THRESHOLD, MEMORY_ENHANCED,
            MEMORY_SUMMARY_PACING
        """
        settings = cls()

        paths = settings.paths
        paths.store = os.getenv("MEMORY_STORE_PATH", paths.store)
        paths.metrics = os.getenv("MEMORY_METRICS_PATH", paths.metrics)
        paths.consent = os.getenv("MEMORY_CONSENT_PATH", paths.consent)
        paths.learning = os.getenv("MEMORY_LEARNING_PATH", paths.learning)
        paths.embedding_cache = os.getenv("MEMORY_EMBED_CACHE", paths.embedding_cache)

        settings.embedding_model = os.getenv("MEMORY_EMBEDDING_MODEL", settings.embedding_model)

        if os.getenv("MEMORY_AUTO_THRESHOLD"):
            settings.thresholds.auto = float(os.environ["MEMORY_AUTO_THRESHOLD"])
        if os.getenv("MEMORY_ASK_THRESHOLD"):
            settings.thresholds.ask = float(os.environ["MEMORY_ASK_THRESHOLD"])
        if os.getenv("MEMORY_SUMMARY_PACING"):
            settings.summarizer.pacing_seconds = float(os.environ["MEMORY_SUMMARY_PACING"])

        settings.enhanced = os.getenv("MEMORY_ENHANCED", "false").lower() in ("1", "true", "yes")
        return settings
