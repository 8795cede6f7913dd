"""Test configuration and fixtures."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List

import pytest

from assistant_memory.config import MemorySettings
from assistant_memory.memory.manager import MemoryManager
from assistant_memory.memory.schemas import MemoryItem
from assistant_memory.memory.store import MemoryStore
from assistant_memory.metrics import MetricsLogger


@pytest.fixture
def settings(tmp_path) -> MemorySettings:
    """Settings with every path under a temporary directory."""
    settings = MemorySettings()
    settings.paths.store = str(tmp_path / "memories.json")
    settings.paths.metrics = str(tmp_path / "metrics.ndjson")
    settings.paths.consent = str(tmp_path / "consent.json")
    settings.cache_ttl_seconds = 0
    return settings


@pytest.fixture
def metrics_path(settings) -> Path:
    return Path(settings.paths.metrics)


@pytest.fixture
def metrics(metrics_path) -> MetricsLogger:
    return MetricsLogger(metrics_path)


@pytest.fixture
def store(settings, metrics) -> MemoryStore:
    """Store without read cache so every call sees the file."""
    return MemoryStore(Path(settings.paths.store), cache_ttl_seconds=0, metrics=metrics)


@pytest.fixture
def manager(store, metrics, settings) -> MemoryManager:
    return MemoryManager(store, metrics=metrics, settings=settings)


@pytest.fixture
def enhanced_manager(store, metrics, settings) -> MemoryManager:
    settings.enhanced = True
    return MemoryManager(store, metrics=metrics, settings=settings)


@pytest.fixture
def read_events(metrics_path) -> Callable[[], List[dict]]:
    """Return a reader for the NDJSON metrics log."""
    def _read() -> List[dict]:
        if not metrics_path.exists():
            return []
        with open(metrics_path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
    return _read


@pytest.fixture
def make_item() -> Callable[..., MemoryItem]:
    """Factory for stored items with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> MemoryItem:
        counter["n"] += 1
        now = datetime.now(timezone.utc).isoformat()
        data = {
            "id": f"mem_test{counter['n']:04d}",
            "user_id": "u1",
            "person": None,
            "type": "preference",
            "key": "lieblingsfarbe",
            "value": "blau",
            "confidence": 0.9,
            "created_at": now,
            "updated_at": now,
        }
        data.update(overrides)
        return MemoryItem(**data)

    return _make
