"""
Memory event metrics.

Provides:
- Typed event records (save, ask, reject, retrieve, expire, error,
  consolidate, summarize)
- NDJSON event logger that never raises
- Streaming KPI aggregation
"""

from .events import MemoryEvent, parse_event
from .logger import MetricsLogger
from .aggregate import MemoryKPIs, compute_kpis, percentile

__all__ = [
    "MemoryEvent",
    "parse_event",
    "MetricsLogger",
    "MemoryKPIs",
    "compute_kpis",
    "percentile",
]
