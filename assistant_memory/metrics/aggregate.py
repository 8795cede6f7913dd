"""
KPI aggregation over the NDJSON metrics log.

The file is streamed line by line so memory use is bounded by the number
of retrieval latencies and distinct keys, not by the log size.
"""

from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

import pydantic
from pydantic import BaseModel, Field

from ..telemetry import get_logger
from .events import parse_event

logger = get_logger(__name__)


class KeyCount(BaseModel):
    key: str
    count: int


class MemoryKPIs(BaseModel):
    """Aggregated memory behaviour over a time window."""

    total_saved: int = 0
    auto_save_rate: float = 0.0
    ask_rate: float = 0.0
    reject_rate: float = 0.0
    avg_score_saved: float = 0.0
    avg_score_rejected: float = 0.0
    retrievals: int = 0
    avg_relevant_count: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    top_keys: List[KeyCount] = Field(default_factory=list)
    errors: int = 0
    consolidations: int = 0
    summaries_created: int = 0
    memories_archived: int = 0


def percentile(sorted_values: List[float], q: float) -> float:
    """Nearest-rank percentile at index floor((n - 1) * q)."""
    if not sorted_values:
        return 0.0
    return sorted_values[int((len(sorted_values) - 1) * q)]


def compute_kpis(
    path: Path,
    start: Optional[int] = None,
    end: Optional[int] = None,
    top_n: int = 10,
) -> MemoryKPIs:
    """
    Compute KPIs from a metrics log.

    Args:
        path: NDJSON metrics file
        start: Inclusive lower bound on event ``ts`` (epoch ms)
        end: Inclusive upper bound on event ``ts`` (epoch ms)
        top_n: Number of most frequent keys to report

    Returns:
        MemoryKPIs (all zero if the file does not exist)
    """
    path = Path(path)
    if not path.exists():
        return MemoryKPIs()

    saved = auto = ask = reject = errors = 0
    sum_save_score = 0.0
    scored_rejects = 0
    sum_reject_score = 0.0
    retrievals = 0
    sum_returned = 0
    latencies: List[float] = []
    key_counts: Counter = Counter()
    consolidations = summaries = archived = 0
    skipped = 0

    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue

            try:
                event = parse_event(line)
            except (pydantic.ValidationError, ValueError):
                skipped += 1
                continue

            if start is not None and event.ts < start:
                continue
            if end is not None and event.ts > end:
                continue

            if event.type == "save":
                saved += 1
                if event.kind == "auto":
                    auto += 1
                sum_save_score += event.score
                key_counts[event.key] += 1
            elif event.type == "ask":
                ask += 1
            elif event.type == "reject":
                reject += 1
                if event.score is not None:
                    scored_rejects += 1
                    sum_reject_score += event.score
                key_counts[event.key] += 1
            elif event.type == "retrieve":
                retrievals += 1
                sum_returned += event.returned
                latencies.append(event.latency_ms)
            elif event.type == "consolidate":
                consolidations += 1
            elif event.type == "summarize":
                summaries += 1
                archived += event.archived
            elif event.type == "error":
                errors += 1

    if skipped:
        logger.warning("metrics_lines_skipped", path=str(path), count=skipped)

    latencies.sort()
    decisions = (saved + ask + reject) or 1
    top: Dict[str, int] = dict(key_counts.most_common(top_n))

    return MemoryKPIs(
        total_saved=saved,
        auto_save_rate=auto / saved if saved else 0.0,
        ask_rate=ask / decisions,
        reject_rate=reject / decisions,
        avg_score_saved=sum_save_score / saved if saved else 0.0,
        avg_score_rejected=sum_reject_score / scored_rejects if scored_rejects else 0.0,
        retrievals=retrievals,
        avg_relevant_count=sum_returned / retrievals if retrievals else 0.0,
        latency_p50=percentile(latencies, 0.5),
        latency_p95=percentile(latencies, 0.95),
        top_keys=[KeyCount(key=k, count=c) for k, c in top.items()],
        errors=errors,
        consolidations=consolidations,
        summaries_created=summaries,
        memories_archived=archived,
    )
