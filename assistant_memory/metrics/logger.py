"""
Append-only NDJSON metrics log.

Logging must never break the operation being measured: any failure to
write is reported through structlog and otherwise ignored.
"""

from pathlib import Path
from typing import Any, List, Optional

import pydantic

from ..telemetry import get_logger
from .events import (
    AskEvent,
    ConsolidateEvent,
    ErrorEvent,
    ExpireEvent,
    MemoryEvent,
    RejectEvent,
    RetrieveEvent,
    SaveEvent,
    SummarizeEvent,
)

logger = get_logger(__name__)


class MetricsLogger:
    """
    Writes memory events to an NDJSON file.

    Usage:
        >>> metrics = MetricsLogger(Path("data/memory/metrics.ndjson"))
        >>> metrics.save("u1", "lieblingsfarbe", kind="auto", score=0.96)
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Args:
            path: NDJSON file, None disables writing
        """
        self.path = Path(path) if path is not None else None
        if self.path is not None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("metrics_dir_unavailable", path=str(self.path), error=str(e))

    def log(self, event: MemoryEvent) -> None:
        if self.path is None:
            return
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(event.model_dump_json(exclude_none=True) + "\n")
        except Exception as e:
            logger.warning("metrics_write_failed", event_type=event.type, error=str(e))

    def _emit(self, event_cls: type, **fields: Any) -> None:
        try:
            event = event_cls(**fields)
        except pydantic.ValidationError as e:
            logger.warning("metrics_event_invalid", event_type=event_cls.__name__, error=str(e))
            return
        self.log(event)

    def save(self, user_id: str, key: str, kind: str, score: float, risk: str = "low") -> None:
        self._emit(SaveEvent, user_id=user_id, key=key, kind=kind, score=score, risk=risk)

    def ask(self, user_id: str, key: str, score: float) -> None:
        self._emit(AskEvent, user_id=user_id, key=key, score=score)

    def reject(self, user_id: str, key: str, reason: str, score: Optional[float] = None) -> None:
        self._emit(RejectEvent, user_id=user_id, key=key, reason=reason, score=score)

    def retrieve(self, user_id: str, query_hash: str, returned: int, latency_ms: float) -> None:
        self._emit(RetrieveEvent, user_id=user_id, query_hash=query_hash, returned=returned, latency_ms=latency_ms)

    def expire(self, user_id: str, key: str) -> None:
        self._emit(ExpireEvent, user_id=user_id, key=key)

    def error(self, where: str, message: str, user_id: Optional[str] = None) -> None:
        self._emit(ErrorEvent, user_id=user_id, where=where, message=message)

    def consolidate(self, user_id: str, action: str, original_ids: List[str]) -> None:
        self._emit(ConsolidateEvent, user_id=user_id, action=action, original_ids=original_ids)

    def summarize(self, user_id: str, cluster_size: int, archived: int) -> None:
        self._emit(SummarizeEvent, user_id=user_id, cluster_size=cluster_size, archived=archived)
