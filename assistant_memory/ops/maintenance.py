"""
Periodic maintenance for the memory store.

Runs the expiry sweep, summarization and consent/learning cleanup on an
interval inside the running event loop.
"""

import asyncio
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Deque, Optional

from ..memory.adaptive import AdaptiveLearning
from ..memory.consent import ConsentRegistry
from ..memory.store import MemoryStore
from ..memory.summarizer import MemorySummarizer
from ..metrics import MetricsLogger
from ..telemetry import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 24 * 3600
HISTORY_LIMIT = 100


@dataclass
class MaintenanceReport:
    """Outcome of one maintenance run."""

    started_at: str
    finished_at: Optional[str] = None
    expired: int = 0
    summaries_created: int = 0
    memories_archived: int = 0
    consent_records_removed: int = 0
    learning_events_removed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class MaintenanceJob:
    """
    In-process periodic maintenance.

    Usage:
        >>> job = MaintenanceJob(store, summarizer, interval_seconds=3600)
        >>> job.start()
        >>> ...
        >>> await job.stop()
    """

    def __init__(
        self,
        store: MemoryStore,
        summarizer: Optional[MemorySummarizer] = None,
        consent: Optional[ConsentRegistry] = None,
        learning: Optional[AdaptiveLearning] = None,
        metrics: Optional[MetricsLogger] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        learning_max_age_months: int = 12,
        history_limit: int = HISTORY_LIMIT,
    ):
        """
        Args:
            store: Memory store to sweep
            summarizer: Summarizer to run over all users, None to skip
            consent: Consent registry whose expired blacklist entries are dropped
            learning: Adaptive learning state to prune and flush
            metrics: Event logger for failures
            interval_seconds: Delay between runs
            learning_max_age_months: Feedback older than this is dropped
            history_limit: Number of recent reports kept in ``history``
        """
        self.store = store
        self.summarizer = summarizer
        self.consent = consent
        self.learning = learning
        self.metrics = metrics or MetricsLogger(None)
        self.interval_seconds = interval_seconds
        self.learning_max_age_months = learning_max_age_months

        self.history: Deque[MaintenanceReport] = deque(maxlen=history_limit)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> MaintenanceReport:
        """Run every maintenance step once. Failures end the run and are recorded in the report."""
        report = MaintenanceReport(started_at=datetime.now(timezone.utc).isoformat())
        try:
            report.expired = await self.store.expire_sweep()

            if self.summarizer is not None:
                for stats in (await self.summarizer.summarize_all_users()).values():
                    report.summaries_created += stats.summaries_created
                    report.memories_archived += stats.memories_archived

            if self.consent is not None:
                report.consent_records_removed = self.consent.cleanup_expired()

            if self.learning is not None:
                report.learning_events_removed = self.learning.cleanup_old_data(self.learning_max_age_months)
                self.learning.flush()

        except Exception as e:
            report.error = str(e)
            logger.error("maintenance_failed", error=str(e))
            self.metrics.error("maintenance", str(e))

        report.finished_at = datetime.now(timezone.utc).isoformat()
        self.history.append(report)
        logger.info("maintenance_run", **report.to_dict())
        return report

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        """Schedule the periodic loop on the running event loop."""
        if not self.running:
            self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
