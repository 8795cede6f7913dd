"""
Memory summarization.

Compacts old, clustered memories into a single summary item and archives
(deletes) the originals. Summary items are never summarized again.
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from ..config.settings import SummarizerCfg
from ..errors import StorageError
from ..metrics import MetricsLogger
from ..telemetry import get_logger
from .schemas import MemoryItem, MemoryItemInput, parse_iso
from .store import MemoryStore

logger = get_logger(__name__)

SUMMARY_SOURCE = "summarizer"

_ARTICLES = re.compile(r"^(?:der|die|das|ein|eine)\s+")


def base_key(key: str) -> str:
    """Lower-cased key without leading article, first word only."""
    normalized = _ARTICLES.sub("", key.lower()).strip()
    return re.split(r"[\s_]+", normalized)[0]


@dataclass
class SummaryResult:
    original: List[MemoryItem]
    summary: MemoryItem
    archived: int


class SummarizationStats(BaseModel):
    total_processed: int = 0
    summaries_created: int = 0
    memories_archived: int = 0
    errors: int = 0


class MemorySummarizer:
    """
    Periodic compaction of old memories.

    Usage:
        >>> summarizer = MemorySummarizer(store, metrics)
        >>> stats = await summarizer.summarize_user("u1")
        >>> stats.summaries_created
        1
    """

    def __init__(
        self,
        store: MemoryStore,
        metrics: Optional[MetricsLogger] = None,
        cfg: Optional[SummarizerCfg] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            store: Memory store
            metrics: Event logger for summarize events
            cfg: Age, cluster size and pacing settings
            sleep: Awaitable used for pacing between clusters
            clock: Current time provider
        """
        self.store = store
        self.metrics = metrics or MetricsLogger(None)
        self.cfg = cfg or SummarizerCfg()
        self.sleep = sleep
        self.clock = clock

    def eligible(self, memories: Sequence[MemoryItem], min_age_days: Optional[int] = None) -> List[MemoryItem]:
        """Memories older than ``min_age_days`` that are not summaries themselves."""
        days = self.cfg.min_age_days if min_age_days is None else min_age_days
        cutoff = self.clock() - timedelta(days=days)
        return [
            m for m in memories
            if parse_iso(m.created_at) < cutoff and m.metadata.get("source") != SUMMARY_SOURCE
        ]

    def find_clusters(
        self,
        memories: Sequence[MemoryItem],
        min_cluster_size: Optional[int] = None,
    ) -> List[List[MemoryItem]]:
        """
        Group memories by person, type and base key word.

        Returns:
            Clusters with at least ``min_cluster_size`` members, each sorted
            oldest first
        """
        size = self.cfg.min_cluster_size if min_cluster_size is None else min_cluster_size
        groups: Dict[tuple, List[MemoryItem]] = {}
        for m in memories:
            groups.setdefault((m.person, m.type, base_key(m.key)), []).append(m)

        clusters = []
        for group in groups.values():
            if len(group) >= size:
                clusters.append(sorted(group, key=lambda m: parse_iso(m.created_at)))
        return clusters

    @staticmethod
    def summary_text(cluster: Sequence[MemoryItem]) -> str:
        if not cluster:
            return ""
        if len(cluster) == 1:
            return f"{cluster[0].key}: {cluster[0].value}"

        if len({m.value for m in cluster}) == 1:
            return f"{cluster[0].key}: {cluster[0].value} (confirmed {len(cluster)}x)"

        latest = cluster[-1]
        return f"{latest.key}: {latest.value} (updated from {len(cluster)} entries)"

    async def summarize_cluster(self, user_id: str, cluster: Sequence[MemoryItem]) -> Optional[SummaryResult]:
        """
        Replace ``cluster`` by one summary item.

        Returns:
            SummaryResult, or None if the cluster is too small or the store
            write failed
        """
        if len(cluster) < 2:
            return None

        first = cluster[0]
        avg_confidence = sum(m.confidence for m in cluster) / len(cluster)
        summary_input = MemoryItemInput(
            person=first.person,
            type=first.type,
            key=first.key,
            value=self.summary_text(cluster),
            confidence=min(0.95, avg_confidence + 0.1),
            metadata={
                "source": SUMMARY_SOURCE,
                "summarized_from": [m.id for m in cluster],
                "original_count": len(cluster),
            },
        )

        try:
            summary = await self.store.replace_many(user_id, [m.id for m in cluster], summary_input)
        except StorageError as e:
            logger.error("summarize_cluster_failed", user_id=user_id, key=first.key, error=str(e))
            return None

        archived = len(cluster)
        self.metrics.summarize(user_id, cluster_size=len(cluster), archived=archived)
        logger.info("cluster_summarized", user_id=user_id, key=first.key, archived=archived)
        return SummaryResult(original=list(cluster), summary=summary, archived=archived)

    async def summarize_user(
        self,
        user_id: str,
        min_age_days: Optional[int] = None,
        min_cluster_size: Optional[int] = None,
    ) -> SummarizationStats:
        stats = SummarizationStats()
        size = self.cfg.min_cluster_size if min_cluster_size is None else min_cluster_size

        old = self.eligible(await self.store.list_by_user(user_id), min_age_days)
        if len(old) < size:
            logger.debug("summarize_skipped", user_id=user_id, eligible=len(old))
            return stats

        clusters = self.find_clusters(old, size)
        stats.total_processed = len(old)

        for i, cluster in enumerate(clusters):
            if i > 0:
                await self.sleep(self.cfg.pacing_seconds)
            result = await self.summarize_cluster(user_id, cluster)
            if result is None:
                stats.errors += 1
                continue
            stats.summaries_created += 1
            stats.memories_archived += result.archived

        logger.info("user_summarized", user_id=user_id, **stats.model_dump())
        return stats

    async def summarize_all_users(self, min_age_days: Optional[int] = None) -> Dict[str, SummarizationStats]:
        results = {}
        for user_id in await self.store.list_user_ids():
            results[user_id] = await self.summarize_user(user_id, min_age_days)
        return results

    async def preview(self, user_id: str, min_age_days: Optional[int] = None) -> List[List[MemoryItem]]:
        """Clusters that ``summarize_user`` would compact, without changing anything."""
        return self.find_clusters(self.eligible(await self.store.list_by_user(user_id), min_age_days))
