"""
Memory retrieval for prompt injection.

Ranks a user's active items by embedding similarity to the query blended
with an exponential recency decay.
"""

import math
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..config.settings import RetrievalCfg
from ..metrics import MetricsLogger
from ..persist.hashing import query_hash
from ..telemetry import get_logger
from .embeddings import Embedder, HashingEmbedder, cosine
from .schemas import FactType, MemoryItem, PromptContext, RankedResult, parse_iso
from .store import MemoryStore

logger = get_logger(__name__)

TYPE_LABELS: Dict[FactType, str] = {
    FactType.PREFERENCE: "Preferences",
    FactType.PROFILE_FACT: "Profile",
    FactType.CONTACT: "Contact Info",
    FactType.TASK_HINT: "Tasks & Hints",
    FactType.WORK_CONTEXT: "Work Context",
}

CONTEXT_HEADER = "=== User Memory ==="


def memory_text(item: MemoryItem) -> str:
    return f"{item.key}: {item.value}"


class MemoryRetriever:
    """
    Similarity + recency ranked lookup.

    Usage:
        >>> retriever = MemoryRetriever(store)
        >>> ctx = await retriever.retrieve_for_prompt("u1", "Was ist meine Lieblingsfarbe?")
        >>> print(ctx.context)
        === User Memory ===
        <BLANKLINE>
        Preferences:
        - lieblingsfarbe: blau
    """

    def __init__(
        self,
        store: MemoryStore,
        embedder: Optional[Embedder] = None,
        metrics: Optional[MetricsLogger] = None,
        cfg: Optional[RetrievalCfg] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.embedder = embedder or HashingEmbedder()
        self.metrics = metrics or MetricsLogger(None)
        self.cfg = cfg or RetrievalCfg()
        self.clock = clock

    def recency(self, item: MemoryItem) -> float:
        """exp(-age_days / recency_half_days), clamped to [0, 1]."""
        age_days = (self.clock() - parse_iso(item.created_at)).total_seconds() / 86400
        return max(0.0, min(1.0, math.exp(-age_days / self.cfg.recency_half_days)))

    async def find_relevant(
        self,
        user_id: str,
        query: str,
        limit: Optional[int] = None,
        similarity_weight: Optional[float] = None,
        recency_weight: Optional[float] = None,
    ) -> List[RankedResult]:
        """
        Rank the user's active memories against ``query``.

        Args:
            user_id: Owner
            query: Current user text
            limit: Maximum results (default from config, 5)
            similarity_weight: Weight of cosine similarity (default 0.7)
            recency_weight: Weight of recency (default 0.3)

        Returns:
            Best results first; empty on any failure
        """
        limit = self.cfg.limit if limit is None else limit
        sim_w = self.cfg.similarity_weight if similarity_weight is None else similarity_weight
        rec_w = self.cfg.recency_weight if recency_weight is None else recency_weight

        start = time.perf_counter()
        results: List[RankedResult] = []
        try:
            memories = await self.store.list_by_user(user_id)
            if memories:
                vectors = await self.embedder.embed([query] + [memory_text(m) for m in memories])
                query_vec, item_vecs = vectors[0], vectors[1:]
                for memory, vec in zip(memories, item_vecs):
                    similarity = cosine(query_vec, vec)
                    recency = self.recency(memory)
                    results.append(RankedResult(
                        memory=memory,
                        score=sim_w * similarity + rec_w * recency,
                        similarity=similarity,
                        recency=recency,
                    ))
                results.sort(key=lambda r: r.score, reverse=True)
                results = results[:limit]
        except Exception as e:
            logger.error("retrieval_failed", user_id=user_id, error=str(e))
            self.metrics.error("retriever.find_relevant", str(e), user_id=user_id)
            results = []

        latency_ms = (time.perf_counter() - start) * 1000
        self.metrics.retrieve(user_id, query_hash(query), len(results), latency_ms)
        return results

    async def retrieve_for_prompt(self, user_id: str, query: str, limit: Optional[int] = None) -> PromptContext:
        """Render the top memories as a type-grouped block for the prompt."""
        relevant = await self.find_relevant(user_id, query, limit)
        if not relevant:
            return PromptContext()
        return PromptContext(context=self.format_context(relevant, user_id), relevant=relevant)

    @staticmethod
    def format_context(relevant: Sequence[RankedResult], user_id: Optional[str] = None) -> str:
        grouped: Dict[FactType, List[MemoryItem]] = {}
        for r in relevant:
            grouped.setdefault(r.memory.type, []).append(r.memory)

        lines = [CONTEXT_HEADER]
        for fact_type, items in grouped.items():
            lines.append("")
            lines.append(f"{TYPE_LABELS[fact_type]}:")
            for m in items:
                if m.person and m.person != user_id:
                    lines.append(f"- {m.person}: {m.key} = {m.value}")
                else:
                    lines.append(f"- {m.key}: {m.value}")
        return "\n".join(lines) + "\n\n"

    async def batch_retrieve(
        self,
        user_id: str,
        queries: Sequence[str],
        limit: Optional[int] = None,
    ) -> Dict[str, PromptContext]:
        return {q: await self.retrieve_for_prompt(user_id, q, limit) for q in queries}

    async def get_all_grouped(self, user_id: str) -> Dict[str, List[MemoryItem]]:
        """All active memories keyed by fact type value."""
        grouped: Dict[str, List[MemoryItem]] = {}
        for m in await self.store.list_by_user(user_id):
            grouped.setdefault(m.type.value, []).append(m)
        return grouped
