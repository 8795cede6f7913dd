"""
Memory consolidation.

Reconciles a new candidate with what is already stored (merge, update,
conflict or add) and periodically collapses near-duplicate items.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .categorizer import MemoryCategorizer
from .schemas import ConsolidationResult, EnhancedCandidate, MemoryItem
from .text_utils import normalize_text, trigram_similarity


@dataclass
class ConsolidationRules:
    """
    Language tables driving semantic matching and contradiction detection.

    The defaults cover German; pass another instance for other languages.
    """

    semantic_groups: List[List[str]] = field(default_factory=lambda: [
        ["name", "vorname", "heißt", "genannt"],
        ["wohnort", "stadt", "lebt_in", "zuhause"],
        ["beruf", "job", "arbeitet_als", "ist"],
        ["mag", "gefällt", "liebt", "bevorzugt"],
        ["kann", "beherrscht", "kennt", "versteht"],
    ])
    negations: List[str] = field(default_factory=lambda: [
        "nicht", "kein", "keine", "nie", "niemals", "nein",
    ])
    exclusive_value_sets: List[List[str]] = field(default_factory=lambda: [
        ["rot", "blau", "gruen", "gelb", "schwarz", "weiss", "grau", "braun"],
    ])
    boolean_pairs: List[Tuple[str, str]] = field(default_factory=lambda: [
        ("ja", "nein"),
        ("richtig", "falsch"),
        ("wahr", "unwahr"),
        ("mag", "mag nicht"),
        ("kann", "kann nicht"),
    ])


@dataclass
class CleanupOutcome:
    """Result of a cleanup pass over one user's pool."""

    kept: List[MemoryItem]
    removed_ids: List[str]
    merged_groups: List[List[str]]


class MemoryConsolidator:
    """
    Decide how a new fact relates to the stored ones.

    Usage:
        >>> consolidator = MemoryConsolidator()
        >>> result = consolidator.consolidate(enhanced_candidate, stored_items)
        >>> result.action
        'merge'
    """

    def __init__(
        self,
        rules: Optional[ConsolidationRules] = None,
        similar_threshold: float = 0.7,
        cleanup_threshold: float = 0.8,
    ):
        self.rules = rules or ConsolidationRules()
        self.similar_threshold = similar_threshold
        self.cleanup_threshold = cleanup_threshold

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    @staticmethod
    def similarity(a: EnhancedCandidate, b: EnhancedCandidate) -> float:
        """0.3 same person + 0.2 same type + 0.3 key trigram + 0.2 value trigram."""
        score = 0.0
        if a.person == b.person:
            score += 0.3
        if a.type == b.type:
            score += 0.2
        score += trigram_similarity(normalize_text(a.key), normalize_text(b.key)) * 0.3
        score += trigram_similarity(normalize_text(a.value), normalize_text(b.value)) * 0.2
        return min(1.0, score)

    def semantically_same(self, a: EnhancedCandidate, b: EnhancedCandidate) -> bool:
        if a.person != b.person or a.type != b.type:
            return False
        k1, k2 = a.key.lower(), b.key.lower()
        return any(
            any(w in k1 for w in group) and any(w in k2 for w in group)
            for group in self.rules.semantic_groups
        )

    def values_contradict(self, v1: str, v2: str) -> bool:
        """Negation mismatch or mutually exclusive values on normalised text."""
        n1, n2 = normalize_text(v1), normalize_text(v2)
        if n1 == n2:
            return False

        w1, w2 = set(n1.split()), set(n2.split())
        neg1 = any(neg in w1 for neg in self.rules.negations)
        neg2 = any(neg in w2 for neg in self.rules.negations)
        if neg1 != neg2:
            return True

        for values in self.rules.exclusive_value_sets:
            c1 = next((v for v in values if v in n1), None)
            c2 = next((v for v in values if v in n2), None)
            if c1 and c2 and c1 != c2:
                return True

        for positive, negative in self.rules.boolean_pairs:
            if (positive in n1 and negative in n2) or (negative in n1 and positive in n2):
                # "mag" is a prefix of "mag nicht"; only a real mismatch counts.
                if (negative in n1) != (negative in n2):
                    return True
        return False

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    def consolidate(
        self,
        candidate: EnhancedCandidate,
        existing: Sequence[MemoryItem],
    ) -> ConsolidationResult:
        """
        Reconcile ``candidate`` with stored items.

        Decision order:
            1. exact (person, type, key) match with the same value: merge
            2. exact match with a different value: update or conflict
            3. contradiction with a semantically equal item: conflict or update
            4. semantically equal item: merge into the closest one
            5. otherwise add_new

        Args:
            candidate: Enhanced candidate to place
            existing: The user's stored items

        Returns:
            ConsolidationResult
        """
        pool = [(item, MemoryCategorizer.from_memory_item(item)) for item in existing]

        exact = next(
            (
                (item, enh) for item, enh in pool
                if enh.key == candidate.key
                and enh.person == candidate.person
                and enh.type == candidate.type
            ),
            None,
        )
        if exact is not None:
            return self._exact_match(candidate, *exact)

        scored = [(self.similarity(candidate, enh), item, enh) for item, enh in pool]
        similar = [row for row in scored if row[0] > self.similar_threshold]
        similar.sort(key=lambda row: row[0], reverse=True)

        if not similar:
            return ConsolidationResult(action="add_new", primary=candidate)

        semantic = [(item, enh) for _, item, enh in similar if self.semantically_same(candidate, enh)]
        contradictions = [
            (item, enh) for item, enh in semantic
            if self.values_contradict(candidate.value, enh.value)
        ]
        if contradictions:
            return self._contradiction(candidate, contradictions)
        if semantic:
            return self._semantic_merge(candidate, semantic)

        return ConsolidationResult(
            action="add_new",
            primary=candidate,
            related=[enh for _, _, enh in similar],
            related_ids=[item.id for _, item, _ in similar],
        )

    def _exact_match(
        self,
        candidate: EnhancedCandidate,
        item: MemoryItem,
        stored: EnhancedCandidate,
    ) -> ConsolidationResult:
        if normalize_text(candidate.value) == normalize_text(stored.value):
            boost = min(0.1, (1.0 - stored.confidence) * 0.5)
            merged = stored.model_copy(update={
                "confidence": min(1.0, stored.confidence + boost),
                "importance": max(stored.importance, candidate.importance),
            })
            return ConsolidationResult(
                action="merge",
                primary=merged,
                target_id=item.id,
                confidence_change=boost,
            )

        if stored.volatility in ("dynamic", "semi-stable") and candidate.confidence > stored.confidence + 0.1:
            updated = candidate.model_copy(update={
                "confidence": max(candidate.confidence, stored.confidence * 0.9),
            })
            return ConsolidationResult(
                action="update",
                primary=updated,
                target_id=item.id,
                confidence_change=updated.confidence - stored.confidence,
            )

        return ConsolidationResult(
            action="conflict",
            primary=stored,
            target_id=item.id,
            related=[candidate],
            conflict_reason=f'Static information conflict: "{stored.value}" vs "{candidate.value}"',
        )

    def _semantic_merge(
        self,
        candidate: EnhancedCandidate,
        matches: List[Tuple[MemoryItem, EnhancedCandidate]],
    ) -> ConsolidationResult:
        best_item, best = matches[0]
        merged = best.model_copy(update={
            "confidence": max(best.confidence, candidate.confidence),
            "importance": max(best.importance, candidate.importance),
            "relationships": list(dict.fromkeys(best.relationships + candidate.relationships)),
            "tags": list(dict.fromkeys(best.tags + candidate.tags)),
        })
        return ConsolidationResult(
            action="merge",
            primary=merged,
            target_id=best_item.id,
            related=[enh for _, enh in matches[1:]],
            related_ids=[item.id for item, _ in matches[1:]],
            confidence_change=merged.confidence - best.confidence,
        )

    def _contradiction(
        self,
        candidate: EnhancedCandidate,
        contradictions: List[Tuple[MemoryItem, EnhancedCandidate]],
    ) -> ConsolidationResult:
        strongest_item, strongest = max(contradictions, key=lambda row: row[1].confidence)
        others = [(i, e) for i, e in contradictions if i.id != strongest_item.id]

        if candidate.confidence > strongest.confidence + 0.2:
            return ConsolidationResult(
                action="update",
                primary=candidate,
                target_id=strongest_item.id,
                related_ids=[i.id for i, _ in others],
            )

        return ConsolidationResult(
            action="conflict",
            primary=strongest,
            target_id=strongest_item.id,
            related=[candidate] + [e for _, e in others],
            related_ids=[i.id for i, _ in others],
            conflict_reason="Contradictory information detected",
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_memories(self, memories: Sequence[MemoryItem]) -> CleanupOutcome:
        """
        Collapse near-duplicates and drop weak singletons.

        Items are grouped greedily by similarity above the cleanup threshold.
        Singletons with confidence < 0.3 or importance < 0.2 are dropped.
        Larger groups keep their most confident member, bumped by 0.05 per
        extra member, with tags and relationships unioned.
        """
        enhanced = [MemoryCategorizer.from_memory_item(m) for m in memories]
        processed = set()
        kept: List[MemoryItem] = []
        removed: List[str] = []
        merged_groups: List[List[str]] = []

        for i, item in enumerate(memories):
            if i in processed:
                continue
            group = [i]
            processed.add(i)
            for j in range(i + 1, len(memories)):
                if j in processed:
                    continue
                if self.similarity(enhanced[i], enhanced[j]) > self.cleanup_threshold:
                    group.append(j)
                    processed.add(j)

            if len(group) == 1:
                if enhanced[i].confidence >= 0.3 and enhanced[i].importance >= 0.2:
                    kept.append(item)
                else:
                    removed.append(item.id)
                continue

            base_idx = max(group, key=lambda k: enhanced[k].confidence)
            base = memories[base_idx]
            metadata = dict(base.metadata)
            metadata["importance"] = max(enhanced[k].importance for k in group)
            metadata["tags"] = list(dict.fromkeys(t for k in group for t in enhanced[k].tags))
            metadata["relationships"] = list(
                dict.fromkeys(r for k in group for r in enhanced[k].relationships)
            )
            survivor = base.model_copy(update={
                "confidence": min(1.0, base.confidence + (len(group) - 1) * 0.05),
                "metadata": metadata,
            })
            kept.append(survivor)
            absorbed = [memories[k].id for k in group if k != base_idx]
            removed.extend(absorbed)
            merged_groups.append([base.id] + absorbed)

        return CleanupOutcome(kept=kept, removed_ids=removed, merged_groups=merged_groups)
