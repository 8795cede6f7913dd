"""
Memory manager: the per-utterance decision pipeline.

PII gate -> extraction -> per candidate (risk -> score -> decide) -> store.

With ``settings.enhanced`` the candidates are additionally categorised,
reweighted by the user's learned preferences and reconciled with the
stored pool before anything is written.
"""

import re
import uuid
from typing import Any, Dict, List, Optional, Sequence

from ..config.settings import MemorySettings
from ..errors import EvaluationError, StorageError, ValidationError
from ..metrics import MetricsLogger
from ..telemetry import get_logger, new_request_id
from .adaptive import AdaptiveLearning
from .categorizer import ConversationContext, MemoryCategorizer
from .consent import ConsentRegistry
from .consolidator import MemoryConsolidator
from .extractor import CandidateExtractor, PatternExtractor
from .pii import PIIDetector, RegexPIIDetector, mask_pii
from .policy import MemoryPolicy
from .schemas import (
    Candidate,
    ConsolidationResult,
    EnhancedCandidate,
    EvaluationResult,
    FeedbackEvent,
    MemoryItem,
    MemoryItemInput,
    PendingSuggestion,
)
from .scorer import WorthinessScorer
from .store import MemoryStore

logger = get_logger(__name__)

MIN_UTTERANCE_CHARS = 5
MAX_UTTERANCE_CHARS = 500

SKIP_PREFIXES = re.compile(
    r"^(?:wie geht|was ist|können sie|danke|bitte|how are|what is|can you|thank you|please"
    r"|hallo|hi|tschüss|bye|ok|okay)\b",
    re.I,
)
PERSONAL_INDICATORS = re.compile(
    r"\b(?:ich|mein\w*|mir|mich|bin|heiße|mag|wohne|arbeite|i|my|me|am|like|live)\b",
    re.I,
)


def new_suggestion_id() -> str:
    return f"sug_{uuid.uuid4().hex[:12]}"


class MemoryManager:
    """
    Decides which facts of an utterance are stored, suggested or rejected.

    Usage:
        >>> manager = MemoryManager(store)
        >>> result = await manager.evaluate_and_maybe_store("u1", "Meine Lieblingsfarbe ist blau")
        >>> [m.key for m in result.saved]
        ['lieblingsfarbe']
    """

    def __init__(
        self,
        store: MemoryStore,
        policy: Optional[MemoryPolicy] = None,
        scorer: Optional[WorthinessScorer] = None,
        extractor: Optional[CandidateExtractor] = None,
        pii_detector: Optional[PIIDetector] = None,
        metrics: Optional[MetricsLogger] = None,
        settings: Optional[MemorySettings] = None,
        categorizer: Optional[MemoryCategorizer] = None,
        consolidator: Optional[MemoryConsolidator] = None,
        learning: Optional[AdaptiveLearning] = None,
        consent: Optional[ConsentRegistry] = None,
    ):
        """
        Initialize manager.

        Args:
            store: Durable memory store
            policy: Risk and retention rules
            scorer: Worthiness scorer
            extractor: Candidate extractor (defaults to the German rule set)
            pii_detector: PII gate (defaults to RegexPIIDetector)
            metrics: Event logger
            settings: Thresholds and the ``enhanced`` switch
            categorizer: Enhanced mode enrichment
            consolidator: Enhanced mode reconciliation
            learning: Enhanced mode adaptive learning
            consent: Decline blacklist; suggestions approved or declined are recorded here
        """
        self.settings = settings or MemorySettings()
        thresholds = self.settings.thresholds

        self.store = store
        self.policy = policy or MemoryPolicy(
            very_high_threshold=thresholds.very_high,
            ttl_overrides=self.settings.ttl_overrides,
        )
        self.scorer = scorer or WorthinessScorer(thresholds.auto, thresholds.ask)
        self.extractor = extractor or PatternExtractor()
        self.pii_detector = pii_detector or RegexPIIDetector()
        self.metrics = metrics or MetricsLogger(None)
        self.consent = consent

        self.enhanced = self.settings.enhanced
        self.categorizer = categorizer or MemoryCategorizer()
        self.consolidator = consolidator or MemoryConsolidator(
            similar_threshold=thresholds.similar,
            cleanup_threshold=thresholds.cleanup,
        )
        self.learning = learning
        if self.enhanced and self.learning is None:
            self.learning = AdaptiveLearning(
                pattern_threshold=thresholds.pattern,
                prediction_threshold=thresholds.prediction,
            )
            self.learning.init()

    def close(self) -> None:
        if self.learning is not None:
            self.learning.close()

    def _masked(self, utterance: str) -> str:
        return self.policy.sanitize_text(mask_pii(utterance, self.pii_detector))

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate_and_maybe_store(
        self,
        user_id: str,
        utterance: str,
        person_context: Optional[str] = None,
        context: Optional[ConversationContext] = None,
    ) -> EvaluationResult:
        """
        Run the full pipeline for one utterance.

        Args:
            user_id: Owner of any stored fact
            utterance: Raw user text
            person_context: Person the conversation is currently about
            context: Conversation hints for enhanced mode

        Returns:
            EvaluationResult; never raises, unexpected failures are reported
            as ``evaluation_error`` in ``rejected``
        """
        result = EvaluationResult()
        log = logger.bind(user_id=user_id, request_id=new_request_id())

        try:
            detection = self.pii_detector.detect(utterance)
            if detection.has_pii:
                log.info("utterance_rejected_pii", kinds=sorted({m.kind for m in detection.matches}))
                self.metrics.reject(user_id, "utterance", "pii")
                result.rejected.append("pii")
                return result

            try:
                candidates = await self.extractor.extract(utterance, person_context)
            except Exception as e:
                raise EvaluationError(f"Extraction failed: {e}") from e
            if not candidates:
                log.debug("no_candidates", utterance=self._masked(utterance))
                return result

            pool = await self.store.list_by_user(user_id)
            for candidate in candidates:
                if self.enhanced:
                    await self._evaluate_enhanced(user_id, utterance, candidate, pool, context, result)
                else:
                    await self._evaluate_candidate(user_id, utterance, candidate, pool, result)

        except Exception as e:
            log.error("evaluation_failed", error=str(e), utterance=self._masked(utterance))
            self.metrics.error("manager.evaluate", str(e), user_id=user_id)
            result.rejected.append("evaluation_error")
            return result

        log.info(
            "evaluation_complete",
            saved=len(result.saved),
            suggested=len(result.suggestions),
            rejected=len(result.rejected),
            conflicts=len(result.conflicts),
        )
        return result

    def _reject(self, result: EvaluationResult, user_id: str, candidate: Candidate, reason: str,
                score: Optional[float] = None) -> None:
        result.rejected.append(f"{reason}:{candidate.key}")
        self.metrics.reject(user_id, candidate.key, reason, score)

    def _suggest(
        self,
        result: EvaluationResult,
        user_id: str,
        candidate: Candidate,
        score: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PendingSuggestion:
        suggestion = PendingSuggestion(
            suggestion_id=new_suggestion_id(),
            user_id=user_id,
            person=candidate.person,
            type=candidate.type,
            key=candidate.key,
            value=candidate.value,
            confidence=candidate.confidence,
            score=min(1.0, score),
            ttl=self.policy.default_ttl(candidate.type),
            metadata=metadata or {},
        )
        result.suggestions.append(suggestion)
        self.metrics.ask(user_id, candidate.key, suggestion.score)
        return suggestion

    def _gate(self, result: EvaluationResult, user_id: str, utterance: str, candidate: Candidate) -> Optional[str]:
        """Risk level of the candidate, or None once it has been rejected."""
        risk = self.policy.classify_risk(utterance, candidate.type)
        if risk == "high":
            self._reject(result, user_id, candidate, "high_risk")
            return None
        if self.consent is not None and self.consent.is_blacklisted(user_id, candidate.key):
            self._reject(result, user_id, candidate, "declined")
            return None
        return risk

    async def _evaluate_candidate(
        self,
        user_id: str,
        utterance: str,
        candidate: Candidate,
        pool: List[MemoryItem],
        result: EvaluationResult,
    ) -> None:
        risk = self._gate(result, user_id, utterance, candidate)
        if risk is None:
            return

        score = self.scorer.score(candidate, pool)
        logger.debug("candidate_scored", key=candidate.key, risk=risk, score=round(score, 3))

        if self.policy.can_auto_save(candidate.type, score) and score >= self.scorer.auto_threshold:
            item = MemoryItemInput(
                person=candidate.person,
                type=candidate.type,
                key=candidate.key,
                value=candidate.value,
                confidence=candidate.confidence,
                ttl=self.policy.default_ttl(candidate.type),
            )
            try:
                saved = await self.store.upsert(user_id, item)
            except StorageError:
                self._reject(result, user_id, candidate, "save_error", score)
                return
            result.saved.append(saved)
            pool[:] = [m for m in pool if m.id != saved.id] + [saved]
            self.metrics.save(user_id, candidate.key, kind="auto", score=score, risk=risk)
            return

        if score >= self.scorer.ask_threshold:
            self._suggest(result, user_id, candidate, score)
            return

        self._reject(result, user_id, candidate, "low_score", score)

    async def _evaluate_enhanced(
        self,
        user_id: str,
        utterance: str,
        candidate: Candidate,
        pool: List[MemoryItem],
        context: Optional[ConversationContext],
        result: EvaluationResult,
    ) -> None:
        risk = self._gate(result, user_id, utterance, candidate)
        if risk is None:
            return

        enhanced = self.categorizer.enhance(candidate, context, pool)
        base_score = self.scorer.score(candidate, pool)
        score = min(1.0, base_score * self.learning.get_adaptive_multiplier(enhanced, user_id))
        threshold = self.learning.get_adaptive_threshold(user_id)

        prediction = self.learning.predict_user_action(enhanced, user_id)
        if prediction.action == "reject":
            logger.debug("predicted_reject", key=candidate.key, reasoning=prediction.reasoning)
            self._reject(result, user_id, candidate, "predicted_reject", score)
            return

        logger.debug(
            "enhanced_candidate_scored",
            key=candidate.key,
            base_score=round(base_score, 3),
            score=round(score, 3),
            threshold=threshold,
            priority=enhanced.priority,
        )

        consolidation = self.consolidator.consolidate(enhanced, pool)
        metadata = enhanced.enrichment()

        if self.policy.can_auto_save(candidate.type, score) and score >= threshold:
            if consolidation.action == "conflict":
                result.conflicts.append(consolidation)
                self.metrics.consolidate(user_id, "conflict", consolidation.original_ids)
                metadata["conflict_reason"] = consolidation.conflict_reason
                self._suggest(result, user_id, candidate, score, metadata)
                return
            try:
                saved = await self._apply(user_id, enhanced, consolidation, pool, metadata)
            except StorageError:
                self._reject(result, user_id, candidate, "save_error", score)
                return
            result.saved.append(saved)
            if consolidation.action in ("merge", "update"):
                result.consolidations.append(consolidation)
            replaced = set(consolidation.original_ids) if consolidation.action == "update" else set()
            pool[:] = [m for m in pool if m.id not in replaced and m.id != saved.id]
            pool.append(saved)
            self.metrics.save(user_id, candidate.key, kind="auto", score=score, risk=risk)
            return

        if score >= self.scorer.ask_threshold:
            self._record_consolidation(user_id, consolidation, result)
            self._suggest(result, user_id, candidate, score, metadata)
            return

        self._reject(result, user_id, candidate, "low_score", score)

    def _record_consolidation(self, user_id: str, consolidation: ConsolidationResult,
                              result: EvaluationResult) -> None:
        if consolidation.action == "conflict":
            result.conflicts.append(consolidation)
        elif consolidation.action in ("merge", "update"):
            result.consolidations.append(consolidation)
        else:
            return
        self.metrics.consolidate(user_id, consolidation.action, consolidation.original_ids)

    async def _apply(
        self,
        user_id: str,
        candidate: EnhancedCandidate,
        consolidation: ConsolidationResult,
        pool: Sequence[MemoryItem],
        metadata: Dict[str, Any],
    ) -> MemoryItem:
        """Persist an auto-saved candidate according to its consolidation outcome."""
        target = next((m for m in pool if m.id == consolidation.target_id), None)
        ttl = self.policy.default_ttl(candidate.type)

        if consolidation.action == "merge" and target is not None:
            primary = consolidation.primary
            merged_meta = {**target.metadata, **primary.enrichment()}
            updated = await self.store.update(
                user_id,
                target.id,
                {"confidence": primary.confidence, "metadata": merged_meta},
            )
            if updated is not None:
                self.metrics.consolidate(user_id, "merge", consolidation.original_ids)
                return updated

        item = MemoryItemInput(
            person=candidate.person,
            type=candidate.type,
            key=candidate.key,
            value=candidate.value,
            confidence=consolidation.primary.confidence if consolidation.action == "update" else candidate.confidence,
            ttl=ttl,
            metadata=metadata,
        )

        if consolidation.action == "update" and target is not None:
            self.metrics.consolidate(user_id, "update", consolidation.original_ids)
            if target.dedup_key() == item.dedup_key(user_id) and not consolidation.related_ids:
                return await self.store.upsert(user_id, item)
            return await self.store.replace_many(user_id, consolidation.original_ids, item)

        return await self.store.upsert(user_id, item)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    async def save_suggestion(self, user_id: str, suggestion: PendingSuggestion) -> MemoryItem:
        """
        Persist a suggestion the user approved.

        Raises:
            ValidationError: if the suggestion belongs to another user
            StorageError: if the store could not be written
        """
        if suggestion.user_id != user_id:
            raise ValidationError("Suggestion does not belong to user")

        saved = await self.store.upsert(user_id, suggestion.to_input())
        self.metrics.save(user_id, suggestion.key, kind="user", score=suggestion.score)
        logger.info("suggestion_saved", user_id=user_id, key=suggestion.key, memory_id=saved.id)

        self._feedback(user_id, suggestion, approved=True)
        return saved

    async def decline_suggestion(self, user_id: str, suggestion: PendingSuggestion) -> None:
        """Record that the user turned a suggestion down."""
        if suggestion.user_id != user_id:
            raise ValidationError("Suggestion does not belong to user")

        self.metrics.reject(user_id, suggestion.key, "declined", suggestion.score)
        logger.info("suggestion_declined", user_id=user_id, key=suggestion.key)
        self._feedback(user_id, suggestion, approved=False)

    def _feedback(self, user_id: str, suggestion: PendingSuggestion, approved: bool) -> None:
        if self.consent is not None:
            # The decision already took effect; a lost consent record is only logged.
            try:
                self.consent.record(user_id, suggestion.key, suggestion.type, approved)
            except StorageError as e:
                logger.error("consent_record_failed", user_id=user_id, key=suggestion.key, error=str(e))
                self.metrics.error("manager.consent", str(e), user_id=user_id)
        if self.learning is not None:
            candidate = Candidate(
                person=suggestion.person,
                type=suggestion.type,
                key=suggestion.key,
                value=suggestion.value,
                confidence=suggestion.confidence,
            )
            self.learning.record_feedback(FeedbackEvent(
                user_id=user_id,
                action="accepted" if approved else "rejected",
                candidate=self.categorizer.enhance(candidate),
            ))

    # ------------------------------------------------------------------
    # Convenience entry points
    # ------------------------------------------------------------------

    async def evaluate_batch(self, user_id: str, utterances: Sequence[str]) -> EvaluationResult:
        """Evaluate utterances in order and concatenate the results."""
        combined = EvaluationResult()
        for utterance in utterances:
            r = await self.evaluate_and_maybe_store(user_id, utterance)
            combined.saved.extend(r.saved)
            combined.suggestions.extend(r.suggestions)
            combined.rejected.extend(r.rejected)
            combined.conflicts.extend(r.conflicts)
            combined.consolidations.extend(r.consolidations)
        return combined

    async def get_evaluation_stats(self, user_id: str, utterance: str) -> Dict[str, Any]:
        """Dry run: what the pipeline would decide, without writing anything."""
        existing = await self.store.list_by_user(user_id)
        detection = self.pii_detector.detect(utterance)
        stats: Dict[str, Any] = {
            "has_pii": detection.has_pii,
            "candidate_count": 0,
            "candidates": [],
            "existing_memory_count": len(existing),
        }
        if detection.has_pii:
            return stats

        candidates = await self.extractor.extract(utterance)
        stats["candidate_count"] = len(candidates)
        for candidate in candidates:
            score = self.scorer.score(candidate, existing)
            stats["candidates"].append({
                **candidate.model_dump(mode="json"),
                "risk": self.policy.classify_risk(utterance, candidate.type),
                "score": score,
                "ttl": self.policy.default_ttl(candidate.type),
                "action": self.scorer.get_recommended_action(score),
            })
        return stats

    @staticmethod
    def is_worth_evaluating(utterance: str) -> bool:
        """Cheap pre-filter: skip greetings, thanks, questions to the assistant and very short or long text."""
        text = utterance.strip()
        if not MIN_UTTERANCE_CHARS <= len(text) <= MAX_UTTERANCE_CHARS:
            return False
        if SKIP_PREFIXES.match(text):
            return False
        return bool(PERSONAL_INDICATORS.search(text))

    async def process_conversation_turn(
        self,
        user_id: str,
        message: str,
        person_context: Optional[str] = None,
        context: Optional[ConversationContext] = None,
    ) -> EvaluationResult:
        if not self.is_worth_evaluating(message):
            logger.debug("turn_skipped", user_id=user_id)
            return EvaluationResult(rejected=["not_worth_evaluating"])
        return await self.evaluate_and_maybe_store(user_id, message, person_context, context)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_maintenance(self, user_id: str) -> Dict[str, int]:
        """
        Collapse near-duplicates, drop weak items, sweep expired ones and
        prune old learning data.

        Returns:
            Counts of cleaned, merged and expired items
        """
        items = await self.store.list_by_user(user_id)
        outcome = self.consolidator.cleanup_memories(items)
        originals = {m.id: m for m in items}

        for survivor in outcome.kept:
            before = originals.get(survivor.id)
            if before is None:
                continue
            if survivor.confidence != before.confidence or survivor.metadata != before.metadata:
                await self.store.update(
                    user_id,
                    survivor.id,
                    {"confidence": survivor.confidence, "metadata": survivor.metadata},
                )
        for item_id in outcome.removed_ids:
            await self.store.remove(user_id, item_id)
        for group in outcome.merged_groups:
            self.metrics.consolidate(user_id, "merge", group)

        expired = await self.store.expire_sweep()

        learning_removed = 0
        if self.learning is not None:
            learning_removed = self.learning.cleanup_old_data(self.settings.learning_max_age_months)
            self.learning.flush()

        report = {
            "cleaned": len(outcome.removed_ids),
            "merged_groups": len(outcome.merged_groups),
            "expired": expired,
            "learning_events_removed": learning_removed,
        }
        logger.info("maintenance_complete", user_id=user_id, **report)
        return report
