"""
Adaptive learning from user feedback.

Tracks which fact types, categories and concrete patterns a user accepts
or rejects, and turns that into a score multiplier, a personal auto-save
threshold and a prediction of the user's reaction to new candidates.
"""

from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pydantic

from ..errors import StorageError
from ..persist.json_file import read_json, write_json_atomic
from ..telemetry import get_logger
from .schemas import (
    EnhancedCandidate,
    FeedbackEvent,
    PredictionResult,
    UserPreferenceProfile,
    now_iso,
    parse_iso,
)
from .text_utils import semantic_similarity

logger = get_logger(__name__)

DEFAULT_PREFERENCE = 0.5
DEFAULT_THRESHOLD = 0.75
MIN_THRESHOLD = 0.4
MAX_THRESHOLD = 0.95
PREFERENCE_STEP = 0.1
THRESHOLD_STEP = 0.02
MIN_HISTORY_FOR_PREDICTION = 5
PREDICTION_AGREEMENT = 0.7

Profiles = Dict[str, UserPreferenceProfile]
History = Dict[str, List[FeedbackEvent]]


def pattern_of(candidate: EnhancedCandidate) -> str:
    return f"{candidate.key} {candidate.value}".lower()


class InMemoryLearningStore:
    """Keeps learning state for the lifetime of the process only."""

    def load(self) -> Tuple[Profiles, History]:
        return {}, {}

    def save(self, profiles: Profiles, history: History) -> None:
        pass


class JsonLearningStore(InMemoryLearningStore):
    """Persists profiles and feedback history in one JSON document."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Tuple[Profiles, History]:
        profiles: Profiles = {}
        history: History = {}
        try:
            data = read_json(self.path) or {}
            for user_id, raw in data.get("profiles", {}).items():
                profiles[user_id] = UserPreferenceProfile(**raw)
            for user_id, events in data.get("history", {}).items():
                history[user_id] = [FeedbackEvent(**e) for e in events]
        except (StorageError, pydantic.ValidationError, TypeError, AttributeError) as e:
            logger.error("learning_state_corrupt", path=str(self.path), error=str(e))
            return {}, {}
        return profiles, history

    def save(self, profiles: Profiles, history: History) -> None:
        write_json_atomic(self.path, {
            "profiles": {uid: p.model_dump(mode="json") for uid, p in profiles.items()},
            "history": {
                uid: [e.model_dump(mode="json") for e in events]
                for uid, events in history.items()
            },
        })


class AdaptiveLearning:
    """
    Per-user learning service.

    Call ``init()`` before use and ``close()`` on shutdown; ``flush()``
    persists state through the configured store at any time.

    Usage:
        >>> learning = AdaptiveLearning()
        >>> learning.init()
        >>> learning.record_feedback(FeedbackEvent(user_id="u1", action="accepted", candidate=c))
        >>> learning.get_adaptive_threshold("u1")
        0.75
    """

    def __init__(
        self,
        store: Optional[InMemoryLearningStore] = None,
        pattern_threshold: float = 0.7,
        prediction_threshold: float = 0.6,
        max_patterns: int = 50,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Args:
            store: Where profiles and history are loaded from and flushed to
            pattern_threshold: Similarity above which a learned pattern applies
            prediction_threshold: Similarity above which past feedback counts for prediction
            max_patterns: Cap of each accepted/rejected pattern list (oldest evicted)
            clock: Current time provider
        """
        self.store = store or InMemoryLearningStore()
        self.pattern_threshold = pattern_threshold
        self.prediction_threshold = prediction_threshold
        self.max_patterns = max_patterns
        self.clock = clock

        self.profiles: Profiles = {}
        self.history: History = {}
        self._dirty = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        self.profiles, self.history = self.store.load()
        self._dirty = False
        logger.info("learning_state_loaded", users=len(self.profiles))

    def flush(self) -> None:
        if not self._dirty:
            return
        self.store.save(self.profiles, self.history)
        self._dirty = False

    def close(self) -> None:
        self.flush()

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_feedback(self, event: FeedbackEvent) -> UserPreferenceProfile:
        """Append ``event`` to the user's history and update their profile."""
        self.history.setdefault(event.user_id, []).append(event)
        profile = self._update_profile(event)
        self._dirty = True
        return profile

    def _update_profile(self, event: FeedbackEvent) -> UserPreferenceProfile:
        profile = self.profiles.get(event.user_id)
        if profile is None:
            profile = UserPreferenceProfile(user_id=event.user_id)
            self.profiles[event.user_id] = profile

        candidate = event.candidate
        accepted = event.action == "accepted"
        step = PREFERENCE_STEP if accepted else -PREFERENCE_STEP

        type_key = candidate.type.value
        current = profile.preferred_types.get(type_key, DEFAULT_PREFERENCE)
        profile.preferred_types[type_key] = min(1.0, max(0.0, current + step))

        current = profile.category_preferences.get(candidate.category, DEFAULT_PREFERENCE)
        profile.category_preferences[candidate.category] = min(1.0, max(0.0, current + step))

        patterns = profile.accepted_patterns if accepted else profile.rejected_patterns
        pattern = pattern_of(candidate)
        if pattern not in patterns:
            patterns.append(pattern)
            del patterns[:-self.max_patterns]

        if accepted and candidate.confidence < profile.confidence_threshold:
            profile.confidence_threshold = max(MIN_THRESHOLD, profile.confidence_threshold - THRESHOLD_STEP)
        elif not accepted and candidate.confidence > profile.confidence_threshold:
            profile.confidence_threshold = min(MAX_THRESHOLD, profile.confidence_threshold + THRESHOLD_STEP)

        profile.last_updated = now_iso()
        return profile

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def get_adaptive_multiplier(self, candidate: EnhancedCandidate, user_id: str) -> float:
        """
        Preference multiplier for a candidate, 1.0 without a profile.

        (0.5 + 0.5 * type pref) * (0.5 + 0.5 * category pref), then x0.3 if
        it resembles a rejected pattern, otherwise x1.5 if it resembles an
        accepted one.
        """
        profile = self.profiles.get(user_id)
        if profile is None:
            return 1.0

        type_pref = profile.preferred_types.get(candidate.type.value, DEFAULT_PREFERENCE)
        cat_pref = profile.category_preferences.get(candidate.category, DEFAULT_PREFERENCE)
        multiplier = (0.5 + type_pref * 0.5) * (0.5 + cat_pref * 0.5)

        text = pattern_of(candidate)
        if self._matches_any(text, profile.rejected_patterns):
            multiplier *= 0.3
        elif self._matches_any(text, profile.accepted_patterns):
            multiplier *= 1.5
        return multiplier

    def get_adaptive_score(self, candidate: EnhancedCandidate, user_id: str) -> float:
        """confidence * importance scaled by the user's multiplier, capped at 1."""
        base = candidate.confidence * candidate.importance
        if user_id not in self.profiles:
            return base
        return min(1.0, base * self.get_adaptive_multiplier(candidate, user_id))

    def _matches_any(self, text: str, patterns: List[str]) -> bool:
        return any(semantic_similarity(text, p) > self.pattern_threshold for p in patterns)

    def get_adaptive_threshold(self, user_id: str) -> float:
        profile = self.profiles.get(user_id)
        return profile.confidence_threshold if profile else DEFAULT_THRESHOLD

    def predict_user_action(self, candidate: EnhancedCandidate, user_id: str) -> PredictionResult:
        """
        Guess whether the user would accept ``candidate``.

        Needs at least 5 feedback events and one similar past candidate;
        more than 70 % agreement among similar events decides.
        """
        history = self.history.get(user_id, [])
        if user_id not in self.profiles or len(history) < MIN_HISTORY_FOR_PREDICTION:
            return PredictionResult(action="uncertain", confidence=0.5, reasoning="insufficient history")

        text = f"{candidate.key} {candidate.value}"
        similar = [
            e for e in history
            if semantic_similarity(text, f"{e.candidate.key} {e.candidate.value}") > self.prediction_threshold
        ]
        if not similar:
            return PredictionResult(action="uncertain", confidence=0.5, reasoning="no similar feedback")

        accept_rate = sum(1 for e in similar if e.action == "accepted") / len(similar)
        reject_rate = sum(1 for e in similar if e.action == "rejected") / len(similar)

        if accept_rate > PREDICTION_AGREEMENT:
            return PredictionResult(
                action="accept",
                confidence=accept_rate,
                reasoning=f"accepted {accept_rate:.0%} of {len(similar)} similar candidates",
            )
        if reject_rate > PREDICTION_AGREEMENT:
            return PredictionResult(
                action="reject",
                confidence=reject_rate,
                reasoning=f"rejected {reject_rate:.0%} of {len(similar)} similar candidates",
            )
        return PredictionResult(action="uncertain", confidence=0.5, reasoning="mixed feedback")

    # ------------------------------------------------------------------
    # Insights & maintenance
    # ------------------------------------------------------------------

    def get_learning_insights(self, user_id: str) -> Dict[str, Any]:
        history = self.history.get(user_id, [])
        profile = self.profiles.get(user_id)
        threshold = self.get_adaptive_threshold(user_id)

        if not history:
            return {
                "total_feedback": 0,
                "acceptance_rate": 0.0,
                "most_preferred_type": "unknown",
                "least_preferred_type": "unknown",
                "adaptive_threshold": threshold,
                "recent_trends": [],
            }

        acceptance = sum(1 for e in history if e.action == "accepted") / len(history)
        prefs = profile.preferred_types if profile else {}
        most = max(prefs.items(), key=lambda kv: kv[1])[0] if prefs else "unknown"
        least = min(prefs.items(), key=lambda kv: kv[1])[0] if prefs else "unknown"

        recent = history[-10:]
        trends = []
        recent_acceptance = sum(1 for e in recent if e.action == "accepted") / len(recent)
        if recent_acceptance > acceptance + 0.2:
            trends.append("Increasing acceptance rate")
        elif recent_acceptance < acceptance - 0.2:
            trends.append("Decreasing acceptance rate")

        type_counts = Counter(e.candidate.type.value for e in recent)
        dominant, count = type_counts.most_common(1)[0]
        if count / len(recent) > 0.4:
            trends.append(f"Focus on {dominant} memories")

        return {
            "total_feedback": len(history),
            "acceptance_rate": acceptance,
            "most_preferred_type": most,
            "least_preferred_type": least,
            "adaptive_threshold": threshold,
            "recent_trends": trends,
        }

    def export_learning_data(self, user_id: str) -> Dict[str, Any]:
        profile = self.profiles.get(user_id)
        return {
            "preferences": profile.model_dump(mode="json") if profile else None,
            "history": [e.model_dump(mode="json") for e in self.history.get(user_id, [])],
        }

    def import_learning_data(self, user_id: str, data: Dict[str, Any]) -> None:
        if data.get("preferences"):
            self.profiles[user_id] = UserPreferenceProfile(**{**data["preferences"], "user_id": user_id})
        if data.get("history") is not None:
            self.history[user_id] = [FeedbackEvent(**e) for e in data["history"]]
        self._dirty = True

    def forget_user(self, user_id: str) -> None:
        self.profiles.pop(user_id, None)
        self.history.pop(user_id, None)
        self._dirty = True

    def cleanup_old_data(self, max_age_months: int = 12) -> int:
        """
        Drop feedback older than ``max_age_months`` (30-day months) and
        profiles that were not updated since and have no history left.

        Returns:
            Number of feedback events removed
        """
        cutoff = self.clock() - timedelta(days=30 * max_age_months)
        removed = 0

        for user_id in list(self.history):
            events = self.history[user_id]
            fresh = [e for e in events if parse_iso(e.timestamp) > cutoff]
            removed += len(events) - len(fresh)
            if fresh:
                self.history[user_id] = fresh
            else:
                del self.history[user_id]

        for user_id in list(self.profiles):
            profile = self.profiles[user_id]
            if parse_iso(profile.last_updated) < cutoff and user_id not in self.history:
                del self.profiles[user_id]

        if removed:
            self._dirty = True
            logger.info("learning_data_pruned", removed=removed)
        return removed
