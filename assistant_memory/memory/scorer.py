"""
Worthiness scoring for memory candidates.

A candidate's score is a fixed-weight blend of how specific, stable and new
it is, penalised for questions and short-lived time references.
"""

import re
from dataclasses import dataclass, asdict
from typing import Dict, List, Sequence, Tuple

from .schemas import Candidate, FactType, MemoryItem, RecommendedAction, require_all_types
from .text_utils import trigram_similarity


GENERIC_WORDS = {
    "ja", "nein", "okay", "ok", "gut", "schlecht", "normal", "schön",
    "toll", "super", "nichts", "alles", "etwas", "viel", "wenig",
    "groß", "klein", "neu", "alt", "wichtig", "unwichtig",
    "yes", "no", "good", "bad", "nice", "great", "nothing", "everything",
}

STRONG_STABILITY = [
    "immer", "meistens", "ist", "heißt", "lieblings", "favorite",
    "geboren", "name", "adresse", "wohnt", "arbeitet", "studiert",
    "verheiratet", "ledig", "mag", "hasst", "präferiert",
]

MEDIUM_STABILITY = [
    "normalerweise", "gewöhnlich", "oft", "selten", "manchmal",
    "usually", "often", "rarely", "sometimes",
]

UNSTABLE = [
    "heute", "morgen", "gestern", "gerade", "gleich", "sofort",
    "bald", "später", "momentan", "zurzeit", "aktuell",
    "today", "tomorrow", "yesterday", "now", "soon", "currently",
]

TYPE_STABILITY_BONUS: Dict[FactType, float] = require_all_types({
    FactType.PROFILE_FACT: 0.2,
    FactType.PREFERENCE: 0.1,
    FactType.TASK_HINT: -0.1,
    FactType.CONTACT: 0.0,
    FactType.WORK_CONTEXT: 0.0,
}, "TYPE_STABILITY_BONUS")

INTERROGATIVE_RE = re.compile(
    r"\b(?:was|wie|wo|wann|warum|wer|welche|welcher|welches|"
    r"what|how|where|when|why|who|which)\b"
)

EPHEMERAL_PATTERNS = [
    re.compile(r"\b(?:heute|morgen|gestern|gleich|sofort|bald|gerade|jetzt)\b"),
    re.compile(r"\bin\s+\d+\s+(?:min|minuten|stunden|stunde|sekunden)\b"),
    re.compile(r"\bum\s+\d{1,2}:\d{2}\b"),
    re.compile(r"\bnächste[nr]?\s+(?:woche|monat)\b"),
    re.compile(r"\b(?:today|tomorrow|yesterday|now|soon|immediately|right\s+now)\b"),
    re.compile(r"\bin\s+\d+\s+(?:min|minutes|hours|seconds)\b"),
    re.compile(r"\bat\s+\d{1,2}:\d{2}\b"),
    re.compile(r"\bnext\s+(?:week|month)\b"),
    re.compile(r"\b\d{1,2}\.\d{1,2}\.\d{4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
]

PROPER_NOUN_RE = re.compile(r"\b[A-ZÄÖÜ][a-zäöüß]+")
SPECIFIC_DATA_RE = re.compile(r"\d+|@|\+49|\.de$|\.com$")

WEIGHTS = {
    "specificity": 0.25,
    "stability": 0.25,
    "novelty": 0.25,
    "confidence": 0.15,
    "interrogative": 0.05,
    "ephemeral": 0.05,
}


@dataclass
class ScoringFactors:
    """Breakdown of one worthiness score."""

    specificity: float
    stability: float
    novelty: float
    interrogative: float
    ephemeral: float
    final_score: float

    def to_dict(self) -> dict:
        return asdict(self)


def _clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


class WorthinessScorer:
    """
    Score how worth remembering a candidate fact is.

    Usage:
        >>> scorer = WorthinessScorer()
        >>> c = Candidate(type="preference", key="lieblingsfarbe", value="blau", confidence=0.9)
        >>> scorer.get_recommended_action(scorer.score(c, []))
        'auto'
    """

    def __init__(self, auto_threshold: float = 0.75, ask_threshold: float = 0.5):
        self.auto_threshold = auto_threshold
        self.ask_threshold = ask_threshold

    def score(self, candidate: Candidate, existing: Sequence[MemoryItem] = ()) -> float:
        """Worthiness in [0, 1]."""
        return self.factors(candidate, existing).final_score

    def factors(self, candidate: Candidate, existing: Sequence[MemoryItem] = ()) -> ScoringFactors:
        """
        Compute every scoring factor.

        Args:
            candidate: Candidate to score
            existing: The user's stored items (for novelty)

        Returns:
            ScoringFactors with the clamped weighted sum in ``final_score``
        """
        specificity = self.specificity(candidate)
        stability = self.stability(candidate)
        novelty = self.novelty(candidate, existing)
        interrogative = self.interrogative_penalty(candidate)
        ephemeral = self.ephemeral_penalty(candidate)

        final = _clamp(
            specificity * WEIGHTS["specificity"]
            + stability * WEIGHTS["stability"]
            + novelty * WEIGHTS["novelty"]
            + candidate.confidence * WEIGHTS["confidence"]
            + interrogative * WEIGHTS["interrogative"]
            + ephemeral * WEIGHTS["ephemeral"]
        )

        return ScoringFactors(
            specificity=specificity,
            stability=stability,
            novelty=novelty,
            interrogative=interrogative,
            ephemeral=ephemeral,
            final_score=final,
        )

    def specificity(self, candidate: Candidate) -> float:
        value = candidate.value.lower().strip()
        n = len(value)

        if 2 <= n <= 40:
            length_score = 1.0
        elif 40 < n <= 100:
            length_score = 0.7
        elif n > 100:
            length_score = 0.4
        else:
            length_score = 0.2

        generic = 0.3 if value in GENERIC_WORDS else 1.0
        proper_noun = 1.2 if PROPER_NOUN_RE.search(candidate.value) else 1.0
        specific_data = 1.1 if SPECIFIC_DATA_RE.search(value) else 1.0

        return min(1.0, length_score * generic * proper_noun * specific_data)

    def stability(self, candidate: Candidate) -> float:
        text = f"{candidate.key} {candidate.value}".lower()
        score = 0.5

        # First hit per keyword class only
        if any(k in text for k in STRONG_STABILITY):
            score += 0.3
        if any(k in text for k in MEDIUM_STABILITY):
            score += 0.2
        if any(k in text for k in UNSTABLE):
            score -= 0.4

        score += TYPE_STABILITY_BONUS[FactType(candidate.type)]
        return _clamp(score)

    def novelty(self, candidate: Candidate, existing: Sequence[MemoryItem]) -> float:
        same_key = [
            item for item in existing
            if item.person == candidate.person
            and item.type == candidate.type
            and item.key == candidate.key
        ]
        if not same_key:
            return 1.0

        value = candidate.value.lower()
        max_sim = max(trigram_similarity(value, item.value.lower()) for item in same_key)
        return 1.0 - max_sim

    def interrogative_penalty(self, candidate: Candidate) -> float:
        key = candidate.key.strip()
        value = candidate.value.strip()
        if "?" in key or "?" in value:
            return 0.2
        if INTERROGATIVE_RE.search(f"{key} {value}".lower()):
            return 0.2
        return 1.0

    def ephemeral_penalty(self, candidate: Candidate) -> float:
        text = f"{candidate.key} {candidate.value}".lower()
        if any(p.search(text) for p in EPHEMERAL_PATTERNS):
            return 0.3
        return 1.0

    def get_recommended_action(self, score: float) -> RecommendedAction:
        """Map a score to auto / ask / reject."""
        if score >= self.auto_threshold:
            return "auto"
        if score >= self.ask_threshold:
            return "ask"
        return "reject"

    def score_many(
        self,
        candidates: Sequence[Candidate],
        existing: Sequence[MemoryItem] = (),
    ) -> List[Tuple[Candidate, float, RecommendedAction]]:
        """Score a batch, best first."""
        scored = []
        for c in candidates:
            s = self.score(c, existing)
            scored.append((c, s, self.get_recommended_action(s)))
        scored.sort(key=lambda row: row[1], reverse=True)
        return scored
