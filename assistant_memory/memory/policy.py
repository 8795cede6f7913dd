"""
Memory write policy and risk classification.

Decides how dangerous a piece of content is to keep, which fact types may
be stored without asking, and how long each type lives.
"""

import re
from typing import Dict, List, Optional

from .schemas import FactType, RiskLevel, require_all_types


# Content that must never be stored, whatever the fact type.
NEVER_SAVE_PATTERNS: List[re.Pattern] = [
    # Credentials
    re.compile(r"\b(?:password|passwd|pwd|pin|tan|token|secret|passwort|kennwort|geheimzahl)\s*[:=]\s*\S+", re.I),
    re.compile(r"\b(?:mein|das|sein|ihr)\s+(?:passwort|kennwort|geheimwort|pin)\s+(?:ist|lautet)\s+\S+", re.I),
    re.compile(r"\b(?:api[_-]?key|access[_-]?token|bearer[_-]?token)\s*[:=]\s*['\"]?[\w-]{20,}['\"]?", re.I),
    # Payment cards
    re.compile(r"\b(?:4\d{3}|5[1-5]\d{2}|6(?:011|5\d{2}))[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
    # IBAN
    re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}[A-Z0-9]{1,23}\b"),
    # Identity documents, social security and tax numbers
    re.compile(r"\b(?:ausweis|personalausweis|reisepass|id)[-\s]*(?:nr|nummer)?\s*[:=]\s*[A-Z0-9]+", re.I),
    re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    re.compile(r"\bsteuer[-\s]*(?:id|nummer)\s*[:=]?\s*\d+", re.I),
    # Street addresses
    re.compile(r"\b[a-zäöüß]+(?:straße|strasse|str\.|gasse|platz|weg|allee)\s+\d+[a-z]?\b", re.I),
    re.compile(r"\b\d+\s+[a-zäöüß]+(?:straße|strasse|str\.|gasse|platz|weg|allee)\b", re.I),
    # Private mail and phone
    re.compile(r"\b[\w.%+-]+@(?:gmail|yahoo|hotmail|outlook|web|gmx|t-online)\.[a-z]{2,}\b", re.I),
    re.compile(r"(?:\+49|\b0)\s*\d{2,4}[-\s]?\d{3,8}[-\s]?\d{0,8}"),
    # Political opinions
    re.compile(r"\b(?:ich|wir)\s+(?:wähle|wählen|bin|sind)\s+(?:immer\s+)?(?:die\s+)?(?:cdu|spd|fdp|grünen?|afd|linke)\b", re.I),
]

# Special-category topics (health, politics). Matched on word starts.
SENSITIVE_KEYWORDS: List[str] = [
    # Health
    "krankheit", "diagnose", "medikament", "therapie", "behandlung", "patient",
    "krankenhaus", "blutdruck", "diabetes", "krebs", "symptom", "allergie",
    "operation", "depression", "psychiater", "psychotherap",
    # Politics
    "politik", "partei", "wahlverhalten", "politische", "konservativ",
    "sozialdemokrat", "cdu", "spd", "fdp", "afd",
]

# Religious belief. Anchored phrases only, "ich glaube" alone is a hedge.
RELIGION_KEYWORDS: List[str] = [
    "religion", "glaube an gott", "glaubensrichtung", "gläubig", "kirchgang", "gebet",
    "christlich", "muslimisch", "jüdisch", "buddhistisch", "katholisch",
    "protestantisch", "atheist", "agnostiker", "konfession",
]

# Identity-adjacent or ambiguous content.
IDENTITY_KEYWORDS: List[str] = [
    "geburtsdatum", "geboren", "geburtstag", "nationalität", "staatsangehörigkeit",
    "familienstand", "verheiratet", "geschieden", "geschlecht", "alter",
    "birthday", "nationality",
]

_SENSITIVE_RE = re.compile(r"\b(?:" + "|".join(map(re.escape, SENSITIVE_KEYWORDS)) + r")", re.I)
_RELIGION_RE = re.compile(r"\b(?:" + "|".join(map(re.escape, RELIGION_KEYWORDS)) + r")", re.I)
_IDENTITY_RE = re.compile(r"\b(?:" + "|".join(map(re.escape, IDENTITY_KEYWORDS)) + r")\b", re.I)
_EMAIL_RE = re.compile(r"\b[\w.%+-]+@([\w.-]+\.[a-z]{2,})\b", re.I)

AUTO_SAVE_TYPES: Dict[FactType, bool] = require_all_types({
    FactType.PREFERENCE: True,
    FactType.PROFILE_FACT: True,
    FactType.CONTACT: True,
    FactType.WORK_CONTEXT: True,
    FactType.TASK_HINT: False,
}, "AUTO_SAVE_TYPES")

CONSENT_TYPES: Dict[FactType, bool] = require_all_types({
    FactType.PREFERENCE: False,
    FactType.PROFILE_FACT: False,
    FactType.CONTACT: True,
    FactType.WORK_CONTEXT: False,
    FactType.TASK_HINT: True,
}, "CONSENT_TYPES")

DEFAULT_TTL: Dict[FactType, Optional[str]] = require_all_types({
    FactType.PREFERENCE: None,
    FactType.PROFILE_FACT: None,
    FactType.CONTACT: None,
    FactType.WORK_CONTEXT: None,
    FactType.TASK_HINT: "P30D",
}, "DEFAULT_TTL")

LONG_TEXT_CHARS = 1000


class MemoryPolicy:
    """
    Risk and retention rules for candidate facts.

    Usage:
        >>> policy = MemoryPolicy()
        >>> policy.classify_risk("lieblingsfarbe: blau", FactType.PREFERENCE)
        'low'
        >>> policy.can_auto_save(FactType.TASK_HINT, score=0.8)
        False
    """

    def __init__(
        self,
        very_high_threshold: float = 0.9,
        ttl_overrides: Optional[Dict[str, Optional[str]]] = None,
    ):
        """
        Initialize policy.

        Args:
            very_high_threshold: Score above which even ephemeral types auto-save
            ttl_overrides: Fact type value -> ISO-8601 duration (or None)
        """
        self.very_high_threshold = very_high_threshold
        self.ttl_overrides = dict(ttl_overrides or {})

    def classify_risk(self, text: str, fact_type: FactType) -> RiskLevel:
        """
        Classify how risky it is to keep ``text``.

        Args:
            text: Candidate text (usually "key: value")
            fact_type: Fact type of the candidate

        Returns:
            "high" for never-save and special-category content,
            "medium" for religious or identity-adjacent content, contact facts or very
            long texts, otherwise "low"
        """
        if any(p.search(text) for p in NEVER_SAVE_PATTERNS):
            return "high"

        if _SENSITIVE_RE.search(text):
            return "high"

        if _RELIGION_RE.search(text) or _IDENTITY_RE.search(text):
            return "medium"

        if FactType(fact_type) == FactType.CONTACT:
            return "medium"

        if len(text) > LONG_TEXT_CHARS:
            return "medium"

        return "low"

    def can_auto_save(self, fact_type: FactType, score: Optional[float] = None) -> bool:
        """
        Whether a fact of this type may be stored without asking.

        Ephemeral types qualify only when ``score`` reaches the very-high threshold.
        """
        if AUTO_SAVE_TYPES[FactType(fact_type)]:
            return True
        return score is not None and score >= self.very_high_threshold

    def requires_consent(self, fact_type: FactType) -> bool:
        return CONSENT_TYPES[FactType(fact_type)]

    def default_ttl(self, fact_type: FactType) -> Optional[str]:
        """ISO-8601 lifetime for the type, None for permanent."""
        fact_type = FactType(fact_type)
        if fact_type.value in self.ttl_overrides:
            return self.ttl_overrides[fact_type.value]
        return DEFAULT_TTL[fact_type]

    def sanitize_text(self, text: str) -> str:
        """Mask mail local parts and redact never-save content for logging."""
        sanitized = _EMAIL_RE.sub(r"***@\1", text)
        for pattern in NEVER_SAVE_PATTERNS:
            sanitized = pattern.sub("[REDACTED]", sanitized)
        return sanitized
