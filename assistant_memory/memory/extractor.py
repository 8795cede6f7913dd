"""
Rule-based candidate extraction for German utterances.

Any object with an async ``extract(utterance, person_context)`` method can
stand in for ``PatternExtractor`` (for example a language-model backed
extractor); the manager only relies on that contract.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Protocol

from .schemas import Candidate, FactType


class CandidateExtractor(Protocol):
    async def extract(self, utterance: str, person_context: Optional[str] = None) -> List[Candidate]: ...


@dataclass(frozen=True)
class ExtractionRule:
    pattern: re.Pattern
    type: FactType
    key: str
    confidence: float
    person_group: Optional[int] = None
    value_group: int = 1


_WORD = r"[a-zA-ZäöüÄÖÜß]"

RULES: List[ExtractionRule] = [
    ExtractionRule(
        re.compile(rf"(?:ich heiße|mein name ist)\s+({_WORD}+)", re.I),
        FactType.PROFILE_FACT, "name", 0.8,
    ),
    ExtractionRule(
        re.compile(rf"(?:meine\s+)?lieblingsfarbe\s+ist\s+({_WORD}+)", re.I),
        FactType.PREFERENCE, "lieblingsfarbe", 0.9,
    ),
    ExtractionRule(
        re.compile(rf"\bich\s+mag\s+({_WORD}+(?:\s+{_WORD}+)*?)(?:\s+sehr)?\s*(?:gerne|gern|\.|!|$)", re.I),
        FactType.PREFERENCE, "mag", 0.7,
    ),
    ExtractionRule(
        re.compile(rf"\bich\s+wohne\s+in\s+({_WORD}+(?:\s+{_WORD}+)*?)(?:\.|,|!|$)", re.I),
        FactType.PROFILE_FACT, "wohnort", 0.9,
    ),
    ExtractionRule(
        re.compile(r"\bich\s+bin\s+(\d+)\s+(?:jahre\s+)?alt", re.I),
        FactType.PROFILE_FACT, "alter", 0.9,
    ),
    ExtractionRule(
        re.compile(r"(?:meine\s+)?(?:e-?mail(?:\s*adresse)?)\s+ist\s+([\w.%+-]+@[\w.-]+\.[a-zA-Z]{2,})", re.I),
        FactType.CONTACT, "email", 0.9,
    ),
    ExtractionRule(
        re.compile(r"(?:meine\s+)?(?:telefonnummer|handynummer|nummer)\s+ist\s+([+\d][\d\s()/-]{5,}\d)", re.I),
        FactType.CONTACT, "telefon", 0.8,
    ),
    ExtractionRule(
        re.compile(rf"(?:ich\s+arbeite\s+als|mein\s+beruf\s+ist|ich\s+bin\s+von\s+beruf)\s+({_WORD}+(?:[\s-]+{_WORD}+)*?)(?:\.|,|!|$)", re.I),
        FactType.PROFILE_FACT, "beruf", 0.8,
    ),
    ExtractionRule(
        re.compile(rf"\bich\s+arbeite\s+(?:an|im|bei)\s+({_WORD}[\w\s-]*?)(?:\.|,|!|$)", re.I),
        FactType.WORK_CONTEXT, "projekt", 0.75,
    ),
    ExtractionRule(
        re.compile(r"(?:erinnere\s+mich\s+(?:daran,?\s*)?|vergiss\s+nicht,?\s*)(.+?)(?:\.|!|$)", re.I),
        FactType.TASK_HINT, "aufgabe", 0.7,
    ),
    ExtractionRule(
        re.compile(rf"\b({_WORD}+)\s+mag\s+({_WORD}+(?:\s+{_WORD}+)*?)(?:\s+sehr)?\s*(?:gerne|gern|\.|!|$)", re.I),
        FactType.PREFERENCE, "mag", 0.7, person_group=1, value_group=2,
    ),
]

PRONOUNS = {"ich", "du", "wir", "ihr", "man", "es", "er", "sie", "jeder", "niemand"}
THIRD_PERSON = {"er", "sie"}
QUESTION_START = re.compile(r"^\s*(?:was|wie|wo|wann|warum|wer|welche[rs]?|wieso|weshalb)\b", re.I)

_FOLD = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})


def slug(text: str) -> str:
    """Lower-case ASCII slug used for keys and person names."""
    s = text.lower().strip().translate(_FOLD)
    s = re.sub(r"[^a-z0-9]+", "_", s)
    return s.strip("_")


def normalize_value(value: str, fact_type: FactType) -> str:
    value = " ".join(value.split())
    if fact_type in (FactType.CONTACT, FactType.TASK_HINT):
        return value
    return value.lower()


class PatternExtractor:
    """
    Extract candidates with a fixed set of German sentence patterns.

    Questions never yield candidates.

    Usage:
        >>> extractor = PatternExtractor()
        >>> await extractor.extract("Meine Lieblingsfarbe ist blau")
        [Candidate(person=None, type=<FactType.PREFERENCE: 'preference'>, key='lieblingsfarbe', value='blau', confidence=0.9)]
    """

    def __init__(self, rules: Optional[List[ExtractionRule]] = None):
        self.rules = rules or RULES

    async def extract(self, utterance: str, person_context: Optional[str] = None) -> List[Candidate]:
        """
        Args:
            utterance: Raw user text
            person_context: Person currently talked about; third-person
                statements ("sie mag ...") are attributed to them

        Returns:
            Candidates in rule order, at most one per (person, key)
        """
        text = utterance.strip()
        if not text or text.endswith("?") or QUESTION_START.match(text):
            return []

        candidates: List[Candidate] = []
        seen = set()
        for rule in self.rules:
            for match in rule.pattern.finditer(text):
                candidate = self._candidate(rule, match, person_context)
                if candidate is None:
                    continue
                if (candidate.person, candidate.key) in seen:
                    continue
                seen.add((candidate.person, candidate.key))
                candidates.append(candidate)
        return candidates

    @staticmethod
    def _candidate(
        rule: ExtractionRule,
        match: re.Match,
        person_context: Optional[str],
    ) -> Optional[Candidate]:
        value = match.group(rule.value_group).strip()
        if not value:
            return None

        person = None
        if rule.person_group is not None:
            subject = match.group(rule.person_group).lower()
            if subject in THIRD_PERSON and person_context:
                person = slug(person_context)
            elif subject in PRONOUNS:
                return None
            else:
                person = slug(subject)

        return Candidate(
            person=person,
            type=rule.type,
            key=slug(rule.key),
            value=normalize_value(value, rule.type),
            confidence=rule.confidence,
        )
