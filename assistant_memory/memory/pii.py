"""
PII detection and masking.

The manager refuses to process any utterance in which a detector finds
personal identifiers. ``RegexPIIDetector`` is the default detector; any
object with a compatible ``detect`` method can replace it.
"""

import re
from typing import Callable, Dict, List, Literal, Protocol

from pydantic import BaseModel, Field


PIIKind = Literal["email", "phone", "iban", "card", "ssn", "passport"]


class PIIMatch(BaseModel):
    kind: PIIKind
    value: str
    start: int
    end: int


class PIIDetectionResult(BaseModel):
    has_pii: bool = False
    matches: List[PIIMatch] = Field(default_factory=list)


class PIIDetector(Protocol):
    def detect(self, text: str) -> PIIDetectionResult: ...


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def luhn_valid(number: str) -> bool:
    digits = _digits(number)
    if not 13 <= len(digits) <= 19:
        return False
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def _valid_email(value: str) -> bool:
    local, _, domain = value.partition("@")
    return bool(local) and "." in domain and len(domain) > 3


def _valid_phone(value: str) -> bool:
    return 7 <= len(_digits(value)) <= 15


def _valid_iban(value: str) -> bool:
    cleaned = re.sub(r"\s", "", value).upper()
    return bool(re.fullmatch(r"[A-Z]{2}\d{2}[A-Z0-9]+", cleaned)) and 15 <= len(cleaned) <= 34


def _valid_ssn(value: str) -> bool:
    digits = _digits(value)
    return len(digits) == 9 and len(set(digits)) > 1


def _valid_passport(value: str) -> bool:
    return bool(re.fullmatch(r"[A-Z]{1,2}\d{6,8}", re.sub(r"\s", "", value).upper()))


PII_PATTERNS: Dict[str, re.Pattern] = {
    "email": re.compile(
        r"\b[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?@[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?\.[A-Za-z]{2,}\b"
    ),
    "phone": re.compile(
        r"(?:\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"
        r"|(?:\+\d{1,3}[-.\s]?)?\(?\d{2,4}\)?[-.\s]?\d{3,4}[-.\s]?\d{3,4}\b"
    ),
    "iban": re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}[A-Z0-9]{1,23}\b"),
    "card": re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
    "ssn": re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    "passport": re.compile(r"\b[A-Z]{1,2}\d{6,9}\b"),
}

VALIDATORS: Dict[str, Callable[[str], bool]] = {
    "email": _valid_email,
    "phone": _valid_phone,
    "iban": _valid_iban,
    "card": luhn_valid,
    "ssn": _valid_ssn,
    "passport": _valid_passport,
}

MASKS: Dict[str, str] = {
    "email": "[EMAIL]",
    "phone": "[PHONE]",
    "iban": "[IBAN]",
    "card": "[CARD]",
    "ssn": "[SSN]",
    "passport": "[PASSPORT]",
}


class RegexPIIDetector:
    """
    Pattern-based detector for mail addresses, phone numbers, IBANs,
    Luhn-valid card numbers, SSNs and passport numbers.
    """

    def detect(self, text: str) -> PIIDetectionResult:
        matches: List[PIIMatch] = []
        for kind, pattern in PII_PATTERNS.items():
            for m in pattern.finditer(text):
                if VALIDATORS[kind](m.group(0)):
                    matches.append(PIIMatch(kind=kind, value=m.group(0), start=m.start(), end=m.end()))

        matches.sort(key=lambda m: (m.start, -(m.end - m.start)))
        return PIIDetectionResult(has_pii=bool(matches), matches=matches)

    def mask(self, text: str) -> str:
        """Replace detected PII with placeholders such as ``[EMAIL]``."""
        return mask_pii(text, self)

    def stats(self, text: str) -> Dict[str, int]:
        counts = {kind: 0 for kind in PII_PATTERNS}
        for m in self.detect(text).matches:
            counts[m.kind] += 1
        return counts


def mask_pii(text: str, detector: PIIDetector = None) -> str:
    """Mask PII spans, keeping the first (longest) match where spans overlap."""
    detector = detector or RegexPIIDetector()
    result = detector.detect(text)
    if not result.has_pii:
        return text

    pieces = []
    cursor = 0
    for m in result.matches:
        if m.start < cursor:
            continue
        pieces.append(text[cursor:m.start])
        pieces.append(MASKS.get(m.kind, "[PII]"))
        cursor = m.end
    pieces.append(text[cursor:])
    return "".join(pieces)
