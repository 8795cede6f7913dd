"""
Text similarity and normalisation helpers tuned for German utterances.
"""

import re
from typing import List, Set


_UMLAUTS = [("ä", "ae"), ("ö", "oe"), ("ü", "ue"), ("ß", "ss")]

_FILLER_PATTERNS = [
    (re.compile(r"\b(ein|eine|einer)\b"), ""),
    (re.compile(r"\b(der|die|das)\b"), ""),
    (re.compile(r"\b(und|oder|aber)\b"), ""),
    (re.compile(r"\b(sehr|ganz|ziemlich)\b"), ""),
    (re.compile(r"\bgerne?\b"), ""),
    (re.compile(r"\bimmer\b"), "always"),
    (re.compile(r"\bnie\b"), "never"),
]

STOPWORDS: Set[str] = {
    "der", "die", "das", "und", "oder", "aber", "ich", "du", "er", "sie", "es",
    "wir", "ihr", "bin", "bist", "ist", "sind", "war", "waren", "hat", "haben",
    "mit", "von", "zu", "auf", "fuer", "durch", "ueber", "unter", "vor", "nach",
    "bei", "seit", "bis", "ohne", "gegen", "trotz", "waehrend", "wegen",
}


def trigrams(text: str) -> Set[str]:
    """
    Character trigrams of lower-cased text padded with two spaces per side.

    Examples:
        >>> sorted(trigrams("ab"))
        ['  a', ' ab', 'ab ', 'b  ']
    """
    normalized = " ".join(text.lower().split())
    padded = f"  {normalized}  "
    return {padded[i:i + 3] for i in range(len(padded) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the trigram sets of ``a`` and ``b``."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    t1 = trigrams(a)
    t2 = trigrams(b)
    if not t1 and not t2:
        return 1.0
    if not t1 or not t2:
        return 0.0

    return len(t1 & t2) / len(t1 | t2)


def normalize_text(text: str) -> str:
    """
    Normalise German text for comparison.

    Lower-cases, folds umlauts, strips punctuation and drops filler words
    (articles, conjunctions, intensifiers).
    """
    normalized = text.lower().strip()
    for src, dst in _UMLAUTS:
        normalized = normalized.replace(src, dst)

    normalized = re.sub(r"[^\w\s]", "", normalized)
    normalized = re.sub(r"\s+", " ", normalized).strip()

    for pattern, replacement in _FILLER_PATTERNS:
        normalized = pattern.sub(replacement, normalized)

    return re.sub(r"\s+", " ", normalized).strip()


def extract_keywords(text: str) -> List[str]:
    """Content words of ``text`` after normalisation and stopword removal."""
    words = [w for w in normalize_text(text).split(" ") if len(w) > 2]
    return [w for w in words if w not in STOPWORDS]


def levenshtein(a: str, b: str) -> int:
    """Edit distance between ``a`` and ``b``."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def semantic_similarity(a: str, b: str) -> float:
    """
    Blend of trigram, keyword-overlap and edit-distance similarity.

    Returns:
        0.5 * trigram + 0.3 * keyword Jaccard + 0.2 * (1 - normalised Levenshtein)
    """
    n1 = normalize_text(a)
    n2 = normalize_text(b)
    if n1 == n2:
        return 1.0

    trigram_sim = trigram_similarity(n1, n2)

    k1 = set(extract_keywords(a))
    k2 = set(extract_keywords(b))
    union = k1 | k2
    keyword_sim = len(k1 & k2) / len(union) if union else 0.0

    max_len = max(len(n1), len(n2))
    lev_sim = 1 - levenshtein(n1, n2) / max_len if max_len else 0.0

    return trigram_sim * 0.5 + keyword_sim * 0.3 + lev_sim * 0.2
