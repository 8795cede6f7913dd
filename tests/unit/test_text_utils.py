"""
Unit tests for text normalisation and similarity helpers.
"""

import pytest

from assistant_memory.memory.text_utils import (
    extract_keywords,
    levenshtein,
    normalize_text,
    semantic_similarity,
    trigram_similarity,
    trigrams,
)


def test_normalize_text():
    assert normalize_text("Die Straße ist sehr schön!") == "strasse ist schoen"
    assert normalize_text("Ich gehe immer") == "ich gehe always"


def test_trigrams():
    assert trigrams("ab") == {"  a", " ab", "ab ", "b  "}


@pytest.mark.parametrize("a,b,expected", [
    ("blau", "blau", 1.0),
    ("", "blau", 0.0),
    ("abc", "abd", 0.25),
])
def test_trigram_similarity(a, b, expected):
    assert trigram_similarity(a, b) == pytest.approx(expected)


@pytest.mark.parametrize("a,b,expected", [
    ("kitten", "sitting", 3),
    ("", "abc", 3),
    ("abc", "abc", 0),
])
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected


def test_extract_keywords():
    assert extract_keywords("Ich wohne in Berlin") == ["wohne", "berlin"]


def test_semantic_similarity():
    assert semantic_similarity("Ich mag Pizza", "ich mag pizza!") == 1.0

    close = semantic_similarity("Ich wohne in Berlin", "Ich wohne in Bremen")
    far = semantic_similarity("Ich wohne in Berlin", "Lieblingsfarbe blau")
    assert 0.0 < far < close < 1.0
