"""
Unit tests for WorthinessScorer.

Expected scores follow the fixed weights:
0.25 specificity + 0.25 stability + 0.25 novelty + 0.15 confidence
+ 0.05 interrogative + 0.05 ephemeral.
"""

import pytest

from assistant_memory.memory.schemas import Candidate, FactType
from assistant_memory.memory.scorer import WorthinessScorer


@pytest.fixture
def scorer():
    return WorthinessScorer()


def candidate(key="lieblingsfarbe", value="blau", type=FactType.PREFERENCE, confidence=0.9, person=None):
    return Candidate(person=person, type=type, key=key, value=value, confidence=confidence)


def test_favourite_colour_auto_saves(scorer):
    """Specific, stable and new: 0.25 + 0.225 + 0.25 + 0.135 + 0.05 + 0.05."""
    factors = scorer.factors(candidate())

    assert factors.specificity == pytest.approx(1.0)
    assert factors.stability == pytest.approx(0.9)
    assert factors.novelty == pytest.approx(1.0)
    assert factors.final_score == pytest.approx(0.96)
    assert scorer.get_recommended_action(factors.final_score) == "auto"


def test_repeated_fact_drops_to_ask(scorer, make_item):
    """Storing the same value again has no novelty."""
    existing = [make_item(value="blau")]
    score = scorer.score(candidate(), existing)

    assert score == pytest.approx(0.71)
    assert scorer.get_recommended_action(score) == "ask"


def test_novelty_only_counts_same_person_and_key(scorer, make_item):
    existing = [
        make_item(value="blau", person="anna"),
        make_item(value="blau", key="farbe"),
    ]
    assert scorer.novelty(candidate(), existing) == pytest.approx(1.0)


def test_task_hint_stability(scorer):
    """Unstable words and the task_hint malus push stability down."""
    task = candidate(key="aufgabe", value="heute einkaufen", type=FactType.TASK_HINT, confidence=0.7)
    assert scorer.stability(task) == pytest.approx(0.0)
    assert scorer.ephemeral_penalty(task) == pytest.approx(0.3)


def test_interrogative_penalty_is_word_bounded(scorer):
    assert scorer.interrogative_penalty(candidate(value="was ist das")) == pytest.approx(0.2)
    assert scorer.interrogative_penalty(candidate(value="blau?")) == pytest.approx(0.2)
    # "wo" inside "wohnort" is not a question word
    assert scorer.interrogative_penalty(candidate(key="wohnort", value="washington")) == pytest.approx(1.0)


def test_generic_values_are_unspecific(scorer):
    assert scorer.specificity(candidate(value="gut")) == pytest.approx(0.3)
    assert scorer.specificity(candidate(value="x")) == pytest.approx(0.2)
    assert scorer.specificity(candidate(value="a" * 60)) == pytest.approx(0.7)


def test_ephemeral_patterns(scorer):
    assert scorer.ephemeral_penalty(candidate(value="um 14:30")) == pytest.approx(0.3)
    assert scorer.ephemeral_penalty(candidate(value="am 24.12.2025")) == pytest.approx(0.3)
    assert scorer.ephemeral_penalty(candidate(value="blau")) == pytest.approx(1.0)


def test_score_is_clamped(scorer):
    score = scorer.score(candidate(confidence=1.0))
    assert 0.0 <= score <= 1.0


def test_score_rises_with_confidence(scorer, make_item):
    existing = [make_item(value="rot")]
    scores = [
        scorer.score(candidate(confidence=c / 10), existing)
        for c in range(0, 11)
    ]

    assert scores == sorted(scores)
    assert scores[-1] - scores[0] == pytest.approx(0.15)


@pytest.mark.parametrize("score,action", [
    (0.96, "auto"),
    (0.75, "auto"),
    (0.74, "ask"),
    (0.5, "ask"),
    (0.49, "reject"),
    (0.0, "reject"),
])
def test_recommended_action(scorer, score, action):
    assert scorer.get_recommended_action(score) == action


def test_custom_thresholds():
    scorer = WorthinessScorer(auto_threshold=0.97, ask_threshold=0.2)
    assert scorer.get_recommended_action(0.96) == "ask"
    assert scorer.get_recommended_action(0.25) == "ask"


def test_score_many_sorts_best_first(scorer):
    weak = candidate(key="stimmung", value="gut heute", confidence=0.5)
    strong = candidate()

    ranked = scorer.score_many([weak, strong])
    assert [c.key for c, _, _ in ranked] == ["lieblingsfarbe", "stimmung"]
    assert ranked[0][2] == "auto"


def test_factors_to_dict(scorer):
    data = scorer.factors(candidate()).to_dict()
    assert set(data) == {"specificity", "stability", "novelty", "interrogative", "ephemeral", "final_score"}
