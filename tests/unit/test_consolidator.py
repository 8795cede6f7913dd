"""
Unit tests for MemoryConsolidator (merge / update / conflict / add_new and cleanup).
"""

import pytest

from assistant_memory.memory.consolidator import ConsolidationRules, MemoryConsolidator
from assistant_memory.memory.schemas import EnhancedCandidate, FactType, MemoryItem


@pytest.fixture
def consolidator():
    return MemoryConsolidator()


def stored_item(**overrides) -> MemoryItem:
    data = {"id": "mem_stored", "user_id": "u1", "type": "preference"}
    data.update(overrides)
    return MemoryItem(**data)


def enhanced(key="lieblingsfarbe", value="blau", confidence=0.9, type=FactType.PREFERENCE, **kwargs):
    return EnhancedCandidate(type=type, key=key, value=value, confidence=confidence, **kwargs)


# ============================================================================
# Exact Match Tests
# ============================================================================

def test_empty_pool_adds_new(consolidator):
    result = consolidator.consolidate(enhanced(), [])
    assert result.action == "add_new"
    assert result.original_ids == []


def test_same_value_merges_with_boost(consolidator, make_item):
    """Confirming a stored value raises its confidence by min(0.1, (1 - c) / 2)."""
    stored = make_item(confidence=0.9)
    result = consolidator.consolidate(enhanced(value="Blau"), [stored])

    assert result.action == "merge"
    assert result.target_id == stored.id
    assert result.primary.confidence == pytest.approx(0.95)
    assert result.confidence_change == pytest.approx(0.05)


def test_changed_value_updates_when_more_confident(consolidator, make_item):
    stored = make_item(confidence=0.6, metadata={"volatility": "semi-stable"})
    result = consolidator.consolidate(enhanced(value="rot", confidence=0.9), [stored])

    assert result.action == "update"
    assert result.target_id == stored.id
    assert result.primary.value == "rot"
    assert result.confidence_change == pytest.approx(0.3)


def test_changed_value_conflicts_without_confidence_margin(consolidator, make_item):
    stored = make_item(confidence=0.9)
    result = consolidator.consolidate(enhanced(value="rot", confidence=0.9), [stored])

    assert result.action == "conflict"
    assert result.primary.value == "blau"
    assert result.related[0].value == "rot"
    assert result.conflict_reason == 'Static information conflict: "blau" vs "rot"'


def test_static_items_always_conflict(consolidator, make_item):
    """Static facts are never overwritten automatically."""
    stored = make_item(
        type="profile_fact", key="name", value="anna", confidence=0.5,
        metadata={"volatility": "static"},
    )
    result = consolidator.consolidate(
        enhanced(type=FactType.PROFILE_FACT, key="name", value="anne", confidence=1.0),
        [stored],
    )
    assert result.action == "conflict"


# ============================================================================
# Semantic Tests
# ============================================================================

def test_semantic_merge(consolidator, make_item):
    """'name' and 'vorname' belong to one semantic group."""
    stored = make_item(type="profile_fact", key="name", value="anna", confidence=0.8)
    result = consolidator.consolidate(
        enhanced(type=FactType.PROFILE_FACT, key="vorname", value="anna", confidence=0.8),
        [stored],
    )

    assert result.action == "merge"
    assert result.target_id == stored.id
    assert result.primary.key == "name"


def test_similar_but_unrelated_adds_new_with_related(consolidator, make_item):
    stored = make_item()
    result = consolidator.consolidate(enhanced(key="lieblingsfarben"), [stored])

    assert result.action == "add_new"
    assert result.related_ids == [stored.id]


def test_contradiction_conflicts():
    """Exclusive colours under one semantic group contradict each other."""
    consolidator = MemoryConsolidator(rules=ConsolidationRules(semantic_groups=[["farbe"]]))
    stored = stored_item(key="lieblingsfarbe", value="blau", confidence=0.9)

    result = consolidator.consolidate(enhanced(key="lieblingsfarben", value="rot", confidence=0.9), [stored])

    assert result.action == "conflict"
    assert result.target_id == stored.id
    assert result.conflict_reason == "Contradictory information detected"


def test_contradiction_updates_when_much_more_confident():
    consolidator = MemoryConsolidator(rules=ConsolidationRules(semantic_groups=[["farbe"]]))
    stored = stored_item(key="lieblingsfarbe", value="blau", confidence=0.6)

    result = consolidator.consolidate(enhanced(key="lieblingsfarben", value="rot", confidence=0.9), [stored])

    assert result.action == "update"
    assert result.target_id == stored.id
    assert result.original_ids == [stored.id]


# ============================================================================
# Similarity Helpers
# ============================================================================

def test_similarity_of_identical_candidates(consolidator):
    assert consolidator.similarity(enhanced(), enhanced()) == pytest.approx(1.0)


def test_similarity_ignores_other_person(consolidator):
    own = enhanced()
    anna = enhanced(person="anna")
    assert consolidator.similarity(own, anna) == pytest.approx(0.7)
    assert consolidator.semantically_same(own, anna) is False


@pytest.mark.parametrize("v1,v2,expected", [
    ("blau", "rot", True),
    ("mag kaffee", "mag nicht kaffee", True),
    ("ja", "nein", True),
    ("Blau", "blau", False),
    ("kaffee", "tee", False),
])
def test_values_contradict(consolidator, v1, v2, expected):
    assert consolidator.values_contradict(v1, v2) is expected


# ============================================================================
# Cleanup Tests
# ============================================================================

def test_cleanup_merges_near_duplicates_and_drops_weak(consolidator, make_item):
    strong = make_item(value="blau", confidence=0.9)
    duplicate = make_item(value="hellblau", confidence=0.7)
    weak = make_item(type="contact", key="email", value="x@y.de", confidence=0.2)

    outcome = consolidator.cleanup_memories([strong, duplicate, weak])

    assert [m.id for m in outcome.kept] == [strong.id]
    assert outcome.kept[0].confidence == pytest.approx(0.95)
    assert outcome.removed_ids == [duplicate.id, weak.id]
    assert outcome.merged_groups == [[strong.id, duplicate.id]]


def test_cleanup_keeps_distinct_items(consolidator, make_item):
    items = [
        make_item(),
        make_item(type="profile_fact", key="wohnort", value="berlin"),
    ]
    outcome = consolidator.cleanup_memories(items)

    assert len(outcome.kept) == 2
    assert outcome.removed_ids == []
    assert outcome.merged_groups == []
