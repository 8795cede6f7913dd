"""
Unit tests for MemoryPolicy (risk classification and retention rules).
"""

import pytest

from assistant_memory.memory.policy import (
    AUTO_SAVE_TYPES,
    CONSENT_TYPES,
    DEFAULT_TTL,
    MemoryPolicy,
)
from assistant_memory.memory.schemas import FactType, require_all_types


@pytest.fixture
def policy():
    return MemoryPolicy()


@pytest.mark.parametrize("text", [
    "Mein Passwort ist geheim123",
    "passwort: hunter2",
    "Ich habe Diabetes",
    "Meine Therapie beginnt nächste Woche",
    "Ich wohne in der Musterstraße 12",
    "Ich wähle immer die SPD",
    "Schreib mir an anna.schmidt@gmail.com",
])
def test_high_risk_content(policy, text):
    assert policy.classify_risk(text, FactType.PREFERENCE) == "high"


@pytest.mark.parametrize("text", [
    "Mein Geburtstag ist im Mai",
    "Ich bin verheiratet",
    "Ich bin katholisch",
    "Ich glaube an Gott",
])
def test_identity_content_is_medium(policy, text):
    assert policy.classify_risk(text, FactType.PROFILE_FACT) == "medium"


def test_contact_type_is_medium(policy):
    """Contact facts are never low risk, whatever the text."""
    assert policy.classify_risk("Meine Mail ist anna@firma.de", FactType.CONTACT) == "medium"


def test_long_text_is_medium(policy):
    assert policy.classify_risk("blau " * 250, FactType.PREFERENCE) == "medium"


def test_plain_preference_is_low(policy):
    assert policy.classify_risk("Meine Lieblingsfarbe ist blau", FactType.PREFERENCE) == "low"
    assert policy.classify_risk("Ich wohne in Berlin", FactType.PROFILE_FACT) == "low"


def test_hedge_is_not_religion(policy):
    assert policy.classify_risk("Ich glaube, meine Lieblingsfarbe ist blau", FactType.PREFERENCE) == "low"


def test_task_hints_need_very_high_score(policy):
    """Ephemeral types only auto-save at or above the very-high threshold."""
    assert policy.can_auto_save(FactType.PREFERENCE) is True
    assert policy.can_auto_save(FactType.TASK_HINT) is False
    assert policy.can_auto_save(FactType.TASK_HINT, score=0.85) is False
    assert policy.can_auto_save(FactType.TASK_HINT, score=0.9) is True


def test_requires_consent(policy):
    assert policy.requires_consent(FactType.CONTACT) is True
    assert policy.requires_consent(FactType.TASK_HINT) is True
    assert policy.requires_consent(FactType.PREFERENCE) is False


def test_default_ttl(policy):
    assert policy.default_ttl(FactType.TASK_HINT) == "P30D"
    assert policy.default_ttl(FactType.PREFERENCE) is None
    assert policy.default_ttl("profile_fact") is None


def test_ttl_overrides():
    policy = MemoryPolicy(ttl_overrides={"task_hint": "P7D", "work_context": "P1Y"})

    assert policy.default_ttl(FactType.TASK_HINT) == "P7D"
    assert policy.default_ttl(FactType.WORK_CONTEXT) == "P1Y"
    assert policy.default_ttl(FactType.CONTACT) is None


def test_tables_cover_every_type():
    for table in (AUTO_SAVE_TYPES, CONSENT_TYPES, DEFAULT_TTL):
        assert set(table) == set(FactType)


def test_incomplete_table_fails():
    with pytest.raises(RuntimeError, match="task_hint"):
        require_all_types({t: True for t in FactType if t != FactType.TASK_HINT}, "TEST_TABLE")


def test_sanitize_text(policy):
    """Mail local parts are masked and credentials redacted."""
    assert policy.sanitize_text("Mail an anna@example.com") == "Mail an ***@example.com"
    assert "hunter2" not in policy.sanitize_text("passwort: hunter2")
