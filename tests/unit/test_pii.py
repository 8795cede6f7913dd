"""
Unit tests for PII detection and masking.
"""

import pytest

from assistant_memory.memory.pii import RegexPIIDetector, luhn_valid, mask_pii


@pytest.fixture
def detector():
    return RegexPIIDetector()


def kinds(result):
    return {m.kind for m in result.matches}


def test_email(detector):
    result = detector.detect("Schreib mir an anna@firma.de")

    assert result.has_pii is True
    assert kinds(result) == {"email"}
    assert result.matches[0].value == "anna@firma.de"


def test_phone(detector):
    assert "phone" in kinds(detector.detect("Ruf mich an: +49 170 1234567"))


def test_card_requires_luhn(detector):
    assert "card" in kinds(detector.detect("Karte 4111 1111 1111 1111"))
    assert "card" not in kinds(detector.detect("Karte 4111 1111 1111 1112"))


def test_ssn(detector):
    assert "ssn" in kinds(detector.detect("SSN 123-45-6789"))


def test_iban(detector):
    assert "iban" in kinds(detector.detect("Konto: DE89370400440532013000"))


@pytest.mark.parametrize("text", [
    "Meine Lieblingsfarbe ist blau",
    "Ich wohne in Berlin",
    "Ich bin 34 Jahre alt",
])
def test_ordinary_text_has_no_pii(detector, text):
    assert detector.detect(text).has_pii is False


@pytest.mark.parametrize("number,valid", [
    ("4111111111111111", True),
    ("4111 1111 1111 1111", True),
    ("4111111111111112", False),
    ("1234", False),
])
def test_luhn_valid(number, valid):
    assert luhn_valid(number) is valid


def test_mask(detector):
    assert detector.mask("Schreib mir an anna@firma.de bitte") == "Schreib mir an [EMAIL] bitte"
    assert detector.mask("Karte 4111 1111 1111 1111") == "Karte [CARD]"
    assert detector.mask("Konto: DE89370400440532013000") == "Konto: [IBAN]"


def test_mask_without_pii_returns_text():
    assert mask_pii("Ich wohne in Berlin") == "Ich wohne in Berlin"


def test_stats(detector):
    stats = detector.stats("anna@firma.de oder ben@firma.de")

    assert stats["email"] == 2
    assert stats["phone"] == 0
    assert set(stats) == {"email", "phone", "iban", "card", "ssn", "passport"}
