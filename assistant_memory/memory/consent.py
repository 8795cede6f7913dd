"""
Consent registry.

Remembers what a user approved or declined to have stored. A declined
key is blacklisted for 24 hours so the assistant does not ask again.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Literal, Optional

import pydantic
from pydantic import BaseModel

from ..errors import StorageError
from ..persist.json_file import read_json, write_json_atomic
from ..telemetry import get_logger
from .schemas import FactType, PendingSuggestion, parse_iso
from .store import parse_duration

logger = get_logger(__name__)

BLACKLIST_HOURS = 24


class ConsentRecord(BaseModel):
    user_id: str
    key: str
    type: FactType
    decision: Literal["approved", "declined"]
    timestamp: str
    expires_at: Optional[str] = None


class ConsentPrompt(BaseModel):
    user_id: str
    key: str
    value: str
    type: FactType
    question: str
    is_blacklisted: bool = False


class ConsentRegistry:
    """
    JSON-file backed consent decisions.

    Pass ``path=None`` to keep decisions in memory only.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        blacklist_hours: int = BLACKLIST_HOURS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.path = Path(path) if path is not None else None
        self.blacklist_hours = blacklist_hours
        self.clock = clock
        self._records: Optional[List[ConsentRecord]] = None

    def _load(self) -> List[ConsentRecord]:
        if self._records is not None:
            return self._records

        records: List[ConsentRecord] = []
        if self.path is not None:
            try:
                data = read_json(self.path) or {}
                records = [ConsentRecord(**r) for r in data.get("records", [])]
            except (StorageError, pydantic.ValidationError, TypeError, AttributeError) as e:
                logger.error("consent_store_load_failed", path=str(self.path), error=str(e))
                records = []
        self._records = records
        return records

    def _save(self) -> None:
        if self.path is None or self._records is None:
            return
        write_json_atomic(self.path, {"records": [r.model_dump(mode="json") for r in self._records]})

    def _active(self, record: ConsentRecord) -> bool:
        return record.expires_at is None or parse_iso(record.expires_at) > self.clock()

    def record(self, user_id: str, key: str, fact_type: FactType, approved: bool) -> ConsentRecord:
        """Store a decision, replacing any earlier one for the same key."""
        records = [r for r in self._load() if not (r.user_id == user_id and r.key == key)]
        now = self.clock()
        record = ConsentRecord(
            user_id=user_id,
            key=key,
            type=fact_type,
            decision="approved" if approved else "declined",
            timestamp=now.isoformat(),
            expires_at=None if approved else (now + timedelta(hours=self.blacklist_hours)).isoformat(),
        )
        records.append(record)
        self._records = records
        self._save()
        logger.info("consent_recorded", user_id=user_id, key=key, decision=record.decision)
        return record

    def is_blacklisted(self, user_id: str, key: str) -> bool:
        return any(
            r.user_id == user_id and r.key == key and r.decision == "declined"
            and r.expires_at is not None and self._active(r)
            for r in self._load()
        )

    def history(self, user_id: str, include_expired: bool = False) -> List[ConsentRecord]:
        records = [r for r in self._load() if r.user_id == user_id]
        if not include_expired:
            records = [r for r in records if self._active(r)]
        return sorted(records, key=lambda r: parse_iso(r.timestamp), reverse=True)

    def cleanup_expired(self) -> int:
        records = self._load()
        kept = [r for r in records if r.decision != "declined" or self._active(r)]
        removed = len(records) - len(kept)
        if removed:
            self._records = kept
            self._save()
        return removed

    def clear_user(self, user_id: str) -> int:
        records = self._load()
        kept = [r for r in records if r.user_id != user_id]
        removed = len(records) - len(kept)
        if removed:
            self._records = kept
            self._save()
        return removed

    def stats(self, user_id: str) -> Dict[str, int]:
        records = self.history(user_id, include_expired=True)
        return {
            "total_records": len(records),
            "approved": sum(1 for r in records if r.decision == "approved"),
            "declined": sum(1 for r in records if r.decision == "declined"),
            "active_blacklists": sum(
                1 for r in records
                if r.decision == "declined" and r.expires_at is not None and self._active(r)
            ),
        }

    def prompt_for(self, suggestion: PendingSuggestion) -> ConsentPrompt:
        """Question to put to the user before storing a suggestion."""
        fact = f'"{suggestion.key}: {suggestion.value}"'
        if suggestion.type == FactType.CONTACT:
            question = f"Soll ich mir deine Kontaktinformation {fact} merken?"
        elif suggestion.type == FactType.TASK_HINT:
            ttl = parse_duration(suggestion.ttl)
            question = f"Soll ich mir für {ttl.days if ttl else 30} Tage merken: {fact}?"
        elif suggestion.type == FactType.PREFERENCE:
            question = f"Soll ich mir deine Präferenz {fact} dauerhaft merken?"
        else:
            question = f"Soll ich mir merken: {fact}?"

        return ConsentPrompt(
            user_id=suggestion.user_id,
            key=suggestion.key,
            value=suggestion.value,
            type=suggestion.type,
            question=question,
            is_blacklisted=self.is_blacklisted(suggestion.user_id, suggestion.key),
        )
