"""
Durable memory store.

All items live in a single JSON document ``{version, last_sweep, memories}``.
Disk access runs in the default executor; read-modify-write cycles inside
one process are serialised by an asyncio lock. Separate processes writing
the same file resolve as last-write-wins.
"""

import asyncio
import re
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pydantic
from pydantic import BaseModel, Field

from ..errors import StorageError
from ..metrics import MetricsLogger
from ..persist.json_file import read_json, write_json_atomic
from ..telemetry import get_logger
from .schemas import MemoryItem, MemoryItemInput, now_iso, parse_iso

logger = get_logger(__name__)

STORE_VERSION = "1.0.0"

_DURATION_RE = re.compile(
    r"^P(?:(\d+)Y)?(?:(\d+)M)?(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$"
)


def parse_duration(duration: Optional[str]) -> Optional[timedelta]:
    """
    Parse an ISO-8601 duration (Y=365 days, M=30 days).

    Returns:
        timedelta, or None when the string is missing, malformed or zero
        (such items never expire)
    """
    if not duration:
        return None
    match = _DURATION_RE.match(duration.strip().upper())
    if not match or not any(match.groups()):
        return None

    years, months, days, hours, minutes, seconds = (int(g or 0) for g in match.groups())
    delta = timedelta(
        days=years * 365 + months * 30 + days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
    )
    return delta if delta.total_seconds() > 0 else None


def is_expired(item: MemoryItem, now: Optional[datetime] = None) -> bool:
    ttl = parse_duration(item.ttl)
    if ttl is None:
        return False
    now = now or datetime.now(timezone.utc)
    try:
        return parse_iso(item.created_at) + ttl < now
    except ValueError:
        return False


class StoreDocument(BaseModel):
    """On-disk layout of the memory store."""

    version: str = STORE_VERSION
    last_sweep: str = Field(default_factory=now_iso)
    memories: List[MemoryItem] = Field(default_factory=list)

    def to_storage(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "last_sweep": self.last_sweep,
            "memories": [m.to_storage_dict() for m in self.memories],
        }

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "StoreDocument":
        memories = []
        for raw in data.get("memories", []):
            try:
                memories.append(MemoryItem.from_storage_dict(raw))
            except (pydantic.ValidationError, TypeError) as e:
                logger.warning("memory_item_skipped", error=str(e))
        return cls(
            version=data.get("version", STORE_VERSION),
            last_sweep=data.get("last_sweep") or now_iso(),
            memories=memories,
        )


def new_memory_id() -> str:
    return f"mem_{uuid.uuid4().hex[:12]}"


class MemoryStore:
    """
    JSON-file backed store of MemoryItems.

    Usage:
        >>> store = MemoryStore(Path("data/memory/memories.json"))
        >>> item = await store.upsert("u1", MemoryItemInput(
        ...     type="preference", key="lieblingsfarbe", value="blau", confidence=0.9))
        >>> await store.list_by_user("u1")
    """

    def __init__(
        self,
        path: Path,
        cache_ttl_seconds: float = 5.0,
        metrics: Optional[MetricsLogger] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize store.

        Args:
            path: JSON document path
            cache_ttl_seconds: How long a loaded document is reused without re-reading disk
            metrics: Event logger for expiry and error events
            clock: Current time provider (for TTL checks)
        """
        self.path = Path(path)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.metrics = metrics or MetricsLogger(None)
        self.clock = clock

        self._cache: Optional[StoreDocument] = None
        self._cache_at = 0.0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def _read_document(self) -> StoreDocument:
        try:
            data = read_json(self.path)
        except StorageError as e:
            logger.error("memory_store_load_failed", path=str(self.path), error=str(e))
            self.metrics.error("store.load", str(e))
            return StoreDocument()

        if not isinstance(data, dict):
            if data is not None:
                logger.error("memory_store_malformed", path=str(self.path))
            return StoreDocument()
        return StoreDocument.from_storage(data)

    async def _load(self) -> StoreDocument:
        if self._cache is not None and time.monotonic() - self._cache_at < self.cache_ttl_seconds:
            return self._cache

        loop = asyncio.get_running_loop()
        doc = await loop.run_in_executor(None, self._read_document)
        self._cache = doc
        self._cache_at = time.monotonic()
        return doc

    async def _load_for_write(self) -> StoreDocument:
        """Private copy of the document; the cache only sees it once saved."""
        return (await self._load()).model_copy(deep=True)

    async def _save(self, doc: StoreDocument) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, write_json_atomic, self.path, doc.to_storage())
        except StorageError as e:
            self.invalidate_cache()
            logger.error("memory_store_save_failed", path=str(self.path), error=str(e))
            self.metrics.error("store.save", str(e))
            raise
        self._cache = doc
        self._cache_at = time.monotonic()

    def invalidate_cache(self) -> None:
        self._cache = None
        self._cache_at = 0.0

    def _active(self, doc: StoreDocument) -> List[MemoryItem]:
        now = self.clock()
        return [m for m in doc.memories if not is_expired(m, now)]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_by_user(self, user_id: str) -> List[MemoryItem]:
        """Active items of a user, most recently updated first."""
        doc = await self._load()
        items = [m.model_copy(deep=True) for m in self._active(doc) if m.user_id == user_id]
        items.sort(key=lambda m: parse_iso(m.updated_at), reverse=True)
        return items

    async def list_all_active(self) -> List[MemoryItem]:
        doc = await self._load()
        return [m.model_copy(deep=True) for m in self._active(doc)]

    async def list_user_ids(self) -> List[str]:
        doc = await self._load()
        return sorted({m.user_id for m in doc.memories})

    async def get(self, user_id: str, item_id: str) -> Optional[MemoryItem]:
        for item in await self.list_by_user(user_id):
            if item.id == item_id:
                return item
        return None

    async def search(self, user_id: str, text: str) -> List[MemoryItem]:
        """Case-insensitive substring search over key and value."""
        needle = text.lower().strip()
        return [
            m for m in await self.list_by_user(user_id)
            if needle in m.key.lower() or needle in m.value.lower()
        ]

    async def get_stats(self, user_id: str) -> Dict[str, Any]:
        items = await self.list_by_user(user_id)
        by_type: Dict[str, int] = {}
        for m in items:
            by_type[m.type.value] = by_type.get(m.type.value, 0) + 1

        return {
            "total": len(items),
            "by_type": by_type,
            "with_ttl": sum(1 for m in items if parse_duration(m.ttl) is not None),
            "avg_confidence": sum(m.confidence for m in items) / len(items) if items else 0.0,
            "oldest": min((m.created_at for m in items), default=None),
            "newest": max((m.updated_at for m in items), default=None),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def upsert(self, user_id: str, item: MemoryItemInput) -> MemoryItem:
        """
        Insert a new item or update the one sharing its dedup key.

        An existing item is only rewritten when value or confidence changed;
        its id and created_at are kept and updated_at is bumped.

        Raises:
            StorageError: if the document could not be written
        """
        async with self._lock:
            doc = await self._load_for_write()
            now = self.clock()
            key = item.dedup_key(user_id)

            # An expired twin is replaced, not revived.
            doc.memories = [
                m for m in doc.memories
                if not (m.dedup_key() == key and is_expired(m, now))
            ]
            existing = next((m for m in doc.memories if m.dedup_key() == key), None)

            if existing is not None:
                if existing.value == item.value and existing.confidence == item.confidence:
                    return existing.model_copy(deep=True)

                existing.value = item.value
                existing.confidence = item.confidence
                existing.ttl = item.ttl
                existing.metadata = {**existing.metadata, **item.metadata}
                existing.updated_at = now.isoformat()
                await self._save(doc)
                logger.info("memory_updated", user_id=user_id, key=item.key, memory_id=existing.id)
                return existing.model_copy(deep=True)

            created = MemoryItem(
                id=new_memory_id(),
                user_id=user_id,
                created_at=now.isoformat(),
                updated_at=now.isoformat(),
                **item.model_dump(),
            )
            doc.memories.append(created)
            await self._save(doc)
            logger.info("memory_created", user_id=user_id, key=item.key, memory_id=created.id)
            return created.model_copy(deep=True)

    async def update(self, user_id: str, item_id: str, changes: Dict[str, Any]) -> Optional[MemoryItem]:
        """
        Patch fields of one item (confidence, value, metadata, ttl).

        Returns:
            Updated item, or None if the user owns no such item
        """
        allowed = {"value", "confidence", "metadata", "ttl"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        async with self._lock:
            doc = await self._load_for_write()
            target = next((m for m in doc.memories if m.id == item_id and m.user_id == user_id), None)
            if target is None:
                return None
            for field, value in changes.items():
                setattr(target, field, value)
            target.confidence = max(0.0, min(1.0, target.confidence))
            target.updated_at = self.clock().isoformat()
            await self._save(doc)
            return target.model_copy(deep=True)

    async def remove(self, user_id: str, item_id: str) -> bool:
        """Delete one item. Returns False if the user owns no such item."""
        async with self._lock:
            doc = await self._load_for_write()
            kept = [m for m in doc.memories if not (m.id == item_id and m.user_id == user_id)]
            if len(kept) == len(doc.memories):
                return False
            doc.memories = kept
            await self._save(doc)
            return True

    async def replace_many(self, user_id: str, remove_ids: List[str], item: MemoryItemInput) -> MemoryItem:
        """Insert ``item`` and delete ``remove_ids`` in one document write."""
        async with self._lock:
            doc = await self._load_for_write()
            doomed = set(remove_ids)
            doc.memories = [m for m in doc.memories if not (m.user_id == user_id and m.id in doomed)]
            now = self.clock().isoformat()
            created = MemoryItem(id=new_memory_id(), user_id=user_id, created_at=now, updated_at=now, **item.model_dump())
            doc.memories.append(created)
            await self._save(doc)
            return created.model_copy(deep=True)

    async def clear_user(self, user_id: str) -> int:
        async with self._lock:
            doc = await self._load_for_write()
            kept = [m for m in doc.memories if m.user_id != user_id]
            removed = len(doc.memories) - len(kept)
            if removed:
                doc.memories = kept
                await self._save(doc)
            return removed

    async def expire_sweep(self) -> int:
        """
        Delete every item whose ttl has elapsed.

        Returns:
            Number of items removed
        """
        async with self._lock:
            doc = await self._load_for_write()
            now = self.clock()
            expired = [m for m in doc.memories if is_expired(m, now)]
            if not expired:
                return 0

            doc.memories = [m for m in doc.memories if not is_expired(m, now)]
            doc.last_sweep = now.isoformat()
            await self._save(doc)

        for m in expired:
            self.metrics.expire(m.user_id, m.key)
        logger.info("memory_expire_sweep", removed=len(expired))
        return len(expired)
