"""
Memory event records.

Every operation of the subsystem emits one of these. They are serialized
as one JSON object per line; ``ts`` is epoch milliseconds.
"""

import time
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def now_ms() -> int:
    return int(time.time() * 1000)


class _Event(BaseModel):
    user_id: Optional[str] = None
    ts: int = Field(default_factory=now_ms)


class SaveEvent(_Event):
    type: Literal["save"] = "save"
    key: str
    kind: Literal["auto", "user"]
    score: float
    risk: Literal["low", "medium", "high"] = "low"


class AskEvent(_Event):
    type: Literal["ask"] = "ask"
    key: str
    score: float


class RejectEvent(_Event):
    type: Literal["reject"] = "reject"
    key: str
    reason: str
    score: Optional[float] = None


class RetrieveEvent(_Event):
    type: Literal["retrieve"] = "retrieve"
    query_hash: str
    returned: int
    latency_ms: float


class ExpireEvent(_Event):
    type: Literal["expire"] = "expire"
    key: str


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    where: str
    message: str


class ConsolidateEvent(_Event):
    type: Literal["consolidate"] = "consolidate"
    action: Literal["merge", "update", "conflict"]
    original_ids: List[str] = Field(default_factory=list)


class SummarizeEvent(_Event):
    type: Literal["summarize"] = "summarize"
    cluster_size: int
    archived: int


MemoryEvent = Annotated[
    Union[
        SaveEvent,
        AskEvent,
        RejectEvent,
        RetrieveEvent,
        ExpireEvent,
        ErrorEvent,
        ConsolidateEvent,
        SummarizeEvent,
    ],
    Field(discriminator="type"),
]

event_adapter = TypeAdapter(MemoryEvent)


def parse_event(line: str) -> MemoryEvent:
    """Parse one NDJSON line into its event model."""
    return event_adapter.validate_json(line)
