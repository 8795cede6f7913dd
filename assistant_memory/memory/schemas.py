"""
Memory system data models.

Defines the persisted MemoryItem, the ephemeral extraction candidates,
pending suggestions and the results handed back by the manager.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field


class FactType(str, Enum):
    """Closed set of fact kinds the subsystem knows how to handle."""

    PREFERENCE = "preference"
    PROFILE_FACT = "profile_fact"
    CONTACT = "contact"
    TASK_HINT = "task_hint"
    WORK_CONTEXT = "work_context"


# Type aliases
RiskLevel = Literal["low", "medium", "high"]
RecommendedAction = Literal["auto", "ask", "reject"]
Category = Literal["personal", "professional", "social", "behavioral", "contextual"]
Volatility = Literal["static", "semi-stable", "dynamic"]
Priority = Literal["low", "medium", "high"]
ConsolidationAction = Literal["merge", "update", "conflict", "add_new"]
FeedbackAction = Literal["accepted", "rejected"]
PredictedAction = Literal["accept", "reject", "uncertain"]

CATEGORIES: List[str] = ["personal", "professional", "social", "behavioral", "contextual"]


def require_all_types(table: Mapping[FactType, Any], name: str) -> Mapping[FactType, Any]:
    """Fail at import time if a per-type table misses a FactType."""
    missing = [t.value for t in FactType if t not in table]
    if missing:
        raise RuntimeError(f"{name} has no entry for: {', '.join(missing)}")
    return table


def now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class Candidate(BaseModel):
    """A fact proposed by the extractor. Lives for one evaluation call."""

    person: Optional[str] = Field(None, description="Third party the fact is about, None for the user")
    type: FactType = Field(..., description="Fact kind")
    key: str = Field(..., min_length=1, description="Normalised attribute name, e.g. 'lieblingsfarbe'")
    value: str = Field(..., description="Attribute value")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Extractor confidence")

    class Config:
        json_schema_extra = {
            "example": {
                "person": None,
                "type": "preference",
                "key": "lieblingsfarbe",
                "value": "blau",
                "confidence": 0.9,
            }
        }

    @property
    def text(self) -> str:
        return f"{self.key} {self.value}"


class EnhancedCandidate(Candidate):
    """Candidate enriched by the categorizer."""

    category: Category = "personal"
    importance: float = Field(0.5, ge=0.0, le=1.0)
    volatility: Volatility = "semi-stable"
    priority: Priority = "medium"
    tags: List[str] = Field(default_factory=list)
    relationships: List[str] = Field(default_factory=list)

    def enrichment(self) -> Dict[str, Any]:
        """Metadata block persisted alongside a stored item."""
        return {
            "category": self.category,
            "importance": self.importance,
            "volatility": self.volatility,
            "priority": self.priority,
            "tags": list(self.tags),
            "relationships": list(self.relationships),
        }


class MemoryItemInput(BaseModel):
    """Fields a caller supplies when saving. Identity and timestamps are assigned by the store."""

    person: Optional[str] = None
    type: FactType
    key: str = Field(..., min_length=1)
    value: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    ttl: Optional[str] = Field(None, description="ISO-8601 duration, None means permanent")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def dedup_key(self, user_id: str) -> tuple:
        return (user_id, self.type, self.key, self.person)


class MemoryItem(MemoryItemInput):
    """A durable fact about a user or a third party."""

    id: str = Field(..., description="Unique identifier")
    user_id: str = Field(..., description="Owner")
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    def dedup_key(self, user_id: Optional[str] = None) -> tuple:
        return (user_id or self.user_id, self.type, self.key, self.person)

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dict for the store document."""
        return self.model_dump(mode="json")

    @classmethod
    def from_storage_dict(cls, data: Dict[str, Any]) -> "MemoryItem":
        """Load from store document dict."""
        return cls(**data)

    def to_candidate(self) -> Candidate:
        return Candidate(
            person=self.person,
            type=self.type,
            key=self.key,
            value=self.value,
            confidence=self.confidence,
        )


class PendingSuggestion(BaseModel):
    """
    A fact the user should confirm before it is stored.

    Not a MemoryItem: it has no store identity until ``save_suggestion``
    persists it.
    """

    suggestion_id: str
    user_id: str
    person: Optional[str] = None
    type: FactType
    key: str
    value: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    score: float = Field(..., ge=0.0, le=1.0)
    ttl: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=now_iso)

    def to_input(self) -> MemoryItemInput:
        return MemoryItemInput(
            person=self.person,
            type=self.type,
            key=self.key,
            value=self.value,
            confidence=self.confidence,
            ttl=self.ttl,
            metadata=dict(self.metadata),
        )


class ConsolidationResult(BaseModel):
    """Outcome of reconciling one candidate with the existing pool."""

    action: ConsolidationAction
    primary: EnhancedCandidate
    target_id: Optional[str] = Field(None, description="Stored item the action applies to")
    related: List[EnhancedCandidate] = Field(default_factory=list)
    related_ids: List[str] = Field(default_factory=list, description="Stored items involved besides the target")
    conflict_reason: Optional[str] = None
    confidence_change: Optional[float] = None

    @property
    def original_ids(self) -> List[str]:
        ids = [self.target_id] if self.target_id else []
        return ids + [i for i in self.related_ids if i not in ids]


class EvaluationResult(BaseModel):
    """What happened to each candidate of one utterance."""

    saved: List[MemoryItem] = Field(default_factory=list)
    suggestions: List[PendingSuggestion] = Field(default_factory=list)
    rejected: List[str] = Field(default_factory=list)
    conflicts: List[ConsolidationResult] = Field(default_factory=list)
    consolidations: List[ConsolidationResult] = Field(default_factory=list)


class RankedResult(BaseModel):
    """A stored item with its retrieval scores."""

    memory: MemoryItem
    score: float
    similarity: float
    recency: float


class PromptContext(BaseModel):
    """Rendered memory block plus the items it was built from."""

    context: str = ""
    relevant: List[RankedResult] = Field(default_factory=list)


class UserPreferenceProfile(BaseModel):
    """Per-user learned acceptance preferences."""

    user_id: str
    preferred_types: Dict[str, float] = Field(default_factory=dict)
    category_preferences: Dict[str, float] = Field(default_factory=dict)
    accepted_patterns: List[str] = Field(default_factory=list)
    rejected_patterns: List[str] = Field(default_factory=list)
    confidence_threshold: float = Field(0.75, ge=0.4, le=0.95)
    last_updated: str = Field(default_factory=now_iso)


class FeedbackEvent(BaseModel):
    """User reaction to a proposed memory."""

    user_id: str
    action: FeedbackAction
    candidate: EnhancedCandidate
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=now_iso)


class PredictionResult(BaseModel):
    """Predicted user reaction to a candidate."""

    action: PredictedAction
    confidence: float
    reasoning: str
