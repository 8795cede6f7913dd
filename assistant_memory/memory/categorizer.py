"""
Candidate enrichment: category, importance, volatility, priority, tags
and relationships to already stored facts.
"""

from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from .schemas import (
    Candidate,
    Category,
    EnhancedCandidate,
    FactType,
    MemoryItem,
    Priority,
    Volatility,
    require_all_types,
)


class ConversationContext(BaseModel):
    """Optional situational hints supplied with an utterance."""

    conversation_topic: Optional[str] = None
    time_of_day: Optional[str] = None
    day_of_week: Optional[str] = None
    season: Optional[str] = None
    user_mood: Optional[str] = None


TYPE_IMPORTANCE: Dict[FactType, float] = require_all_types({
    FactType.PROFILE_FACT: 0.8,
    FactType.PREFERENCE: 0.7,
    FactType.CONTACT: 0.9,
    FactType.TASK_HINT: 0.7,
    FactType.WORK_CONTEXT: 0.85,
}, "TYPE_IMPORTANCE")

PROFESSIONAL_WORDS = ["beruf", "job", "arbeit", "firma", "team", "rolle", "projekt", "meeting"]
SOCIAL_WORDS = ["freund", "familie", "kollege", "partner", "kontakt", "beziehung"]
BEHAVIORAL_WORDS = ["gewohnheit", "routine", "zeit", "immer", "nie", "täglich", "wöchentlich"]

STATIC_KEYS = ["name", "geboren", "nationalität", "geschlecht"]
DYNAMIC_WORDS = ["stimmung", "heute", "gerade", "momentan", "aktuell"]

RELATED_KEY_GROUPS = [
    ["name", "vorname", "nachname", "spitzname"],
    ["beruf", "job", "arbeit", "rolle", "position"],
    ["wohnort", "stadt", "adresse", "zuhause"],
    ["hobby", "interesse", "leidenschaft", "aktivität"],
    ["essen", "trinken", "lieblingsgericht", "getränk"],
    ["sprache", "sprechen", "können", "verstehen"],
]

CONTENT_TAGS = {
    "farbe": ["rot", "blau", "grün", "gelb", "schwarz", "weiß", "grau", "braun", "orange", "lila", "rosa"],
    "tech": ["javascript", "typescript", "python", "java", "react", "node", "angular", "vue"],
    "zeitpunkt": ["morgens", "mittags", "abends", "nachts", "früh", "spät"],
}


def _mentions(words: Sequence[str], *texts: str) -> bool:
    return any(w in t for w in words for t in texts)


class MemoryCategorizer:
    """Turns plain candidates into EnhancedCandidates."""

    def enhance(
        self,
        candidate: Candidate,
        context: Optional[ConversationContext] = None,
        existing: Sequence[MemoryItem] = (),
    ) -> EnhancedCandidate:
        """
        Enrich a candidate.

        Args:
            candidate: Extracted candidate
            context: Conversation hints (topic, time of day, mood)
            existing: The user's stored items, for relationship discovery

        Returns:
            EnhancedCandidate with all enrichment fields populated
        """
        category = self.category(candidate)
        importance = self.importance(candidate, category, context)
        return EnhancedCandidate(
            **candidate.model_dump(),
            category=category,
            importance=importance,
            volatility=self.volatility(candidate),
            priority=self.priority(importance),
            tags=self.tags(candidate, category, context),
            relationships=self.relationships(candidate, existing),
        )

    def category(self, candidate: Candidate) -> Category:
        key = candidate.key.lower()
        value = candidate.value.lower()

        if candidate.type == FactType.WORK_CONTEXT or _mentions(PROFESSIONAL_WORDS, key, value):
            return "professional"
        if candidate.person or _mentions(SOCIAL_WORDS, key, value):
            return "social"
        if _mentions(BEHAVIORAL_WORDS, key, value):
            return "behavioral"
        if candidate.type == FactType.TASK_HINT or "termin" in key or "erinnerung" in key:
            return "contextual"
        return "personal"

    def importance(
        self,
        candidate: Candidate,
        category: Category,
        context: Optional[ConversationContext] = None,
    ) -> float:
        importance = 0.5
        importance += TYPE_IMPORTANCE[FactType(candidate.type)] * 0.3
        importance += candidate.confidence * 0.2

        topic = context.conversation_topic if context else None
        if topic and topic.lower() in candidate.value.lower():
            importance += 0.1
        if category == "professional":
            importance += 0.1

        return min(1.0, importance)

    def volatility(self, candidate: Candidate) -> Volatility:
        key = candidate.key.lower()
        value = candidate.value.lower()

        if _mentions(STATIC_KEYS, key):
            return "static"
        if _mentions(DYNAMIC_WORDS, key, value):
            return "dynamic"
        if candidate.type == FactType.TASK_HINT:
            return "dynamic"
        return "semi-stable"

    @staticmethod
    def priority(importance: float) -> Priority:
        if importance >= 0.8:
            return "high"
        if importance >= 0.6:
            return "medium"
        return "low"

    def tags(
        self,
        candidate: Candidate,
        category: Category,
        context: Optional[ConversationContext] = None,
    ) -> List[str]:
        tags = [FactType(candidate.type).value, category]

        if context:
            if context.time_of_day:
                tags.append(f"time:{context.time_of_day}")
            if context.day_of_week:
                tags.append(f"day:{context.day_of_week}")
            if context.season:
                tags.append(f"season:{context.season}")
            if context.user_mood:
                tags.append(f"mood:{context.user_mood}")

        value = candidate.value.lower()
        for prefix, words in CONTENT_TAGS.items():
            tags.extend(f"{prefix}:{w}" for w in words if w in value)

        return list(dict.fromkeys(tags))

    def relationships(self, candidate: Candidate, existing: Sequence[MemoryItem]) -> List[str]:
        related: List[str] = []
        for item in existing:
            if item.key == candidate.key and item.person == candidate.person:
                continue
            if candidate.person and item.person == candidate.person:
                related.append(item.key)
            elif self.keys_related(candidate.key, item.key):
                related.append(item.key)
            elif item.type == candidate.type:
                related.append(item.key)
        return list(dict.fromkeys(related))

    @staticmethod
    def keys_related(key1: str, key2: str) -> bool:
        k1, k2 = key1.lower(), key2.lower()
        return any(
            any(w in k1 for w in group) and any(w in k2 for w in group)
            for group in RELATED_KEY_GROUPS
        )

    @staticmethod
    def from_memory_item(item: MemoryItem) -> EnhancedCandidate:
        """Rebuild an EnhancedCandidate from a stored item and its metadata."""
        meta = item.metadata or {}
        return EnhancedCandidate(
            person=item.person,
            type=item.type,
            key=item.key,
            value=item.value,
            confidence=item.confidence,
            category=meta.get("category", "personal"),
            importance=meta.get("importance", 0.7),
            volatility=meta.get("volatility", "semi-stable"),
            priority=meta.get("priority", "medium"),
            tags=list(meta.get("tags", [])),
            relationships=list(meta.get("relationships", [])),
        )
