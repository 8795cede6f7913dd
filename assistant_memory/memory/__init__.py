"""
Long-term personal memory for the assistant.

Provides:
- Fact extraction, risk policy and worthiness scoring
- Durable deduplicated storage with TTL expiry
- Consolidation of new facts against stored ones
- Adaptive per-user acceptance learning and consent tracking
- Similarity + recency retrieval for prompt injection
- Summarization of old memory clusters
"""

from .schemas import (
    Candidate,
    ConsolidationResult,
    EnhancedCandidate,
    EvaluationResult,
    FactType,
    MemoryItem,
    MemoryItemInput,
    PendingSuggestion,
    PromptContext,
    RankedResult,
)
from .policy import MemoryPolicy
from .scorer import WorthinessScorer
from .store import MemoryStore
from .categorizer import ConversationContext, MemoryCategorizer
from .consolidator import ConsolidationRules, MemoryConsolidator
from .adaptive import AdaptiveLearning, JsonLearningStore
from .consent import ConsentRegistry
from .pii import RegexPIIDetector, mask_pii
from .extractor import PatternExtractor
from .embeddings import CachingEmbedder, HashingEmbedder, SentenceTransformerEmbedder
from .manager import MemoryManager
from .retriever import MemoryRetriever
from .summarizer import MemorySummarizer
from .integrate import MemorySystem, create_memory_system

__all__ = [
    "Candidate",
    "ConsolidationResult",
    "EnhancedCandidate",
    "EvaluationResult",
    "FactType",
    "MemoryItem",
    "MemoryItemInput",
    "PendingSuggestion",
    "PromptContext",
    "RankedResult",
    "MemoryPolicy",
    "WorthinessScorer",
    "MemoryStore",
    "ConversationContext",
    "MemoryCategorizer",
    "ConsolidationRules",
    "MemoryConsolidator",
    "AdaptiveLearning",
    "JsonLearningStore",
    "ConsentRegistry",
    "RegexPIIDetector",
    "mask_pii",
    "PatternExtractor",
    "CachingEmbedder",
    "HashingEmbedder",
    "SentenceTransformerEmbedder",
    "MemoryManager",
    "MemoryRetriever",
    "MemorySummarizer",
    "MemorySystem",
    "create_memory_system",
]
