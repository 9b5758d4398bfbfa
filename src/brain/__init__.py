"""Second Brain knowledge core.

Local knowledge retrieval over meeting transcripts and documents: a
person/topic graph plus a vector index, a temporal phrase parser, and
Graph-RAG context assembly for question answering.
"""

from src.brain.config import BrainConfig, get_config
from src.brain.errors import (
    BrainError,
    ExtractionError,
    InvalidRequestError,
    MalformedRecordError,
    NotFoundError,
    StoreUnavailableError,
)
from src.brain.ingestion import IngestionCoordinator
from src.brain.models import DiarizedRange, GraphRAGContext, KnowledgeSearchResult
from src.brain.rag import (
    NO_RELEVANT_INFORMATION,
    AssistantAnswer,
    ContextAssembler,
    GraphRAGEngine,
    KnowledgeAssistant,
)
from src.brain.service import SecondBrain
from src.brain.store import KnowledgeStore
from src.brain.temporal import TemporalWindow, parse_temporal_window

__all__ = [
    "AssistantAnswer",
    "BrainConfig",
    "BrainError",
    "ContextAssembler",
    "DiarizedRange",
    "ExtractionError",
    "GraphRAGContext",
    "GraphRAGEngine",
    "IngestionCoordinator",
    "InvalidRequestError",
    "KnowledgeAssistant",
    "KnowledgeSearchResult",
    "KnowledgeStore",
    "MalformedRecordError",
    "NO_RELEVANT_INFORMATION",
    "NotFoundError",
    "SecondBrain",
    "StoreUnavailableError",
    "TemporalWindow",
    "get_config",
    "parse_temporal_window",
]
