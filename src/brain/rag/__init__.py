"""Graph-RAG retrieval and context assembly."""

from src.brain.rag.assembler import (
    NO_RELEVANT_INFORMATION,
    AssistantAnswer,
    ContextAssembler,
    KnowledgeAssistant,
)
from src.brain.rag.graph_rag import GraphRAGEngine

__all__ = [
    "AssistantAnswer",
    "ContextAssembler",
    "GraphRAGEngine",
    "KnowledgeAssistant",
    "NO_RELEVANT_INFORMATION",
]
