"""Relational plus vector persistence for meetings, graph, and documents."""

from src.brain.store.knowledge_store import KnowledgeStore
from src.brain.store.vectors import VectorIndex

__all__ = ["KnowledgeStore", "VectorIndex"]
