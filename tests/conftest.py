"""Shared fixtures for knowledge-core tests.

Provides:
- FakeEmbedder: deterministic hashed bag-of-words vectors (no model download)
- FakeExtractor: dictionary-based entity/relation extraction (no LLM)
- A BrainConfig pointing at tmp_path-backed SQLite and Qdrant storage
- An initialized KnowledgeStore and IngestionCoordinator per test
"""

from __future__ import annotations

import hashlib
import math
import re

import pytest

from src.brain.config import BrainConfig
from src.brain.ingestion.coordinator import IngestionCoordinator
from src.brain.models import Entity, Relationship
from src.brain.store.knowledge_store import KnowledgeStore

TEST_DIMENSIONS = 32

_WORD = re.compile(r"[A-Za-z0-9']+")


class FakeEmbedder:
    """Non-negative, unit-length bag-of-words vectors.

    Texts sharing words score higher; every pair scores in [0, 1].
    """

    def __init__(self, dimensions: int = TEST_DIMENSIONS) -> None:
        self._dimensions = dimensions
        self.calls = 0
        self.fail = False

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self._dimensions
        values[0] = 0.05
        for word in _WORD.findall(text.lower()):
            digest = hashlib.md5(word.encode()).digest()
            values[1 + digest[0] % (self._dimensions - 1)] += 1.0
        norm = math.sqrt(sum(v * v for v in values))
        return [v / norm for v in values]

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding service down")
        return self.vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding service down")
        return [self.vector(t) for t in texts]


KNOWN_ENTITIES: dict[str, str] = {
    "john": "person",
    "sarah": "person",
    "maria": "person",
    "budget": "topic",
    "roadmap": "project",
    "hiring": "topic",
    "acme": "organization",
    "atlas": "product",
}


class FakeExtractor:
    """Recognizes the words in KNOWN_ENTITIES.

    Every person found "discussed" every non-person found, with
    confidence 0.9.
    """

    def __init__(self, known: dict[str, str] | None = None) -> None:
        self.known = known or KNOWN_ENTITIES
        self.fail_entities = False
        self.fail_relations = False
        self.entity_calls = 0

    async def extract_entities(self, text: str) -> list[Entity]:
        self.entity_calls += 1
        if self.fail_entities:
            raise RuntimeError("ner unavailable")
        entities: list[Entity] = []
        seen: set[str] = set()
        for word in _WORD.findall(text):
            key = word.lower()
            if key in self.known and key not in seen:
                seen.add(key)
                entities.append(Entity(text=word, label=self.known[key]))
        return entities

    async def extract_relations(self, text: str, entities: list[Entity]) -> list[Relationship]:
        if self.fail_relations:
            raise RuntimeError("relation model unavailable")
        people = [e for e in entities if e.label == "person"]
        others = [e for e in entities if e.label != "person"]
        return [
            Relationship(
                source=p.text,
                source_type="person",
                relation="discussed",
                target=o.text,
                target_type=o.label,
                confidence=0.9,
            )
            for p in people
            for o in others
        ]


class RecordingLLM:
    """LLM double that records prompts and returns a canned answer."""

    def __init__(self, answer: str = "Here is what I found.", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.prompts: list[str] = []

    async def ainvoke(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def config(tmp_path) -> BrainConfig:
    """BrainConfig backed by a temporary directory."""
    return BrainConfig(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'brain.db'}",
        qdrant_path=str(tmp_path / "qdrant"),
        qdrant_url=None,
        embedding_dimensions=TEST_DIMENSIONS,
        collection_name="brain_test",
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def llm() -> RecordingLLM:
    return RecordingLLM()


@pytest.fixture
async def store(config, embedder) -> KnowledgeStore:
    """Initialized KnowledgeStore, closed after the test."""
    knowledge_store = await KnowledgeStore.open(config, embedder)
    yield knowledge_store
    await knowledge_store.close()


@pytest.fixture
def coordinator(store, embedder, extractor, config) -> IngestionCoordinator:
    return IngestionCoordinator(store, embedder, extractor, config)
