"""Entity and relationship extraction.

Defines the EntityExtractor contract consumed by ingestion and Graph-RAG,
an LLM-backed implementation that asks for structured JSON, and
run_extraction(), which turns collaborator failures into explicit
ExtractionOutcome values instead of exceptions.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import structlog

from src.brain.errors import ExtractionError
from src.brain.llm import LLMClient
from src.brain.models import Entity, ExtractionOutcome, Relationship, StepOutcome

logger = structlog.get_logger(__name__)

ENTITY_LABELS: list[str] = [
    "person",
    "organization",
    "company",
    "project",
    "product",
    "technology",
    "concept",
    "problem",
    "action_item",
    "deadline",
    "decision",
    "topic",
    "question",
    "metric",
    "location",
]

RELATION_LABELS: list[str] = [
    "discussed",
    "assigned_to",
    "decided",
    "mentioned",
    "works_on",
    "works_at",
    "reported",
    "asked",
    "deadline_for",
    "related_to",
    "located_in",
]

ENTITY_PROMPT = """Extract named entities from the text below.

Allowed labels: {labels}

Return ONLY a JSON array of objects with keys "text", "label" and
"confidence" (0.0-1.0). Return [] when nothing qualifies.

Text: {text}

JSON array:"""

RELATION_PROMPT = """Given the text and the entities found in it, list directed
relationships between those entities.

Allowed relations: {relations}

Entities:
{entities}

Text: {text}

Return ONLY a JSON array of objects with keys "source", "source_type",
"relation", "target", "target_type" and "confidence" (0.0-1.0).
Return [] when there are none.

JSON array:"""


class EntityExtractor(Protocol):
    """Minimal interface for the entity/relationship extraction collaborator.

    Zero entities is a valid result. Implementations raise on failure.
    """

    async def extract_entities(self, text: str) -> list[Entity]: ...

    async def extract_relations(
        self, text: str, entities: list[Entity]
    ) -> list[Relationship]: ...


def _parse_json_array(response: str) -> list[Any]:
    """Find and decode the JSON array in an LLM response.

    Raises:
        ExtractionError: If no JSON array can be decoded.
    """
    text = response.strip()
    start = text.find("[")
    end = text.rfind("]") + 1
    if start == -1 or end == 0:
        raise ExtractionError(f"No JSON array in extractor response: {text[:200]!r}")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as exc:
        raise ExtractionError("Extractor response is not valid JSON") from exc
    if not isinstance(data, list):
        raise ExtractionError("Extractor response is not a JSON array")
    return data


def _confidence(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return 1.0


class LLMEntityExtractor:
    """Extracts entities and relations with two JSON-returning LLM calls.

    Items with unknown labels or empty text are dropped; a response that is
    not a JSON array raises ExtractionError.

    Args:
        llm: LLM instance with an async ainvoke(prompt) method.
        labels: Entity labels offered to the model.
        relations: Relation labels offered to the model.
    """

    def __init__(
        self,
        llm: LLMClient,
        labels: list[str] | None = None,
        relations: list[str] | None = None,
    ) -> None:
        self._llm = llm
        self._labels = labels or ENTITY_LABELS
        self._relations = relations or RELATION_LABELS

    async def extract_entities(self, text: str) -> list[Entity]:
        if not text.strip():
            return []
        prompt = ENTITY_PROMPT.format(labels=", ".join(self._labels), text=text)
        response = await self._llm.ainvoke(prompt)

        allowed = set(self._labels)
        entities: list[Entity] = []
        seen: set[tuple[str, str]] = set()
        for item in _parse_json_array(response):
            if not isinstance(item, dict):
                continue
            value = str(item.get("text", "")).strip()
            label = str(item.get("label", "")).strip().lower()
            if not value or label not in allowed:
                continue
            key = (value.casefold(), label)
            if key in seen:
                continue
            seen.add(key)
            entities.append(
                Entity(text=value, label=label, confidence=_confidence(item.get("confidence")))
            )
        return entities

    async def extract_relations(
        self, text: str, entities: list[Entity]
    ) -> list[Relationship]:
        if len(entities) < 2:
            return []
        entity_lines = "\n".join(f"- {e.text} ({e.label})" for e in entities)
        prompt = RELATION_PROMPT.format(
            relations=", ".join(self._relations),
            entities=entity_lines,
            text=text,
        )
        response = await self._llm.ainvoke(prompt)

        relations: list[Relationship] = []
        for item in _parse_json_array(response):
            if not isinstance(item, dict):
                continue
            source = str(item.get("source", "")).strip()
            target = str(item.get("target", "")).strip()
            relation = str(item.get("relation", "")).strip().lower()
            if not source or not target or not relation:
                continue
            relations.append(
                Relationship(
                    source=source,
                    source_type=str(item.get("source_type", "")).strip().lower() or "unknown",
                    relation=relation,
                    target=target,
                    target_type=str(item.get("target_type", "")).strip().lower() or "unknown",
                    confidence=_confidence(item.get("confidence")),
                )
            )
        return relations


async def run_extraction(extractor: EntityExtractor, text: str) -> ExtractionOutcome:
    """Run entity then relation extraction, containing collaborator failures.

    Entity failure skips the unit. Relation failure keeps the entities and
    records a skipped relation_outcome with an empty relation set.
    """
    try:
        entities = await extractor.extract_entities(text)
    except Exception as exc:
        logger.warning("extraction.entities_failed", error=str(exc), exc_info=True)
        return ExtractionOutcome(status="skipped", reason=f"entity extraction failed: {exc}")

    if not entities:
        return ExtractionOutcome(status="ok")

    try:
        relations = await extractor.extract_relations(text, entities)
        relation_outcome = StepOutcome.ok()
    except Exception as exc:
        logger.warning("extraction.relations_failed", error=str(exc), exc_info=True)
        relations = []
        relation_outcome = StepOutcome.skipped(f"relation extraction failed: {exc}")

    return ExtractionOutcome(
        status="ok",
        entities=entities,
        relations=relations,
        relation_outcome=relation_outcome,
    )
