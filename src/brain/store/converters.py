"""Row-to-model conversion at the store boundary.

Every value read from the relational store passes through these helpers
before reaching business logic. A malformed field (bad JSON, unknown
status value, wrong type) is replaced with the converter's fallback or
the model's declared default and logged. A row that still cannot be
converted raises MalformedRecordError from the row_to_* functions;
convert_row() and convert_rows() contain it so the surrounding query
still succeeds.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from src.brain.errors import MalformedRecordError
from src.brain.models import (
    ActionItem,
    Decision,
    EntityRelation,
    KnowledgeChunk,
    KnowledgeSource,
    Meeting,
    MeetingKnowledge,
    Person,
    Segment,
    Topic,
)
from src.brain.store.tables import (
    ActionItemRow,
    DecisionRow,
    EntityRelationRow,
    KnowledgeChunkRow,
    KnowledgeSourceRow,
    MeetingKnowledgeRow,
    MeetingRow,
    PersonRow,
    SegmentRow,
    TopicRow,
)

logger = structlog.get_logger(__name__)

R = TypeVar("R")
M = TypeVar("M")

_VALID_STATUSES = {"open", "in_progress", "done", "completed"}


def json_list(value: Any, *, field: str, record_id: str) -> list[str]:
    """Decode a JSON list column, falling back to [] when malformed."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("store.malformed_field", field=field, record_id=record_id)
            return []
    if not isinstance(value, list):
        logger.warning("store.malformed_field", field=field, record_id=record_id)
        return []
    return [str(item) for item in value if item is not None]


def _validate(
    model: type[M],
    record_id: str,
    fields: dict[str, Any],
    fallbacks: dict[str, Any] | None = None,
) -> M:
    """Validate fields into model, patching invalid fields once.

    An invalid field takes its value from fallbacks when present, else
    is dropped so the model default applies. Required fields with no
    fallback make the whole row malformed.
    """
    try:
        return model.model_validate(fields)  # type: ignore[attr-defined]
    except ValidationError as exc:
        fallbacks = fallbacks or {}
        model_fields = model.model_fields  # type: ignore[attr-defined]
        patched = dict(fields)
        for name in {err["loc"][0] for err in exc.errors() if err["loc"]}:
            if name in fallbacks:
                patched[name] = fallbacks[name]
            elif name in model_fields and not model_fields[name].is_required():
                patched.pop(name, None)
            else:
                raise MalformedRecordError(f"{model.__name__} {record_id}: {exc}") from exc
            logger.warning("store.malformed_field", field=name, record_id=record_id)
    try:
        return model.model_validate(patched)  # type: ignore[attr-defined]
    except ValidationError as exc:
        raise MalformedRecordError(f"{model.__name__} {record_id}: {exc}") from exc


def convert_row(row: R, converter: Callable[[R], M]) -> M | None:
    """Convert one row, returning None (and logging) when it is malformed."""
    try:
        return converter(row)
    except MalformedRecordError:
        logger.warning("store.malformed_record", exc_info=True)
        return None


def convert_rows(rows: Iterable[R], converter: Callable[[R], M]) -> list[M]:
    """Convert rows with convert_row(), leaving out any beyond repair."""
    models: list[M] = []
    for row in rows:
        model = convert_row(row, converter)
        if model is not None:
            models.append(model)
    return models


def row_to_meeting(row: MeetingRow) -> Meeting:
    return _validate(
        Meeting,
        row.id,
        {
            "id": row.id,
            "title": row.title or "Untitled meeting",
            "start_time": row.start_time,
            "end_time": row.end_time,
            "participants": json_list(row.participants_data, field="participants", record_id=row.id),
            "summary": row.summary,
            "created_at": row.created_at or row.start_time,
        },
        fallbacks={"title": "Untitled meeting", "end_time": None, "summary": None},
    )


def row_to_segment(row: SegmentRow) -> Segment:
    return _validate(
        Segment,
        row.id,
        {
            "id": row.id,
            "meeting_id": row.meeting_id,
            "speaker": row.speaker or "Unknown",
            "text": row.text or "",
            "start_ms": row.start_ms,
            "end_ms": row.end_ms,
            "has_embedding": bool(row.has_embedding),
            "created_at": row.created_at,
        },
        fallbacks={"speaker": "Unknown", "text": ""},
    )


def row_to_action_item(row: ActionItemRow) -> ActionItem:
    status = row.status
    if status not in _VALID_STATUSES:
        logger.warning("store.malformed_field", field="status", record_id=row.id, value=status)
        status = "open"
    return _validate(
        ActionItem,
        row.id,
        {
            "id": row.id,
            "meeting_id": row.meeting_id,
            "text": row.text or "",
            "assignee": row.assignee,
            "deadline": row.deadline,
            "status": status,
            "created_at": row.created_at,
        },
        fallbacks={"text": "", "assignee": None, "deadline": None},
    )


def row_to_decision(row: DecisionRow) -> Decision:
    return _validate(
        Decision,
        row.id,
        {
            "id": row.id,
            "meeting_id": row.meeting_id,
            "text": row.text or "",
            "participants": json_list(row.participants_data, field="participants", record_id=row.id),
            "created_at": row.created_at,
        },
        fallbacks={"text": ""},
    )


def row_to_person(row: PersonRow) -> Person:
    return _validate(
        Person,
        row.id,
        {
            "id": row.id,
            "name": row.name,
            "normalized_name": row.normalized_name,
            "aliases": json_list(row.aliases_data, field="aliases", record_id=row.id),
            "first_seen": row.first_seen,
            "last_seen": row.last_seen,
        },
    )


def row_to_topic(row: TopicRow) -> Topic:
    return _validate(
        Topic,
        row.id,
        {
            "id": row.id,
            "name": row.name,
            "normalized_name": row.normalized_name,
            "mention_count": row.mention_count if row.mention_count is not None else 1,
            "last_mentioned": row.last_mentioned,
            "created_at": row.created_at,
        },
    )


def row_to_relation(row: EntityRelationRow) -> EntityRelation:
    return _validate(
        EntityRelation,
        row.id,
        {
            "id": row.id,
            "source_entity": row.source_entity,
            "source_type": row.source_type,
            "relation": row.relation,
            "target_entity": row.target_entity,
            "target_type": row.target_type,
            "confidence": row.confidence if row.confidence is not None else 0.0,
            "meeting_id": row.meeting_id,
            "knowledge_source_id": row.knowledge_source_id,
            "created_at": row.created_at,
        },
        fallbacks={"confidence": 0.0, "source_type": "unknown", "target_type": "unknown"},
    )


def row_to_source(row: KnowledgeSourceRow) -> KnowledgeSource:
    title = f"Source {row.id}"
    return _validate(
        KnowledgeSource,
        row.id,
        {
            "id": row.id,
            "url": row.url,
            "title": row.title or title,
            "source_type": row.source_type or "document",
            "raw_content": row.raw_content or "",
            "tags": json_list(row.tags_data, field="tags", record_id=row.id),
            "created_at": row.created_at,
            "last_updated": row.last_updated or row.created_at,
        },
        fallbacks={"title": title},
    )


def row_to_chunk(row: KnowledgeChunkRow) -> KnowledgeChunk:
    return _validate(
        KnowledgeChunk,
        row.id,
        {
            "id": row.id,
            "source_id": row.source_id,
            "text": row.text or "",
            "chunk_index": row.chunk_index,
            "created_at": row.created_at,
        },
        fallbacks={"text": ""},
    )


def row_to_meeting_knowledge(row: MeetingKnowledgeRow) -> MeetingKnowledge:
    assigned_by = row.assigned_by if row.assigned_by in ("user", "auto") else "user"
    return _validate(
        MeetingKnowledge,
        row.id,
        {
            "id": row.id,
            "meeting_id": row.meeting_id,
            "source_id": row.source_id,
            "relevance_score": row.relevance_score if row.relevance_score is not None else 1.0,
            "assigned_by": assigned_by,
            "created_at": row.created_at,
        },
        fallbacks={"relevance_score": 1.0},
    )
