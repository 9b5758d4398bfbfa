"""Relational schema for the knowledge store.

SQLAlchemy declarative tables for meetings and their children, the
person/topic graph, and knowledge sources. Embedding vectors are kept in
the Qdrant collection (see vectors.py), keyed by the same row ids.

No foreign key constraints: referential integrity (including the
delete_meeting cascade) is enforced by KnowledgeStore so deletes stay in a
single explicit transaction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes stored as UTC.

    SQLite drops tzinfo, so values are converted to UTC on the way in and
    tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class BrainBase(DeclarativeBase):
    """Base class for all knowledge store tables."""


# ── Meetings ────────────────────────────────────────────────────────────────


class MeetingRow(BrainBase):
    """A recorded meeting. end_time stays NULL until the meeting closes."""

    __tablename__ = "meetings"
    __table_args__ = (Index("ix_meetings_start_time", "start_time"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    participants_data: Mapped[Any] = mapped_column(JSON, default=list)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class SegmentRow(BrainBase):
    """One attributed span of speech. The vector lives in Qdrant."""

    __tablename__ = "segments"
    __table_args__ = (Index("ix_segments_meeting_start", "meeting_id", "start_ms"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False)
    speaker: Mapped[str] = mapped_column(String(200), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    start_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    end_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    has_embedding: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ActionItemRow(BrainBase):
    __tablename__ = "action_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    assignee: Mapped[str | None] = mapped_column(String(200), nullable=True)
    deadline: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="open", index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class DecisionRow(BrainBase):
    __tablename__ = "decisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    participants_data: Mapped[Any] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)


# ── Graph ───────────────────────────────────────────────────────────────────


class PersonRow(BrainBase):
    """Person node. normalized_name is the identity key."""

    __tablename__ = "persons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    aliases_data: Mapped[Any] = mapped_column(JSON, default=list)
    first_seen: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class TopicRow(BrainBase):
    """Topic node. normalized_name is the identity key."""

    __tablename__ = "topics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    mention_count: Mapped[int] = mapped_column(Integer, default=1)
    last_mentioned: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class EntityRelationRow(BrainBase):
    """Directed relation with provenance in exactly one meeting or source."""

    __tablename__ = "entity_relations"
    __table_args__ = (
        CheckConstraint(
            "(meeting_id IS NULL) <> (knowledge_source_id IS NULL)",
            name="ck_entity_relations_single_provenance",
        ),
        Index("ix_entity_relations_source", "source_normalized"),
        Index("ix_entity_relations_target", "target_normalized"),
        Index("ix_entity_relations_relation", "relation"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_entity: Mapped[str] = mapped_column(String(300), nullable=False)
    source_normalized: Mapped[str] = mapped_column(String(300), nullable=False)
    source_type: Mapped[str] = mapped_column(String(100), nullable=False)
    relation: Mapped[str] = mapped_column(String(100), nullable=False)
    target_entity: Mapped[str] = mapped_column(String(300), nullable=False)
    target_normalized: Mapped[str] = mapped_column(String(300), nullable=False)
    target_type: Mapped[str] = mapped_column(String(100), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, default=1.0)
    meeting_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    knowledge_source_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class GraphEdgeRow(BrainBase):
    """mentioned_in (person -> meeting) and discussed_in (topic -> meeting)."""

    __tablename__ = "graph_edges"
    __table_args__ = (
        UniqueConstraint("edge", "entity_normalized", "meeting_id", name="uq_graph_edge"),
        Index("ix_graph_edges_entity", "entity_normalized"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    edge: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_normalized: Mapped[str] = mapped_column(String(300), nullable=False)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ── Knowledge sources ───────────────────────────────────────────────────────


class KnowledgeSourceRow(BrainBase):
    __tablename__ = "knowledge_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    url: Mapped[str] = mapped_column(String(2000), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    source_type: Mapped[str] = mapped_column(String(50), default="document")
    raw_content: Mapped[str] = mapped_column(Text, default="")
    tags_data: Mapped[Any] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class SourceTagRow(BrainBase):
    """Tag index for knowledge sources; mirrors KnowledgeSourceRow.tags_data."""

    __tablename__ = "source_tags"

    source_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag: Mapped[str] = mapped_column(String(200), primary_key=True, index=True)


class KnowledgeChunkRow(BrainBase):
    """A chunk of a knowledge source. source_id may be bare or qualified."""

    __tablename__ = "knowledge_chunks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_id: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class MeetingKnowledgeRow(BrainBase):
    __tablename__ = "meeting_knowledge"
    __table_args__ = (
        UniqueConstraint("meeting_id", "source_id", name="uq_meeting_knowledge"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    source_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    relevance_score: Mapped[float] = mapped_column(Float, default=1.0)
    assigned_by: Mapped[str] = mapped_column(String(20), default="user")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
