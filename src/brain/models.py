"""Pydantic models for the Second Brain domain.

Defines the records persisted by the knowledge store (meetings, segments,
action items, decisions, the person/topic graph, knowledge sources and
their chunks) together with the typed results returned by ingestion,
search, and Graph-RAG queries. These models are the contract between the
store boundary and everything above it.
"""

from __future__ import annotations

import re
import unicodedata
import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from src.brain.temporal import TemporalWindow

ActionStatus = Literal["open", "in_progress", "done", "completed"]

# Statuses that take an action item off the open list
CLOSED_ACTION_STATUSES: frozenset[str] = frozenset({"done", "completed"})

PERSON_LABELS: frozenset[str] = frozenset({"person"})
TOPIC_LABELS: frozenset[str] = frozenset({"topic", "project", "product"})
# Documents also promote organizations to topic nodes
SOURCE_TOPIC_LABELS: frozenset[str] = TOPIC_LABELS | {"organization"}


# ── Identity helpers ────────────────────────────────────────────────────────


_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Canonical identity key for Person/Topic nodes.

    Exact match only: NFKC, trimmed, inner whitespace collapsed, casefolded.
    "John  Smith" and "john smith" collide; "Jon Smith" does not.
    """
    text = unicodedata.normalize("NFKC", name)
    return _WHITESPACE.sub(" ", text).strip().casefold()


def fold_text(text: str) -> str:
    """Unicode-aware case folding for substring matching against normalize_name() output."""
    return unicodedata.normalize("NFKC", text).casefold()


def normalize_record_id(record_id: str) -> str:
    """Strip a "table:" qualifier so bare and qualified ids compare equal."""
    value = record_id.strip()
    if ":" in value:
        value = value.split(":", 1)[1]
    return value.strip("⟨⟩`")


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Meetings ────────────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """A recorded meeting; owns segments, action items, and decisions."""

    id: str = Field(default_factory=new_id)
    title: str
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    participants: list[str] = Field(default_factory=list)
    summary: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class Segment(BaseModel):
    """One finalized span of attributed speech within a meeting."""

    id: str = Field(default_factory=new_id)
    meeting_id: str
    speaker: str
    text: str
    start_ms: int
    end_ms: int
    has_embedding: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def midpoint_ms(self) -> int:
        return (self.start_ms + self.end_ms) // 2


class ActionItem(BaseModel):
    """A follow-up task captured during a meeting."""

    id: str = Field(default_factory=new_id)
    meeting_id: str
    text: str
    assignee: str | None = None
    deadline: str | None = None
    status: ActionStatus = "open"
    created_at: datetime = Field(default_factory=utc_now)


class Decision(BaseModel):
    """A decision recorded during a meeting."""

    id: str = Field(default_factory=new_id)
    meeting_id: str
    text: str
    participants: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class MeetingActionItem(ActionItem):
    """Action item joined with its meeting title."""

    meeting_title: str = "Unknown"


class MeetingDecision(Decision):
    """Decision joined with its meeting title."""

    meeting_title: str = "Unknown"


class MeetingStats(BaseModel):
    """Aggregate counters for a single meeting.

    Attributes:
        segment_count: Number of transcript segments.
        action_item_count: Number of action items.
        decision_count: Number of decisions.
        topic_count: Distinct topics discussed in the meeting.
        people_count: Distinct people mentioned in the meeting.
        duration_ms: First segment start to last segment end.
        total_words: Whitespace-delimited words across all segments.
    """

    meeting_id: str
    segment_count: int = 0
    action_item_count: int = 0
    decision_count: int = 0
    topic_count: int = 0
    people_count: int = 0
    duration_ms: int = 0
    total_words: int = 0


class GlobalStats(BaseModel):
    """Store-wide counters.

    Attributes:
        entity_counts: Distinct entities per label, largest first.
    """

    meeting_count: int = 0
    segment_count: int = 0
    people_count: int = 0
    topic_count: int = 0
    knowledge_source_count: int = 0
    knowledge_chunk_count: int = 0
    entity_counts: dict[str, int] = Field(default_factory=dict)


class DiarizedRange(BaseModel):
    """A speaker turn produced by the diarization collaborator, in ms."""

    start_ms: int
    end_ms: int
    speaker_id: int
    label: str

    @classmethod
    def from_seconds(
        cls,
        start_s: float,
        end_s: float,
        speaker_id: int,
        label: str | None = None,
    ) -> DiarizedRange:
        """Build a range from collaborator output (seconds, 0-based ids)."""
        return cls(
            start_ms=int(round(start_s * 1000)),
            end_ms=int(round(end_s * 1000)),
            speaker_id=speaker_id,
            label=label or f"Speaker {speaker_id + 1}",
        )

    def contains(self, ms: int) -> bool:
        return self.start_ms <= ms <= self.end_ms

    def overlap_ms(self, start_ms: int, end_ms: int) -> int:
        """Length of the intersection with [start_ms, end_ms], 0 if disjoint."""
        return max(0, min(self.end_ms, end_ms) - max(self.start_ms, start_ms))


# ── Graph ───────────────────────────────────────────────────────────────────


class Person(BaseModel):
    """A person node, keyed by normalized name."""

    id: str = Field(default_factory=new_id)
    name: str
    normalized_name: str
    aliases: list[str] = Field(default_factory=list)
    first_seen: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)


class Topic(BaseModel):
    """A topic node, keyed by normalized name."""

    id: str = Field(default_factory=new_id)
    name: str
    normalized_name: str
    mention_count: int = 1
    last_mentioned: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)


class EntityRelation(BaseModel):
    """A directed, typed, confidence-scored link between two entities.

    Exactly one of meeting_id / knowledge_source_id is set.
    """

    id: str = Field(default_factory=new_id)
    source_entity: str
    source_type: str
    relation: str
    target_entity: str
    target_type: str
    confidence: float = 1.0
    meeting_id: str | None = None
    knowledge_source_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


# ── Knowledge sources ───────────────────────────────────────────────────────


class KnowledgeSource(BaseModel):
    """An uploaded document or crawled page."""

    id: str = Field(default_factory=new_id)
    url: str
    title: str
    source_type: str = "document"
    raw_content: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)


class KnowledgeChunk(BaseModel):
    """A bounded span of a knowledge source's content."""

    id: str = Field(default_factory=new_id)
    source_id: str
    text: str
    chunk_index: int
    created_at: datetime = Field(default_factory=utc_now)


class MeetingKnowledge(BaseModel):
    """Link between a meeting and a knowledge source."""

    id: str = Field(default_factory=new_id)
    meeting_id: str
    source_id: str
    relevance_score: float = 1.0
    assigned_by: Literal["user", "auto"] = "user"
    created_at: datetime = Field(default_factory=utc_now)


# ── Extraction ──────────────────────────────────────────────────────────────


class Entity(BaseModel):
    """A named thing recognized by the extraction collaborator."""

    text: str
    label: str
    confidence: float = 1.0


class Relationship(BaseModel):
    """A directed relation between two extracted entities."""

    source: str
    source_type: str
    relation: str
    target: str
    target_type: str
    confidence: float = 1.0


class StepOutcome(BaseModel):
    """Result of one best-effort ingestion step: ok, or skipped with a reason."""

    status: Literal["ok", "skipped"] = "ok"
    reason: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def ok(cls) -> StepOutcome:
        return cls(status="ok")

    @classmethod
    def skipped(cls, reason: str) -> StepOutcome:
        return cls(status="skipped", reason=reason)


class ExtractionOutcome(StepOutcome):
    """Entity/relation extraction over one text unit.

    A skipped outcome carries no entities. Relation failures do not skip
    the unit; they leave relations empty and set relation_outcome.
    """

    entities: list[Entity] = Field(default_factory=list)
    relations: list[Relationship] = Field(default_factory=list)
    relation_outcome: StepOutcome = Field(default_factory=StepOutcome.ok)


class SegmentIngestResult(BaseModel):
    """What add_segment stored and which steps were degraded."""

    segment: Segment
    embedding: StepOutcome
    extraction: ExtractionOutcome


class SourceIngestResult(BaseModel):
    """What add_knowledge_source stored and which steps were degraded."""

    source: KnowledgeSource
    chunk_count: int
    embedding: StepOutcome
    samples: list[ExtractionOutcome] = Field(default_factory=list)


# ── Search & Graph-RAG ──────────────────────────────────────────────────────


class KnowledgeSearchResult(BaseModel):
    """A similarity hit resolved to its source.

    Attributes:
        kind: "chunk" for knowledge chunks, "segment" for transcript segments.
        id: Chunk or segment id.
        source_id: Knowledge source id (chunks) or meeting id (segments).
        source_title: Resolved title, or a fallback label.
        source_url: Resolved url, empty when unresolved or a meeting.
        text: Hit text.
        chunk_index: Position within the source, chunks only.
        speaker: Speaker label, segments only.
        similarity: Cosine similarity clamped to [0, 1].
        resolved: False when the fallback label was substituted.
    """

    kind: Literal["chunk", "segment"]
    id: str
    source_id: str
    source_title: str
    source_url: str = ""
    text: str
    chunk_index: int | None = None
    speaker: str | None = None
    similarity: float = Field(ge=0.0, le=1.0)
    resolved: bool = True


class MeetingContext(BaseModel):
    """A related meeting with the segments that matched the query."""

    meeting: Meeting
    days_ago: int
    segments: list[Segment] = Field(default_factory=list)


class PersonContext(BaseModel):
    """A related person with recency and the topics they discuss."""

    name: str
    last_seen: datetime
    last_seen_days_ago: int
    recent_topics: list[str] = Field(default_factory=list)
    meeting_count: int = 0


class TopicContext(BaseModel):
    """A related topic with mention statistics and who discusses it."""

    name: str
    mention_count: int
    last_mentioned: datetime
    last_mentioned_days_ago: int
    related_people: list[str] = Field(default_factory=list)


class GraphRAGContext(BaseModel):
    """Context bundle produced for one question.

    Query-derived fields (temporal window, entities) describe the question;
    the remaining sections hold retrieved data. section_errors records the
    sections that failed and were left empty.
    """

    question: str
    generated_at: datetime
    temporal: TemporalWindow | None = None
    entities: list[Entity] = Field(default_factory=list)
    entity_extraction: StepOutcome = Field(default_factory=StepOutcome.ok)
    meetings: list[MeetingContext] = Field(default_factory=list)
    people: list[PersonContext] = Field(default_factory=list)
    topics: list[TopicContext] = Field(default_factory=list)
    action_items: list[MeetingActionItem] = Field(default_factory=list)
    decisions: list[MeetingDecision] = Field(default_factory=list)
    knowledge: list[KnowledgeSearchResult] = Field(default_factory=list)
    section_errors: dict[str, str] = Field(default_factory=dict)

    @property
    def has_graph_data(self) -> bool:
        return bool(self.meetings or self.people or self.topics)

    @property
    def is_empty(self) -> bool:
        """True when no section holds retrieved data."""
        return not (
            self.has_graph_data
            or self.action_items
            or self.decisions
            or self.knowledge
        )
