"""Knowledge store -- durable persistence and indexed queries.

KnowledgeStore combines the relational tables (SQLAlchemy async) with the
Qdrant similarity index and exposes every read and write used by
ingestion, Graph-RAG, and callers:
- meeting lifecycle and per-meeting accessors
- action items, decisions, and diarization relabelling
- the person/topic graph (upserts, edges, relations, traversal queries)
- knowledge sources, chunks, tags, and meeting links
- similarity search with source resolution
- cascade delete and orphan cleanup

All writes run inside one transaction guarded by a per-store asyncio.Lock,
which serializes person/topic upserts. Callers compute embeddings and
extraction results before calling in, so the lock is never held during
inference. Reads never take the lock.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import String, delete, distinct, exists, func, or_, select
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.brain.config import BrainConfig
from src.brain.embeddings import Embedder
from src.brain.errors import (
    BrainError,
    ExtractionError,
    InvalidRequestError,
    NotFoundError,
    StoreUnavailableError,
)
from src.brain.models import (
    PERSON_LABELS,
    ActionItem,
    Decision,
    DiarizedRange,
    Entity,
    EntityRelation,
    GlobalStats,
    KnowledgeChunk,
    KnowledgeSearchResult,
    KnowledgeSource,
    Meeting,
    MeetingActionItem,
    MeetingDecision,
    MeetingKnowledge,
    MeetingStats,
    Person,
    PersonContext,
    Relationship,
    Segment,
    Topic,
    TopicContext,
    fold_text,
    new_id,
    normalize_name,
    normalize_record_id,
    utc_now,
)
from src.brain.store.converters import (
    convert_row,
    convert_rows,
    json_list,
    row_to_action_item,
    row_to_chunk,
    row_to_decision,
    row_to_meeting,
    row_to_meeting_knowledge,
    row_to_person,
    row_to_relation,
    row_to_segment,
    row_to_source,
    row_to_topic,
)
from src.brain.store.database import (
    FOLD_FUNCTION,
    create_engine_from_config,
    create_session_factory,
    init_schema,
    is_sqlite,
)
from src.brain.store.tables import (
    ActionItemRow,
    DecisionRow,
    EntityRelationRow,
    GraphEdgeRow,
    KnowledgeChunkRow,
    KnowledgeSourceRow,
    MeetingKnowledgeRow,
    MeetingRow,
    PersonRow,
    SegmentRow,
    SourceTagRow,
    TopicRow,
)
from src.brain.store.vectors import KIND_CHUNK, KIND_SEGMENT, KIND_TOPIC, VectorIndex

logger = structlog.get_logger(__name__)

EDGE_MENTIONED_IN = "mentioned_in"
EDGE_DISCUSSED_IN = "discussed_in"

ACTION_STATUSES = ("open", "in_progress", "done", "completed")

# Estimated duration for meetings closed by auto_end_stale_meetings
STALE_MEETING_DURATION = timedelta(hours=1)

# Relation target types treated as "topics a person discusses"
_TOPIC_LIKE_TYPES = ("topic", "project", "product", "concept", "technology")

_GRAPH_NAMESPACE = uuid.UUID("6f1c2d8e-3b7a-4f0e-9a51-2c4d7e8b9f10")


def node_id(kind: str, normalized: str) -> str:
    """Deterministic id for a person/topic node, stable across processes."""
    return str(uuid.uuid5(_GRAPH_NAMESPACE, f"{kind}:{normalized}"))


def _days_ago(now: datetime, moment: datetime) -> int:
    return max(0, (now - moment).days)


def _clean_tags(tags: list[str] | None) -> list[str]:
    cleaned: list[str] = []
    for tag in tags or []:
        value = tag.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def _qualified_forms(record_id: str, table: str) -> list[str]:
    bare = normalize_record_id(record_id)
    return [bare, f"{table}:{bare}"]


class KnowledgeStore:
    """Graph-plus-vector store over meetings and knowledge sources.

    Args:
        config: Brain configuration.
        session_factory: Factory producing AsyncSession instances.
        vectors: Similarity index sharing ids with the relational rows.
        embedder: Embedding collaborator used for query-time search.
        engine: Engine to dispose on close(), when the store owns it.
    """

    def __init__(
        self,
        config: BrainConfig,
        session_factory: async_sessionmaker[AsyncSession],
        vectors: VectorIndex,
        embedder: Embedder,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._vectors = vectors
        self._embedder = embedder
        self._engine = engine
        self._write_lock = asyncio.Lock()
        self._generic_speakers = list(config.generic_speaker_labels)
        self._unicode_fold = is_sqlite(config.database_url)

    @classmethod
    async def open(
        cls,
        config: BrainConfig,
        embedder: Embedder,
        vectors: VectorIndex | None = None,
    ) -> KnowledgeStore:
        """Create engine, schema, and collection, and return a ready store."""
        engine = create_engine_from_config(config)
        await init_schema(engine)
        index = vectors or VectorIndex(config)
        await index.initialize()
        return cls(
            config,
            create_session_factory(engine),
            index,
            embedder,
            engine=engine,
        )

    @property
    def vectors(self) -> VectorIndex:
        return self._vectors

    async def close(self) -> None:
        """Dispose of the engine and close the Qdrant client."""
        self._vectors.close()
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    # ── Sessions ─────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailableError(f"Relational store unavailable: {exc}") from exc

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[AsyncSession]:
        """One serialized write transaction; commits on clean exit."""
        async with self._write_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        yield session
            except (OperationalError, InterfaceError) as exc:
                raise StoreUnavailableError(
                    f"Relational store unavailable: {exc}"
                ) from exc

    def _folded(self, column: Any) -> Any:
        """Column expression case-folded the way normalize_name() folds."""
        if self._unicode_fold:
            return getattr(func, FOLD_FUNCTION)(column, type_=String)
        return func.lower(column, type_=String)

    @staticmethod
    async def _require_meeting(session: AsyncSession, meeting_id: str) -> MeetingRow:
        row = await session.get(MeetingRow, meeting_id)
        if row is None:
            raise NotFoundError("Meeting", meeting_id)
        return row

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(
        self,
        title: str,
        participants: list[str] | None = None,
        start_time: datetime | None = None,
    ) -> Meeting:
        """Start a new meeting.

        Raises:
            InvalidRequestError: If title is blank.
        """
        if not title or not title.strip():
            raise InvalidRequestError("Meeting title must not be empty")
        now = utc_now()
        row = MeetingRow(
            id=new_id(),
            title=title.strip(),
            start_time=start_time or now,
            end_time=None,
            participants_data=list(participants or []),
            summary=None,
            created_at=now,
        )
        async with self._writing() as session:
            session.add(row)
        logger.info("meeting.created", meeting_id=row.id, title=row.title)
        return row_to_meeting(row)

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        async with self._reading() as session:
            row = await session.get(MeetingRow, normalize_record_id(meeting_id))
            return convert_row(row, row_to_meeting) if row is not None else None

    async def list_meetings(self, limit: int = 50) -> list[Meeting]:
        """Meetings ordered newest first."""
        async with self._reading() as session:
            stmt = select(MeetingRow).order_by(MeetingRow.start_time.desc()).limit(limit)
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_meeting)

    async def end_meeting(
        self,
        meeting_id: str,
        summary: str | None = None,
        end_time: datetime | None = None,
    ) -> Meeting:
        """Close a meeting, optionally attaching its summary.

        Raises:
            NotFoundError: If the meeting does not exist.
        """
        meeting_id = normalize_record_id(meeting_id)
        async with self._writing() as session:
            row = await self._require_meeting(session, meeting_id)
            row.end_time = end_time or utc_now()
            if summary is not None:
                row.summary = summary
        logger.info("meeting.ended", meeting_id=meeting_id)
        return row_to_meeting(row)

    async def update_meeting_summary(self, meeting_id: str, summary: str) -> Meeting:
        meeting_id = normalize_record_id(meeting_id)
        async with self._writing() as session:
            row = await self._require_meeting(session, meeting_id)
            row.summary = summary
        return row_to_meeting(row)

    async def auto_end_stale_meetings(
        self, max_age_hours: float = 4.0, now: datetime | None = None
    ) -> int:
        """Close meetings left open longer than max_age_hours.

        The end time is estimated as start_time + 1 hour.

        Returns:
            Number of meetings closed.
        """
        now = now or utc_now()
        cutoff = now - timedelta(hours=max_age_hours)
        async with self._writing() as session:
            stmt = select(MeetingRow).where(
                MeetingRow.end_time.is_(None),
                MeetingRow.start_time < cutoff,
            )
            rows = (await session.execute(stmt)).scalars().all()
            for row in rows:
                row.end_time = row.start_time + STALE_MEETING_DURATION
        if rows:
            logger.info("meeting.auto_ended", count=len(rows))
        return len(rows)

    async def delete_meeting(self, meeting_id: str) -> None:
        """Delete a meeting and everything that belongs to it.

        The relational cascade (segments, action items, decisions,
        relations, graph edges, knowledge links, meeting row) runs as a
        single transaction. Segment vectors are removed as its last step,
        after every delete has been flushed, so a failed cascade leaves
        rows and vectors in place. Any failure propagates to the caller.

        Raises:
            NotFoundError: If the meeting does not exist.
        """
        meeting_id = normalize_record_id(meeting_id)
        if await self.get_meeting(meeting_id) is None:
            raise NotFoundError("Meeting", meeting_id)

        async with self._writing() as session:
            await self._require_meeting(session, meeting_id)
            for table in (
                SegmentRow,
                ActionItemRow,
                DecisionRow,
                EntityRelationRow,
                GraphEdgeRow,
                MeetingKnowledgeRow,
            ):
                await session.execute(delete(table).where(table.meeting_id == meeting_id))
            await session.execute(delete(MeetingRow).where(MeetingRow.id == meeting_id))
            await session.flush()
            await self._vectors.delete_where("meeting_id", [meeting_id])
        logger.info("meeting.deleted", meeting_id=meeting_id)

    # ── Segments ─────────────────────────────────────────────────────────

    async def insert_segment(
        self,
        meeting_id: str,
        speaker: str,
        text: str,
        start_ms: int,
        end_ms: int,
        vector: list[float] | None = None,
    ) -> Segment:
        """Persist a segment row and, when available, its embedding.

        Raises:
            NotFoundError: If the meeting does not exist.
        """
        meeting_id = normalize_record_id(meeting_id)
        row = SegmentRow(
            id=new_id(),
            meeting_id=meeting_id,
            speaker=speaker,
            text=text,
            start_ms=start_ms,
            end_ms=end_ms,
            has_embedding=vector is not None,
            created_at=utc_now(),
        )
        indexed = False
        try:
            async with self._writing() as session:
                await self._require_meeting(session, meeting_id)
                session.add(row)
                if vector is not None:
                    await self._vectors.upsert(
                        [
                            (
                                row.id,
                                vector,
                                {
                                    "kind": KIND_SEGMENT,
                                    "meeting_id": meeting_id,
                                    "speaker": speaker,
                                    "text": text,
                                },
                            )
                        ]
                    )
                    indexed = True
        except Exception:
            if indexed:
                await self._vectors.delete_ids([row.id])
            raise
        return row_to_segment(row)

    async def get_meeting_segments(self, meeting_id: str) -> list[Segment]:
        """Segments of a meeting ordered by start time."""
        async with self._reading() as session:
            stmt = (
                select(SegmentRow)
                .where(SegmentRow.meeting_id == normalize_record_id(meeting_id))
                .order_by(SegmentRow.start_ms, SegmentRow.created_at)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_segment)

    async def relabel_speakers(self, meeting_id: str, ranges: list[DiarizedRange]) -> int:
        """Assign diarized labels to generically-labelled segments.

        A segment is relabelled when its midpoint lies inside a range;
        ranges are checked in start order, so a midpoint on a shared
        boundary resolves to the earlier range.

        Args:
            meeting_id: Meeting whose segments are relabelled.
            ranges: Diarization output in milliseconds.

        Returns:
            Number of segments relabelled.

        Raises:
            NotFoundError: If the meeting does not exist.
        """
        meeting_id = normalize_record_id(meeting_id)
        ordered = sorted(ranges, key=lambda r: (r.start_ms, r.end_ms))
        relabelled = 0
        async with self._writing() as session:
            await self._require_meeting(session, meeting_id)
            if not ordered:
                return 0
            stmt = select(SegmentRow).where(
                SegmentRow.meeting_id == meeting_id,
                SegmentRow.speaker.in_(self._generic_speakers),
            )
            rows = (await session.execute(stmt)).scalars().all()
            for row in rows:
                midpoint = (row.start_ms + row.end_ms) // 2
                match = next((r for r in ordered if r.contains(midpoint)), None)
                if match is not None:
                    row.speaker = match.label
                    relabelled += 1
        logger.info("segments.relabelled", meeting_id=meeting_id, count=relabelled)
        return relabelled

    async def relabel_all_speakers(self, meeting_id: str, ranges: list[DiarizedRange]) -> int:
        """Apply diarized labels to every segment of a meeting.

        Unlike relabel_speakers(), named speakers are overwritten too.
        A segment takes the label of the earliest range containing its
        midpoint; failing that, of the range it overlaps most. Segments
        touching no range keep their speaker.

        Returns:
            Number of segments whose speaker changed.

        Raises:
            NotFoundError: If the meeting does not exist.
        """
        meeting_id = normalize_record_id(meeting_id)
        ordered = sorted(ranges, key=lambda r: (r.start_ms, r.end_ms))
        relabelled = 0
        async with self._writing() as session:
            await self._require_meeting(session, meeting_id)
            if not ordered:
                return 0
            stmt = select(SegmentRow).where(SegmentRow.meeting_id == meeting_id)
            for row in (await session.execute(stmt)).scalars().all():
                midpoint = (row.start_ms + row.end_ms) // 2
                match = next((r for r in ordered if r.contains(midpoint)), None)
                if match is None:
                    best = max(ordered, key=lambda r: r.overlap_ms(row.start_ms, row.end_ms))
                    if best.overlap_ms(row.start_ms, row.end_ms) > 0:
                        match = best
                if match is not None and row.speaker != match.label:
                    row.speaker = match.label
                    relabelled += 1
        logger.info("segments.relabelled_all", meeting_id=meeting_id, count=relabelled)
        return relabelled

    # ── Action items & decisions ─────────────────────────────────────────

    async def add_action_item(
        self,
        meeting_id: str,
        text: str,
        assignee: str | None = None,
        deadline: str | None = None,
        status: str = "open",
    ) -> ActionItem:
        """Record an action item for a meeting.

        Raises:
            NotFoundError: If the meeting does not exist.
            InvalidRequestError: If status is not a known value.
        """
        if status not in ACTION_STATUSES:
            raise InvalidRequestError(f"Unknown action item status: {status}")
        meeting_id = normalize_record_id(meeting_id)
        row = ActionItemRow(
            id=new_id(),
            meeting_id=meeting_id,
            text=text,
            assignee=assignee,
            deadline=deadline,
            status=status,
            created_at=utc_now(),
        )
        async with self._writing() as session:
            await self._require_meeting(session, meeting_id)
            session.add(row)
        return row_to_action_item(row)

    async def update_action_item_status(self, action_id: str, status: str) -> ActionItem:
        """Change an action item's status.

        Raises:
            NotFoundError: If the action item does not exist.
            InvalidRequestError: If status is not a known value.
        """
        if status not in ACTION_STATUSES:
            raise InvalidRequestError(f"Unknown action item status: {status}")
        action_id = normalize_record_id(action_id)
        async with self._writing() as session:
            row = await session.get(ActionItemRow, action_id)
            if row is None:
                raise NotFoundError("ActionItem", action_id)
            row.status = status
        logger.info("action_item.status_changed", action_id=action_id, status=status)
        return row_to_action_item(row)

    async def get_meeting_action_items(self, meeting_id: str) -> list[ActionItem]:
        async with self._reading() as session:
            stmt = (
                select(ActionItemRow)
                .where(ActionItemRow.meeting_id == normalize_record_id(meeting_id))
                .order_by(ActionItemRow.created_at)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_action_item)

    async def get_all_action_items(
        self, status: str | None = None, limit: int | None = None
    ) -> list[MeetingActionItem]:
        """All action items (optionally one status) with meeting titles, newest first."""
        stmt = (
            select(ActionItemRow, MeetingRow.title)
            .outerjoin(MeetingRow, MeetingRow.id == ActionItemRow.meeting_id)
            .order_by(ActionItemRow.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(ActionItemRow.status == status)
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._action_items_with_titles(stmt)

    async def get_open_action_items(
        self, meeting_ids: list[str] | None = None, limit: int = 10
    ) -> list[MeetingActionItem]:
        """Action items not done/completed, optionally scoped to meetings."""
        stmt = (
            select(ActionItemRow, MeetingRow.title)
            .outerjoin(MeetingRow, MeetingRow.id == ActionItemRow.meeting_id)
            .where(ActionItemRow.status.not_in(["done", "completed"]))
            .order_by(ActionItemRow.created_at.desc())
            .limit(limit)
        )
        if meeting_ids is not None:
            stmt = stmt.where(ActionItemRow.meeting_id.in_(meeting_ids))
        return await self._action_items_with_titles(stmt)

    async def _action_items_with_titles(self, stmt: Any) -> list[MeetingActionItem]:
        async with self._reading() as session:
            rows = (await session.execute(stmt)).all()
        items: list[MeetingActionItem] = []
        for row, title in rows:
            for item in convert_rows([row], row_to_action_item):
                items.append(
                    MeetingActionItem(**item.model_dump(), meeting_title=title or "Unknown")
                )
        return items

    async def add_decision(
        self, meeting_id: str, text: str, participants: list[str] | None = None
    ) -> Decision:
        """Record a decision for a meeting.

        Raises:
            NotFoundError: If the meeting does not exist.
        """
        meeting_id = normalize_record_id(meeting_id)
        row = DecisionRow(
            id=new_id(),
            meeting_id=meeting_id,
            text=text,
            participants_data=list(participants or []),
            created_at=utc_now(),
        )
        async with self._writing() as session:
            await self._require_meeting(session, meeting_id)
            session.add(row)
        return row_to_decision(row)

    async def get_meeting_decisions(self, meeting_id: str) -> list[Decision]:
        async with self._reading() as session:
            stmt = (
                select(DecisionRow)
                .where(DecisionRow.meeting_id == normalize_record_id(meeting_id))
                .order_by(DecisionRow.created_at)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_decision)

    async def get_all_decisions(self, limit: int | None = None) -> list[MeetingDecision]:
        return await self.get_recent_decisions(meeting_ids=None, limit=limit)

    async def get_recent_decisions(
        self, meeting_ids: list[str] | None = None, limit: int | None = 10
    ) -> list[MeetingDecision]:
        """Most recent decisions with meeting titles, optionally scoped."""
        stmt = (
            select(DecisionRow, MeetingRow.title)
            .outerjoin(MeetingRow, MeetingRow.id == DecisionRow.meeting_id)
            .order_by(DecisionRow.created_at.desc())
        )
        if meeting_ids is not None:
            stmt = stmt.where(DecisionRow.meeting_id.in_(meeting_ids))
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._reading() as session:
            rows = (await session.execute(stmt)).all()
        decisions: list[MeetingDecision] = []
        for row, title in rows:
            for decision in convert_rows([row], row_to_decision):
                decisions.append(
                    MeetingDecision(**decision.model_dump(), meeting_title=title or "Unknown")
                )
        return decisions

    # ── Graph writes ─────────────────────────────────────────────────────

    async def record_graph(
        self,
        entities: list[Entity],
        relations: list[Relationship],
        *,
        topic_labels: frozenset[str],
        meeting_id: str | None = None,
        knowledge_source_id: str | None = None,
        topic_vectors: dict[str, list[float]] | None = None,
        capture_actions: bool = False,
        seen_at: datetime | None = None,
    ) -> tuple[list[Person], list[Topic]]:
        """Write the entities and relations derived from one ingested unit.

        Everything below commits in one transaction, so readers see either
        all of a unit's nodes, edges, and relations or none of them:
        - person entities upsert Person nodes (create, or bump last_seen)
        - entities with a topic label upsert Topic nodes (create, or bump
          mention_count/last_mentioned)
        - with meeting provenance, mentioned_in/discussed_in edges link the
          nodes to the meeting
        - relations at or above relation_min_confidence are stored with
          their provenance
        - with capture_actions, action_item/decision entities create rows

        Args:
            entities: Extracted entities.
            relations: Extracted relations.
            topic_labels: Entity labels promoted to Topic nodes.
            meeting_id: Provenance when the unit is a segment.
            knowledge_source_id: Provenance when the unit is a document sample.
            topic_vectors: Precomputed name embeddings keyed by normalized name.
            capture_actions: Create ActionItem/Decision rows from entities.
            seen_at: Observation time; defaults to now.

        Returns:
            Tuple of (persons, topics) touched by this unit.

        Raises:
            InvalidRequestError: Unless exactly one provenance is given.
            NotFoundError: If the provenance record does not exist.
        """
        if (meeting_id is None) == (knowledge_source_id is None):
            raise InvalidRequestError("Exactly one of meeting_id or knowledge_source_id is required")
        when = seen_at or utc_now()
        meeting_id = normalize_record_id(meeting_id) if meeting_id else None
        knowledge_source_id = (
            normalize_record_id(knowledge_source_id) if knowledge_source_id else None
        )
        min_confidence = self._config.relation_min_confidence

        persons: dict[str, PersonRow] = {}
        topics: dict[str, TopicRow] = {}

        async with self._writing() as session:
            if meeting_id is not None:
                await self._require_meeting(session, meeting_id)
            elif await session.get(KnowledgeSourceRow, knowledge_source_id) is None:
                raise NotFoundError("KnowledgeSource", knowledge_source_id or "")

            for entity in entities:
                normalized = normalize_name(entity.text)
                if not normalized:
                    continue
                label = entity.label.lower()
                if label in PERSON_LABELS and normalized not in persons:
                    persons[normalized] = await self._upsert_person(
                        session, entity.text.strip(), normalized, when
                    )
                    if meeting_id is not None:
                        await self._ensure_edge(
                            session, EDGE_MENTIONED_IN, normalized, meeting_id, when
                        )
                elif label in topic_labels and normalized not in topics:
                    topics[normalized] = await self._upsert_topic(
                        session, entity.text.strip(), normalized, when
                    )
                    if meeting_id is not None:
                        await self._ensure_edge(
                            session, EDGE_DISCUSSED_IN, normalized, meeting_id, when
                        )
                elif capture_actions and meeting_id is not None and label == "action_item":
                    session.add(
                        ActionItemRow(
                            id=new_id(),
                            meeting_id=meeting_id,
                            text=entity.text.strip(),
                            status="open",
                            created_at=when,
                        )
                    )
                elif capture_actions and meeting_id is not None and label == "decision":
                    session.add(
                        DecisionRow(
                            id=new_id(),
                            meeting_id=meeting_id,
                            text=entity.text.strip(),
                            participants_data=[],
                            created_at=when,
                        )
                    )

            stored_relations = 0
            for relation in relations:
                if relation.confidence < min_confidence:
                    continue
                source_norm = normalize_name(relation.source)
                target_norm = normalize_name(relation.target)
                if not source_norm or not target_norm:
                    continue
                session.add(
                    EntityRelationRow(
                        id=new_id(),
                        source_entity=relation.source.strip(),
                        source_normalized=source_norm,
                        source_type=relation.source_type,
                        relation=relation.relation,
                        target_entity=relation.target.strip(),
                        target_normalized=target_norm,
                        target_type=relation.target_type,
                        confidence=relation.confidence,
                        meeting_id=meeting_id,
                        knowledge_source_id=knowledge_source_id,
                        created_at=when,
                    )
                )
                stored_relations += 1

        if topic_vectors:
            points = [
                (
                    row.id,
                    topic_vectors[normalized],
                    {"kind": KIND_TOPIC, "name": row.name, "text": row.name},
                )
                for normalized, row in topics.items()
                if normalized in topic_vectors
            ]
            await self._vectors.upsert(points)

        logger.info(
            "graph.recorded",
            meeting_id=meeting_id,
            knowledge_source_id=knowledge_source_id,
            persons=len(persons),
            topics=len(topics),
            relations=stored_relations,
        )
        return (
            convert_rows(persons.values(), row_to_person),
            convert_rows(topics.values(), row_to_topic),
        )

    @staticmethod
    async def _upsert_person(
        session: AsyncSession, name: str, normalized: str, when: datetime
    ) -> PersonRow:
        row = await session.get(PersonRow, node_id("person", normalized))
        if row is None:
            row = (
                await session.execute(
                    select(PersonRow).where(PersonRow.normalized_name == normalized)
                )
            ).scalar_one_or_none()
        if row is None:
            row = PersonRow(
                id=node_id("person", normalized),
                name=name,
                normalized_name=normalized,
                aliases_data=[],
                first_seen=when,
                last_seen=when,
            )
            session.add(row)
            await session.flush()
            return row

        if when > row.last_seen:
            row.last_seen = when
        aliases = json_list(row.aliases_data, field="aliases", record_id=row.id)
        if name != row.name and name not in aliases:
            row.aliases_data = [*aliases, name]
        return row

    @staticmethod
    async def _upsert_topic(
        session: AsyncSession, name: str, normalized: str, when: datetime
    ) -> TopicRow:
        row = await session.get(TopicRow, node_id("topic", normalized))
        if row is None:
            row = (
                await session.execute(
                    select(TopicRow).where(TopicRow.normalized_name == normalized)
                )
            ).scalar_one_or_none()
        if row is None:
            row = TopicRow(
                id=node_id("topic", normalized),
                name=name,
                normalized_name=normalized,
                mention_count=1,
                last_mentioned=when,
                created_at=when,
            )
            session.add(row)
            await session.flush()
            return row

        row.mention_count = (row.mention_count or 0) + 1
        if when > row.last_mentioned:
            row.last_mentioned = when
        return row

    @staticmethod
    async def _ensure_edge(
        session: AsyncSession, edge: str, normalized: str, meeting_id: str, when: datetime
    ) -> None:
        stmt = select(GraphEdgeRow.id).where(
            GraphEdgeRow.edge == edge,
            GraphEdgeRow.entity_normalized == normalized,
            GraphEdgeRow.meeting_id == meeting_id,
        )
        if (await session.execute(stmt)).first() is None:
            session.add(
                GraphEdgeRow(
                    id=new_id(),
                    edge=edge,
                    entity_normalized=normalized,
                    meeting_id=meeting_id,
                    created_at=when,
                )
            )
            await session.flush()

    # ── Graph reads ──────────────────────────────────────────────────────

    async def list_people(self, limit: int = 100) -> list[Person]:
        async with self._reading() as session:
            stmt = select(PersonRow).order_by(PersonRow.last_seen.desc()).limit(limit)
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_person)

    async def list_topics(self, limit: int = 100) -> list[Topic]:
        """Topics ordered by mention count."""
        async with self._reading() as session:
            stmt = (
                select(TopicRow)
                .order_by(TopicRow.mention_count.desc(), TopicRow.last_mentioned.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_topic)

    async def get_person(self, name: str) -> Person | None:
        async with self._reading() as session:
            stmt = select(PersonRow).where(PersonRow.normalized_name == normalize_name(name))
            row = (await session.execute(stmt)).scalar_one_or_none()
            return convert_row(row, row_to_person) if row is not None else None

    async def get_topic(self, name: str) -> Topic | None:
        async with self._reading() as session:
            stmt = select(TopicRow).where(TopicRow.normalized_name == normalize_name(name))
            row = (await session.execute(stmt)).scalar_one_or_none()
            return convert_row(row, row_to_topic) if row is not None else None

    async def get_meeting_people(self, meeting_id: str) -> list[Person]:
        return await self._meeting_nodes(meeting_id, EDGE_MENTIONED_IN, PersonRow, row_to_person)

    async def get_meeting_topics(self, meeting_id: str) -> list[Topic]:
        return await self._meeting_nodes(meeting_id, EDGE_DISCUSSED_IN, TopicRow, row_to_topic)

    async def _meeting_nodes(self, meeting_id: str, edge: str, table: Any, converter: Any) -> list[Any]:
        async with self._reading() as session:
            stmt = (
                select(table)
                .join(GraphEdgeRow, GraphEdgeRow.entity_normalized == table.normalized_name)
                .where(
                    GraphEdgeRow.meeting_id == normalize_record_id(meeting_id),
                    GraphEdgeRow.edge == edge,
                )
                .order_by(table.name)
            )
            rows = (await session.execute(stmt)).scalars().unique().all()
            return convert_rows(rows, converter)

    async def get_meeting_relations(self, meeting_id: str) -> list[EntityRelation]:
        async with self._reading() as session:
            stmt = (
                select(EntityRelationRow)
                .where(EntityRelationRow.meeting_id == normalize_record_id(meeting_id))
                .order_by(EntityRelationRow.created_at)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_relation)

    async def get_entity_relationships(self, name: str, limit: int = 20) -> list[EntityRelation]:
        """Relations touching an entity, highest confidence first."""
        normalized = normalize_name(name)
        async with self._reading() as session:
            stmt = (
                select(EntityRelationRow)
                .where(
                    or_(
                        EntityRelationRow.source_normalized == normalized,
                        EntityRelationRow.target_normalized == normalized,
                    )
                )
                .order_by(EntityRelationRow.confidence.desc(), EntityRelationRow.created_at.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_relation)

    async def find_related_meetings(
        self,
        names: list[str],
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 5,
        segment_limit: int = 3,
    ) -> list[tuple[Meeting, list[Segment]]]:
        """Meetings whose title or segments mention any of names.

        Matching is Unicode case-insensitive substring ("JOSÉ" matches
        "José"). Results are newest first,
        optionally restricted to start_time in [start, end).

        Returns:
            (meeting, matching segments) pairs, at most segment_limit
            segments each in start order.
        """
        needles = [n for n in {normalize_name(name) for name in names} if n]
        if not needles:
            return []

        title_match = or_(
            *[self._folded(MeetingRow.title).contains(n, autoescape=True) for n in needles]
        )
        segment_text_match = or_(
            *[self._folded(SegmentRow.text).contains(n, autoescape=True) for n in needles]
        )
        segment_match = exists().where(
            SegmentRow.meeting_id == MeetingRow.id, segment_text_match
        )
        stmt = select(MeetingRow).where(or_(title_match, segment_match))
        if start is not None:
            stmt = stmt.where(MeetingRow.start_time >= start)
        if end is not None:
            stmt = stmt.where(MeetingRow.start_time < end)
        stmt = stmt.order_by(MeetingRow.start_time.desc()).limit(limit)

        async with self._reading() as session:
            meeting_rows = (await session.execute(stmt)).scalars().all()
            meetings = convert_rows(meeting_rows, row_to_meeting)
            if not meetings:
                return []
            seg_stmt = (
                select(SegmentRow)
                .where(SegmentRow.meeting_id.in_([m.id for m in meetings]), segment_text_match)
                .order_by(SegmentRow.start_ms)
            )
            segment_rows = (await session.execute(seg_stmt)).scalars().all()

        by_meeting: dict[str, list[Segment]] = defaultdict(list)
        for segment in convert_rows(segment_rows, row_to_segment):
            if len(by_meeting[segment.meeting_id]) < segment_limit:
                by_meeting[segment.meeting_id].append(segment)
        return [(m, by_meeting.get(m.id, [])) for m in meetings]

    async def get_people_context(
        self,
        names: list[str],
        meeting_ids: list[str],
        now: datetime,
        limit: int = 5,
        topic_limit: int = 5,
    ) -> list[PersonContext]:
        """People linked to the given entity names or meetings.

        A person qualifies when named directly, when an EntityRelation
        connects them to one of the names, or when they are mentioned in
        (or related within) one of the meetings.
        """
        needles = [n for n in {normalize_name(name) for name in names} if n]
        if not needles and not meeting_ids:
            return []

        async with self._reading() as session:
            candidates: set[str] = set(needles)
            relation_filters = []
            if needles:
                relation_filters.append(EntityRelationRow.source_normalized.in_(needles))
                relation_filters.append(EntityRelationRow.target_normalized.in_(needles))
            if meeting_ids:
                relation_filters.append(EntityRelationRow.meeting_id.in_(meeting_ids))
                edge_stmt = select(GraphEdgeRow.entity_normalized).where(
                    GraphEdgeRow.edge == EDGE_MENTIONED_IN,
                    GraphEdgeRow.meeting_id.in_(meeting_ids),
                )
                candidates.update((await session.execute(edge_stmt)).scalars().all())

            rel_stmt = select(EntityRelationRow).where(or_(*relation_filters))
            for rel in (await session.execute(rel_stmt)).scalars().all():
                if rel.source_type in PERSON_LABELS:
                    candidates.add(rel.source_normalized)
                if rel.target_type in PERSON_LABELS:
                    candidates.add(rel.target_normalized)

            person_stmt = (
                select(PersonRow)
                .where(PersonRow.normalized_name.in_(candidates))
                .order_by(PersonRow.last_seen.desc())
                .limit(limit)
            )
            people = convert_rows((await session.execute(person_stmt)).scalars().all(), row_to_person)

            contexts: list[PersonContext] = []
            for person in people:
                topic_stmt = (
                    select(EntityRelationRow.target_entity)
                    .where(
                        EntityRelationRow.source_normalized == person.normalized_name,
                        EntityRelationRow.target_type.in_(_TOPIC_LIKE_TYPES),
                    )
                    .order_by(EntityRelationRow.created_at.desc())
                )
                recent_topics: list[str] = []
                for topic in (await session.execute(topic_stmt)).scalars().all():
                    if topic not in recent_topics:
                        recent_topics.append(topic)
                    if len(recent_topics) >= topic_limit:
                        break

                count_stmt = select(func.count(distinct(GraphEdgeRow.meeting_id))).where(
                    GraphEdgeRow.edge == EDGE_MENTIONED_IN,
                    GraphEdgeRow.entity_normalized == person.normalized_name,
                )
                meeting_count = (await session.execute(count_stmt)).scalar_one()

                contexts.append(
                    PersonContext(
                        name=person.name,
                        last_seen=person.last_seen,
                        last_seen_days_ago=_days_ago(now, person.last_seen),
                        recent_topics=recent_topics,
                        meeting_count=meeting_count,
                    )
                )
        return contexts

    async def get_topics_context(
        self, names: list[str], now: datetime, limit: int = 5, people_limit: int = 5
    ) -> list[TopicContext]:
        """Topics whose normalized name equals one of names."""
        needles = [n for n in {normalize_name(name) for name in names} if n]
        if not needles:
            return []

        async with self._reading() as session:
            stmt = (
                select(TopicRow)
                .where(TopicRow.normalized_name.in_(needles))
                .order_by(TopicRow.mention_count.desc())
                .limit(limit)
            )
            topics = convert_rows((await session.execute(stmt)).scalars().all(), row_to_topic)

            contexts: list[TopicContext] = []
            for topic in topics:
                people_stmt = (
                    select(EntityRelationRow)
                    .where(
                        or_(
                            EntityRelationRow.target_normalized == topic.normalized_name,
                            EntityRelationRow.source_normalized == topic.normalized_name,
                        )
                    )
                    .order_by(EntityRelationRow.confidence.desc())
                )
                related_people: list[str] = []
                for rel in (await session.execute(people_stmt)).scalars().all():
                    if rel.target_normalized == topic.normalized_name:
                        other, other_type = rel.source_entity, rel.source_type
                    else:
                        other, other_type = rel.target_entity, rel.target_type
                    if other_type in PERSON_LABELS and other not in related_people:
                        related_people.append(other)
                    if len(related_people) >= people_limit:
                        break

                contexts.append(
                    TopicContext(
                        name=topic.name,
                        mention_count=topic.mention_count,
                        last_mentioned=topic.last_mentioned,
                        last_mentioned_days_ago=_days_ago(now, topic.last_mentioned),
                        related_people=related_people,
                    )
                )
        return contexts

    async def get_meeting_stats(self, meeting_id: str) -> MeetingStats | None:
        meeting_id = normalize_record_id(meeting_id)
        if await self.get_meeting(meeting_id) is None:
            return None
        segments = await self.get_meeting_segments(meeting_id)
        async with self._reading() as session:

            async def count(stmt: Any) -> int:
                return (await session.execute(stmt)).scalar_one()

            action_count = await count(
                select(func.count()).select_from(ActionItemRow).where(ActionItemRow.meeting_id == meeting_id)
            )
            decision_count = await count(
                select(func.count()).select_from(DecisionRow).where(DecisionRow.meeting_id == meeting_id)
            )
            topic_count = await count(
                select(func.count(distinct(GraphEdgeRow.entity_normalized))).where(
                    GraphEdgeRow.meeting_id == meeting_id,
                    GraphEdgeRow.edge == EDGE_DISCUSSED_IN,
                )
            )
            people_count = await count(
                select(func.count(distinct(GraphEdgeRow.entity_normalized))).where(
                    GraphEdgeRow.meeting_id == meeting_id,
                    GraphEdgeRow.edge == EDGE_MENTIONED_IN,
                )
            )

        duration_ms = 0
        if segments:
            duration_ms = max(s.end_ms for s in segments) - min(s.start_ms for s in segments)
        return MeetingStats(
            meeting_id=meeting_id,
            segment_count=len(segments),
            action_item_count=action_count,
            decision_count=decision_count,
            topic_count=topic_count,
            people_count=people_count,
            duration_ms=max(duration_ms, 0),
            total_words=sum(len(s.text.split()) for s in segments),
        )

    async def get_global_stats(self) -> GlobalStats:
        """Store-wide totals plus distinct entity counts per label.

        Entities are the person and topic nodes together with every
        relation endpoint, each counted once per (label, normalized name).
        """
        async with self._reading() as session:

            async def count(table: Any) -> int:
                return (await session.execute(select(func.count()).select_from(table))).scalar_one()

            totals = {
                "meeting_count": await count(MeetingRow),
                "segment_count": await count(SegmentRow),
                "people_count": await count(PersonRow),
                "topic_count": await count(TopicRow),
                "knowledge_source_count": await count(KnowledgeSourceRow),
                "knowledge_chunk_count": await count(KnowledgeChunkRow),
            }

            entities: dict[str, set[str]] = defaultdict(set)
            entities["person"].update((await session.execute(select(PersonRow.normalized_name))).scalars().all())
            entities["topic"].update((await session.execute(select(TopicRow.normalized_name))).scalars().all())
            endpoints = select(EntityRelationRow.source_type, EntityRelationRow.source_normalized).union(
                select(EntityRelationRow.target_type, EntityRelationRow.target_normalized)
            )
            for label, normalized in (await session.execute(endpoints)).all():
                entities[label].add(normalized)

        ranked = sorted(
            ((label, len(names)) for label, names in entities.items() if names),
            key=lambda item: (-item[1], item[0]),
        )
        return GlobalStats(**totals, entity_counts=dict(ranked))

    # ── Knowledge sources ────────────────────────────────────────────────

    async def save_knowledge_source(
        self,
        url: str,
        title: str,
        content: str,
        source_type: str = "document",
        tags: list[str] | None = None,
        chunks: list[str] | None = None,
        vectors: list[list[float]] | None = None,
    ) -> KnowledgeSource:
        """Insert a source, or replace the source already stored under url.

        Replacing drops the previous chunks, chunk vectors, tags, and the
        relations extracted from the previous content.

        Args:
            url: Unique source url or local path.
            title: Display title.
            content: Raw document content.
            source_type: Free-form type ("document", "web", "file", ...).
            tags: Tags for filtered search.
            chunks: Chunk texts in document order.
            vectors: One embedding per chunk, or None to store unembedded.

        Raises:
            InvalidRequestError: If url is blank or vectors do not
                line up with chunks.
        """
        if not url or not url.strip():
            raise InvalidRequestError("Knowledge source url must not be empty")
        chunks = chunks or []
        if vectors is not None and len(vectors) != len(chunks):
            raise InvalidRequestError("Expected one vector per chunk")
        tag_list = _clean_tags(tags)
        now = utc_now()

        indexed_ids: list[str] = []
        replaced_ids: list[str] = []
        try:
            async with self._writing() as session:
                stmt = select(KnowledgeSourceRow).where(KnowledgeSourceRow.url == url.strip())
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    row = KnowledgeSourceRow(
                        id=new_id(),
                        url=url.strip(),
                        title=title.strip() or url.strip(),
                        source_type=source_type,
                        raw_content=content,
                        tags_data=tag_list,
                        created_at=now,
                        last_updated=now,
                    )
                    session.add(row)
                else:
                    row.title = title.strip() or row.title
                    row.source_type = source_type
                    row.raw_content = content
                    row.tags_data = tag_list
                    row.last_updated = now
                    replaced_ids = await self._purge_source_children(
                        session, row.id, keep_links=True
                    )

                for tag in tag_list:
                    session.add(SourceTagRow(source_id=row.id, tag=tag))

                points: list[tuple[str, list[float], dict[str, Any]]] = []
                for index, text in enumerate(chunks):
                    chunk_row = KnowledgeChunkRow(
                        id=new_id(),
                        source_id=row.id,
                        text=text,
                        chunk_index=index,
                        created_at=now,
                    )
                    session.add(chunk_row)
                    if vectors is not None:
                        points.append(
                            (
                                chunk_row.id,
                                vectors[index],
                                {
                                    "kind": KIND_CHUNK,
                                    "source_id": row.id,
                                    "chunk_index": index,
                                    "text": text,
                                },
                            )
                        )
                await session.flush()
                await self._vectors.upsert(points)
                indexed_ids = [p[0] for p in points]
                await self._vectors.delete_ids(replaced_ids)
        except Exception:
            if indexed_ids:
                await self._vectors.delete_ids(indexed_ids)
            raise

        logger.info(
            "knowledge_source.saved",
            source_id=row.id,
            url=row.url,
            chunks=len(chunks),
            embedded=vectors is not None,
        )
        return row_to_source(row)

    async def _purge_source_children(
        self, session: AsyncSession, source_id: str, keep_links: bool
    ) -> list[str]:
        """Delete a source's chunk rows, tags, and relations.

        Returns the deleted chunk ids. Their vectors are left for the caller
        to remove once the rest of its transaction has been flushed.
        """
        forms = _qualified_forms(source_id, "knowledge_source")
        chunk_ids = (
            await session.execute(
                select(KnowledgeChunkRow.id).where(KnowledgeChunkRow.source_id.in_(forms))
            )
        ).scalars().all()
        await session.execute(delete(KnowledgeChunkRow).where(KnowledgeChunkRow.source_id.in_(forms)))
        await session.execute(delete(SourceTagRow).where(SourceTagRow.source_id == source_id))
        await session.execute(
            delete(EntityRelationRow).where(EntityRelationRow.knowledge_source_id == source_id)
        )
        if not keep_links:
            await session.execute(
                delete(MeetingKnowledgeRow).where(MeetingKnowledgeRow.source_id == source_id)
            )
        return list(chunk_ids)

    async def get_knowledge_source(self, source_id: str) -> KnowledgeSource | None:
        async with self._reading() as session:
            row = await session.get(KnowledgeSourceRow, normalize_record_id(source_id))
            return convert_row(row, row_to_source) if row is not None else None

    async def get_knowledge_sources(self, tags: list[str] | None = None) -> list[KnowledgeSource]:
        """All sources newest first; with tags, those carrying any tag."""
        stmt = select(KnowledgeSourceRow).order_by(KnowledgeSourceRow.created_at.desc())
        tag_list = _clean_tags(tags)
        if tag_list:
            stmt = stmt.where(
                KnowledgeSourceRow.id.in_(
                    select(SourceTagRow.source_id).where(SourceTagRow.tag.in_(tag_list))
                )
            )
        async with self._reading() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_source)

    async def update_source_tags(self, source_id: str, tags: list[str]) -> KnowledgeSource:
        """Replace a source's tags.

        Raises:
            NotFoundError: If the source does not exist.
        """
        source_id = normalize_record_id(source_id)
        tag_list = _clean_tags(tags)
        async with self._writing() as session:
            row = await session.get(KnowledgeSourceRow, source_id)
            if row is None:
                raise NotFoundError("KnowledgeSource", source_id)
            row.tags_data = tag_list
            row.last_updated = utc_now()
            await session.execute(delete(SourceTagRow).where(SourceTagRow.source_id == source_id))
            for tag in tag_list:
                session.add(SourceTagRow(source_id=source_id, tag=tag))
        return row_to_source(row)

    async def delete_knowledge_source(self, source_id: str) -> int:
        """Delete a source with its chunks, vectors, tags, relations, and links.

        Returns:
            Number of chunks deleted.

        Raises:
            NotFoundError: If the source does not exist.
        """
        source_id = normalize_record_id(source_id)
        async with self._writing() as session:
            row = await session.get(KnowledgeSourceRow, source_id)
            if row is None:
                raise NotFoundError("KnowledgeSource", source_id)
            chunk_ids = await self._purge_source_children(session, source_id, keep_links=False)
            await session.delete(row)
            await session.flush()
            await self._vectors.delete_ids(chunk_ids)
        logger.info("knowledge_source.deleted", source_id=source_id, chunks=len(chunk_ids))
        return len(chunk_ids)

    async def get_source_chunk_count(self, source_id: str) -> int:
        forms = _qualified_forms(source_id, "knowledge_source")
        async with self._reading() as session:
            stmt = (
                select(func.count())
                .select_from(KnowledgeChunkRow)
                .where(KnowledgeChunkRow.source_id.in_(forms))
            )
            return (await session.execute(stmt)).scalar_one()

    async def get_source_chunks(self, source_id: str) -> list[KnowledgeChunk]:
        forms = _qualified_forms(source_id, "knowledge_source")
        async with self._reading() as session:
            stmt = (
                select(KnowledgeChunkRow)
                .where(KnowledgeChunkRow.source_id.in_(forms))
                .order_by(KnowledgeChunkRow.chunk_index)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_chunk)

    async def link_knowledge_to_meeting(
        self,
        meeting_id: str,
        source_id: str,
        relevance_score: float = 1.0,
        assigned_by: str = "user",
    ) -> MeetingKnowledge:
        """Link a knowledge source to a meeting (updates an existing link).

        Raises:
            NotFoundError: If the meeting or source does not exist.
        """
        meeting_id = normalize_record_id(meeting_id)
        source_id = normalize_record_id(source_id)
        if assigned_by not in ("user", "auto"):
            raise InvalidRequestError(f"Unknown assigned_by: {assigned_by}")
        async with self._writing() as session:
            await self._require_meeting(session, meeting_id)
            if await session.get(KnowledgeSourceRow, source_id) is None:
                raise NotFoundError("KnowledgeSource", source_id)
            stmt = select(MeetingKnowledgeRow).where(
                MeetingKnowledgeRow.meeting_id == meeting_id,
                MeetingKnowledgeRow.source_id == source_id,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = MeetingKnowledgeRow(
                    id=new_id(),
                    meeting_id=meeting_id,
                    source_id=source_id,
                    relevance_score=relevance_score,
                    assigned_by=assigned_by,
                    created_at=utc_now(),
                )
                session.add(row)
            else:
                row.relevance_score = relevance_score
                row.assigned_by = assigned_by
        return row_to_meeting_knowledge(row)

    async def get_meeting_knowledge(self, meeting_id: str) -> list[KnowledgeSource]:
        """Knowledge sources linked to a meeting, most relevant first."""
        async with self._reading() as session:
            stmt = (
                select(KnowledgeSourceRow)
                .join(MeetingKnowledgeRow, MeetingKnowledgeRow.source_id == KnowledgeSourceRow.id)
                .where(MeetingKnowledgeRow.meeting_id == normalize_record_id(meeting_id))
                .order_by(MeetingKnowledgeRow.relevance_score.desc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_source)

    async def cleanup_orphaned_chunks(self) -> int:
        """Delete chunks whose knowledge source no longer exists.

        Bare ("abc") and qualified ("knowledge_source:abc") source ids are
        compared by their bare key.

        Returns:
            Number of chunks deleted.
        """
        async with self._writing() as session:
            referenced = (
                await session.execute(select(distinct(KnowledgeChunkRow.source_id)))
            ).scalars().all()
            if not referenced:
                return 0
            keys = {raw: normalize_record_id(raw) for raw in referenced}
            existing = set(
                (
                    await session.execute(
                        select(KnowledgeSourceRow.id).where(
                            KnowledgeSourceRow.id.in_(set(keys.values()))
                        )
                    )
                ).scalars().all()
            )
            orphaned = [raw for raw, key in keys.items() if key not in existing]
            if not orphaned:
                return 0

            chunk_ids = list(
                (
                    await session.execute(
                        select(KnowledgeChunkRow.id).where(KnowledgeChunkRow.source_id.in_(orphaned))
                    )
                ).scalars().all()
            )
            await session.execute(
                delete(KnowledgeChunkRow).where(KnowledgeChunkRow.source_id.in_(orphaned))
            )
            await self._vectors.delete_ids(chunk_ids)

        logger.info("chunks.orphans_deleted", sources=len(orphaned), chunks=len(chunk_ids))
        return len(chunk_ids)

    # ── Similarity search ────────────────────────────────────────────────

    async def _embed_query(self, query_text: str) -> list[float]:
        try:
            return await self._embedder.embed(query_text)
        except Exception as exc:
            raise ExtractionError(f"Could not embed query: {exc}") from exc

    async def search_knowledge(
        self,
        query_text: str,
        limit: int | None = None,
        tags: list[str] | None = None,
    ) -> list[KnowledgeSearchResult]:
        """Rank knowledge chunks and segments by similarity to query_text.

        Args:
            query_text: Free-text query.
            limit: Maximum results; defaults to config.default_top_k.
            tags: Restrict to chunks of sources carrying any of these tags.

        Returns:
            At most limit results, best first, each resolved to its source
            (or a fallback label when resolution fails).

        Raises:
            ExtractionError: If the query cannot be embedded.
        """
        k = self._config.default_top_k if limit is None else limit
        if k <= 0 or not query_text.strip():
            return []

        source_ids: list[str] | None = None
        kinds = [KIND_CHUNK, KIND_SEGMENT]
        tag_list = _clean_tags(tags)
        if tag_list:
            source_ids = [s.id for s in await self.get_knowledge_sources(tag_list)]
            if not source_ids:
                return []
            kinds = [KIND_CHUNK]

        vector = await self._embed_query(query_text)
        hits = await self._vectors.search(vector, kinds=kinds, limit=k, source_ids=source_ids)
        return (await self._resolve_hits(hits))[:k]

    async def search_segments(self, query_text: str, limit: int = 5) -> list[KnowledgeSearchResult]:
        """Segment-only similarity search; unresolved meetings read "Unknown"."""
        if limit <= 0 or not query_text.strip():
            return []
        vector = await self._embed_query(query_text)
        hits = await self._vectors.search(vector, kinds=[KIND_SEGMENT], limit=limit)
        results = await self._resolve_hits(hits)
        for result in results:
            if not result.resolved:
                result.source_title = "Unknown"
        return results[:limit]

    async def search_text(self, query_text: str, limit: int = 20) -> list[Segment]:
        """Keyword search: segments whose text contains query_text.

        Case-insensitive substring match with no embedding involved, so it
        keeps working when the embedding collaborator is down. Results
        are newest meeting first, then in start order.
        """
        needle = fold_text(query_text.strip())
        if limit <= 0 or not needle:
            return []
        stmt = (
            select(SegmentRow)
            .join(MeetingRow, MeetingRow.id == SegmentRow.meeting_id)
            .where(self._folded(SegmentRow.text).contains(needle, autoescape=True))
            .order_by(MeetingRow.start_time.desc(), SegmentRow.start_ms)
            .limit(limit)
        )
        async with self._reading() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return convert_rows(rows, row_to_segment)

    async def _resolve_hits(self, hits: list[Any]) -> list[KnowledgeSearchResult]:
        source_ids = {
            normalize_record_id(str((h.payload or {}).get("source_id", "")))
            for h in hits
            if (h.payload or {}).get("kind") == KIND_CHUNK
        }
        meeting_ids = {
            str((h.payload or {}).get("meeting_id", ""))
            for h in hits
            if (h.payload or {}).get("kind") == KIND_SEGMENT
        }

        sources: dict[str, tuple[str, str]] = {}
        meetings: dict[str, str] = {}
        try:
            sources = await self._load_source_labels(source_ids)
            meetings = await self._load_meeting_titles(meeting_ids)
        except (BrainError, SQLAlchemyError):
            logger.warning("search.source_resolution_failed", exc_info=True)

        results: list[KnowledgeSearchResult] = []
        for hit in hits:
            payload = hit.payload or {}
            similarity = min(max(float(hit.score), 0.0), 1.0)
            if payload.get("kind") == KIND_CHUNK:
                source_id = normalize_record_id(str(payload.get("source_id", "")))
                label = sources.get(source_id)
                results.append(
                    KnowledgeSearchResult(
                        kind="chunk",
                        id=str(hit.id),
                        source_id=source_id,
                        source_title=label[0] if label else f"Source {source_id}",
                        source_url=label[1] if label else "",
                        text=str(payload.get("text", "")),
                        chunk_index=payload.get("chunk_index"),
                        similarity=similarity,
                        resolved=label is not None,
                    )
                )
            else:
                meeting_id = str(payload.get("meeting_id", ""))
                title = meetings.get(meeting_id)
                results.append(
                    KnowledgeSearchResult(
                        kind="segment",
                        id=str(hit.id),
                        source_id=meeting_id,
                        source_title=title if title is not None else f"Meeting {meeting_id}",
                        text=str(payload.get("text", "")),
                        speaker=payload.get("speaker"),
                        similarity=similarity,
                        resolved=title is not None,
                    )
                )
        return results

    async def _load_source_labels(self, source_ids: set[str]) -> dict[str, tuple[str, str]]:
        if not source_ids:
            return {}
        async with self._reading() as session:
            stmt = select(KnowledgeSourceRow.id, KnowledgeSourceRow.title, KnowledgeSourceRow.url).where(
                KnowledgeSourceRow.id.in_(source_ids)
            )
            return {row.id: (row.title, row.url) for row in (await session.execute(stmt)).all()}

    async def _load_meeting_titles(self, meeting_ids: set[str]) -> dict[str, str]:
        if not meeting_ids:
            return {}
        async with self._reading() as session:
            stmt = select(MeetingRow.id, MeetingRow.title).where(MeetingRow.id.in_(meeting_ids))
            return {row.id: row.title for row in (await session.execute(stmt)).all()}
