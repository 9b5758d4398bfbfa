"""Graph-RAG query engine.

Answers a question with a GraphRAGContext bundle built from two
independent retrieval paths:

    question -> extract entities + parse temporal window
             -> graph: related meetings, people, topics,
                       open action items, recent decisions
             -> vector: search_knowledge top-K

Every section is best-effort: a failing section is logged, recorded in
section_errors, and left empty while the others still run. "Nothing
found" is never an error.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import TypeVar

import structlog

from src.brain.config import BrainConfig
from src.brain.extraction import EntityExtractor
from src.brain.models import (
    GraphRAGContext,
    MeetingActionItem,
    MeetingContext,
    MeetingDecision,
    StepOutcome,
    utc_now,
)
from src.brain.store.knowledge_store import KnowledgeStore
from src.brain.temporal import parse_temporal_window

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GraphRAGEngine:
    """Builds the retrieval bundle for a question.

    Args:
        store: Knowledge store to traverse and search.
        extractor: Entity extractor applied to the question.
        config: Brain configuration (section limits, default top-K).
    """

    def __init__(
        self,
        store: KnowledgeStore,
        extractor: EntityExtractor,
        config: BrainConfig,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._config = config

    async def _section(
        self,
        name: str,
        context: GraphRAGContext,
        call: Awaitable[list[T]],
    ) -> list[T]:
        try:
            return await call
        except Exception as exc:
            logger.warning("graph_rag.section_failed", section=name, error=str(exc), exc_info=True)
            context.section_errors[name] = str(exc)
            return []

    async def query(
        self,
        question: str,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> GraphRAGContext:
        """Retrieve everything relevant to question.

        Args:
            question: Natural-language question.
            limit: Vector-search result count; defaults to config.default_top_k.
            now: Reference time for the temporal window and "days ago"
                values; defaults to the current UTC time.

        Returns:
            The populated bundle; sections with no data are empty lists.
        """
        now = now or utc_now()
        top_k = self._config.default_top_k if limit is None else limit
        context = GraphRAGContext(
            question=question,
            generated_at=now,
            temporal=parse_temporal_window(question, now),
        )

        try:
            context.entities = await self._extractor.extract_entities(question)
        except Exception as exc:
            logger.warning("graph_rag.entity_extraction_failed", error=str(exc), exc_info=True)
            context.entity_extraction = StepOutcome.skipped(f"entity extraction failed: {exc}")
        names = [e.text for e in context.entities]

        window = context.temporal
        meetings, topics, knowledge = await asyncio.gather(
            self._section(
                "meetings",
                context,
                self._store.find_related_meetings(
                    names,
                    start=window.start if window else None,
                    end=window.end if window else None,
                    limit=self._config.graph_meeting_limit,
                    segment_limit=self._config.graph_segment_limit,
                ),
            ),
            self._section(
                "topics",
                context,
                self._store.get_topics_context(
                    names, now=now, limit=self._config.graph_topic_limit
                ),
            ),
            self._section(
                "knowledge",
                context,
                self._store.search_knowledge(question, limit=top_k),
            ),
        )
        context.meetings = [
            MeetingContext(
                meeting=meeting,
                days_ago=max(0, (now - meeting.start_time).days),
                segments=segments,
            )
            for meeting, segments in meetings
        ]
        context.topics = topics
        context.knowledge = knowledge

        meeting_ids = [m.meeting.id for m in context.meetings]
        scope = meeting_ids or None
        people, actions, decisions = await asyncio.gather(
            self._section(
                "people",
                context,
                self._store.get_people_context(
                    names, meeting_ids, now=now, limit=self._config.graph_people_limit
                ),
            ),
            self._section(
                "action_items",
                context,
                self._open_actions(scope),
            ),
            self._section(
                "decisions",
                context,
                self._recent_decisions(scope),
            ),
        )
        context.people = people
        context.action_items = actions
        context.decisions = decisions

        logger.info(
            "graph_rag.query_complete",
            entities=len(context.entities),
            temporal=window.phrase if window else None,
            meetings=len(context.meetings),
            people=len(context.people),
            topics=len(context.topics),
            action_items=len(context.action_items),
            decisions=len(context.decisions),
            knowledge=len(context.knowledge),
            failed_sections=sorted(context.section_errors),
        )
        return context

    async def _open_actions(self, meeting_ids: list[str] | None) -> list[MeetingActionItem]:
        return await self._store.get_open_action_items(
            meeting_ids=meeting_ids, limit=self._config.graph_action_limit
        )

    async def _recent_decisions(self, meeting_ids: list[str] | None) -> list[MeetingDecision]:
        return await self._store.get_recent_decisions(
            meeting_ids=meeting_ids, limit=self._config.graph_decision_limit
        )
