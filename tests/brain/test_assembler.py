"""Tests for context rendering and the answering assistant."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.brain.models import (
    Entity,
    GraphRAGContext,
    KnowledgeSearchResult,
    Meeting,
    MeetingActionItem,
    MeetingContext,
    MeetingDecision,
    PersonContext,
    Segment,
    TopicContext,
)
from src.brain.rag.assembler import (
    LLM_UNAVAILABLE_PREFIX,
    NO_RELEVANT_INFORMATION,
    ContextAssembler,
    KnowledgeAssistant,
)
from src.brain.rag.graph_rag import GraphRAGEngine
from src.brain.temporal import parse_temporal_window

NOW = datetime(2026, 3, 16, 12, 0, tzinfo=timezone.utc)


def _full_context() -> GraphRAGContext:
    meeting = Meeting(id="m1", title="Finance sync", start_time=NOW - timedelta(days=3))
    long_text = "x" * 150
    return GraphRAGContext(
        question="What did John say about the budget last week?",
        generated_at=NOW,
        temporal=parse_temporal_window("last week", NOW),
        entities=[Entity(text="John", label="person"), Entity(text="budget", label="topic")],
        meetings=[
            MeetingContext(
                meeting=meeting,
                days_ago=3,
                segments=[
                    Segment(meeting_id="m1", speaker="John", text="Budget is tight", start_ms=0, end_ms=1),
                    Segment(meeting_id="m1", speaker="Sarah", text=long_text, start_ms=1, end_ms=2),
                    Segment(meeting_id="m1", speaker="Maria", text="third", start_ms=2, end_ms=3),
                ],
            )
        ],
        people=[
            PersonContext(name="John", last_seen=NOW, last_seen_days_ago=3, recent_topics=["budget"]),
            PersonContext(name="Sarah", last_seen=NOW, last_seen_days_ago=5),
        ],
        topics=[
            TopicContext(name="budget", mention_count=4, last_mentioned=NOW, last_mentioned_days_ago=3),
        ],
        action_items=[
            MeetingActionItem(meeting_id="m1", text="Review the budget", assignee="John"),
            MeetingActionItem(meeting_id="m1", text="Book a room"),
        ],
        decisions=[MeetingDecision(meeting_id="m1", text="Freeze hiring")],
        knowledge=[
            KnowledgeSearchResult(
                kind="chunk",
                id="c1",
                source_id="s1",
                source_title="Budget FY26",
                source_url="https://wiki/budget",
                text="line one\nline two",
                similarity=0.876,
            )
        ],
    )


class TestRender:
    def test_sections_in_order(self):
        rendered = ContextAssembler().render(_full_context())
        headings = [line for line in rendered.splitlines() if line.startswith("## ")]
        assert headings == [
            "## Temporal Reference Detected",
            "## Entities Mentioned in Query",
            "## Related Meetings",
            "## Related People",
            "## Related Topics",
            "## Open Action Items",
            "## Recent Decisions",
            "## Potentially Relevant Documents (from Knowledge Base - NOT mentioned in meetings)",
        ]

    def test_section_content(self):
        rendered = ContextAssembler().render(_full_context())
        assert "Time reference: last week" in rendered
        assert "John (person), budget (topic)" in rendered
        assert "**Finance sync** (3 days ago)" in rendered
        assert '  - John: "Budget is tight"' in rendered
        assert f'  - Sarah: "{"x" * 100}..."' in rendered
        assert "Maria" not in rendered
        assert "- **John** (last seen 3 days ago): discusses budget" in rendered
        assert "- **Sarah** (last seen 5 days ago): discusses No topics recorded" in rendered
        assert "- **budget**: mentioned 4 times, last 3 days ago (discussed by: various participants)" in rendered
        assert "- Review the budget (assigned to: John)" in rendered
        assert "- Book a room (assigned to: Unassigned)" in rendered
        assert "- Freeze hiring" in rendered
        assert "### Budget FY26 (88% similarity)\nURL: https://wiki/budget\n> line one\n> line two" in rendered

    def test_empty_sections_omitted(self):
        context = GraphRAGContext(question="q", generated_at=NOW)
        context.decisions = [MeetingDecision(meeting_id="m1", text="Ship Friday")]
        rendered = ContextAssembler().render(context)
        assert rendered == "## Recent Decisions\n- Ship Friday\n"

    def test_caps_action_items_and_decisions(self):
        context = GraphRAGContext(question="q", generated_at=NOW)
        context.action_items = [MeetingActionItem(meeting_id="m", text=f"a{i}") for i in range(8)]
        context.decisions = [MeetingDecision(meeting_id="m", text=f"d{i}") for i in range(8)]
        rendered = ContextAssembler().render(context)
        assert "- a4 " in rendered and "- a5 " not in rendered
        assert "- d4" in rendered and "- d5" not in rendered


class TestEmptiness:
    def test_entities_and_temporal_alone_are_empty(self):
        context = GraphRAGContext(
            question="q",
            generated_at=NOW,
            temporal=parse_temporal_window("yesterday", NOW),
            entities=[Entity(text="John", label="person")],
        )
        assert context.is_empty

    def test_any_retrieved_section_is_not_empty(self):
        context = _full_context()
        assert not context.is_empty


class TestAssistant:
    async def test_empty_bundle_short_circuits(self, store, extractor, config, llm):
        assistant = KnowledgeAssistant(GraphRAGEngine(store, extractor, config), llm)

        answer = await assistant.ask("What did John say?", now=NOW)

        assert answer.answer == NO_RELEVANT_INFORMATION
        assert llm.prompts == []
        assert not answer.used_llm

    async def test_llm_receives_context_and_question(self, store, coordinator, extractor, config, llm):
        meeting = await store.create_meeting("Finance sync", start_time=NOW - timedelta(days=1))
        await coordinator.add_segment(meeting.id, "John", "John owns the budget", 0, 1000)
        llm.answer = "John owns the budget."
        assistant = KnowledgeAssistant(GraphRAGEngine(store, extractor, config), llm)

        answer = await assistant.ask("Who owns the budget?", now=NOW)

        assert answer.used_llm
        assert answer.answer == "John owns the budget."
        assert len(llm.prompts) == 1
        assert "## Related Meetings" in llm.prompts[0]
        assert "USER QUESTION: Who owns the budget?" in llm.prompts[0]

    async def test_llm_failure_falls_back(self, store, coordinator, extractor, config, llm):
        meeting = await store.create_meeting("Finance sync")
        await coordinator.add_segment(meeting.id, "John", "budget", 0, 1000)
        llm.error = RuntimeError("rate limited")
        assistant = KnowledgeAssistant(GraphRAGEngine(store, extractor, config), llm)

        answer = await assistant.ask("budget?", now=NOW)

        assert not answer.used_llm
        assert answer.llm_error == "rate limited"
        assert answer.answer.startswith(LLM_UNAVAILABLE_PREFIX)
        assert answer.rendered_context in answer.answer
