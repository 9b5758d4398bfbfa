"""Tests for IngestionCoordinator with fake embedder and extractor."""

from __future__ import annotations

import asyncio

import pytest

from src.brain.errors import InvalidRequestError, NotFoundError
from src.brain.ingestion.coordinator import IngestionCoordinator, select_extraction_samples
from src.brain.models import Entity


class TestAddSegment:
    async def test_john_budget_scenario(self, store, coordinator):
        meeting = await store.create_meeting("Budget planning")

        result = await coordinator.add_segment(
            meeting.id, "John", "John will review the budget by Friday", 0, 4000
        )

        assert result.embedding.is_ok
        assert {(e.text, e.label) for e in result.extraction.entities} >= {
            ("John", "person"),
            ("budget", "topic"),
        }
        assert [p.name for p in await store.get_meeting_people(meeting.id)] == ["John"]
        assert [t.name for t in await store.get_meeting_topics(meeting.id)] == ["budget"]

        item = await store.add_action_item(meeting.id, "Review the budget", assignee="John")
        assert item.status == "open"

    async def test_segment_round_trip(self, store, coordinator):
        meeting = await store.create_meeting("Sync")
        await coordinator.add_segment(meeting.id, "Guest", "hello there", 100, 900)

        segments = await store.get_meeting_segments(meeting.id)

        assert [(s.speaker, s.text, s.start_ms, s.end_ms, s.has_embedding) for s in segments] == [
            ("Guest", "hello there", 100, 900, True)
        ]

    async def test_unknown_meeting(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.add_segment("missing", "John", "hi", 0, 1)

    async def test_embedding_failure_still_stores_segment(self, store, coordinator, embedder):
        meeting = await store.create_meeting("Sync")
        embedder.fail = True

        result = await coordinator.add_segment(meeting.id, "John", "John on budget", 0, 1000)

        assert result.embedding.status == "skipped"
        assert result.extraction.status == "skipped"
        segments = await store.get_meeting_segments(meeting.id)
        assert len(segments) == 1 and not segments[0].has_embedding
        assert await store.list_people() == []

    async def test_extraction_failure_is_contained(self, store, coordinator, extractor):
        meeting = await store.create_meeting("Sync")
        extractor.fail_entities = True

        result = await coordinator.add_segment(meeting.id, "John", "John on budget", 0, 1000)

        assert result.extraction.status == "skipped"
        assert "entity extraction failed" in result.extraction.reason
        assert len(await store.get_meeting_segments(meeting.id)) == 1

    async def test_relation_failure_keeps_entities(self, store, coordinator, extractor):
        meeting = await store.create_meeting("Sync")
        extractor.fail_relations = True

        result = await coordinator.add_segment(meeting.id, "Sarah", "Sarah and the roadmap", 0, 1)

        assert result.extraction.is_ok
        assert result.extraction.relation_outcome.status == "skipped"
        assert await store.get_meeting_relations(meeting.id) == []
        assert [t.name for t in await store.list_topics()] == ["roadmap"]

    async def test_concurrent_mentions_no_duplicate_nodes(self, store, coordinator):
        meeting = await store.create_meeting("Sync")

        await asyncio.gather(
            *(
                coordinator.add_segment(meeting.id, "Guest", f"john talks budget {i}", i * 1000, i * 1000 + 500)
                for i in range(8)
            )
        )

        assert len(await store.list_people()) == 1
        topics = await store.list_topics()
        assert len(topics) == 1 and topics[0].mention_count == 8
        assert len(await store.get_meeting_segments(meeting.id)) == 8

    async def test_auto_capture_action_items(self, store, embedder, config):
        class ActionExtractor:
            async def extract_entities(self, text):
                return [
                    Entity(text="Send the deck", label="action_item"),
                    Entity(text="Go with vendor B", label="decision"),
                ]

            async def extract_relations(self, text, entities):
                return []

        enabled = config.model_copy(update={"auto_capture_action_items": True})
        coordinator = IngestionCoordinator(store, embedder, ActionExtractor(), enabled)
        meeting = await store.create_meeting("Sync")

        await coordinator.add_segment(meeting.id, "John", "anything", 0, 1)

        assert [a.text for a in await store.get_meeting_action_items(meeting.id)] == ["Send the deck"]
        assert [d.text for d in await store.get_meeting_decisions(meeting.id)] == ["Go with vendor B"]


class TestSamples:
    def test_min_length_and_cap(self):
        content = "\n\n".join(["short"] + [f"{'x' * 60} paragraph {i}" for i in range(30)])
        samples = select_extraction_samples(content, min_chars=50, max_samples=20)
        assert len(samples) == 20
        assert samples[0].endswith("paragraph 0")

    def test_no_eligible_paragraphs(self):
        assert select_extraction_samples("tiny\n\nalso tiny") == []


class TestAddKnowledgeSource:
    async def test_chunks_and_graph(self, store, coordinator, extractor):
        paragraph = "Maria leads the Atlas rollout and owns the hiring plan for Acme this year."
        content = "\n\n".join([paragraph] * 3 + ["filler " * 400])

        result = await coordinator.add_knowledge_source(
            "https://wiki/atlas", "Atlas", content, tags=["product"]
        )

        assert result.chunk_count >= 2
        assert result.embedding.is_ok
        assert len(result.samples) == 4
        assert await store.get_source_chunk_count(result.source.id) == result.chunk_count
        topic_names = {t.name for t in await store.list_topics()}
        assert {"Atlas", "hiring", "Acme"} <= topic_names
        assert [p.name for p in await store.list_people()] == ["Maria"]

    async def test_sample_cap(self, store, coordinator, extractor, config):
        paragraphs = [f"Paragraph {i} mentions budget and more words to pass the floor." for i in range(30)]

        result = await coordinator.add_knowledge_source("doc", "Doc", "\n\n".join(paragraphs))

        assert len(result.samples) == config.extraction_max_samples
        assert extractor.entity_calls == config.extraction_max_samples

    async def test_failed_sample_is_skipped(self, store, coordinator, extractor):
        extractor.fail_entities = True
        content = "John reviewed the budget line by line with the finance group today."

        result = await coordinator.add_knowledge_source("doc", "Doc", content)

        assert [s.status for s in result.samples] == ["skipped"]
        assert await store.get_source_chunk_count(result.source.id) == 1
        assert await store.list_people() == []

    async def test_embedding_failure_stores_unembedded(self, store, coordinator, embedder):
        embedder.fail = True
        result = await coordinator.add_knowledge_source("doc", "Doc", "some text")
        assert result.embedding.status == "skipped"
        assert await store.get_source_chunk_count(result.source.id) == 1

    async def test_reingest_replaces(self, store, coordinator, embedder):
        first = await coordinator.add_knowledge_source("doc", "Doc", "old content about budget")
        second = await coordinator.add_knowledge_source("doc", "Doc v2", "new content")

        assert second.source.id == first.source.id
        assert (await store.get_knowledge_source(first.source.id)).title == "Doc v2"
        chunks = await store.get_source_chunks(first.source.id)
        assert [c.text for c in chunks] == ["new content"]

    async def test_blank_url_rejected(self, coordinator):
        with pytest.raises(InvalidRequestError):
            await coordinator.add_knowledge_source("  ", "Doc", "text")


class TestIngestFile:
    async def test_markdown_with_frontmatter(self, store, coordinator, tmp_path):
        path = tmp_path / "plan.md"
        path.write_text("---\ntitle: Hiring Plan\ntags: [hr]\n---\n# Ignored\n\nWe need two engineers.\n")

        result = await coordinator.ingest_file(path, tags=["2026"])

        assert result.source.title == "Hiring Plan"
        assert result.source.tags == ["hr", "2026"]
        assert result.source.source_type == "markdown"
        hits = await store.search_knowledge("engineers", tags=["hr"])
        assert hits and hits[0].source_id == result.source.id

    async def test_missing_file(self, coordinator, tmp_path):
        with pytest.raises(FileNotFoundError):
            await coordinator.ingest_file(tmp_path / "nope.md")
