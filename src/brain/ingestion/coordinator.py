"""Ingestion coordinator: segments and documents into the knowledge store.

Orchestrates the write path for both kinds of input:

    add_segment:          embed -> extract -> insert_segment -> record_graph
    add_knowledge_source: chunk -> embed_batch -> save_knowledge_source
                          -> extract(samples) -> record_graph per sample

Embedding and extraction always run before the store's write lock is
taken. Collaborator failures never fail the write; each step reports an
explicit StepOutcome instead.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

import structlog

from src.brain.config import BrainConfig
from src.brain.embeddings import Embedder
from src.brain.errors import NotFoundError
from src.brain.extraction import EntityExtractor, run_extraction
from src.brain.ingestion.chunker import DocumentChunker
from src.brain.ingestion.loaders import DocumentLoader
from src.brain.models import (
    SOURCE_TOPIC_LABELS,
    TOPIC_LABELS,
    Entity,
    ExtractionOutcome,
    SegmentIngestResult,
    SourceIngestResult,
    StepOutcome,
    normalize_name,
    utc_now,
)
from src.brain.store.knowledge_store import KnowledgeStore

logger = structlog.get_logger(__name__)


def select_extraction_samples(
    content: str, min_chars: int = 50, max_samples: int = 20
) -> list[str]:
    """First max_samples blank-line-separated paragraphs of at least min_chars."""
    samples: list[str] = []
    for paragraph in content.split("\n\n"):
        text = paragraph.strip()
        if len(text) >= min_chars:
            samples.append(text)
            if len(samples) >= max_samples:
                break
    return samples


class IngestionCoordinator:
    """Turns raw segments and documents into stored, linked knowledge.

    Args:
        store: Target knowledge store.
        embedder: Embedding collaborator.
        extractor: Entity/relationship extraction collaborator.
        config: Brain configuration.
        chunker: Chunker for knowledge sources; built from config if omitted.
        loader: File loader for ingest_file(); defaults to DocumentLoader.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embedder,
        extractor: EntityExtractor,
        config: BrainConfig,
        chunker: DocumentChunker | None = None,
        loader: DocumentLoader | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._extractor = extractor
        self._config = config
        self._chunker = chunker or DocumentChunker.from_config(config)
        self._loader = loader or DocumentLoader()

    # ── Segments ─────────────────────────────────────────────────────────

    async def add_segment(
        self,
        meeting_id: str,
        speaker: str,
        text: str,
        start_ms: int,
        end_ms: int,
        seen_at: datetime | None = None,
    ) -> SegmentIngestResult:
        """Store one transcript segment and merge what it mentions into the graph.

        The segment row is always written. An embedding failure stores it
        without a vector and skips extraction for the unit; an extraction
        failure leaves the graph untouched.

        Args:
            meeting_id: Owning meeting.
            speaker: Speaker label (may be generic, e.g. "Guest").
            text: Transcribed text.
            start_ms: Segment start offset in milliseconds.
            end_ms: Segment end offset in milliseconds.
            seen_at: Observation time for graph updates; defaults to now.

        Returns:
            The stored segment with per-step outcomes.

        Raises:
            NotFoundError: If the meeting does not exist.
        """
        if await self._store.get_meeting(meeting_id) is None:
            raise NotFoundError("Meeting", meeting_id)

        vector: list[float] | None = None
        try:
            vector = await self._embedder.embed(text)
            embedding = StepOutcome.ok()
        except Exception as exc:
            logger.warning(
                "ingest.segment_embedding_failed",
                meeting_id=meeting_id,
                error=str(exc),
                exc_info=True,
            )
            embedding = StepOutcome.skipped(f"embedding failed: {exc}")

        if embedding.is_ok:
            extraction = await run_extraction(self._extractor, text)
        else:
            extraction = ExtractionOutcome(status="skipped", reason="embedding unavailable")

        topic_vectors = await self._topic_vectors(extraction.entities, TOPIC_LABELS)

        segment = await self._store.insert_segment(
            meeting_id, speaker, text, start_ms, end_ms, vector=vector
        )
        if extraction.is_ok and (extraction.entities or extraction.relations):
            await self._store.record_graph(
                extraction.entities,
                extraction.relations,
                topic_labels=TOPIC_LABELS,
                meeting_id=segment.meeting_id,
                topic_vectors=topic_vectors,
                capture_actions=self._config.auto_capture_action_items,
                seen_at=seen_at or utc_now(),
            )

        logger.debug(
            "ingest.segment_added",
            meeting_id=segment.meeting_id,
            segment_id=segment.id,
            embedding=embedding.status,
            extraction=extraction.status,
            entities=len(extraction.entities),
        )
        return SegmentIngestResult(segment=segment, embedding=embedding, extraction=extraction)

    # ── Knowledge sources ────────────────────────────────────────────────

    async def add_knowledge_source(
        self,
        url: str,
        title: str,
        content: str,
        source_type: str = "document",
        tags: list[str] | None = None,
    ) -> SourceIngestResult:
        """Chunk, embed and store a document, then extract from a sample of it.

        Re-ingesting a url replaces the previous content, chunks and
        relations. Extraction runs over at most extraction_max_samples
        paragraphs; a failing sample is skipped and logged.

        Returns:
            The stored source, its chunk count, and per-step outcomes.
        """
        chunks = self._chunker.split(content)

        vectors: list[list[float]] | None = None
        if chunks:
            try:
                vectors = await self._embedder.embed_batch(chunks)
                embedding = StepOutcome.ok()
            except Exception as exc:
                logger.warning(
                    "ingest.source_embedding_failed",
                    url=url,
                    chunks=len(chunks),
                    error=str(exc),
                    exc_info=True,
                )
                embedding = StepOutcome.skipped(f"embedding failed: {exc}")
        else:
            embedding = StepOutcome.skipped("no content to embed")

        samples = select_extraction_samples(
            content,
            min_chars=self._config.extraction_min_paragraph_chars,
            max_samples=self._config.extraction_max_samples,
        )
        outcomes = list(
            await asyncio.gather(*(run_extraction(self._extractor, s) for s in samples))
        )
        extracted = [e for o in outcomes if o.is_ok for e in o.entities]
        topic_vectors = await self._topic_vectors(extracted, SOURCE_TOPIC_LABELS)

        source = await self._store.save_knowledge_source(
            url=url,
            title=title,
            content=content,
            source_type=source_type,
            tags=tags,
            chunks=chunks,
            vectors=vectors,
        )

        for outcome in outcomes:
            if not outcome.is_ok or not (outcome.entities or outcome.relations):
                continue
            await self._store.record_graph(
                outcome.entities,
                outcome.relations,
                topic_labels=SOURCE_TOPIC_LABELS,
                knowledge_source_id=source.id,
                topic_vectors=topic_vectors,
            )

        skipped = sum(1 for o in outcomes if not o.is_ok)
        logger.info(
            "ingest.source_added",
            source_id=source.id,
            chunks=len(chunks),
            samples=len(samples),
            samples_skipped=skipped,
        )
        return SourceIngestResult(
            source=source,
            chunk_count=len(chunks),
            embedding=embedding,
            samples=outcomes,
        )

    async def ingest_file(
        self, path: str | Path, tags: list[str] | None = None
    ) -> SourceIngestResult:
        """Load a local file and ingest it as a knowledge source.

        Tags given here are merged with any frontmatter tags.

        Raises:
            FileNotFoundError: If the file does not exist.
            InvalidRequestError: If the format is unsupported.
        """
        document = self._loader.load(path)
        merged = list(document.tags)
        for tag in tags or []:
            if tag not in merged:
                merged.append(tag)
        return await self.add_knowledge_source(
            url=document.url,
            title=document.title,
            content=document.content,
            source_type=document.source_type,
            tags=merged,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _topic_vectors(
        self, entities: list[Entity], topic_labels: frozenset[str]
    ) -> dict[str, list[float]]:
        """Embed topic names so topics are reachable by similarity; best-effort."""
        names: dict[str, str] = {}
        for entity in entities:
            normalized = normalize_name(entity.text)
            if normalized and entity.label.lower() in topic_labels:
                names.setdefault(normalized, entity.text.strip())
        if not names:
            return {}
        try:
            vectors = await self._embedder.embed_batch(list(names.values()))
        except Exception:
            logger.warning("ingest.topic_embedding_failed", topics=len(names), exc_info=True)
            return {}
        return dict(zip(names.keys(), vectors))
