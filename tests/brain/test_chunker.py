"""Tests for DocumentChunker."""

from __future__ import annotations

import pytest

from src.brain.ingestion.chunker import DocumentChunker


class TestSplit:
    def test_short_text_is_one_chunk(self):
        assert DocumentChunker(chunk_size=100).split("  short note  ") == ["short note"]

    def test_blank_text_has_no_chunks(self):
        assert DocumentChunker().split(" \n\n ") == []

    def test_chunks_respect_size(self):
        text = "\n\n".join(f"Paragraph {i}. " + "word " * 40 for i in range(20))

        chunks = DocumentChunker(chunk_size=300).split(text)

        assert len(chunks) > 1
        assert all(0 < len(c) <= 300 for c in chunks)

    def test_chunks_keep_document_order(self):
        text = "\n\n".join(f"Section {i} " + "x " * 60 for i in range(6))

        chunks = DocumentChunker(chunk_size=200).split(text)

        positions = [text.find(c[:20]) for c in chunks]
        assert positions == sorted(positions)
        assert chunks[0].startswith("Section 0")

    def test_prefers_paragraph_boundaries(self):
        first = "a" * 80
        second = "b" * 80

        chunks = DocumentChunker(chunk_size=100).split(f"{first}\n\n{second}")

        assert chunks == [first, second]

    def test_from_config(self, config):
        chunker = DocumentChunker.from_config(config)
        assert chunker.chunk_size == config.chunk_size
        assert chunker.chunk_overlap == config.chunk_overlap


class TestValidation:
    @pytest.mark.parametrize(
        ("size", "overlap"),
        [(0, 0), (-5, 0), (100, 100), (100, -1)],
    )
    def test_rejects_bad_arguments(self, size, overlap):
        with pytest.raises(ValueError):
            DocumentChunker(chunk_size=size, chunk_overlap=overlap)
