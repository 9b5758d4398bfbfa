"""Character-based chunking for knowledge-source content."""

from __future__ import annotations

from langchain_text_splitters import RecursiveCharacterTextSplitter

from src.brain.config import BrainConfig

# Markdown headings first, then paragraphs, lines, sentences, words
DEFAULT_SEPARATORS: list[str] = ["\n## ", "\n### ", "\n\n", "\n", ". ", " ", ""]


class DocumentChunker:
    """Split document text into ordered chunks of at most chunk_size chars.

    Text that already fits is returned as a single chunk. Longer text is
    split with RecursiveCharacterTextSplitter, preferring structural
    boundaries over mid-sentence cuts.

    Args:
        chunk_size: Maximum characters per chunk.
        chunk_overlap: Characters shared between consecutive chunks.
    """

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 0) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=DEFAULT_SEPARATORS,
            keep_separator=True,
            strip_whitespace=True,
        )

    @classmethod
    def from_config(cls, config: BrainConfig) -> DocumentChunker:
        return cls(chunk_size=config.chunk_size, chunk_overlap=config.chunk_overlap)

    def split(self, text: str) -> list[str]:
        """Return non-empty chunks in document order."""
        stripped = text.strip()
        if not stripped:
            return []
        if len(stripped) <= self.chunk_size:
            return [stripped]
        return [c for c in self._splitter.split_text(stripped) if c.strip()]
