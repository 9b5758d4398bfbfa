"""Ingestion of transcript segments and knowledge documents."""

from src.brain.ingestion.chunker import DocumentChunker
from src.brain.ingestion.coordinator import IngestionCoordinator, select_extraction_samples
from src.brain.ingestion.loaders import DocumentLoader, LoadedDocument

__all__ = [
    "DocumentChunker",
    "DocumentLoader",
    "IngestionCoordinator",
    "LoadedDocument",
    "select_extraction_samples",
]
