"""Second Brain configuration via Pydantic BaseSettings.

All settings load from environment variables with the BRAIN_ prefix.
For example, BRAIN_QDRANT_PATH sets qdrant_path.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class BrainConfig(BaseSettings):
    """Configuration for the knowledge store, collaborators, and retrieval.

    Attributes:
        database_url: SQLAlchemy async URL for the relational store.
        qdrant_path: Local filesystem path for Qdrant storage. ":memory:"
            keeps the index in process.
        qdrant_url: Remote Qdrant server URL. If set, takes precedence over
            qdrant_path.
        qdrant_api_key: API key for remote Qdrant authentication.
        collection_name: Qdrant collection holding every embedding.
        embedding_provider: "fastembed" (local model) or "openai".
        embedding_model: Model name for the selected provider.
        embedding_dimensions: Fixed vector size shared by all embeddings.
        openai_api_key: OpenAI API key, used by the openai provider.
        llm_model: LiteLLM model string for answers and extraction.
        chunk_size: Maximum characters per knowledge chunk.
        chunk_overlap: Characters shared by consecutive chunks.
        extraction_min_paragraph_chars: Shortest paragraph sampled for
            extraction when ingesting a document.
        extraction_max_samples: Maximum paragraphs sampled per document.
        relation_min_confidence: Relations below this score are dropped.
        default_top_k: Default vector-search result count.
        graph_meeting_limit: Related meetings kept per query.
        graph_segment_limit: Matching segments kept per related meeting.
        graph_people_limit: Related people kept per query.
        graph_topic_limit: Related topics kept per query.
        graph_action_limit: Open action items kept per query.
        graph_decision_limit: Recent decisions kept per query.
        generic_speaker_labels: Speaker labels eligible for diarization
            relabelling.
        auto_capture_action_items: Create ActionItem/Decision rows from
            extracted action_item/decision entities.
        log_level: Root log level.
        log_json: Render logs as JSON instead of console output.
    """

    model_config = SettingsConfigDict(
        env_prefix="BRAIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Relational store
    database_url: str = "sqlite+aiosqlite:///./brain.db"

    # Qdrant connection
    qdrant_path: str = "./qdrant_data"
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None
    collection_name: str = "brain_embeddings"

    # Embedding
    embedding_provider: Literal["fastembed", "openai"] = "fastembed"
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dimensions: int = 384
    openai_api_key: str = ""

    # LLM
    llm_model: str = "gpt-4o-mini"

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 0

    # Extraction
    extraction_min_paragraph_chars: int = 50
    extraction_max_samples: int = 20
    relation_min_confidence: float = 0.5
    auto_capture_action_items: bool = False

    # Retrieval
    default_top_k: int = 5
    graph_meeting_limit: int = 5
    graph_segment_limit: int = 3
    graph_people_limit: int = 5
    graph_topic_limit: int = 5
    graph_action_limit: int = 10
    graph_decision_limit: int = 10

    # Diarization
    generic_speaker_labels: list[str] = ["Guest", "Unknown"]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_config() -> BrainConfig:
    """Singleton config instance."""
    return BrainConfig()
