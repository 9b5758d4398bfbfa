"""SecondBrain: composition root for the knowledge core.

Wires config, store, collaborators, ingestion, Graph-RAG and the answer
assistant together. Every collaborator can be injected, which is how
tests run fully offline:

    brain = await SecondBrain.open(config, embedder=fake, extractor=fake, llm=fake)
    try:
        await brain.ingestion.add_segment(...)
        answer = await brain.assistant.ask("What did John say about the budget?")
    finally:
        await brain.close()
"""

from __future__ import annotations

import structlog

from src.brain.config import BrainConfig, get_config
from src.brain.embeddings import Embedder, build_embedder
from src.brain.extraction import EntityExtractor, LLMEntityExtractor
from src.brain.ingestion.coordinator import IngestionCoordinator
from src.brain.llm import LiteLLMClient, LLMClient
from src.brain.rag.assembler import ContextAssembler, KnowledgeAssistant
from src.brain.rag.graph_rag import GraphRAGEngine
from src.brain.store.knowledge_store import KnowledgeStore
from src.brain.store.vectors import VectorIndex

logger = structlog.get_logger(__name__)


class SecondBrain:
    """Owns one KnowledgeStore and the components built on top of it.

    Use SecondBrain.open() rather than the constructor; it initializes the
    schema and the vector collection.
    """

    def __init__(
        self,
        config: BrainConfig,
        store: KnowledgeStore,
        embedder: Embedder,
        extractor: EntityExtractor,
        llm: LLMClient,
    ) -> None:
        self.config = config
        self.store = store
        self.embedder = embedder
        self.extractor = extractor
        self.llm = llm
        self.ingestion = IngestionCoordinator(store, embedder, extractor, config)
        self.engine = GraphRAGEngine(store, extractor, config)
        self.assembler = ContextAssembler()
        self.assistant = KnowledgeAssistant(self.engine, llm, self.assembler)

    @classmethod
    async def open(
        cls,
        config: BrainConfig | None = None,
        embedder: Embedder | None = None,
        extractor: EntityExtractor | None = None,
        llm: LLMClient | None = None,
        vectors: VectorIndex | None = None,
    ) -> SecondBrain:
        """Build and initialize every component.

        Args:
            config: Configuration; defaults to get_config().
            embedder: Embedding collaborator; built from config if omitted.
            extractor: Entity extractor; LLM-backed if omitted.
            llm: Completion collaborator; LiteLLMClient if omitted.
            vectors: Pre-built similarity index.
        """
        config = config or get_config()
        embedder = embedder or build_embedder(config)
        llm = llm or LiteLLMClient(config.llm_model)
        extractor = extractor or LLMEntityExtractor(llm)
        store = await KnowledgeStore.open(config, embedder, vectors=vectors)
        logger.info(
            "brain.opened",
            database_url=config.database_url.split("@")[-1],
            collection=config.collection_name,
            embedding_provider=config.embedding_provider,
        )
        return cls(config, store, embedder, extractor, llm)

    async def close(self) -> None:
        await self.store.close()
        logger.info("brain.closed")
