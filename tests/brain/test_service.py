"""End-to-end wiring through SecondBrain with offline collaborators."""

from __future__ import annotations

import logging

import structlog

from src.brain.log_config import configure_logging
from src.brain.rag.assembler import NO_RELEVANT_INFORMATION
from src.brain.service import SecondBrain


class TestSecondBrain:
    async def test_ingest_then_ask(self, config, embedder, extractor, llm):
        brain = await SecondBrain.open(config, embedder=embedder, extractor=extractor, llm=llm)
        try:
            assert await brain.assistant.ask("What did John say?") is not None
            assert llm.prompts == []

            meeting = await brain.store.create_meeting("Budget review")
            await brain.ingestion.add_segment(meeting.id, "John", "John wants a smaller budget", 0, 2000)
            answer = await brain.assistant.ask("What did John say about the budget?")
        finally:
            await brain.close()

        assert answer.used_llm
        assert answer.answer == llm.answer
        assert "Budget review" in llm.prompts[0]

    async def test_empty_brain_short_circuits(self, config, embedder, extractor, llm):
        brain = await SecondBrain.open(config, embedder=embedder, extractor=extractor, llm=llm)
        try:
            answer = await brain.assistant.ask("Anything new?")
        finally:
            await brain.close()

        assert answer.answer == NO_RELEVANT_INFORMATION
        assert brain.ingestion is not None and brain.engine is not None


class TestConfigureLogging:
    def test_console_and_json(self, config):
        root_level = logging.getLogger().level
        try:
            configure_logging(config.model_copy(update={"log_level": "DEBUG"}))
            assert logging.getLogger().level == logging.DEBUG

            configure_logging(config.model_copy(update={"log_json": True, "log_level": "WARNING"}))
            processors = structlog.get_config()["processors"]
            assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        finally:
            structlog.reset_defaults()
            logging.getLogger().setLevel(root_level)
