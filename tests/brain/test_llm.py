"""Tests for LiteLLMClient with litellm.acompletion mocked."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.brain.llm import LiteLLMClient


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestLiteLLMClient:
    async def test_returns_message_content(self, monkeypatch):
        acompletion = AsyncMock(return_value=_completion("an answer"))
        monkeypatch.setattr("src.brain.llm.litellm.acompletion", acompletion)

        client = LiteLLMClient("gpt-4o-mini", max_tokens=50, system_prompt="Be brief.")

        assert await client.ainvoke("question?") == "an answer"
        kwargs = acompletion.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 50
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "question?"},
        ]

    async def test_none_content_is_empty_string(self, monkeypatch):
        monkeypatch.setattr("src.brain.llm.litellm.acompletion", AsyncMock(return_value=_completion(None)))
        assert await LiteLLMClient("m").ainvoke("q") == ""

    async def test_non_transient_errors_are_not_retried(self, monkeypatch):
        acompletion = AsyncMock(side_effect=ValueError("bad request"))
        monkeypatch.setattr("src.brain.llm.litellm.acompletion", acompletion)

        with pytest.raises(ValueError):
            await LiteLLMClient("m").ainvoke("q")
        assert acompletion.await_count == 1
