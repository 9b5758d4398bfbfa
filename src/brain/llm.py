"""LLM completion collaborator.

The knowledge core only needs prompt-in, text-out. LiteLLMClient adapts
litellm's provider-agnostic acompletion to that contract; tests substitute
any object with an async ainvoke(prompt) method.
"""

from __future__ import annotations

from typing import Protocol

import litellm
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

_llm_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(
        (litellm.RateLimitError, litellm.APIConnectionError, litellm.Timeout)
    ),
    reraise=True,
)


class LLMClient(Protocol):
    """Minimal interface for single-prompt completions."""

    async def ainvoke(self, prompt: str) -> str: ...


class LiteLLMClient:
    """Single-turn completions through litellm.

    Args:
        model: LiteLLM model string (e.g. "gpt-4o-mini", "ollama/llama3").
        max_tokens: Maximum tokens in the response.
        temperature: Sampling temperature.
        system_prompt: Optional system message prepended to every call.
    """

    def __init__(
        self,
        model: str,
        max_tokens: int = 1024,
        temperature: float = 0.2,
        system_prompt: str | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._system_prompt = system_prompt

    @_llm_retry
    async def ainvoke(self, prompt: str) -> str:
        messages: list[dict[str, str]] = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await litellm.acompletion(
            model=self._model,
            messages=messages,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        content = response.choices[0].message.content or ""
        logger.debug("llm.completed", model=self._model, chars=len(content))
        return content
