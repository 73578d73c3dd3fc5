"""External generation-service capabilities and their litellm-backed adapters.

The context manager only needs two things from the generation service:

* :class:`TokenCounter`: count tokens for an already-rendered transcript.
* :class:`TextGenerator`: produce text from a prompt.

Both are plain protocols so tests and alternative clients can be injected.
Set ``CONTEXTBOUND_MOCK_LLM=1`` to run the litellm adapters without an API key.
"""

from __future__ import annotations

import asyncio
import os
from typing import Protocol, runtime_checkable


@runtime_checkable
class TokenCounter(Protocol):
    """Counts tokens the way the generation service does."""

    async def count_tokens(self, rendered: str) -> int: ...


@runtime_checkable
class TextGenerator(Protocol):
    """Produces natural-language text from a single prompt."""

    async def generate(self, prompt: str, *, temperature: float) -> str: ...


def _mock_enabled() -> bool:
    return os.environ.get("CONTEXTBOUND_MOCK_LLM") == "1"


class LiteLLMTokenCounter:
    """Token counting through ``litellm.token_counter`` (tokenizer runs in a worker thread)."""

    def __init__(self, model: str) -> None:
        self._model = model

    async def count_tokens(self, rendered: str) -> int:
        if _mock_enabled():
            return max(1, len(rendered) // 4) if rendered else 0

        import litellm

        return await asyncio.to_thread(litellm.token_counter, model=self._model, text=rendered)


class LiteLLMTextGenerator:
    """Single-prompt completion through ``litellm.acompletion``."""

    def __init__(self, model: str, max_output_tokens: int = 8_192) -> None:
        self._model = model
        self._max_output_tokens = max_output_tokens

    async def generate(self, prompt: str, *, temperature: float) -> str:
        if _mock_enabled():
            return _mock_summary(prompt)

        import litellm

        response = await litellm.acompletion(
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self._max_output_tokens,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""


def _mock_summary(prompt: str) -> str:
    """Deterministic stand-in summary built from the first lines of the transcript."""
    transcript = prompt
    if "<conversation>" in prompt:
        transcript = prompt.split("<conversation>")[1].split("</conversation>")[0]
    lines = [ln.strip() for ln in transcript.splitlines() if ln.strip()]
    bullets = "\n".join(f"- {ln[:120]}" for ln in lines[:8])
    return bullets or "- (conversation in progress)"
