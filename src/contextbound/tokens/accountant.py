"""Token accounting with an external counter and a deterministic local fallback."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence

import structlog

from contextbound.llm import TokenCounter
from contextbound.models.config import AccountantConfig
from contextbound.models.turn import Turn, render_turns


class TokenAccountant:
    """
    Counts tokens for batches of turns in the generation service's own units.

    Priority order:
    1. The injected :class:`~contextbound.llm.TokenCounter`, fed the turns
       rendered exactly as they would be sent for generation.
    2. ``ceil(content_chars / chars_per_token)`` over the concatenated turn
       content when no counter is configured, or when the counter raises,
       times out, or returns something that is not a non-negative integer.

    ``count()`` never raises for counting failures. Each fallback is logged as
    ``token_count_fallback`` so operators can see degraded accuracy.
    """

    def __init__(
        self,
        counter: TokenCounter | None = None,
        config: AccountantConfig | None = None,
    ) -> None:
        self._counter = counter
        self._config = config or AccountantConfig()
        self._logger = structlog.get_logger("contextbound.tokens")

    @property
    def has_counter(self) -> bool:
        return self._counter is not None

    async def count(self, turns: Sequence[Turn]) -> int:
        """
        Count tokens for ``turns``.

        Args:
            turns: Turns to count, in conversation order.

        Returns:
            Token count (0 for an empty batch).
        """
        if not turns:
            return 0
        if self._counter is None:
            return self.estimate(turns)

        rendered = render_turns(turns)
        try:
            count = await asyncio.wait_for(
                self._counter.count_tokens(rendered),
                timeout=self._config.timeout_secs,
            )
        except Exception as exc:
            return self._fallback(turns, reason=type(exc).__name__, error=str(exc))

        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            return self._fallback(turns, reason="malformed_count", error=repr(count))
        return count

    async def count_turn(self, turn: Turn) -> Turn:
        """Return a copy of ``turn`` carrying its freshly counted token count."""
        return turn.with_token_count(await self.count([turn]))

    def estimate(self, turns: Sequence[Turn]) -> int:
        """Local estimate: characters of content divided by ``chars_per_token``, rounded up."""
        chars = sum(len(t.content) for t in turns)
        return math.ceil(chars / self._config.chars_per_token)

    def _fallback(self, turns: Sequence[Turn], *, reason: str, error: str) -> int:
        estimate = self.estimate(turns)
        self._logger.warning(
            "token_count_fallback",
            reason=reason,
            error=error,
            turns=len(turns),
            estimate=estimate,
        )
        return estimate
