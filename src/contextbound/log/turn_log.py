"""Ordered, owner-scoped turn sequence with a re-derived token total."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from contextbound.models.turn import InvalidTurnError, Turn


class TurnLog:
    """
    In-memory view of a context's turns.

    The log never counts tokens itself: every turn must already carry a
    ``token_count`` (set by the token accountant) before it is appended.
    ``total_tokens`` is re-summed over the turns currently held on every
    read, so it cannot drift from the sequence.

    Example::

        log = TurnLog(context.turns)
        log.append(await accountant.count_turn(turn))
        recent = log.window(10)
        context.sync_from(log)
    """

    def __init__(self, turns: Iterable[Turn] = ()) -> None:
        self._turns: list[Turn] = []
        self.replace(turns)

    def append(self, turn: Turn) -> None:
        """
        Append ``turn`` at the tail.

        Raises:
            InvalidTurnError: If the turn has not been counted yet.
        """
        _require_counted(turn)
        self._turns.append(turn)

    def replace(self, turns: Iterable[Turn]) -> None:
        """
        Swap the whole sequence in one step.

        Raises:
            InvalidTurnError: If any turn has not been counted. The log is left
                unchanged in that case.
        """
        new_turns = list(turns)
        for turn in new_turns:
            _require_counted(turn)
        self._turns = new_turns

    def window(self, n: int) -> list[Turn]:
        """Return the last ``n`` turns in original order (``n`` clamped to the log length)."""
        if n <= 0:
            return []
        return self._turns[-n:]

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def total_tokens(self) -> int:
        return sum(t.token_count or 0 for t in self._turns)

    @property
    def first_is_summary(self) -> bool:
        return bool(self._turns) and self._turns[0].is_summary

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)


def _require_counted(turn: Turn) -> None:
    if turn.token_count is None:
        raise InvalidTurnError(f"turn {turn.id!r} has no token count")
