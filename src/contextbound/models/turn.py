"""Turn, owner and context data models."""

from __future__ import annotations

import time
from collections.abc import Iterable
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from contextbound.ids import make_id

if TYPE_CHECKING:
    from contextbound.log.turn_log import TurnLog

Role = Literal["user", "assistant", "system", "summary"]
"""``summary`` is reserved for turns synthesized by the compaction engine."""

TurnKind = Literal["text", "command", "code", "mixed"]

_ROLE_LABELS: dict[str, str] = {
    "user": "User",
    "assistant": "Assistant",
    "system": "System",
    "summary": "Summary",
}


def now_ms() -> int:
    """Current wall-clock time as a Unix millisecond timestamp."""
    return int(time.time() * 1000)


# ── Caller errors ──────────────────────────────────────────────────────────────


class InvalidOwnerError(ValueError):
    """Raised when an owner reference is malformed or does not match its context."""


class InvalidTurnError(ValueError):
    """Raised when a caller supplies a turn the context cannot accept."""


# ── Turn ───────────────────────────────────────────────────────────────────────


class Turn(BaseModel):
    """
    One message in a conversation.

    Turns are immutable. ``token_count`` is ``None`` until the turn has been
    counted by the :class:`~contextbound.tokens.accountant.TokenAccountant`;
    a recount always produces a new ``Turn`` via :meth:`with_token_count`.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: make_id("turn"))
    role: Role
    content: str
    token_count: int | None = Field(default=None, ge=0)
    created_at: int = Field(default_factory=now_ms)
    """Unix millisecond timestamp. Used for display only, never for ordering."""
    kind: TurnKind = "text"
    language: str | None = None

    @property
    def is_summary(self) -> bool:
        return self.role == "summary"

    @property
    def is_counted(self) -> bool:
        return self.token_count is not None

    def with_token_count(self, count: int) -> Turn:
        """Return a copy of this turn carrying ``count`` as its token count."""
        if count < 0:
            raise InvalidTurnError(f"token count must be non-negative, got {count}")
        return self.model_copy(update={"token_count": count})


def render_turns(turns: Iterable[Turn]) -> str:
    """
    Render turns as a role-prefixed transcript.

    This is the exact text sent to the generation service, so token counts
    computed over it match the service's own accounting.
    """
    return "\n\n".join(f"{_ROLE_LABELS[t.role]}: {t.content}" for t in turns)


# ── Owner ──────────────────────────────────────────────────────────────────────


class OwnerRef(BaseModel):
    """Reference to the single session or project that owns a context."""

    model_config = ConfigDict(frozen=True)

    session_id: str | None = None
    project_id: str | None = None

    @model_validator(mode="after")
    def validate_exactly_one(self) -> OwnerRef:
        if (self.session_id is None) == (self.project_id is None):
            raise ValueError("exactly one of session_id or project_id must be set")
        if not (self.session_id or self.project_id):
            raise ValueError("owner id must be a non-empty string")
        return self

    @classmethod
    def session(cls, session_id: str) -> OwnerRef:
        return cls(session_id=session_id)

    @classmethod
    def project(cls, project_id: str) -> OwnerRef:
        return cls(project_id=project_id)

    @property
    def kind(self) -> Literal["session", "project"]:
        return "session" if self.session_id is not None else "project"

    @property
    def owner_id(self) -> str:
        return self.session_id if self.session_id is not None else self.project_id  # type: ignore[return-value]

    @property
    def key(self) -> str:
        """Stable string key, e.g. ``"session:sess_01..."``."""
        return f"{self.kind}:{self.owner_id}"


# ── Context ────────────────────────────────────────────────────────────────────


class Context(BaseModel):
    """
    One bounded conversation belonging to exactly one owner.

    ``total_tokens`` always equals the sum of ``token_count`` over ``turns``.
    Mutate turns only through a :class:`~contextbound.log.turn_log.TurnLog`
    and :meth:`sync_from`, never by assigning to ``turns`` directly.
    """

    id: str
    owner: OwnerRef
    turns: list[Turn] = Field(default_factory=list)
    summary_text: str | None = None
    """Text of the most recent compaction summary, kept for reporting."""
    total_tokens: int = Field(default=0, ge=0)
    max_tokens: int = Field(ge=1)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    def sync_from(self, log: TurnLog) -> None:
        """Copy the log's turns and re-derived total into this context."""
        self.turns = list(log.turns)
        self.total_tokens = log.total_tokens
        self.updated_at = now_ms()
