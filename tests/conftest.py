"""Shared fixtures for contextbound tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from contextbound.compaction.engine import CompactionEngine
from contextbound.events.bus import ContextEvent, EventBus
from contextbound.manager import ContextManager
from contextbound.models.config import ContextConfig, ContextManagerConfig, StoreConfig
from contextbound.models.turn import OwnerRef, Turn
from contextbound.store.context_store import ContextStore
from contextbound.store.pool import StorePool
from contextbound.tokens.accountant import TokenAccountant


class FakeGenerator:
    """TextGenerator double recording every prompt it receives."""

    def __init__(self, reply: str = "Summary of earlier turns.", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[str] = []
        self.temperatures: list[float] = []
        self.release: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def generate(self, prompt: str, *, temperature: float) -> str:
        self.calls.append(prompt)
        self.temperatures.append(temperature)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.reply


class FakeCounter:
    """TokenCounter double returning a fixed value (or raising)."""

    def __init__(self, result: Any = 7, error: Exception | None = None, delay: float = 0.0) -> None:
        self.result = result
        self.error = error
        self.delay = delay
        self.rendered: list[str] = []

    async def count_tokens(self, rendered: str) -> int:
        self.rendered.append(rendered)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_turn(tokens: int, role: str = "user", *, tag: str = "") -> Turn:
    """A turn whose content is exactly ``tokens * 4`` characters (``tokens`` by the heuristic)."""
    body = (tag + "x" * (tokens * 4))[: tokens * 4]
    return Turn(role=role, content=body)


def counted(tokens: int, role: str = "user", *, tag: str = "") -> Turn:
    """A pre-counted turn for TurnLog and engine tests."""
    return make_turn(tokens, role, tag=tag).with_token_count(tokens)


@pytest.fixture
def config(tmp_path):
    """ContextManagerConfig with a temp database path and a small budget."""
    return ContextManagerConfig(
        context=ContextConfig(max_tokens=100, compaction_threshold=0.9, recency_window_size=2),
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
    )


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def store(config, pool):
    """Initialized ContextStore backed by a temp SQLite database (pool-managed)."""
    s = ContextStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def accountant(config):
    """TokenAccountant with no external counter: ceil(chars / 4) only."""
    return TokenAccountant(None, config.accountant)


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ContextEvent, dict[str, Any]]] = []

    def _collect(event: ContextEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def engine(generator, accountant, event_bus, config):
    return CompactionEngine(generator, accountant, event_bus, config)


@pytest_asyncio.fixture
async def owner(store):
    """A session owner whose record already exists in the store."""
    await store.create_session("sess_TEST01", title="Test chat")
    return OwnerRef.session("sess_TEST01")


@pytest_asyncio.fixture
async def manager(store, accountant, engine, event_bus, config):
    """ContextManager wired to the fixtures above."""
    m = ContextManager(store, accountant, engine, event_bus, config)
    yield m
    await m.close()
