"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from cc_timeline.backend import InMemoryBackend
from cc_timeline.config import TimelineSettings
from cc_timeline.events import Event
from cc_timeline.store import ChatStore


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the fixtures directory path."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def scenario_log(fixtures_dir: Path) -> Path:
    """Return path to scenario.jsonl fixture."""
    return fixtures_dir / "scenario.jsonl"


@pytest.fixture
def settings() -> TimelineSettings:
    """Default settings, isolated from any local .env file."""
    return TimelineSettings(_env_file=None)


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def store(backend: InMemoryBackend, settings: TimelineSettings) -> ChatStore:
    """Store over an in-memory backend with one session, "s1"."""
    chat_store = ChatStore(backend, settings)
    chat_store.create_session("s1")
    return chat_store


@pytest.fixture
def emit(store: ChatStore, backend: InMemoryBackend):
    """Deliver an event the way a backend does: persist first, then notify the store."""

    async def _emit(event: Event) -> None:
        backend.observe(event)
        await store.handle_event(event)

    return _emit
