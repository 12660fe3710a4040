"""Replay a recorded JSONL log of user actions and backend events."""

from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from ._logger import get_logger
from .backend import InMemoryBackend
from .config import TimelineSettings
from .events import EVENT_TYPES, load_records, parse_event
from .models import QuestionAnswer, SendOptions
from .store import ChatStore

logger = get_logger(__name__)

ACTION_TYPES = frozenset({"session", "submit", "answer", "skip", "approve_plan", "cancel", "dismiss_error"})

_answers_adapter = TypeAdapter(list[QuestionAnswer])


async def apply_action(store: ChatStore, record: dict) -> None:
    """Apply one user-action record to the store."""
    kind = record["type"]
    session_id = record.get("session_id", "")

    if kind == "session":
        store.create_session(session_id, name=record.get("name", ""))
    elif kind == "submit":
        store.create_session(session_id)
        options = SendOptions.model_validate(record["options"]) if "options" in record else None
        await store.submit(session_id, record.get("text", ""), options)
    elif kind == "answer":
        await store.answer_question(record["tool_id"], _answers_adapter.validate_python(record.get("answers", [])))
    elif kind == "skip":
        store.skip_question(record["tool_id"])
    elif kind == "approve_plan":
        await store.approve_plan(record["message_id"], elevated=record.get("elevated", False))
    elif kind == "cancel":
        store.cancel_turn(session_id)
    elif kind == "dismiss_error":
        await store.dismiss_error(session_id)


async def replay(records: list[dict], store: ChatStore, backend: InMemoryBackend) -> None:
    """Feed records through the store in order.

    Event records are mirrored into the backend first, the way a real
    backend persists a turn before announcing it. Records of unknown type
    and actions that reference unknown ids are logged and skipped.
    """
    for line_num, record in enumerate(records, 1):
        kind = record.get("type")
        if kind in EVENT_TYPES:
            event = parse_event(record)
            if event is None:
                continue
            backend.observe(event)
            await store.handle_event(event)
        elif kind in ACTION_TYPES:
            try:
                await apply_action(store, record)
            except (KeyError, ValidationError) as e:
                logger.warning("Skipping record %d (%s): %r", line_num, kind, e)
        else:
            logger.warning("Skipping record %d with unknown type %r", line_num, kind)
        await store.drain()


async def replay_file(path: Path, settings: TimelineSettings | None = None) -> ChatStore:
    """Replay a JSONL log into a fresh store backed by an in-memory backend."""
    backend = InMemoryBackend()
    store = ChatStore(backend, settings)
    await replay(load_records(path), store, backend)
    return store
