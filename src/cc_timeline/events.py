"""Typed backend events and a tolerant parser for raw event records."""

import json
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ._logger import get_logger
from .models import Block, ToolCall

logger = get_logger(__name__)


class ContentBlockAppend(BaseModel):
    """A text or reasoning delta, or the position marker of a tool invocation."""

    type: Literal["content_block_append"] = "content_block_append"
    session_id: str
    block: Block


class ToolInvoked(BaseModel):
    """A tool invocation was announced."""

    type: Literal["tool_invoked"] = "tool_invoked"
    session_id: str
    tool: ToolCall


class ToolCompleted(BaseModel):
    """A tool invocation finished and produced output."""

    type: Literal["tool_completed"] = "tool_completed"
    session_id: str
    tool_use_id: str
    output: str


class TurnComplete(BaseModel):
    type: Literal["turn_complete"] = "turn_complete"
    session_id: str


class TurnError(BaseModel):
    type: Literal["turn_error"] = "turn_error"
    session_id: str
    error: str


class TurnCancelled(BaseModel):
    type: Literal["turn_cancelled"] = "turn_cancelled"
    session_id: str
    undo_send: bool = False  # True if the user text should go back to the input box


Event = Annotated[
    ContentBlockAppend | ToolInvoked | ToolCompleted | TurnComplete | TurnError | TurnCancelled,
    Field(discriminator="type"),
]

EVENT_TYPES = frozenset(
    {
        "content_block_append",
        "tool_invoked",
        "tool_completed",
        "turn_complete",
        "turn_error",
        "turn_cancelled",
    }
)

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(record: dict) -> Event | None:
    """Validate one raw record. Malformed records are logged and dropped."""
    try:
        return _event_adapter.validate_python(record)
    except ValidationError as e:
        logger.warning("Dropping malformed event %r: %s", record.get("type"), e.error_count())
        return None


def load_records(path: Path) -> list[dict]:
    """Load a JSONL event log, skipping blank and malformed lines."""
    records = []
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                rec = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed JSON at line %d: %s", line_num, e)
                continue
            if isinstance(rec, dict):
                records.append(rec)
            else:
                logger.warning("Skipping non-object record at line %d", line_num)
    return records


def load_events(path: Path) -> list[Event]:
    """Load and validate every transport event in a JSONL log."""
    events = []
    for rec in load_records(path):
        if rec.get("type") not in EVENT_TYPES:
            continue
        event = parse_event(rec)
        if event is not None:
            events.append(event)
    return events
