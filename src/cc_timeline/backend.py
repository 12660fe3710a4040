"""In-process backend used for replays and tests.

It persists what a real agent backend would: the user's message on send,
and the assistant turn assembled from the same event stream the store sees
once that turn completes or is cancelled.
"""

import asyncio
import uuid

from ._logger import get_logger
from .buffer import TurnBuffer
from .events import ContentBlockAppend, Event, ToolCompleted, ToolInvoked
from .models import Message, Role, SendOptions

logger = get_logger(__name__)


class InMemoryBackend:
    """Dict-backed history store plus a record of every send and cancel."""

    def __init__(self) -> None:
        self.history: dict[str, list[Message]] = {}
        self.sent: list[tuple[str, str, SendOptions]] = []
        self.cancelled: list[str] = []
        self.fail_send: Exception | bool | None = None
        self.fail_fetch: Exception | None = None
        # Set to hold fetch_history until the test releases it.
        self.fetch_gate: asyncio.Event | None = None
        self._turns: dict[str, TurnBuffer] = {}

    def add_message(self, message: Message) -> None:
        self.history.setdefault(message.session_id, []).append(message)

    async def send(self, session_id: str, text: str, options: SendOptions) -> bool:
        if isinstance(self.fail_send, Exception):
            raise self.fail_send
        if self.fail_send:
            return False

        self.sent.append((session_id, text, options))
        self.add_message(
            Message(
                id=str(uuid.uuid4()),
                session_id=session_id,
                role=Role.USER,
                content=text,
                model=options.model,
                execution_mode=options.execution_mode,
            )
        )
        self._turns[session_id] = TurnBuffer(session_id, str(uuid.uuid4()))
        return True

    async def fetch_history(self, session_id: str) -> list[Message]:
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return [m.model_copy(deep=True) for m in self.history.get(session_id, [])]

    async def cancel(self, session_id: str) -> bool:
        self.cancelled.append(session_id)
        return self._persist_turn(session_id, cancelled=True)

    def observe(self, event: Event) -> None:
        """Mirror one outgoing event into the persisted turn."""
        turn = self._turns.get(event.session_id)
        if turn is None:
            return
        if isinstance(event, ContentBlockAppend):
            turn.append_block(event.block)
        elif isinstance(event, ToolInvoked):
            turn.add_tool(event.tool)
        elif isinstance(event, ToolCompleted):
            turn.complete_tool(event.tool_use_id, event.output)
        elif event.type == "turn_complete":
            self._persist_turn(event.session_id)
        elif event.type in ("turn_error", "turn_cancelled"):
            self._persist_turn(event.session_id, cancelled=True)

    def _persist_turn(self, session_id: str, cancelled: bool = False) -> bool:
        turn = self._turns.pop(session_id, None)
        if turn is None:
            return False
        if not turn.is_empty:
            self.add_message(turn.to_message(cancelled=cancelled))
        logger.debug("Persisted turn %s in session %s", turn.message_id, session_id)
        return True
