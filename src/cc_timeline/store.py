"""Process-wide chat store keyed by session id.

The store is the only writer of session state. Backend events enter through
``handle_event`` (or ``pump`` for a whole stream), user actions through the
async action methods, and the UI reads through selectors and is told about
changes through ``subscribe``.

Everything runs on one asyncio loop. Each session is its own partition, so
no step ever reads or writes two sessions at once and no locking is needed.
"""

import asyncio
import time
import uuid
from collections.abc import AsyncIterable, Awaitable, Callable, Coroutine
from typing import Any, Protocol

from ._logger import get_logger
from .buffer import TurnBuffer
from .config import TimelineSettings
from .events import (
    ContentBlockAppend,
    Event,
    ToolCompleted,
    ToolInvoked,
    TurnCancelled,
    TurnComplete,
    TurnError,
    parse_event,
)
from .exceptions import UnknownMessageError, UnknownSessionError, UnknownToolError
from .models import (
    PLAN_EXIT_TOOL,
    QUESTION_TOOL,
    ExecutionMode,
    Message,
    QueuedMessage,
    QuestionAnswer,
    Role,
    SendOptions,
    ToolCall,
    has_questions_payload,
)
from .session import SessionState, SessionStatus
from .timeline import TimelineCache, TimelineItem

logger = get_logger(__name__)

APPROVAL_MESSAGE = "Approved. Proceed with the plan."

Listener = Callable[[str], None]
EventHandler = Callable[[SessionState, Any], Awaitable[None]]


class Backend(Protocol):
    """What the store needs from the transport and persistence layer."""

    async def send(self, session_id: str, text: str, options: SendOptions) -> bool: ...

    async def fetch_history(self, session_id: str) -> list[Message]: ...

    async def cancel(self, session_id: str) -> bool: ...


def format_answers(tool: ToolCall, answers: list[QuestionAnswer]) -> str:
    """Render question answers as the follow-up message text."""
    questions = tool.input["questions"] if has_questions_payload(tool) else []
    parts = []
    for answer in answers:
        question: dict = {}
        if 0 <= answer.question_index < len(questions) and isinstance(questions[answer.question_index], dict):
            question = questions[answer.question_index]
        options = question.get("options") if isinstance(question.get("options"), list) else []

        labels = []
        for idx in answer.selected_options:
            if 0 <= idx < len(options) and isinstance(options[idx], dict):
                labels.append(str(options[idx].get("label", idx)))
        if answer.custom_text:
            labels.append(answer.custom_text)

        header = question.get("question") or f"Question {answer.question_index + 1}"
        parts.append(f"{header}\n{', '.join(labels) or '(no answer)'}")
    return "\n\n".join(parts)


class ChatStore:
    """Session partitions, their turn state machines and the render cache."""

    def __init__(self, backend: Backend, settings: TimelineSettings | None = None) -> None:
        self.backend = backend
        self.settings = settings or TimelineSettings()
        self.cache = TimelineCache(self.settings.cache_size)
        self._sessions: dict[str, SessionState] = {}
        self._listeners: list[Listener] = []
        self._background: set[asyncio.Task] = set()
        # Looked up per event, so handlers can be swapped while a pump is running.
        self._handlers: dict[str, EventHandler] = {
            "content_block_append": self._on_block,
            "tool_invoked": self._on_tool_invoked,
            "tool_completed": self._on_tool_completed,
            "turn_complete": self._on_turn_complete,
            "turn_error": self._on_turn_error,
            "turn_cancelled": self._on_turn_cancelled,
        }

    # ------------------------------------------------------------------
    # Sessions and subscriptions
    # ------------------------------------------------------------------

    def create_session(
        self,
        session_id: str | None = None,
        name: str = "",
        messages: list[Message] | None = None,
    ) -> SessionState:
        session_id = session_id or str(uuid.uuid4())
        if session_id in self._sessions:
            return self._sessions[session_id]
        session = SessionState(session_id, name=name, messages=messages)
        self._sessions[session_id] = session
        logger.debug("Created session %s", session_id)
        self._notify(session_id)
        return session

    async def open_session(self, session_id: str, name: str = "") -> SessionState:
        """Register a session and load its persisted history."""
        session = self.create_session(session_id, name=name)
        await self._reconcile(session, None)
        return session

    def archive_session(self, session_id: str) -> None:
        """Archive a session, cancelling its turn if one is in flight."""
        session = self.get(session_id)
        if session.turn_in_flight:
            self.cancel_turn(session_id)
        session.queue.clear()
        session.archived_at = time.time()
        self._notify(session_id)

    def get(self, session_id: str) -> SessionState:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    def sessions(self, include_archived: bool = False) -> list[SessionState]:
        return [s for s in self._sessions.values() if include_archived or not s.is_archived]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(session_id)`` after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_handler(self, event_type: str, handler: EventHandler) -> None:
        """Replace the handler for one event type, effective from the next event."""
        self._handlers[event_type] = handler

    def _notify(self, session_id: str) -> None:
        for listener in list(self._listeners):
            listener(session_id)

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    def status(self, session_id: str) -> SessionStatus:
        return self.get(session_id).status

    def is_sending(self, session_id: str) -> bool:
        session = self.get(session_id)
        return session.turn_in_flight or session.status == SessionStatus.SENDING

    def is_waiting_for_input(self, session_id: str) -> bool:
        return self.get(session_id).status == SessionStatus.AWAITING_INPUT

    def queued_messages(self, session_id: str) -> list[QueuedMessage]:
        return list(self.get(session_id).queue)

    def error(self, session_id: str) -> str | None:
        return self.get(session_id).error

    def is_question_answered(self, session_id: str, tool_id: str) -> bool:
        return self.get(session_id).is_question_resolved(tool_id)

    def submitted_answers(self, session_id: str, tool_id: str) -> list[QuestionAnswer] | None:
        return self.get(session_id).answered_questions.get(tool_id)

    def live_message(self, session_id: str) -> Message | None:
        """The in-flight turn as a message, or None when nothing is buffered."""
        buffer = self.get(session_id).buffer
        return buffer.to_message() if buffer is not None else None

    def display_messages(self, session_id: str) -> list[Message]:
        """Committed history followed by the live turn, if any."""
        session = self.get(session_id)
        messages = list(session.messages)
        if session.buffer is not None:
            messages.append(session.buffer.to_message())
        return messages

    def timeline(self, session_id: str, message_id: str) -> list[TimelineItem]:
        """Timeline items of one message of one session."""
        session = self.get(session_id)
        buffer = session.buffer
        if buffer is not None and buffer.message_id == message_id:
            return self.cache.get_or_build(buffer.message_id, buffer.blocks, buffer.tool_calls, buffer.version)
        message = session.find_message(message_id)
        if message is None:
            raise UnknownMessageError(message_id)
        return self.cache.for_message(message)

    def timelines(self, session_id: str) -> dict[str, list[TimelineItem]]:
        """Timeline items for every message of a session, keyed by message id."""
        session = self.get(session_id)
        result = {m.id: self.cache.for_message(m) for m in session.messages}
        buffer = session.buffer
        if buffer is not None:
            result[buffer.message_id] = self.cache.get_or_build(
                buffer.message_id, buffer.blocks, buffer.tool_calls, buffer.version
            )
        return result

    # ------------------------------------------------------------------
    # Backend events
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event | dict) -> None:
        """Apply one backend event to its session."""
        if isinstance(event, dict):
            parsed = parse_event(event)
            if parsed is None:
                return
            event = parsed

        session = self._sessions.get(event.session_id)
        if session is None:
            logger.warning("Dropping %s for unknown session %s", event.type, event.session_id)
            return

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.warning("No handler for event type %s", event.type)
            return

        await handler(session, event)
        self._notify(session.session_id)

    async def pump(self, source: AsyncIterable[Event | dict]) -> None:
        """Consume an event stream until it ends.

        Events are fanned out to one worker per session: each session sees
        its events strictly in order, and a slow step in one session (such
        as a history fetch) does not hold up the others.
        """
        queues: dict[str, asyncio.Queue] = {}
        workers: list[asyncio.Task] = []

        async def worker(queue: asyncio.Queue) -> None:
            while True:
                event = await queue.get()
                if event is None:
                    return
                await self.handle_event(event)

        async for raw in source:
            event = parse_event(raw) if isinstance(raw, dict) else raw
            if event is None:
                continue
            queue = queues.get(event.session_id)
            if queue is None:
                queue = queues[event.session_id] = asyncio.Queue()
                workers.append(asyncio.create_task(worker(queue)))
            queue.put_nowait(event)

        for queue in queues.values():
            queue.put_nowait(None)
        await asyncio.gather(*workers)

    def _live_buffer(self, session: SessionState, event_type: str) -> TurnBuffer | None:
        if not session.turn_in_flight or session.buffer is None:
            logger.debug("Session %s has no turn in flight, dropping %s", session.session_id, event_type)
            return None
        return session.buffer

    async def _on_block(self, session: SessionState, event: ContentBlockAppend) -> None:
        buffer = self._live_buffer(session, event.type)
        if buffer is not None:
            buffer.append_block(event.block)

    async def _on_tool_invoked(self, session: SessionState, event: ToolInvoked) -> None:
        buffer = self._live_buffer(session, event.type)
        if buffer is None or not buffer.add_tool(event.tool):
            return

        tool = event.tool
        if session.status != SessionStatus.SENDING:
            return
        if tool.name == QUESTION_TOOL and not session.is_question_resolved(tool.id):
            session.transition(SessionStatus.AWAITING_INPUT)
        elif tool.name == PLAN_EXIT_TOOL and not session.streaming_plan_approved:
            session.transition(SessionStatus.AWAITING_INPUT)

    async def _on_tool_completed(self, session: SessionState, event: ToolCompleted) -> None:
        buffer = self._live_buffer(session, event.type)
        if buffer is not None:
            buffer.complete_tool(event.tool_use_id, event.output)

    async def _on_turn_complete(self, session: SessionState, event: TurnComplete) -> None:
        if not session.turn_in_flight:
            logger.debug("Ignoring turn_complete for session %s with no turn in flight", session.session_id)
            return

        session.turn_in_flight = False
        if not await self._reconcile(session, session.buffer):
            return

        if session.status == SessionStatus.SENDING or (
            session.status == SessionStatus.AWAITING_INPUT and not session.needs_input()
        ):
            session.transition(SessionStatus.IDLE)
            self._dispatch_next(session)

    async def _on_turn_error(self, session: SessionState, event: TurnError) -> None:
        if not session.turn_in_flight:
            logger.debug("Ignoring turn_error for session %s with no turn in flight", session.session_id)
            return
        logger.error("Turn failed in session %s: %s", session.session_id, event.error)
        session.turn_in_flight = False
        self._fail(session, event.error)

    async def _on_turn_cancelled(self, session: SessionState, event: TurnCancelled) -> None:
        if session.pending_cancel_acks:
            # Acknowledgement of a cancel already applied locally; pick up the
            # partial turn the backend persisted.
            session.pending_cancel_acks -= 1
            await self._reconcile(session, None)
            return

        if not session.turn_in_flight:
            logger.debug("Ignoring turn_cancelled for idle session %s", session.session_id)
            return

        session.turn_in_flight = False
        if not await self._reconcile(session, session.buffer):
            return
        if session.status in (SessionStatus.SENDING, SessionStatus.AWAITING_INPUT):
            session.transition(SessionStatus.IDLE)
            self._dispatch_next(session)

    async def _reconcile(self, session: SessionState, buffer: TurnBuffer | None) -> bool:
        """Replace committed history with the persisted one.

        The live buffer stays visible while the fetch is pending and is
        dropped in the same step that installs the new history, so the
        turn is never shown twice and never missing. ``buffer`` is only
        dropped if it is still the session's current buffer.
        """
        try:
            messages = await self.backend.fetch_history(session.session_id)
        except Exception as e:
            if session.turn_in_flight:
                # A newer turn owns the session state; its own completion refetches.
                logger.warning("History refresh failed for session %s: %s", session.session_id, e)
                return False
            logger.exception("History fetch failed for session %s", session.session_id)
            self._fail(session, f"Failed to load history: {e}")
            return False

        session.messages = list(messages)
        for message in session.messages:
            if message.id in session.approved_plan_message_ids:
                message.plan_approved = True
        if buffer is not None and session.buffer is buffer:
            session.buffer = None
            self.cache.invalidate(buffer.message_id)
        self._notify(session.session_id)
        return True

    def _fail(self, session: SessionState, error: str) -> None:
        session.error = error
        session.transition(SessionStatus.ERROR)
        if not self.settings.keep_queue_on_error and session.queue:
            logger.info("Discarding %d queued messages in session %s", len(session.queue), session.session_id)
            session.queue.clear()
        self._notify(session.session_id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _begin_turn(self, session: SessionState, queued: QueuedMessage) -> int:
        """Switch the session to a fresh in-flight turn. Synchronous, so no
        second submission can slip in before the turn is marked in flight."""
        if session.buffer is not None:
            self.cache.invalidate(session.buffer.message_id)
        session.turn_seq += 1
        # Shown until reconciliation swaps in the persisted copy.
        session.messages.append(
            Message(
                id=f"local-{queued.id}",
                session_id=session.session_id,
                role=Role.USER,
                content=queued.message,
                model=queued.options.model,
                execution_mode=queued.options.execution_mode,
            )
        )
        session.buffer = TurnBuffer(session.session_id, str(uuid.uuid4()))
        session.turn_in_flight = True
        session.error = None
        session.last_options = queued.options
        session.executing_mode = queued.options.execution_mode
        session.streaming_plan_approved = False
        session.transition(SessionStatus.SENDING)
        self._notify(session.session_id)
        return session.turn_seq

    async def _send(self, session: SessionState, seq: int, queued: QueuedMessage) -> bool:
        error = "Failed to send message"
        try:
            ok = await self.backend.send(session.session_id, queued.message, queued.options)
        except Exception as e:
            logger.exception("Send failed for session %s", session.session_id)
            ok = False
            error = f"Failed to send message: {e}"

        if not ok and session.turn_seq == seq and session.turn_in_flight:
            session.turn_in_flight = False
            if session.buffer is not None and session.buffer.is_empty:
                session.buffer = None
            self._fail(session, error)
        return ok

    async def _dispatch_now(self, session: SessionState, queued: QueuedMessage) -> bool:
        seq = self._begin_turn(session, queued)
        return await self._send(session, seq, queued)

    def _dispatch_next(self, session: SessionState) -> None:
        """Start the oldest queued message if the session is idle."""
        if session.status != SessionStatus.IDLE or session.turn_in_flight or not session.queue:
            return
        queued = session.queue.popleft()
        logger.debug("Dispatching queued message %s in session %s", queued.id, session.session_id)
        seq = self._begin_turn(session, queued)
        self._spawn(self._send(session, seq, queued))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for every background send and cancel signal to settle."""
        while self._background:
            await asyncio.gather(*list(self._background))

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def submit(self, session_id: str, text: str, options: SendOptions | None = None) -> QueuedMessage:
        """Send a message now, or queue it behind the turn in flight.

        Submitting while questions are pending abandons them (they count as
        skipped). Submitting from ERROR dismisses the error first; messages
        held in the queue keep their place ahead of the new one.
        """
        session = self.get(session_id)
        queued = QueuedMessage(
            id=str(uuid.uuid4()),
            message=text,
            options=options or session.last_options or SendOptions(),
        )

        if session.status == SessionStatus.AWAITING_INPUT:
            self._abandon_pending_input(session)
        elif session.status == SessionStatus.ERROR:
            await self.dismiss_error(session_id)
            if session.status == SessionStatus.IDLE and not session.turn_in_flight and session.queue:
                session.queue.append(queued)
                self._notify(session_id)
                await self._dispatch_now(session, session.queue.popleft())
                return queued

        if session.turn_in_flight or session.status != SessionStatus.IDLE:
            session.queue.append(queued)
            logger.debug("Queued message %s in session %s", queued.id, session_id)
            self._notify(session_id)
            return queued

        await self._dispatch_now(session, queued)
        return queued

    def _abandon_pending_input(self, session: SessionState) -> None:
        for tool_id in session.pending_question_ids():
            session.skipped_questions.add(tool_id)
        if session.turn_in_flight:
            session.transition(SessionStatus.SENDING)
        else:
            session.transition(SessionStatus.IDLE)

    async def _respond(self, session: SessionState, text: str, options: SendOptions) -> None:
        """Send a reply to a question or plan; it jumps the queue."""
        queued = QueuedMessage(id=str(uuid.uuid4()), message=text, options=options)
        if session.turn_in_flight or session.status == SessionStatus.SENDING:
            session.queue.appendleft(queued)
            session.transition(SessionStatus.SENDING)
            self._notify(session.session_id)
            return
        if session.status == SessionStatus.ERROR:
            await self.dismiss_error(session.session_id)
        if session.status != SessionStatus.IDLE:
            session.error = None
            session.transition(SessionStatus.IDLE)
        await self._dispatch_now(session, queued)

    def _find_question(self, tool_id: str) -> tuple[SessionState, ToolCall]:
        for session in self._sessions.values():
            tool = session.find_tool(tool_id)
            if tool is not None and tool.name == QUESTION_TOOL:
                return session, tool
        raise UnknownToolError(tool_id)

    async def answer_question(self, tool_id: str, answers: list[QuestionAnswer]) -> bool:
        """Record answers for a question tool and send them. False if already resolved."""
        session, tool = self._find_question(tool_id)
        if session.is_question_resolved(tool_id):
            logger.info("Question %s already answered or skipped", tool_id)
            return False
        session.answered_questions[tool_id] = list(answers)
        await self._respond(session, format_answers(tool, answers), session.last_options or SendOptions())
        return True

    def skip_question(self, tool_id: str) -> None:
        """Dismiss a question without answering it."""
        session, _ = self._find_question(tool_id)
        session.skipped_questions.add(tool_id)
        if session.status == SessionStatus.AWAITING_INPUT and not session.needs_input():
            if session.turn_in_flight:
                session.transition(SessionStatus.SENDING)
            else:
                session.transition(SessionStatus.IDLE)
                self._dispatch_next(session)
        self._notify(session.session_id)

    async def approve_plan(self, message_id: str, elevated: bool = False) -> None:
        """Approve a proposed plan and ask the backend to carry it out.

        ``message_id`` may name a committed message or the live turn. An
        elevated approval runs the follow-up unrestricted instead of
        auto-applying edits only.
        """
        session = None
        for candidate in self._sessions.values():
            if candidate.buffer is not None and candidate.buffer.message_id == message_id:
                session = candidate
                session.streaming_plan_approved = True
                break
            message = candidate.find_message(message_id)
            if message is not None:
                session = candidate
                message.plan_approved = True
                session.approved_plan_message_ids.add(message_id)
                break
        if session is None:
            raise UnknownMessageError(message_id)

        mode = ExecutionMode.YOLO if elevated else ExecutionMode.BUILD
        base = session.last_options or SendOptions()
        await self._respond(session, APPROVAL_MESSAGE, base.model_copy(update={"execution_mode": mode}))

    async def approve_plan_elevated(self, message_id: str) -> None:
        await self.approve_plan(message_id, elevated=True)

    def cancel_turn(self, session_id: str) -> bool:
        """Cancel the turn in flight.

        The backend is signalled without waiting for it; the live buffer is
        dropped and the session goes idle right away, then the next queued
        message starts. Side effects the backend already committed stay.
        Returns False if nothing was in flight.
        """
        session = self.get(session_id)
        if not session.turn_in_flight:
            return False

        self._spawn(self._signal_cancel(session_id))
        session.pending_cancel_acks += 1
        if session.buffer is not None:
            self.cache.invalidate(session.buffer.message_id)
        session.buffer = None
        session.turn_in_flight = False
        session.streaming_plan_approved = False
        session.transition(SessionStatus.IDLE)
        self._notify(session_id)
        self._dispatch_next(session)
        return True

    async def _signal_cancel(self, session_id: str) -> None:
        try:
            cancelled = await self.backend.cancel(session_id)
        except Exception:
            logger.exception("Cancel signal failed for session %s", session_id)
            return
        if not cancelled:
            logger.info("Backend had no active turn to cancel in session %s", session_id)

    async def dismiss_error(self, session_id: str) -> None:
        """Clear the error banner and settle the retained partial turn.

        Queued messages stay queued; ``retry_queue`` sends them.
        """
        session = self.get(session_id)
        if session.status != SessionStatus.ERROR:
            return
        session.error = None
        session.transition(SessionStatus.IDLE)
        self._notify(session_id)
        if session.buffer is not None and not session.turn_in_flight:
            await self._reconcile(session, session.buffer)

    async def retry_queue(self, session_id: str) -> bool:
        """Manually send the oldest queued message of an idle session."""
        session = self.get(session_id)
        if session.status != SessionStatus.IDLE or session.turn_in_flight or not session.queue:
            return False
        return await self._dispatch_now(session, session.queue.popleft())

    def remove_queued_message(self, session_id: str, queued_id: str) -> bool:
        session = self.get(session_id)
        for queued in session.queue:
            if queued.id == queued_id:
                session.queue.remove(queued)
                self._notify(session_id)
                return True
        return False

    def clear_queue(self, session_id: str) -> None:
        self.get(session_id).queue.clear()
        self._notify(session_id)
