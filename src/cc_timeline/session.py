"""Per-session streaming state.

Each session is an independent partition: its committed history, the live
buffer of the turn in flight, its submission queue and its status. The
store owns every partition and is the only writer.
"""

import time
from collections import deque
from enum import Enum

from ._logger import get_logger
from .buffer import TurnBuffer
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
)

logger = get_logger(__name__)


class SessionStatus(str, Enum):
    """Turn status of one session.

    - IDLE: nothing in flight, submissions go out immediately
    - SENDING: a turn is in flight or its history is being reconciled
    - AWAITING_INPUT: the turn asked a question or proposed a plan
    - ERROR: the transport failed, dismissable back to IDLE
    """

    IDLE = "idle"
    SENDING = "sending"
    AWAITING_INPUT = "awaiting_input"
    ERROR = "error"


VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.IDLE: {SessionStatus.SENDING},
    SessionStatus.SENDING: {SessionStatus.IDLE, SessionStatus.AWAITING_INPUT, SessionStatus.ERROR},
    SessionStatus.AWAITING_INPUT: {SessionStatus.SENDING, SessionStatus.IDLE, SessionStatus.ERROR},
    SessionStatus.ERROR: {SessionStatus.IDLE},
}


class SessionState:
    """Mutable state of one chat session."""

    def __init__(self, session_id: str, name: str = "", messages: list[Message] | None = None) -> None:
        self.session_id = session_id
        self.name = name or session_id
        self.created_at = time.time()
        self.archived_at: float | None = None
        self.messages: list[Message] = list(messages or [])

        self.status = SessionStatus.IDLE
        self.buffer: TurnBuffer | None = None
        self.turn_in_flight = False
        self.turn_seq = 0
        self.pending_cancel_acks = 0
        self.queue: deque[QueuedMessage] = deque()

        self.error: str | None = None
        self.last_options: SendOptions | None = None
        self.executing_mode: ExecutionMode | None = None
        self.streaming_plan_approved = False
        self.answered_questions: dict[str, list[QuestionAnswer]] = {}
        self.skipped_questions: set[str] = set()
        self.approved_plan_message_ids: set[str] = set()

    def __repr__(self) -> str:
        return f"SessionState({self.session_id!r}, status={self.status.value}, messages={len(self.messages)})"

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def transition(self, new_status: SessionStatus) -> None:
        """Move to a new status. Unexpected transitions are logged, not blocked."""
        if new_status == self.status:
            return
        if new_status not in VALID_TRANSITIONS[self.status]:
            logger.warning(
                "Unexpected transition %s -> %s in session %s",
                self.status.value,
                new_status.value,
                self.session_id,
            )
        logger.debug("Session %s: %s -> %s", self.session_id, self.status.value, new_status.value)
        self.status = new_status

    def is_question_resolved(self, tool_id: str) -> bool:
        return tool_id in self.answered_questions or tool_id in self.skipped_questions

    def find_tool(self, tool_id: str) -> ToolCall | None:
        """Look a tool call up in the live buffer, then in committed messages (newest first)."""
        if self.buffer is not None:
            tool = self.buffer.get_tool(tool_id)
            if tool is not None:
                return tool
        for message in reversed(self.messages):
            for tc in message.tool_calls:
                if tc.id == tool_id:
                    return tc
        return None

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def pending_question_ids(self) -> list[str]:
        """Unresolved question tools of the live turn, or else of the last assistant message."""
        if self.buffer is not None:
            tools = self.buffer.tool_calls
        elif self.messages and self.messages[-1].role == Role.ASSISTANT:
            tools = self.messages[-1].tool_calls
        else:
            return []
        return [tc.id for tc in tools if tc.name == QUESTION_TOOL and not self.is_question_resolved(tc.id)]

    def has_pending_plan(self) -> bool:
        """An unapproved plan proposal waits for the user."""
        if self.buffer is not None:
            proposed = any(tc.name == PLAN_EXIT_TOOL for tc in self.buffer.tool_calls)
            return proposed and not self.streaming_plan_approved
        return pending_plan_message(self.messages, self.approved_plan_message_ids) is not None

    def needs_input(self) -> bool:
        return bool(self.pending_question_ids()) or self.has_pending_plan()


def last_assistant_message(messages: list[Message]) -> Message | None:
    for message in reversed(messages):
        if message.role == Role.ASSISTANT:
            return message
    return None


def has_follow_up_map(messages: list[Message]) -> dict[int, bool]:
    """Map message index -> whether a user message comes after it. O(n)."""
    result: dict[int, bool] = {}
    found_user = False
    for i in range(len(messages) - 1, -1, -1):
        result[i] = found_user
        if messages[i].role == Role.USER:
            found_user = True
    return result


def last_plan_message_index(messages: list[Message]) -> int:
    """Index of the last assistant message that proposed a plan, or -1."""
    for i in range(len(messages) - 1, -1, -1):
        m = messages[i]
        if m.role == Role.ASSISTANT and any(tc.name == PLAN_EXIT_TOOL for tc in m.tool_calls):
            return i
    return -1


def pending_plan_message(messages: list[Message], approved_ids: set[str] | None = None) -> Message | None:
    """The latest plan message if it is neither approved nor followed by a user message."""
    idx = last_plan_message_index(messages)
    if idx < 0:
        return None
    m = messages[idx]
    if m.plan_approved or (approved_ids and m.id in approved_ids):
        return None
    if any(later.role == Role.USER for later in messages[idx + 1 :]):
        return None
    return m


def has_pending_questions(session: SessionState) -> bool:
    """Unanswered questions are waiting in the last assistant message.

    Only meaningful while nothing is streaming.
    """
    if session.turn_in_flight:
        return False
    last = last_assistant_message(session.messages)
    if last is None:
        return False
    return any(
        tc.name == QUESTION_TOOL and not session.is_question_resolved(tc.id) for tc in last.tool_calls
    )
