"""cc-timeline: streaming chat timelines with nested tool calls."""

from .backend import InMemoryBackend
from .buffer import TurnBuffer
from .config import TimelineSettings
from .exceptions import UnknownMessageError, UnknownSessionError, UnknownToolError
from .models import Block, BlockType, ExecutionMode, Message, QuestionAnswer, Role, SendOptions, ToolCall
from .session import SessionState, SessionStatus
from .store import Backend, ChatStore
from .timeline import TimelineCache, TimelineItem, build_timeline, message_timeline
from .window import HistoryWindow

__all__ = [
    "Backend",
    "Block",
    "BlockType",
    "ChatStore",
    "ExecutionMode",
    "HistoryWindow",
    "InMemoryBackend",
    "Message",
    "QuestionAnswer",
    "Role",
    "SendOptions",
    "SessionState",
    "SessionStatus",
    "TimelineCache",
    "TimelineItem",
    "TimelineSettings",
    "ToolCall",
    "TurnBuffer",
    "UnknownMessageError",
    "UnknownSessionError",
    "UnknownToolError",
    "build_timeline",
    "message_timeline",
]
