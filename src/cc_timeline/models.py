"""Domain models for cc-timeline."""

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

TASK_TOOL = "Task"
QUESTION_TOOL = "AskUserQuestion"
PLAN_EXIT_TOOL = "ExitPlanMode"
TODO_TOOL = "TodoWrite"

INTERACTIVE_TOOLS = frozenset({QUESTION_TOOL, PLAN_EXIT_TOOL, TODO_TOOL})


class BlockType(str, Enum):
    """Types of content blocks in assistant turns."""

    THINKING = "thinking"
    TEXT = "text"
    TOOL_USE = "tool_use"


class Block(BaseModel):
    """An ordered fragment of an assistant turn."""

    type: BlockType
    text: str = ""  # for text and thinking
    tool_call_id: str | None = None  # for tool_use


class ToolCall(BaseModel):
    """One tool invocation. Output is attached once, on completion."""

    id: str
    name: str
    input: Any = None
    output: str | None = None
    parent_tool_use_id: str | None = None


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ExecutionMode(str, Enum):
    """Permission mode a turn runs under."""

    PLAN = "plan"  # read-only planning
    BUILD = "build"  # auto-apply edits
    YOLO = "yolo"  # unrestricted


class ThinkingLevel(str, Enum):
    OFF = "off"
    THINK = "think"
    MEGATHINK = "megathink"
    ULTRATHINK = "ultrathink"


class Message(BaseModel):
    """One conversation turn."""

    id: str
    session_id: str
    role: Role
    content: str = ""
    timestamp: float = Field(default_factory=time.time)
    tool_calls: list[ToolCall] = []
    content_blocks: list[Block] | None = None  # None for legacy messages
    cancelled: bool = False
    plan_approved: bool = False
    model: str | None = None
    execution_mode: ExecutionMode | None = None


class SendOptions(BaseModel):
    """Model and permission selection sent along with a user message."""

    model: str = "opus"
    provider: str = "claude"
    execution_mode: ExecutionMode = ExecutionMode.PLAN
    thinking_level: ThinkingLevel = ThinkingLevel.OFF


class QueuedMessage(BaseModel):
    """A submission waiting for the session's in-flight turn to resolve."""

    id: str
    message: str
    options: SendOptions = Field(default_factory=SendOptions)
    queued_at: float = Field(default_factory=time.time)


class QuestionAnswer(BaseModel):
    """Answer to one question of an interactive-question tool."""

    question_index: int
    selected_options: list[int] = []
    custom_text: str | None = None


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Todo(BaseModel):
    """A checklist entry from the todo tool."""

    content: str
    active_form: str = Field(default="", alias="activeForm")
    status: TodoStatus = TodoStatus.PENDING

    model_config = {"populate_by_name": True}


def is_task(tool: ToolCall) -> bool:
    return tool.name == TASK_TOOL


def is_interactive(tool: ToolCall) -> bool:
    """Question, plan-exit and todo tools get their own UI and never nest under a task."""
    return tool.name in INTERACTIVE_TOOLS


def has_questions_payload(tool: ToolCall) -> bool:
    """Check that a question tool carries a well-formed ``questions`` list."""
    return isinstance(tool.input, dict) and isinstance(tool.input.get("questions"), list)


def has_todos_payload(tool: ToolCall) -> bool:
    return isinstance(tool.input, dict) and isinstance(tool.input.get("todos"), list)
