"""Turn content blocks and tool calls into an ordered, render-ready timeline."""

from collections import OrderedDict
from typing import Annotated, Literal

from pydantic import BaseModel, Field, ValidationError

from ._logger import get_logger
from .models import (
    PLAN_EXIT_TOOL,
    QUESTION_TOOL,
    TODO_TOOL,
    Block,
    BlockType,
    Message,
    Todo,
    TodoStatus,
    ToolCall,
    has_questions_payload,
    has_todos_payload,
    is_task,
)
from .resolver import resolve_parents

logger = get_logger(__name__)

PREVIEW_KEYS = ["command", "description", "prompt", "pattern", "file_path", "query"]


class TextItem(BaseModel):
    kind: Literal["text"] = "text"
    key: str
    text: str


class ReasoningItem(BaseModel):
    kind: Literal["reasoning"] = "reasoning"
    key: str
    text: str


class ToolItem(BaseModel):
    """A top-level tool call that is neither a task nor interactive."""

    kind: Literal["tool"] = "tool"
    key: str
    tool: ToolCall
    summary: str = ""
    degraded: bool = False


class TaskItem(BaseModel):
    """A task tool together with every sub-tool attributed to it."""

    kind: Literal["task"] = "task"
    key: str
    tool: ToolCall
    sub_tools: list[ToolCall] = []
    summary: str = ""
    degraded: bool = False


class StackedGroupItem(BaseModel):
    """Two or more consecutive reasoning/tool items shown as one collapsible cluster."""

    kind: Literal["stacked_group"] = "stacked_group"
    key: str
    items: list[Annotated[ReasoningItem | ToolItem, Field(discriminator="kind")]]


class QuestionItem(BaseModel):
    kind: Literal["question"] = "question"
    key: str
    tool: ToolCall
    intro_text: str | None = None
    degraded: bool = False


class PlanItem(BaseModel):
    kind: Literal["plan"] = "plan"
    key: str
    tool: ToolCall


TimelineItem = Annotated[
    TextItem | ReasoningItem | ToolItem | TaskItem | StackedGroupItem | QuestionItem | PlanItem,
    Field(discriminator="kind"),
]


def truncate(text: str, max_len: int = 120) -> str:
    """Truncate text with ellipsis."""
    text = str(text)
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text


def summarize_input(tool: ToolCall) -> str:
    """One-line preview of a tool's input, empty when the input is not an object."""
    inputs = tool.input
    if not isinstance(inputs, dict):
        return ""
    for key in PREVIEW_KEYS:
        if key in inputs:
            return truncate(str(inputs[key]))
    return truncate(str(inputs)) if inputs else ""


def legacy_blocks(message: Message) -> list[Block]:
    """Synthesize blocks for messages persisted before content blocks existed.

    Old clients showed the tool calls first and the message text after them.
    """
    blocks = [Block(type=BlockType.TOOL_USE, tool_call_id=tc.id) for tc in message.tool_calls]
    if message.content.strip():
        blocks.append(Block(type=BlockType.TEXT, text=message.content))
    return blocks


def _malformed_input(tool: ToolCall) -> bool:
    """Input arrived but is not an object. No input at all is not malformed."""
    return tool.input is not None and not isinstance(tool.input, dict)


def _tool_item(tool: ToolCall, degraded: bool = False) -> ToolItem:
    return ToolItem(key=f"tool-{tool.id}", tool=tool, summary=summarize_input(tool), degraded=degraded)


def build_items(
    blocks: list[Block],
    tool_calls: list[ToolCall],
    parents: dict[str, str],
) -> list[TimelineItem]:
    """Single ordered pass over the blocks, before stacking.

    Every tool is emitted once per id, so retried emissions collapse.
    Question tools absorb the text item right before them as intro text;
    any text after a question is the model restating it and is dropped.
    Plan proposals stay in position. Todo updates are consumed. Sub-tools
    are skipped here and appear inside their task's item.
    """
    by_id = {tc.id: tc for tc in tool_calls}
    result: list[TimelineItem] = []
    rendered: set[str] = set()
    seen_question = False
    last_text_index: int | None = None

    for i, block in enumerate(blocks):
        if block.type == BlockType.THINKING:
            if block.text.strip():
                result.append(ReasoningItem(key=f"thinking-{i}", text=block.text))
            continue

        if block.type == BlockType.TEXT:
            if seen_question or not block.text.strip():
                continue
            result.append(TextItem(key=f"text-{i}", text=block.text))
            last_text_index = len(result) - 1
            continue

        tool = by_id.get(block.tool_call_id or "")
        if tool is None or tool.id in rendered:
            continue

        if tool.name == QUESTION_TOOL:
            rendered.add(tool.id)
            intro_text = None
            if last_text_index is not None and last_text_index == len(result) - 1:
                intro_text = result.pop().text
            last_text_index = None
            degraded = not has_questions_payload(tool)
            if degraded:
                logger.warning("Question tool %s has a malformed payload", tool.id)
            result.append(
                QuestionItem(key=f"ask-{tool.id}", tool=tool, intro_text=intro_text, degraded=degraded)
            )
            seen_question = True
            continue

        if tool.name == PLAN_EXIT_TOOL:
            rendered.add(tool.id)
            result.append(PlanItem(key=f"exit-{tool.id}", tool=tool))
            continue

        if tool.name == TODO_TOOL or tool.id in parents:
            continue

        if is_task(tool):
            rendered.add(tool.id)
            sub_tools = [tc for tc in tool_calls if parents.get(tc.id) == tool.id]
            result.append(
                TaskItem(
                    key=f"task-{tool.id}",
                    tool=tool,
                    sub_tools=sub_tools,
                    summary=summarize_input(tool),
                    degraded=_malformed_input(tool),
                )
            )
            continue

        rendered.add(tool.id)
        result.append(_tool_item(tool, degraded=_malformed_input(tool)))

    return result


def stack_items(items: list[TimelineItem]) -> list[TimelineItem]:
    """Merge runs of 2+ consecutive reasoning/tool items into stacked groups."""
    result: list[TimelineItem] = []
    run: list[ReasoningItem | ToolItem] = []

    def flush() -> None:
        if len(run) >= 2:
            result.append(StackedGroupItem(key=f"stacked-{run[0].key}", items=list(run)))
        else:
            result.extend(run)
        run.clear()

    for item in items:
        if isinstance(item, (ReasoningItem, ToolItem)):
            run.append(item)
        else:
            flush()
            result.append(item)
    flush()

    return result


def build_timeline(blocks: list[Block], tool_calls: list[ToolCall]) -> list[TimelineItem]:
    """Resolve parents, build the ordered items and stack them.

    Never raises: a block that fails to convert is logged and shown as a
    degraded tool item so one bad payload cannot blank the conversation.
    """
    try:
        parents = resolve_parents(tool_calls, blocks)
        return stack_items(build_items(blocks, tool_calls, parents))
    except (TypeError, ValueError, AttributeError, KeyError, ValidationError):
        logger.exception("Timeline build failed, falling back to label-only items")
        return [_tool_item(tc, degraded=True) for tc in tool_calls]


def message_timeline(message: Message) -> list[TimelineItem]:
    """Timeline of a persisted message, using the legacy layout when it has no blocks."""
    blocks = message.content_blocks if message.content_blocks else legacy_blocks(message)
    return build_timeline(blocks, message.tool_calls)


class TimelineCache:
    """Bounded memo of built timelines.

    Keyed by (message id, block count, tool-call count, version). Persisted
    messages use version 0; the live buffer bumps its version on every
    mutation, so in-place text appends and tool outputs invalidate it.
    """

    def __init__(self, max_entries: int = 512) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[tuple[str, int, int, int], list[TimelineItem]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_build(
        self,
        message_id: str,
        blocks: list[Block],
        tool_calls: list[ToolCall],
        version: int = 0,
    ) -> list[TimelineItem]:
        key = (message_id, len(blocks), len(tool_calls), version)
        cached = self._entries.get(key)
        if cached is not None:
            self._entries.move_to_end(key)
            self.hits += 1
            return cached

        self.misses += 1
        items = build_timeline(blocks, tool_calls)
        self._entries[key] = items
        if len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return items

    def for_message(self, message: Message) -> list[TimelineItem]:
        blocks = message.content_blocks if message.content_blocks else legacy_blocks(message)
        return self.get_or_build(message.id, blocks, message.tool_calls)

    def invalidate(self, message_id: str) -> None:
        for key in [k for k in self._entries if k[0] == message_id]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()


def last_incomplete_index(items: list[TimelineItem]) -> int:
    """Index of the last item with a tool still running, or -1."""
    last = -1
    for idx, item in enumerate(items):
        if isinstance(item, (TaskItem, ToolItem)) and item.tool.output is None:
            last = idx
        elif isinstance(item, StackedGroupItem) and any(
            isinstance(i, ToolItem) and i.tool.output is None for i in item.items
        ):
            last = idx
    return last


def find_plan_file_path(tool_calls: list[ToolCall]) -> str | None:
    """Find the plan file written during a planning turn."""
    for tc in tool_calls:
        if tc.name != "Write" or not isinstance(tc.input, dict):
            continue
        file_path = tc.input.get("file_path")
        if isinstance(file_path, str) and "/.claude/plans/" in file_path and file_path.endswith(".md"):
            return file_path
    return None


def latest_todos(tool_calls: list[ToolCall]) -> list[Todo]:
    """Todos from the most recent well-formed todo tool call."""
    for tc in reversed(tool_calls):
        if tc.name != TODO_TOOL or not has_todos_payload(tc):
            continue
        todos = []
        for raw in tc.input["todos"]:
            try:
                todos.append(Todo.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed todo in %s", tc.id)
        return todos
    return []


def normalize_todos_for_display(
    todos: list[Todo],
    is_streaming: bool,
    was_cancelled: bool = False,
) -> list[Todo]:
    """Settle todo statuses once the turn is over.

    While streaming the statuses are shown as-is. After completion an
    in-progress todo counts as completed; after cancellation anything not
    completed counts as cancelled.
    """
    if is_streaming:
        return todos

    normalized = []
    for todo in todos:
        if was_cancelled and todo.status != TodoStatus.COMPLETED:
            normalized.append(todo.model_copy(update={"status": TodoStatus.CANCELLED}))
        elif todo.status == TodoStatus.IN_PROGRESS:
            normalized.append(todo.model_copy(update={"status": TodoStatus.COMPLETED}))
        else:
            normalized.append(todo)
    return normalized
