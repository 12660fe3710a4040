"""Attribute sub-tool invocations to the task tool that spawned them."""

from .models import Block, BlockType, ToolCall, is_interactive, is_task


def resolve_parents(tool_calls: list[ToolCall], blocks: list[Block]) -> dict[str, str]:
    """Map sub-tool id -> parent task id for one message.

    Explicit ``parent_tool_use_id`` links are authoritative and are applied
    first; they stay correct when several tasks run interleaved. Messages
    recorded before that field existed fall back to position: a task
    invocation opens a scope and the next non-empty text block closes it,
    since text means control returned to the top level. With two tasks
    open at once the most recent task owns the following sub-tools. A tool
    that names a parent which is missing or not a task is left standalone.

    Args:
        tool_calls: All tool calls of the message.
        blocks: Ordered content blocks of the message.

    Returns:
        Mapping from sub-tool id to parent task id. Tools absent from the
        mapping are standalone.
    """
    by_id = {tc.id: tc for tc in tool_calls}
    parents: dict[str, str] = {}

    for tc in tool_calls:
        if not tc.parent_tool_use_id or is_interactive(tc) or tc.id in parents:
            continue
        parent = by_id.get(tc.parent_tool_use_id)
        if parent is not None and is_task(parent) and parent.id != tc.id:
            parents[tc.id] = parent.id

    current_task: str | None = None
    for block in blocks:
        if block.type == BlockType.TEXT:
            if block.text.strip():
                current_task = None
            continue
        if block.type != BlockType.TOOL_USE or block.tool_call_id is None:
            continue

        tool = by_id.get(block.tool_call_id)
        if tool is None or is_interactive(tool):
            continue
        if is_task(tool):
            current_task = tool.id
        elif current_task is not None and tool.id not in parents and not tool.parent_tool_use_id:
            parents[tool.id] = current_task

    return parents
