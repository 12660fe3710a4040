"""Live buffer for the turn currently in flight."""

import time

from ._logger import get_logger
from .models import Block, BlockType, Message, Role, ToolCall

logger = get_logger(__name__)


class TurnBuffer:
    """Accumulates content blocks and tool calls of one in-flight turn.

    Consecutive text (or reasoning) deltas are merged into one block. Tool
    calls are keyed by id, so a retried announcement is a no-op. ``version``
    increases on every mutation and feeds the render cache.
    """

    def __init__(self, session_id: str, message_id: str) -> None:
        self.session_id = session_id
        self.message_id = message_id
        self.started_at = time.time()
        self.blocks: list[Block] = []
        self.tool_calls: list[ToolCall] = []
        self._tools_by_id: dict[str, ToolCall] = {}
        self.version = 0

    def __len__(self) -> int:
        return len(self.blocks)

    @property
    def is_empty(self) -> bool:
        return not self.blocks and not self.tool_calls

    @property
    def text(self) -> str:
        """Concatenated plain text of the turn so far."""
        return "".join(b.text for b in self.blocks if b.type == BlockType.TEXT)

    def get_tool(self, tool_id: str) -> ToolCall | None:
        return self._tools_by_id.get(tool_id)

    def append_block(self, block: Block) -> None:
        """Append a block, merging text/reasoning deltas into the previous block."""
        if block.type == BlockType.TOOL_USE:
            if not block.tool_call_id:
                logger.warning("Ignoring tool_use block without tool_call_id")
                return
            self.blocks.append(block.model_copy())
        else:
            last = self.blocks[-1] if self.blocks else None
            if last is not None and last.type == block.type:
                last.text += block.text
            else:
                self.blocks.append(block.model_copy())
        self.version += 1

    def add_tool(self, tool: ToolCall) -> bool:
        """Register a tool invocation. Returns False for a duplicate id."""
        if tool.id in self._tools_by_id:
            logger.debug("Duplicate tool invocation %s ignored", tool.id)
            return False
        call = tool.model_copy()
        self._tools_by_id[call.id] = call
        self.tool_calls.append(call)
        self.version += 1
        return True

    def complete_tool(self, tool_id: str, output: str) -> bool:
        """Attach output to a tool call. The first output wins."""
        call = self._tools_by_id.get(tool_id)
        if call is None:
            logger.warning("Output for unknown tool %s in session %s", tool_id, self.session_id)
            return False
        if call.output is not None:
            return False
        call.output = output
        self.version += 1
        return True

    def to_message(self, cancelled: bool = False) -> Message:
        """Materialize the buffer as an assistant message."""
        return Message(
            id=self.message_id,
            session_id=self.session_id,
            role=Role.ASSISTANT,
            content=self.text,
            timestamp=self.started_at,
            tool_calls=[t.model_copy() for t in self.tool_calls],
            content_blocks=[b.model_copy() for b in self.blocks],
            cancelled=cancelled,
        )
