"""Unit tests for the turn buffer."""

import logging

import pytest

from cc_timeline.buffer import TurnBuffer
from cc_timeline.models import Block, BlockType, Role, ToolCall


@pytest.fixture
def buffer() -> TurnBuffer:
    return TurnBuffer("s1", "m1")


class TestAppendBlock:
    """Tests for TurnBuffer.append_block."""

    def test_text_deltas_merge(self, buffer: TurnBuffer) -> None:
        """Consecutive text deltas become one block."""
        buffer.append_block(Block(type=BlockType.TEXT, text="Hel"))
        buffer.append_block(Block(type=BlockType.TEXT, text="lo"))
        assert len(buffer) == 1
        assert buffer.blocks[0].text == "Hello"

    def test_thinking_then_text_stay_separate(self, buffer: TurnBuffer) -> None:
        """Deltas of different kinds open new blocks."""
        buffer.append_block(Block(type=BlockType.THINKING, text="hmm"))
        buffer.append_block(Block(type=BlockType.TEXT, text="ok"))
        buffer.append_block(Block(type=BlockType.THINKING, text="again"))
        assert [b.type for b in buffer.blocks] == [BlockType.THINKING, BlockType.TEXT, BlockType.THINKING]

    def test_tool_use_never_merges(self, buffer: TurnBuffer) -> None:
        """Each tool marker is its own block."""
        buffer.append_block(Block(type=BlockType.TOOL_USE, tool_call_id="a"))
        buffer.append_block(Block(type=BlockType.TOOL_USE, tool_call_id="b"))
        assert [b.tool_call_id for b in buffer.blocks] == ["a", "b"]

    def test_tool_use_without_id_ignored(self, buffer: TurnBuffer, caplog: pytest.LogCaptureFixture) -> None:
        """A tool marker with no id is dropped with a warning."""
        with caplog.at_level(logging.WARNING, logger="cc_timeline"):
            buffer.append_block(Block(type=BlockType.TOOL_USE))
        assert buffer.blocks == []
        assert "without tool_call_id" in caplog.text

    def test_caller_block_not_aliased(self, buffer: TurnBuffer) -> None:
        """Merging never mutates the block the caller passed in."""
        first = Block(type=BlockType.TEXT, text="a")
        buffer.append_block(first)
        buffer.append_block(Block(type=BlockType.TEXT, text="b"))
        assert first.text == "a"

    def test_version_bumps(self, buffer: TurnBuffer) -> None:
        """Every mutation bumps the version, including in-place merges."""
        buffer.append_block(Block(type=BlockType.TEXT, text="a"))
        buffer.append_block(Block(type=BlockType.TEXT, text="b"))
        assert buffer.version == 2


class TestToolCalls:
    """Tests for tool registration and completion."""

    def test_duplicate_id_ignored(self, buffer: TurnBuffer) -> None:
        """A retried announcement does not add a second call."""
        assert buffer.add_tool(ToolCall(id="a", name="Bash"))
        assert not buffer.add_tool(ToolCall(id="a", name="Bash", input={"command": "ls"}))
        assert len(buffer.tool_calls) == 1
        assert buffer.tool_calls[0].input is None

    def test_first_output_wins(self, buffer: TurnBuffer) -> None:
        """A second completion for the same id is ignored."""
        buffer.add_tool(ToolCall(id="a", name="Bash"))
        assert buffer.complete_tool("a", "first")
        assert not buffer.complete_tool("a", "second")
        assert buffer.get_tool("a").output == "first"

    def test_unknown_completion(self, buffer: TurnBuffer, caplog: pytest.LogCaptureFixture) -> None:
        """Output for an unannounced tool is logged and dropped."""
        with caplog.at_level(logging.WARNING, logger="cc_timeline"):
            assert not buffer.complete_tool("missing", "x")
        assert "unknown tool missing" in caplog.text


class TestToMessage:
    """Tests for materializing the buffer."""

    def test_message_fields(self, buffer: TurnBuffer) -> None:
        """The message carries text, blocks and tool calls."""
        buffer.append_block(Block(type=BlockType.THINKING, text="plan"))
        buffer.append_block(Block(type=BlockType.TEXT, text="Done."))
        buffer.add_tool(ToolCall(id="a", name="Bash"))
        buffer.append_block(Block(type=BlockType.TOOL_USE, tool_call_id="a"))

        msg = buffer.to_message()
        assert msg.id == "m1"
        assert msg.session_id == "s1"
        assert msg.role == Role.ASSISTANT
        assert msg.content == "Done."
        assert len(msg.content_blocks) == 3
        assert [tc.id for tc in msg.tool_calls] == ["a"]
        assert not msg.cancelled

    def test_message_is_a_snapshot(self, buffer: TurnBuffer) -> None:
        """Later appends do not leak into an earlier snapshot."""
        buffer.append_block(Block(type=BlockType.TEXT, text="a"))
        msg = buffer.to_message()
        buffer.append_block(Block(type=BlockType.TEXT, text="b"))
        assert msg.content_blocks[0].text == "a"

    def test_empty(self, buffer: TurnBuffer) -> None:
        assert buffer.is_empty
        assert buffer.to_message(cancelled=True).cancelled
