"""Virtualized window over a session's message history.

Only the newest ``visible_count`` messages are rendered. Scrolling near the
top grows the window by a fixed step and the scroll offset is shifted by
the height that was added above, so what the user is looking at does not
jump. Heights come from a caller-supplied ``measure(index)`` function; the
window never assumes they are uniform.
"""

from collections.abc import Callable, Sequence
from typing import Literal, TypeVar

from ._logger import get_logger
from .config import TimelineSettings

logger = get_logger(__name__)

T = TypeVar("T")

Align = Literal["start", "center", "end"]


class HistoryWindow:
    """Window state and scroll bookkeeping for one message list.

    Growth is two-phase, like a real layout: ``on_scroll`` decides to grow
    and records the pre-growth content height, and the next ``render``
    applies the scroll correction once the new rows have heights. Only one
    growth can be pending at a time, so a burst of scroll events expands
    the window once.

    Args:
        total: Number of messages in the session.
        measure: Height of the message at an absolute index.
        viewport_height: Height of the scroll container.
        settings: Window sizes and thresholds.
        session_id: Session the window currently shows.
    """

    def __init__(
        self,
        total: int,
        measure: Callable[[int], float],
        viewport_height: float,
        settings: TimelineSettings | None = None,
        session_id: str | None = None,
    ) -> None:
        self.settings = settings or TimelineSettings()
        self.measure = measure
        self.viewport_height = viewport_height
        self.session_id = session_id
        self.total = 0
        self.visible_count = 0
        self.scroll_top = 0.0
        self._pending_growth: float | None = None
        self._pending_target: tuple[int, Align] | None = None
        self._reset(total)

    def __repr__(self) -> str:
        start, end = self.rendered_range
        return f"HistoryWindow(session={self.session_id!r}, rendered={start}..{end}, total={self.total})"

    def _reset(self, total: int) -> None:
        self.total = max(0, total)
        self.visible_count = min(self.total, self.settings.initial_window)
        self._pending_growth = None
        self._pending_target = None
        self.scroll_top = self.max_scroll_top

    @property
    def start_index(self) -> int:
        """Absolute index of the oldest rendered message."""
        return self.total - self.visible_count

    @property
    def older_count(self) -> int:
        """Messages above the window that are not rendered yet."""
        return self.start_index

    @property
    def rendered_range(self) -> tuple[int, int]:
        """(first, last) absolute indexes rendered, or (0, -1) when empty."""
        return self.start_index, self.total - 1

    @property
    def content_height(self) -> float:
        return sum(self.measure(i) for i in range(self.start_index, self.total))

    @property
    def max_scroll_top(self) -> float:
        return max(0.0, self.content_height - self.viewport_height)

    @property
    def is_loading_more(self) -> bool:
        return self._pending_growth is not None

    def visible(self, items: Sequence[T]) -> Sequence[T]:
        """Slice of ``items`` currently rendered."""
        return items[self.start_index : self.total]

    def offset_of(self, index: int) -> float:
        """Top of a rendered message relative to the top of the content."""
        if not self.start_index <= index < self.total:
            raise IndexError(f"index {index} is not rendered")
        return sum(self.measure(i) for i in range(self.start_index, index))

    def on_scroll(self, scroll_top: float) -> bool:
        """Record a scroll position. Returns True if the window starts growing."""
        self.scroll_top = scroll_top
        if self._pending_growth is not None or self.start_index == 0:
            return False
        if scroll_top >= self.settings.scroll_threshold:
            return False

        self._pending_growth = self.content_height
        added = min(self.settings.load_more_count, self.start_index)
        self.visible_count += added
        logger.debug("Growing window by %d, now %d of %d", added, self.visible_count, self.total)
        return True

    def render(self) -> tuple[int, int]:
        """Settle pending growth or a pending jump and return the rendered range."""
        if self._pending_growth is not None:
            self.scroll_top += self.content_height - self._pending_growth
            self._pending_growth = None

        if self._pending_target is not None:
            index, align = self._pending_target
            self._pending_target = None
            self.scroll_top = self._target_offset(index, align)

        return self.rendered_range

    def _target_offset(self, index: int, align: Align) -> float:
        top = self.offset_of(index)
        height = self.measure(index)
        if align == "center":
            top -= (self.viewport_height - height) / 2
        elif align == "end":
            top -= self.viewport_height - height
        return min(max(0.0, top), self.max_scroll_top)

    def scroll_to_index(self, index: int, align: Align = "start") -> bool:
        """Jump to a message, growing the window first if it is not rendered.

        The window grows to include a few messages above the target so the
        jump lands with context. Out-of-range indexes are clamped; returns
        False only for an empty history.
        """
        if self.total == 0:
            return False
        index = min(max(0, index), self.total - 1)
        if index < self.start_index:
            self.visible_count = min(self.total, self.total - index + self.settings.scroll_index_buffer)
            # Jumping replaces any growth correction that was waiting.
            self._pending_growth = None
        self._pending_target = (index, align)
        return True

    def scroll_to_bottom(self) -> None:
        self._pending_target = None
        self.scroll_top = self.max_scroll_top

    def is_at_bottom(self, tolerance: float = 1.0) -> bool:
        return self.max_scroll_top - self.scroll_top <= tolerance

    def set_session(self, session_id: str, total: int) -> None:
        """Switch to another session: back to the initial window, at the bottom."""
        if session_id == self.session_id:
            self.set_total(total)
            return
        logger.debug("Window switched from %s to %s", self.session_id, session_id)
        self.session_id = session_id
        self._reset(total)

    def set_total(self, total: int) -> None:
        """Follow appended (or removed) messages.

        Appended messages extend the window at the bottom without moving the
        oldest rendered message. A window that was scrolled to the bottom
        stays there.
        """
        total = max(0, total)
        at_bottom = self.is_at_bottom()
        delta = total - self.total
        self.total = total
        if delta > 0:
            self.visible_count += delta
        self.visible_count = min(self.visible_count, total)
        if self.visible_count == 0 and total:
            self.visible_count = min(total, self.settings.initial_window)
        if at_bottom:
            self.scroll_top = self.max_scroll_top
        else:
            self.scroll_top = min(self.scroll_top, self.max_scroll_top)

    def visible_range(self) -> tuple[int, int]:
        """(first, last) absolute indexes at least partly inside the viewport."""
        first, last = -1, -1
        top = 0.0
        bottom = self.scroll_top + self.viewport_height
        for i in range(self.start_index, self.total):
            height = self.measure(i)
            if top + height > self.scroll_top and top < bottom:
                if first < 0:
                    first = i
                last = i
            elif top >= bottom:
                break
            top += height
        return first, last

    def is_index_in_view(self, index: int) -> bool:
        first, last = self.visible_range()
        return first >= 0 and first <= index <= last
