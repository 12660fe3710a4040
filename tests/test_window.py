"""Unit tests for the virtualized history window."""

import pytest

from cc_timeline.config import TimelineSettings
from cc_timeline.window import HistoryWindow

ROW = 100.0
VIEWPORT = 800.0


def uniform(index: int) -> float:
    return ROW


def varied(index: int) -> float:
    return 40.0 + (index % 7) * 30.0


@pytest.fixture
def window(settings: TimelineSettings) -> HistoryWindow:
    return HistoryWindow(120, uniform, VIEWPORT, settings, session_id="s1")


def visual_top(window: HistoryWindow, index: int) -> float:
    return window.offset_of(index) - window.scroll_top


class TestInitialWindow:
    """Tests for the initial render."""

    def test_trailing_window(self, window: HistoryWindow) -> None:
        """120 messages render the newest 50, i.e. messages 71-120."""
        assert window.rendered_range == (70, 119)
        assert window.older_count == 70
        assert window.is_at_bottom()

    def test_short_history(self, settings: TimelineSettings) -> None:
        window = HistoryWindow(10, uniform, VIEWPORT, settings)
        assert window.rendered_range == (0, 9)
        assert not window.on_scroll(0)

    def test_empty_history(self, settings: TimelineSettings) -> None:
        window = HistoryWindow(0, uniform, VIEWPORT, settings)
        assert window.rendered_range == (0, -1)
        assert window.scroll_top == 0
        assert not window.scroll_to_index(5)

    def test_visible_slice(self, window: HistoryWindow) -> None:
        items = list(range(120))
        assert window.visible(items) == items[70:]


class TestGrowth:
    """Tests for growing the window backward."""

    def test_single_expansion_keeps_anchor(self, window: HistoryWindow) -> None:
        """Scrolling to the top grows once to 21-120 and message 71 stays put."""
        assert window.on_scroll(150)
        assert not window.on_scroll(90)
        # Message 71 is the first rendered row before growth.
        before = -window.scroll_top

        assert window.render() == (20, 119)
        assert visual_top(window, 70) == before
        assert not window.is_loading_more

    def test_anchor_with_varied_heights(self, settings: TimelineSettings) -> None:
        window = HistoryWindow(120, varied, VIEWPORT, settings)
        window.on_scroll(50)
        anchor_before = sum(varied(i) for i in range(70, 75)) - 50
        window.render()
        assert window.offset_of(75) - window.scroll_top == pytest.approx(anchor_before)

    def test_no_growth_far_from_top(self, window: HistoryWindow) -> None:
        assert not window.on_scroll(500)
        assert window.render() == (70, 119)

    def test_growth_stops_at_oldest(self, window: HistoryWindow) -> None:
        window.on_scroll(0)
        window.render()
        window.on_scroll(0)
        assert window.render() == (0, 119)
        assert window.older_count == 0
        assert not window.on_scroll(0)

    def test_custom_step(self) -> None:
        settings = TimelineSettings(_env_file=None, initial_window=10, load_more_count=5)
        window = HistoryWindow(30, uniform, VIEWPORT, settings)
        window.on_scroll(0)
        assert window.render() == (15, 29)


class TestScrollToIndex:
    """Tests for deep-link scrolling."""

    def test_target_outside_window(self, window: HistoryWindow) -> None:
        """The window grows to the target plus a buffer, then scrolls on render."""
        assert window.scroll_to_index(30)
        assert window.rendered_range == (20, 119)
        window.render()
        assert window.scroll_top == window.offset_of(30)
        assert window.is_index_in_view(30)

    def test_target_inside_window(self, window: HistoryWindow) -> None:
        window.scroll_to_index(100)
        assert window.rendered_range == (70, 119)
        window.render()
        assert window.scroll_top == 30 * ROW

    def test_alignment(self, window: HistoryWindow) -> None:
        window.scroll_to_index(100, align="center")
        window.render()
        assert window.scroll_top == 30 * ROW - (VIEWPORT - ROW) / 2

        window.scroll_to_index(100, align="end")
        window.render()
        assert window.scroll_top == 31 * ROW - VIEWPORT

    def test_clamped(self, window: HistoryWindow) -> None:
        window.scroll_to_index(500)
        window.render()
        assert window.is_at_bottom()

        window.scroll_to_index(-3)
        assert window.rendered_range == (0, 119)
        window.render()
        assert window.scroll_top == 0

    def test_near_start_buffer_clamped(self, window: HistoryWindow) -> None:
        window.scroll_to_index(4)
        assert window.rendered_range == (0, 119)


class TestSessionAndAppend:
    """Tests for session switches and new messages."""

    def test_session_change_resets(self, window: HistoryWindow) -> None:
        window.on_scroll(0)
        window.render()
        window.set_session("s2", 300)
        assert window.rendered_range == (250, 299)
        assert window.is_at_bottom()
        assert not window.is_loading_more

    def test_same_session_keeps_window(self, window: HistoryWindow) -> None:
        window.on_scroll(0)
        window.render()
        window.set_session("s1", 121)
        assert window.rendered_range == (20, 120)

    def test_sticks_to_bottom(self, window: HistoryWindow) -> None:
        window.set_total(125)
        assert window.rendered_range == (70, 124)
        assert window.is_at_bottom()

    def test_keeps_position_when_scrolled_up(self, window: HistoryWindow) -> None:
        window.on_scroll(1000)
        window.set_total(125)
        assert window.scroll_top == 1000
        assert not window.is_at_bottom()

    def test_visible_range(self, window: HistoryWindow) -> None:
        window.on_scroll(250)
        assert window.visible_range() == (72, 80)
        assert window.is_index_in_view(72)
        assert not window.is_index_in_view(81)

    def test_offset_of_unrendered(self, window: HistoryWindow) -> None:
        with pytest.raises(IndexError):
            window.offset_of(10)
