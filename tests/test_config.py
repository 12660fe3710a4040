"""Tests for settings and logging setup."""

import logging

import pytest

from cc_timeline._logger import LOGGER_NAME, configure_logging, get_logger, parse_level
from cc_timeline.config import TimelineSettings


class TestTimelineSettings:
    """Tests for TimelineSettings."""

    def test_defaults(self, settings: TimelineSettings) -> None:
        assert settings.initial_window == 50
        assert settings.load_more_count == 50
        assert settings.scroll_threshold == 200
        assert settings.scroll_index_buffer == 10
        assert settings.keep_queue_on_error

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CC_TIMELINE_INITIAL_WINDOW", "100")
        monkeypatch.setenv("CC_TIMELINE_KEEP_QUEUE_ON_ERROR", "false")
        settings = TimelineSettings(_env_file=None)
        assert settings.initial_window == 100
        assert not settings.keep_queue_on_error

    def test_env_file(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("CC_TIMELINE_CACHE_SIZE=8\n")
        assert TimelineSettings(_env_file=env_file).cache_size == 8

    def test_rejects_invalid(self) -> None:
        with pytest.raises(ValueError):
            TimelineSettings(_env_file=None, initial_window=0)


class TestLogger:
    """Tests for the package logger."""

    def test_names_under_package(self) -> None:
        assert get_logger("cc_timeline.store").name == "cc_timeline.store"
        assert get_logger("window").name == "cc_timeline.window"
        assert get_logger().name == "cc_timeline"

    def test_parse_level(self) -> None:
        assert parse_level("debug") == logging.DEBUG
        assert parse_level(" Error ") == logging.ERROR
        assert parse_level(logging.INFO) == logging.INFO
        assert parse_level("loud") == logging.WARNING

    def test_configure_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        root = logging.getLogger(LOGGER_NAME)
        previous = root.level
        monkeypatch.setenv("CC_TIMELINE_LOG_LEVEL", "info")
        try:
            assert configure_logging() is root
            assert root.level == logging.INFO
            assert configure_logging("debug").level == logging.DEBUG
            assert len(root.handlers) == 1
        finally:
            root.setLevel(previous)
