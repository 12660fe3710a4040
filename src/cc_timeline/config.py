"""Runtime settings, overridable through CC_TIMELINE_* environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TimelineSettings(BaseSettings):
    """Tunables for the history window, the render cache and queue policy.

    Every field can be set from the environment, e.g.
    ``CC_TIMELINE_INITIAL_WINDOW=100``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CC_TIMELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    initial_window: int = Field(default=50, ge=1)
    """Messages rendered from the end of the history when a session opens."""

    load_more_count: int = Field(default=50, ge=1)
    """Messages added to the window each time the user scrolls near the top."""

    scroll_threshold: float = Field(default=200.0, ge=0)
    """Distance from the top edge that triggers loading older messages."""

    scroll_index_buffer: int = Field(default=10, ge=0)
    """Extra messages rendered above a deep-link target."""

    cache_size: int = Field(default=512, ge=1)
    """Maximum number of message timelines kept in the render cache."""

    keep_queue_on_error: bool = True
    """Keep queued messages for manual retry when a turn fails (else discard)."""
