"""JSON and HTML output for replayed sessions."""

import json
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .models import Message
from .session import has_follow_up_map
from .store import ChatStore
from .timeline import TimelineItem, latest_todos, normalize_todos_for_display


def json_for_html(data: Any) -> str:
    """Safely encode JSON for embedding in HTML script tags."""
    json_str = json.dumps(data, ensure_ascii=False)
    # Escape </script> and <!-- to prevent HTML injection
    json_str = json_str.replace("</script>", "</scr\\u0069pt>")
    json_str = json_str.replace("<!--", "<\\u0021--")
    return json_str


def item_to_dict(item: TimelineItem) -> dict:
    return item.model_dump(mode="json")


def message_to_dict(message: Message, items: list[TimelineItem], has_follow_up: bool = False) -> dict:
    return {
        "id": message.id,
        "role": message.role.value,
        "content": message.content,
        "timestamp": message.timestamp,
        "cancelled": message.cancelled,
        "plan_approved": message.plan_approved,
        "has_follow_up": has_follow_up,
        "timeline": [item_to_dict(item) for item in items],
    }


def session_to_dict(store: ChatStore, session_id: str) -> dict:
    """Snapshot of one session: status, queue, todos and per-message timelines."""
    session = store.get(session_id)
    messages = store.display_messages(session_id)
    timelines = store.timelines(session_id)
    follow_ups = has_follow_up_map(messages)

    tool_calls = [tc for m in messages for tc in m.tool_calls]
    last = messages[-1] if messages else None
    todos = normalize_todos_for_display(
        latest_todos(tool_calls),
        is_streaming=session.turn_in_flight,
        was_cancelled=bool(last and last.cancelled),
    )

    return {
        "session_id": session.session_id,
        "name": session.name,
        "status": session.status.value,
        "error": session.error,
        "queued": [q.message for q in session.queue],
        "todos": [t.model_dump(mode="json", by_alias=True) for t in todos],
        "messages": [
            message_to_dict(m, timelines.get(m.id, []), follow_ups.get(i, False))
            for i, m in enumerate(messages)
        ],
    }


def compute_metadata(store: ChatStore, source: Path) -> dict:
    """Compute summary metadata for a replay."""
    sessions = store.sessions(include_archived=True)
    return {
        "source": source.name,
        "total_sessions": len(sessions),
        "total_messages": sum(len(store.display_messages(s.session_id)) for s in sessions),
        "cache_hits": store.cache.hits,
        "cache_misses": store.cache.misses,
    }


def render_json(store: ChatStore, source: Path, compact: bool = False) -> str:
    """Render every session of the store as a JSON string."""
    data = {
        "metadata": compute_metadata(store, source),
        "sessions": [session_to_dict(store, s.session_id) for s in store.sessions(include_archived=True)],
    }
    return json.dumps(data, indent=None if compact else 2)


def render(store: ChatStore, source: Path) -> str:
    """Render every session of the store to a self-contained HTML page."""
    template_dir = Path(__file__).parent / "templates"
    env = Environment(loader=FileSystemLoader(template_dir), autoescape=select_autoescape(["html", "j2"]))
    template = env.get_template("timeline.html.j2")

    sessions = [session_to_dict(store, s.session_id) for s in store.sessions(include_archived=True)]
    return template.render(
        metadata=compute_metadata(store, source),
        sessions=sessions,
        sessions_json=json_for_html(sessions),
    )
