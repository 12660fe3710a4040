"""CLI entry point for cc-timeline."""

import asyncio
import tempfile
import webbrowser
from pathlib import Path

import typer

APP_HELP = """
Replay recorded chat sessions and show the timelines a client would render.

\b
An event log is a JSONL file with one record per line. Backend events:
  content_block_append, tool_invoked, tool_completed,
  turn_complete, turn_error, turn_cancelled
User actions:
  session, submit, answer, skip, approve_plan, cancel, dismiss_error
Every record carries a session_id.
"""

TIMELINE_HELP = """
Replay an event log and print every message's timeline as JSON.

\b
Examples:
  # Timeline items of every message
  cc-timeline timeline events.jsonl | jq '.sessions[].messages[].timeline'

  # Final status of each session
  cc-timeline timeline events.jsonl | jq '[.sessions[] | {session_id, status, error}]'

  # All task items with their sub-tool names
  cc-timeline timeline events.jsonl | jq '[.. | objects | select(.kind == "task") | {task: .key, tools: [.sub_tools[].name]}]'

  # Compact output for piping (no indentation)
  cc-timeline timeline events.jsonl --compact | jq '.metadata'

\b
Output structure:
  {
    "metadata": {"source": "...", "total_sessions": 1, "total_messages": 4, ...},
    "sessions": [
      {"session_id": "...", "status": "idle", "error": null, "queued": [],
       "todos": [...], "messages": [{"id": "...", "role": "...", "timeline": [...]}]}
    ]
  }
"""

HTML_HELP = """
Replay an event log and render the conversation as a self-contained HTML page.

\b
Examples:
  # Render and open in the browser
  cc-timeline html events.jsonl

  # Save to specific file without opening browser
  cc-timeline html events.jsonl -o report.html --no-open
"""

app = typer.Typer(add_completion=False, help=APP_HELP)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log store activity to stderr"),
) -> None:
    if verbose:
        from ._logger import configure_logging

        configure_logging("DEBUG")


def _replay(path: Path):
    from .replay import replay_file

    if not path.exists():
        typer.echo(f"Error: File not found: {path}", err=True)
        raise typer.Exit(1)
    return asyncio.run(replay_file(path))


@app.command(help=TIMELINE_HELP)
def timeline(
    events_path: Path = typer.Argument(..., help="Path to JSONL event log"),
    output: Path | None = typer.Option(None, "-o", "--output", help="Output JSON file path"),
    compact: bool = typer.Option(False, "--compact", help="No indentation (for piping)"),
) -> None:
    from .renderer import render_json

    store = _replay(events_path)
    json_str = render_json(store, events_path, compact=compact)

    if output is None:
        typer.echo(json_str)
    else:
        output.write_text(json_str)
        typer.echo(f"Written to {output}", err=True)


@app.command(help=HTML_HELP)
def html(
    events_path: Path = typer.Argument(..., help="Path to JSONL event log"),
    output: Path | None = typer.Option(None, "-o", "--output", help="Output HTML file path"),
    no_open: bool = typer.Option(False, "--no-open", help="Don't auto-open in browser"),
) -> None:
    from .renderer import render

    store = _replay(events_path)
    html_content = render(store, events_path)

    if output is None:
        with tempfile.NamedTemporaryFile("w", suffix=".html", prefix="cc-timeline-", delete=False) as f:
            output = Path(f.name)

    output.write_text(html_content)
    typer.echo(f"Written to {output}")

    if not no_open:
        webbrowser.open(f"file://{output}")


if __name__ == "__main__":
    app()
