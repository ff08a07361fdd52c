"""Terminal rendering of concierge events and indexing reports."""

import logging
from typing import Any, TextIO

logger = logging.getLogger(__name__)

MAX_RESULT_CHARS = 100


class ResponseFormatter:
    """Formats and displays chat events organized by type."""

    def __init__(self, output: TextIO, show_thinking: bool = False):
        """Initialize the formatter.

        Parameters
        ----------
        output
            File-like object to write output to.
        show_thinking
            Whether to display thinking events.
        """
        self.output = output
        self.show_thinking = show_thinking
        self.content_parts: list[str] = []
        self.content_started = False

    @property
    def answer(self) -> str:
        """Answer text received so far (without reasoning)."""
        return "".join(self.content_parts)

    def handle_event(self, event: dict) -> None:
        event_type = event.get("type")

        if event_type == "thinking":
            if self.show_thinking:
                self._print(f"\nThinking: {event.get('content', '')}\n")

        elif event_type == "content":
            content = event.get("content", "")
            self.content_parts.append(content)
            if not self.content_started:
                self._print("\nAira:\n")
                self.content_started = True
            self._print(content)

        elif event_type == "tool_call":
            self._handle_tool_call(event)

        elif event_type == "error":
            message = event.get("message", "Unknown error")
            code = event.get("code", "UNKNOWN")
            self._print(f"\n❌ Error [{code}]: {message}\n")

        elif event_type == "done":
            pass

        else:
            logger.debug("Unknown event type: %s, event: %s", event_type, event)

    def _handle_tool_call(self, event: dict) -> None:
        name = event.get("name", "unknown")
        status = event.get("status", "unknown")
        if status == "started":
            self._print(f"\n🔍 {name}{_format_arguments(event.get('arguments'))}\n")
        elif status == "completed":
            self._print(f"✅ {name} completed{_format_result(event.get('result'))}\n")
        elif status == "error":
            self._print(f"❌ {name} failed{_format_result(event.get('result'))}\n")

    def finish_response(self) -> None:
        if self.content_started:
            self._print("\n")
        self.content_parts.clear()
        self.content_started = False

    def _print(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()


def _format_arguments(arguments: dict | None) -> str:
    if not arguments:
        return ""
    args_str = ", ".join(f"{k}={v}" for k, v in list(arguments.items())[:3])
    if len(arguments) > 3:
        args_str += "..."
    return f"({args_str})"


def _format_result(result: str | None) -> str:
    if not result:
        return ""
    if len(result) > MAX_RESULT_CHARS:
        return f": {result[:MAX_RESULT_CHARS]}..."
    return f": {result}"


# ---------------------------------------------------------------------------
# Indexing reports
# ---------------------------------------------------------------------------


def format_statistics(stats: dict[str, Any]) -> str:
    return (
        f"Hospitals:          {stats.get('total', 0)}\n"
        f"With embeddings:    {stats.get('with_embeddings', 0)}\n"
        f"Without embeddings: {stats.get('without_embeddings', 0)}\n"
        f"Coverage:           {stats.get('coverage_percentage', 0)}%\n"
        f"Last updated:       {stats.get('last_updated') or 'never'}\n"
    )


def format_progress(progress: dict[str, Any] | None) -> str:
    if not progress:
        return "No indexing run yet.\n"
    state = "complete" if progress.get("is_complete") else "running"
    lines = [
        f"Batch {progress.get('current_batch', 0)}/{progress.get('total_batches', 0)} ({state})",
        f"Processed {progress.get('processed', 0)}/{progress.get('total', 0)}: "
        f"{progress.get('successful', 0)} ok, {progress.get('failed', 0)} failed",
    ]
    if progress.get("stopped_reason"):
        lines.append(f"Stopped: {progress['stopped_reason']}")
    for error in progress.get("errors") or []:
        lines.append(f"  - {error.get('hospital_name')} ({error.get('hospital_id')}): {error.get('error')}")
    return "\n".join(lines) + "\n"


def format_status(body: dict[str, Any]) -> str:
    text = format_statistics(body.get("statistics") or {})
    job = body.get("job") or {}
    if job.get("job_id"):
        text += f"\nJob {job['job_id']} ({'running' if job.get('running') else 'finished'})\n"
        text += format_progress(job.get("progress"))
        if job.get("error"):
            text += f"Job error: {job['error']}\n"
    return text
