"""Domain stream events emitted by the concierge."""

from typing import Any, Literal

from pydantic import BaseModel, Field

EVENT_TYPE_THINKING = "thinking"
EVENT_TYPE_CONTENT = "content"
EVENT_TYPE_TOOL_CALL = "tool_call"
EVENT_TYPE_ERROR = "error"
EVENT_TYPE_DONE = "done"

TOOL_STATUS_STARTED = "started"
TOOL_STATUS_COMPLETED = "completed"
TOOL_STATUS_ERROR = "error"


class ThinkingEvent(BaseModel):
    """Model reasoning from a ``<thinking>`` block."""

    type: Literal["thinking"] = "thinking"
    content: str = Field(description="Reasoning text")


class ContentEvent(BaseModel):
    """User-facing answer text (markdown)."""

    type: Literal["content"] = "content"
    content: str = Field(description="Text token content")


class ToolCallEvent(BaseModel):
    """Tool invocation lifecycle event."""

    type: Literal["tool_call"] = "tool_call"
    name: str = Field(description="Tool name, e.g. 'search_hospitals'")
    status: Literal["started", "completed", "error"]
    arguments: dict[str, Any] | None = Field(
        default=None, description="Tool arguments (present when started)"
    )
    result: str | None = Field(
        default=None, description="Tool result (present when completed or error)"
    )


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str = Field(description="Error message")
    code: str | None = Field(default=None, description="Error code")


class DoneEvent(BaseModel):
    """Final event of every stream."""

    type: Literal["done"] = "done"


StreamEvent = ThinkingEvent | ContentEvent | ToolCallEvent | ErrorEvent | DoneEvent
