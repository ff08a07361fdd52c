"""Async stream mapper: LangGraph messages -> concierge StreamEvents.

Transforms the ``(message_chunk, metadata)`` tuples produced by
``CompiledGraph.astream(stream_mode="messages")`` into domain events.
``<thinking>...</thinking>`` blocks in the model output become
``ThinkingEvent``; everything else the model writes is ``ContentEvent``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

from langchain_core.messages import AIMessageChunk, ToolMessage

from .events import (
    TOOL_STATUS_COMPLETED,
    TOOL_STATUS_ERROR,
    TOOL_STATUS_STARTED,
    ContentEvent,
    StreamEvent,
    ThinkingEvent,
    ToolCallEvent,
)

THINK_OPEN = "<thinking>"
THINK_CLOSE = "</thinking>"

_MODEL_NODES = ("agent", "model")


class ThinkingSplitter:
    """Incrementally split streamed text at ``<thinking>`` tag boundaries.

    Tags may arrive split across chunks, so a trailing fragment that
    could start a tag is held back until the next ``feed``.
    """

    def __init__(self) -> None:
        self.in_thinking = False
        self._pending = ""
        self._strip_newlines = False

    def feed(self, text: str) -> list[ThinkingEvent | ContentEvent]:
        text = self._pending + text
        self._pending = ""
        events: list[ThinkingEvent | ContentEvent] = []
        while text:
            tag = THINK_CLOSE if self.in_thinking else THINK_OPEN
            idx = text.find(tag)
            if idx == -1:
                keep = _partial_tag_suffix(text, tag)
                if keep:
                    self._pending = text[-keep:]
                    text = text[:-keep]
                self._emit(text, events)
                break
            self._emit(text[:idx], events)
            text = text[idx + len(tag) :]
            if self.in_thinking:
                # Answer text usually starts on a fresh line after the block.
                self._strip_newlines = True
            self.in_thinking = not self.in_thinking
        return events

    def flush(self) -> list[ThinkingEvent | ContentEvent]:
        events: list[ThinkingEvent | ContentEvent] = []
        text, self._pending = self._pending, ""
        self._emit(text, events)
        return events

    def _emit(self, text: str, events: list[ThinkingEvent | ContentEvent]) -> None:
        if self.in_thinking:
            if text:
                events.append(ThinkingEvent(content=text))
            return
        if self._strip_newlines:
            text = text.lstrip("\n")
            if not text:
                return
            self._strip_newlines = False
        if text:
            events.append(ContentEvent(content=text))


def _partial_tag_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of *text* that is a proper prefix of *tag*."""
    for n in range(min(len(tag) - 1, len(text)), 0, -1):
        if tag.startswith(text[-n:]):
            return n
    return 0


async def map_langgraph_stream(
    raw_stream: AsyncIterator[tuple],
) -> AsyncIterator[StreamEvent]:
    """Map LangGraph ``stream_mode="messages"`` output to domain events.

    - ``AIMessageChunk`` with text -> thinking / content
    - ``AIMessageChunk`` with tool-call chunks -> tool_call started
    - ``ToolMessage`` -> tool_call completed / error
    """
    splitter = ThinkingSplitter()
    async for chunk, metadata in raw_stream:
        node = metadata.get("langgraph_node", "")
        if isinstance(chunk, AIMessageChunk):
            if chunk.tool_call_chunks:
                event = _map_tool_call_start(chunk)
                if event is not None:
                    yield event
                continue
            text = chunk.content if isinstance(chunk.content, str) else ""
            if not text:
                continue
            if node not in _MODEL_NODES:
                yield ThinkingEvent(content=text)
                continue
            for event in splitter.feed(text):
                yield event
        elif isinstance(chunk, ToolMessage):
            yield _map_tool_result(chunk)
    for event in splitter.flush():
        yield event


def _map_tool_call_start(chunk: AIMessageChunk) -> ToolCallEvent | None:
    """Emit a started event for the first named tool-call chunk."""
    tc = chunk.tool_call_chunks[0]
    name = tc.get("name") or ""
    if not name:
        return None
    args = tc.get("args")
    arguments: dict | None = None
    if isinstance(args, dict):
        arguments = args
    elif isinstance(args, str) and args.strip():
        try:
            arguments = json.loads(args)
        except ValueError:
            arguments = None
    return ToolCallEvent(name=name, status=TOOL_STATUS_STARTED, arguments=arguments)


def _map_tool_result(msg: ToolMessage) -> ToolCallEvent:
    is_error = getattr(msg, "status", None) == "error"
    return ToolCallEvent(
        name=msg.name or "unknown",
        status=TOOL_STATUS_ERROR if is_error else TOOL_STATUS_COMPLETED,
        result=str(msg.content) if msg.content else None,
    )
