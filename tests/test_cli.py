"""Tests for the admin CLI: SSE parsing, client, formatting and commands."""

import io
import json

import httpx
import pytest

from cli.__main__ import parse_args
from cli.client import APIError, MediflyClient, parse_sse_lines
from cli.config import CLIConfig
from cli.formatter import ResponseFormatter, format_progress, format_status
from cli.medifly_cli import ConciergeCLI, run_command

PROGRESS = {
    "total": 3,
    "processed": 3,
    "successful": 2,
    "failed": 1,
    "current_batch": 2,
    "total_batches": 2,
    "is_complete": True,
    "errors": [{"hospital_id": "h3", "hospital_name": "Gamma", "error": "provider down"}],
    "stopped_reason": None,
}


def _sse(*events: dict) -> str:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events)


class Server:
    """Records requests and answers them from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.routes[(request.method, request.url.path)]


def _client(routes, user_id=None):
    server = Server(routes)
    config = CLIConfig(user_id=user_id)
    return MediflyClient(config, transport=httpx.MockTransport(server)), server


# =========================================================================
# SSE parsing
# =========================================================================


class TestParseSseLines:
    def test_complete_events(self):
        events, rest = parse_sse_lines(_sse({"type": "content", "content": "hi"}, {"type": "done"}))
        assert events == [{"type": "content", "content": "hi"}, {"type": "done"}]
        assert rest == ""

    def test_partial_event_kept(self):
        events, rest = parse_sse_lines('data: {"type": "done"}\n\ndata: {"type"')
        assert events == [{"type": "done"}]
        assert rest == 'data: {"type"'

    def test_bad_json_skipped(self):
        events, _ = parse_sse_lines("data: {oops\n\n: keepalive\n\n")
        assert events == []


# =========================================================================
# Formatting
# =========================================================================


class TestResponseFormatter:
    def test_content_and_hidden_thinking(self):
        out = io.StringIO()
        formatter = ResponseFormatter(out)
        formatter.handle_event({"type": "thinking", "content": "secret plan"})
        formatter.handle_event({"type": "content", "content": "Hello"})
        formatter.handle_event({"type": "content", "content": " there"})
        assert formatter.answer == "Hello there"
        assert "secret plan" not in out.getvalue()
        assert out.getvalue().count("Aira:") == 1

    def test_thinking_shown_on_request(self):
        out = io.StringIO()
        ResponseFormatter(out, show_thinking=True).handle_event(
            {"type": "thinking", "content": "plan"}
        )
        assert "Thinking: plan" in out.getvalue()

    def test_tool_calls_and_errors(self):
        out = io.StringIO()
        formatter = ResponseFormatter(out)
        formatter.handle_event(
            {"type": "tool_call", "name": "search_hospitals", "status": "started", "arguments": {"query": "knee"}}
        )
        formatter.handle_event(
            {"type": "tool_call", "name": "search_hospitals", "status": "completed", "result": "x" * 150}
        )
        formatter.handle_event({"type": "error", "message": "busy", "code": "MODEL_BUSY"})
        text = out.getvalue()
        assert "search_hospitals(query=knee)" in text
        assert "x" * 100 + "..." in text
        assert "Error [MODEL_BUSY]: busy" in text

    def test_finish_resets(self):
        formatter = ResponseFormatter(io.StringIO())
        formatter.handle_event({"type": "content", "content": "Hi"})
        formatter.finish_response()
        assert formatter.answer == ""


class TestReports:
    def test_progress(self):
        text = format_progress(PROGRESS)
        assert "Batch 2/2 (complete)" in text
        assert "Processed 3/3: 2 ok, 1 failed" in text
        assert "Gamma (h3): provider down" in text

    def test_no_progress(self):
        assert format_progress(None) == "No indexing run yet.\n"

    def test_status(self):
        text = format_status(
            {
                "statistics": {"total": 4, "with_embeddings": 3, "without_embeddings": 1, "coverage_percentage": 75.0},
                "job": {"job_id": "abc", "running": False, "progress": PROGRESS, "error": None},
            }
        )
        assert "Coverage:           75.0%" in text
        assert "Last updated:       never" in text
        assert "Job abc (finished)" in text


# =========================================================================
# Client
# =========================================================================


class TestMediflyClient:
    @pytest.mark.asyncio
    async def test_start_index_payload_and_user_header(self):
        client, server = _client(
            {("POST", "/api/v1/hospitals/embeddings"): httpx.Response(202, json={"job_id": "j1"})},
            user_id="ops",
        )
        body = await client.start_index(batch_size=5, force=True)
        await client.close()

        assert body == {"job_id": "j1"}
        request = server.requests[0]
        assert json.loads(request.content) == {"force_regenerate": True, "batch_size": 5}
        assert request.headers["X-Medifly-User"] == "ops"

    @pytest.mark.asyncio
    async def test_api_error(self):
        client, _ = _client(
            {
                ("DELETE", "/api/v1/hospitals/embeddings"): httpx.Response(
                    400, json={"detail": "job running", "code": "INVALID_REQUEST"}
                )
            }
        )
        with pytest.raises(APIError) as info:
            await client.reset()
        assert info.value.status_code == 400
        assert info.value.code == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_chat_streams_events(self):
        client, server = _client(
            {
                ("POST", "/api/v1/ai/chat"): httpx.Response(
                    200,
                    text=_sse({"type": "content", "content": "Hi"}, {"type": "done"}),
                    headers={"Content-Type": "text/event-stream"},
                )
            }
        )
        events = [e async for e in client.chat([{"role": "user", "content": "hello"}])]
        assert events == [{"type": "content", "content": "Hi"}, {"type": "done"}]
        assert json.loads(server.requests[0].content)["messages"][0]["content"] == "hello"

    @pytest.mark.asyncio
    async def test_chat_http_error_becomes_event(self):
        client, _ = _client(
            {
                ("POST", "/api/v1/ai/chat"): httpx.Response(
                    429, json={"detail": "Daily limit reached", "code": "BUDGET_EXCEEDED"}
                )
            }
        )
        events = [e async for e in client.chat([{"role": "user", "content": "hello"}])]
        assert events == [
            {"type": "error", "message": "HTTP 429: Daily limit reached", "code": "BUDGET_EXCEEDED"}
        ]

    @pytest.mark.asyncio
    async def test_chat_connection_error_becomes_event(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = MediflyClient(CLIConfig(), transport=httpx.MockTransport(refuse))
        events = [e async for e in client.chat([{"role": "user", "content": "hello"}])]
        assert events[0]["code"] == "CONNECTION_ERROR"


# =========================================================================
# Commands
# =========================================================================


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_index_and_watch(self):
        client, _ = _client(
            {
                ("POST", "/api/v1/hospitals/embeddings"): httpx.Response(
                    202, json={"job_id": "j1", "options": {"batch_size": 10}}
                ),
                ("GET", "/api/v1/hospitals/embeddings/progress"): httpx.Response(
                    200, json={"job_id": "j1", "running": False, "progress": PROGRESS, "error": None}
                ),
            }
        )
        out = io.StringIO()
        code = await run_command(client, "index", watch=True, output=out)
        assert code == 0
        assert "Started indexing job j1" in out.getvalue()
        assert "Batch 2/2 (complete)" in out.getvalue()

    @pytest.mark.asyncio
    async def test_reset(self):
        client, _ = _client(
            {("DELETE", "/api/v1/hospitals/embeddings"): httpx.Response(200, json={"reset_count": 7})}
        )
        out = io.StringIO()
        assert await run_command(client, "reset", output=out) == 0
        assert out.getvalue() == "Cleared 7 embedding(s)\n"

    @pytest.mark.asyncio
    async def test_api_error_exit_code(self):
        client, _ = _client(
            {
                ("POST", "/api/v1/hospitals/embeddings"): httpx.Response(
                    409, json={"detail": "already running", "code": "INDEXING_IN_PROGRESS"}
                )
            }
        )
        out = io.StringIO()
        assert await run_command(client, "index", output=out) == 1
        assert "INDEXING_IN_PROGRESS" in out.getvalue()


class TestConciergeCLI:
    @pytest.mark.asyncio
    async def test_conversation_is_resent(self):
        client, server = _client(
            {
                ("POST", "/api/v1/ai/chat"): httpx.Response(
                    200, text=_sse({"type": "content", "content": "Sure"}, {"type": "done"})
                )
            }
        )
        out = io.StringIO()
        cli = ConciergeCLI(client, io.StringIO("knee surgery\nin Bangkok?\nexit\n"), out)

        await cli.run()

        second = json.loads(server.requests[1].content)["messages"]
        assert [m["role"] for m in second] == ["user", "assistant", "user"]
        assert second[1]["content"] == "Sure"
        assert out.getvalue().endswith("Goodbye!\n")

    @pytest.mark.asyncio
    async def test_failed_turn_dropped(self):
        client, _ = _client(
            {("POST", "/api/v1/ai/chat"): httpx.Response(503, json={"detail": "down"})}
        )
        cli = ConciergeCLI(client, io.StringIO("hello\n"), io.StringIO())
        await cli.run()
        assert cli.messages == []


class TestParseArgs:
    def test_index_options(self):
        args = parse_args(["--port", "9000", "index", "--batch-size", "5", "--force"])
        assert args.port == 9000
        assert args.command == "index"
        assert args.batch_size == 5
        assert args.force is True

    def test_reindex_ids(self):
        args = parse_args(["reindex", "a", "b"])
        assert args.hospital_ids == ["a", "b"]

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])
