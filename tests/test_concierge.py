"""Tests for the concierge stream mapper, prompt, tools and service."""

from __future__ import annotations

import json
import uuid
from types import SimpleNamespace

import pytest
from conftest import make_hospital
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, ToolMessage

from medifly.configs.system import ChatConfig
from medifly.core.concierge.events import (
    TOOL_STATUS_COMPLETED,
    TOOL_STATUS_ERROR,
    TOOL_STATUS_STARTED,
    ContentEvent,
    ThinkingEvent,
    ToolCallEvent,
)
from medifly.core.concierge.prompt import (
    NO_SEARCH_CONTEXT,
    SearchContext,
    build_system_prompt,
)
from medifly.core.concierge.service import ConciergeService, to_langchain_messages
from medifly.core.concierge.stream import ThinkingSplitter, map_langgraph_stream
from medifly.core.concierge.tools import (
    TOOL_HOSPITAL_DETAILS,
    TOOL_SEARCH_HOSPITALS,
    build_tools,
)
from medifly.core.errors import NotFound
from medifly.core.search.service import SearchOptions, SearchOutcome
from medifly.infra.db.hospitals import HospitalMatch

AGENT = {"langgraph_node": "agent"}


def _texts(events):
    return [(type(e).__name__, e.content) for e in events]


# =========================================================================
# ThinkingSplitter
# =========================================================================


class TestThinkingSplitter:
    def test_block_then_answer(self):
        events = ThinkingSplitter().feed("<thinking>plan</thinking>\n\nAnswer")
        assert _texts(events) == [("ThinkingEvent", "plan"), ("ContentEvent", "Answer")]

    def test_plain_answer(self):
        assert _texts(ThinkingSplitter().feed("Hello")) == [("ContentEvent", "Hello")]

    def test_open_tag_split_across_chunks(self):
        splitter = ThinkingSplitter()
        assert splitter.feed("<thin") == []
        assert _texts(splitter.feed("king>abc")) == [("ThinkingEvent", "abc")]
        assert splitter.in_thinking

    def test_close_tag_split_across_chunks(self):
        splitter = ThinkingSplitter()
        assert _texts(splitter.feed("<thinking>abc</thi")) == [("ThinkingEvent", "abc")]
        assert _texts(splitter.feed("nking>\nHi")) == [("ContentEvent", "Hi")]
        assert not splitter.in_thinking

    def test_newlines_stripped_across_chunks(self):
        splitter = ThinkingSplitter()
        splitter.feed("<thinking>x</thinking>")
        assert splitter.feed("\n") == []
        assert _texts(splitter.feed("\nAnswer")) == [("ContentEvent", "Answer")]
        assert _texts(splitter.feed("\nmore")) == [("ContentEvent", "\nmore")]

    def test_held_fragment_released_on_flush(self):
        splitter = ThinkingSplitter()
        assert _texts(splitter.feed("a <")) == [("ContentEvent", "a ")]
        assert _texts(splitter.flush()) == [("ContentEvent", "<")]


# =========================================================================
# map_langgraph_stream
# =========================================================================


async def _stream(*items):
    for item in items:
        yield item


async def _collect(aiter):
    return [e async for e in aiter]


class TestMapLanggraphStream:
    @pytest.mark.asyncio
    async def test_thinking_content_and_tools(self):
        events = await _collect(
            map_langgraph_stream(
                _stream(
                    (AIMessageChunk(content="<thinking>look up</thinking>"), AGENT),
                    (
                        AIMessageChunk(
                            content="",
                            tool_call_chunks=[
                                {
                                    "name": "search_hospitals",
                                    "args": '{"query": "knee"}',
                                    "id": "c1",
                                    "index": 0,
                                }
                            ],
                        ),
                        AGENT,
                    ),
                    (
                        ToolMessage(content='{"hospitals": []}', name="search_hospitals", tool_call_id="c1"),
                        {"langgraph_node": "tools"},
                    ),
                    (AIMessageChunk(content="Here you go"), AGENT),
                )
            )
        )
        assert isinstance(events[0], ThinkingEvent)
        assert events[1] == ToolCallEvent(
            name="search_hospitals", status=TOOL_STATUS_STARTED, arguments={"query": "knee"}
        )
        assert events[2].status == TOOL_STATUS_COMPLETED
        assert events[2].result == '{"hospitals": []}'
        assert events[3] == ContentEvent(content="Here you go")

    @pytest.mark.asyncio
    async def test_tool_error_and_unnamed_chunks(self):
        events = await _collect(
            map_langgraph_stream(
                _stream(
                    (
                        AIMessageChunk(
                            content="",
                            tool_call_chunks=[{"name": None, "args": '"}', "id": None, "index": 0}],
                        ),
                        AGENT,
                    ),
                    (
                        ToolMessage(content="boom", name="get_hospital_details", tool_call_id="c2", status="error"),
                        {"langgraph_node": "tools"},
                    ),
                )
            )
        )
        assert len(events) == 1
        assert events[0].status == TOOL_STATUS_ERROR
        assert events[0].result == "boom"

    @pytest.mark.asyncio
    async def test_text_from_other_nodes_is_thinking(self):
        events = await _collect(
            map_langgraph_stream(_stream((AIMessageChunk(content="hmm"), {"langgraph_node": "planner"})))
        )
        assert events == [ThinkingEvent(content="hmm")]

    @pytest.mark.asyncio
    async def test_trailing_fragment_flushed(self):
        events = await _collect(
            map_langgraph_stream(_stream((AIMessageChunk(content="1 <"), AGENT)))
        )
        assert "".join(e.content for e in events) == "1 <"


# =========================================================================
# Prompt
# =========================================================================


class TestPrompt:
    def test_without_context(self):
        assert NO_SEARCH_CONTEXT in build_system_prompt(None)

    def test_with_context(self):
        prompt = build_system_prompt(
            SearchContext(
                query="knee surgery",
                location="Bangkok",
                hospital_count=4,
                doctor_count=2,
                relevant_specialties=["Orthopedics"],
            )
        )
        assert '- User\'s query: "knee surgery"' in prompt
        assert '- Location: "Bangkok"' in prompt
        assert "4 hospitals, 2 doctors found" in prompt
        assert "- Relevant specialties: Orthopedics" in prompt

    def test_missing_fields(self):
        prompt = build_system_prompt(SearchContext())
        assert '"Not specified"' in prompt
        assert "None identified" in prompt


# =========================================================================
# Tools
# =========================================================================


class FakeSearch:
    def __init__(self, hospitals) -> None:
        self.hospitals = hospitals
        self.calls = []

    def default_options(self) -> SearchOptions:
        return SearchOptions()

    async def search(self, query, filters, options):
        self.calls.append((query, filters, options))
        matches = [
            HospitalMatch(hospital=h, similarity_score=0.9, text_score=0.1, combined_score=0.6667)
            for h in self.hospitals[: options.limit]
        ]
        return SearchOutcome(matches=matches, has_semantic_search=True)


class FakeHospitals:
    def __init__(self, hospital) -> None:
        self.hospital = hospital

    async def get_detail(self, hospital_id):
        if hospital_id != self.hospital.id:
            raise NotFound("Hospital", hospital_id)
        facility = SimpleNamespace(name="MRI Suite")
        doctor = SimpleNamespace(title="Dr.", first_name="Anan", last_name="Chai")
        link = SimpleNamespace(department="Orthopedics", position_title="Head")
        return self.hospital, [(SimpleNamespace(), facility)], [(link, doctor)]


class TestTools:
    @pytest.fixture
    def hospital(self):
        return make_hospital(name="Alpha Hospital", bed_count=300, established=1990)

    @pytest.fixture
    def tools(self, hospital):
        search = FakeSearch([hospital, make_hospital(name="Beta Hospital")])
        return {t.name: t for t in build_tools(search, FakeHospitals(hospital), default_limit=1)}, search

    def test_tool_names(self, tools):
        assert set(tools[0]) == {TOOL_SEARCH_HOSPITALS, TOOL_HOSPITAL_DETAILS}

    @pytest.mark.asyncio
    async def test_search_uses_default_limit_and_city(self, tools):
        by_name, search = tools
        result = json.loads(
            await by_name[TOOL_SEARCH_HOSPITALS].ainvoke({"query": "knee", "city": "Bangkok"})
        )
        assert [h["name"] for h in result["hospitals"]] == ["Alpha Hospital"]
        assert result["hospitals"][0]["score"] == 0.667
        assert result["semantic"] is True
        _, filters, options = search.calls[0]
        assert filters.city == "Bangkok"
        assert options.limit == 1

    @pytest.mark.asyncio
    async def test_details(self, tools, hospital):
        by_name, _ = tools
        result = json.loads(
            await by_name[TOOL_HOSPITAL_DETAILS].ainvoke({"hospital_id": str(hospital.id)})
        )
        assert result["name"] == "Alpha Hospital"
        assert result["facilities"] == ["MRI Suite"]
        assert result["doctors"] == [
            {"name": "Dr. Anan Chai", "department": "Orthopedics", "position": "Head"}
        ]

    @pytest.mark.asyncio
    async def test_bad_id_reported_to_model(self, tools):
        by_name, _ = tools
        result = await by_name[TOOL_HOSPITAL_DETAILS].ainvoke({"hospital_id": "abc"})
        assert result == "'abc' is not a valid hospital id"

    @pytest.mark.asyncio
    async def test_unknown_hospital_reported_to_model(self, tools):
        by_name, _ = tools
        missing = uuid.uuid4()
        result = await by_name[TOOL_HOSPITAL_DETAILS].ainvoke({"hospital_id": str(missing)})
        assert result == f"Hospital '{missing}' not found"


# =========================================================================
# ConciergeService
# =========================================================================


class FakeGraph:
    def __init__(self, items, error: Exception | None = None) -> None:
        self.items = items
        self.error = error
        self.inputs = None
        self.config = None

    async def astream(self, inputs, stream_mode, config):
        self.inputs = inputs
        self.config = config
        for item in self.items:
            yield item
        if self.error is not None:
            raise self.error


class FakeUsage:
    def __init__(self, fail: bool = False) -> None:
        self.tracked = []
        self.enforced = []
        self.fail = fail

    async def enforce_budget(self, user_id):
        self.enforced.append(user_id)

    async def track(self, user_id, request):
        if self.fail:
            raise RuntimeError("database down")
        self.tracked.append((user_id, request))


def _turn(role, content):
    return SimpleNamespace(role=role, content=content)


class TestConciergeService:
    def _service(self, graph, usage):
        factory_calls = []

        def factory(llm, tools, prompt):
            factory_calls.append(prompt)
            return graph

        service = ConciergeService(
            llm=object(), tools=[], usage=usage, config=ChatConfig(), agent_factory=factory
        )
        return service, factory_calls

    def test_to_langchain_messages(self):
        messages = to_langchain_messages([_turn("user", "hi"), _turn("assistant", "hello")])
        assert isinstance(messages[0], HumanMessage)
        assert isinstance(messages[1], AIMessage)

    @pytest.mark.asyncio
    async def test_streams_and_tracks(self):
        graph = FakeGraph([(AIMessageChunk(content="<thinking>t</thinking>Answer"), AGENT)])
        usage = FakeUsage()
        service, prompts = self._service(graph, usage)

        await service.enforce_budget("alice")
        events = await _collect(
            service.stream_response(
                "alice", [_turn("user", "knee surgery")], SearchContext(query="knee")
            )
        )

        assert _texts(events) == [("ThinkingEvent", "t"), ("ContentEvent", "Answer")]
        assert usage.enforced == ["alice"]
        assert 'User\'s query: "knee"' in prompts[0].content
        assert graph.config == {"recursion_limit": 8}
        assert len(graph.inputs["messages"]) == 1
        user_id, request = usage.tracked[0]
        assert user_id == "alice"
        assert request.action_type == "query"
        assert request.endpoint == "/api/v1/ai/chat"
        assert request.model_name == "gpt-4o-mini"
        assert request.success is True
        assert request.output_tokens == 3
        assert request.request_data == {"message_count": 1}

    @pytest.mark.asyncio
    async def test_failure_is_tracked_and_raised(self):
        graph = FakeGraph([], error=RuntimeError("model crashed"))
        usage = FakeUsage()
        service, _ = self._service(graph, usage)

        with pytest.raises(RuntimeError):
            await _collect(service.stream_response("alice", [_turn("user", "hi")]))

        request = usage.tracked[0][1]
        assert request.success is False
        assert request.error_message == "model crashed"

    @pytest.mark.asyncio
    async def test_tracking_failure_does_not_break_the_answer(self):
        graph = FakeGraph([(AIMessageChunk(content="ok"), AGENT)])
        service, _ = self._service(graph, FakeUsage(fail=True))
        events = await _collect(service.stream_response("alice", [_turn("user", "hi")]))
        assert _texts(events) == [("ContentEvent", "ok")]
