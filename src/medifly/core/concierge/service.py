"""ConciergeService -- the "Aira" chat concierge.

A LangGraph ReAct agent over the configured chat model with the
hospital search tools.  The user's budget is checked before the run;
after it, the request is metered with estimated token counts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator, Callable, Sequence
from typing import Annotated, Any, Protocol

from fastapi import Depends
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.tools import BaseTool
from langgraph.prebuilt import create_react_agent

from medifly.configs.config import get_chat_config
from medifly.configs.system import ChatConfig
from medifly.core.search.service import HospitalSearchService, get_search_service
from medifly.core.usage.models import TrackRequest
from medifly.core.usage.service import UsageService, get_usage_service
from medifly.infra.db.deps import get_hospital_repository
from medifly.infra.db.hospitals import HospitalRepository
from medifly.infra.tokens import estimate_usage_tokens

from .events import ContentEvent, StreamEvent, ThinkingEvent
from .llm import get_chat_llm
from .prompt import SearchContext, build_system_prompt
from .stream import map_langgraph_stream
from .tools import build_tools

logger = logging.getLogger(__name__)

CHAT_ENDPOINT = "/api/v1/ai/chat"
CHAT_ACTION = "query"

STREAM_MODE_MESSAGES = "messages"
INPUT_KEY_MESSAGES = "messages"
CONFIG_KEY_RECURSION_LIMIT = "recursion_limit"


class ChatTurn(Protocol):
    role: str
    content: str


def to_langchain_messages(turns: Sequence[ChatTurn]) -> list[BaseMessage]:
    return [
        HumanMessage(content=t.content) if t.role == "user" else AIMessage(content=t.content)
        for t in turns
    ]


class ConciergeService:
    def __init__(
        self,
        llm: BaseChatModel,
        tools: list[BaseTool],
        usage: UsageService,
        config: ChatConfig,
        agent_factory: Callable[..., Any] = create_react_agent,
    ) -> None:
        self._llm = llm
        self._tools = tools
        self._usage = usage
        self._config = config
        self._agent_factory = agent_factory

    async def enforce_budget(self, user_id: str) -> None:
        """Raise ``BudgetExceeded`` when the user may not chat any more today."""
        await self._usage.enforce_budget(user_id)

    async def stream_response(
        self,
        user_id: str,
        turns: Sequence[ChatTurn],
        search_context: SearchContext | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Run the agent and yield thinking / content / tool_call events."""
        system_prompt = build_system_prompt(search_context)
        graph = self._agent_factory(
            self._llm, self._tools, prompt=SystemMessage(content=system_prompt)
        )
        messages = to_langchain_messages(turns)
        raw = graph.astream(
            {INPUT_KEY_MESSAGES: messages},
            stream_mode=STREAM_MODE_MESSAGES,
            config={CONFIG_KEY_RECURSION_LIMIT: self._config.recursion_limit},
        )

        prompt_text = system_prompt + "".join(t.content for t in turns)
        output: list[str] = []
        start = time.monotonic()
        try:
            async for event in map_langgraph_stream(raw):
                if isinstance(event, (ThinkingEvent, ContentEvent)):
                    output.append(event.content)
                yield event
        except Exception as exc:
            await self._track(user_id, prompt_text, output, start, len(turns), error=exc)
            raise
        await self._track(user_id, prompt_text, output, start, len(turns))

    async def _track(
        self,
        user_id: str,
        prompt_text: str,
        output: list[str],
        start: float,
        message_count: int,
        error: Exception | None = None,
    ) -> None:
        request = TrackRequest(
            action_type=CHAT_ACTION,
            endpoint=CHAT_ENDPOINT,
            model_name=self._config.model_name,
            input_tokens=estimate_usage_tokens(prompt_text),
            output_tokens=estimate_usage_tokens("".join(output)),
            request_data={"message_count": message_count},
            duration_ms=int((time.monotonic() - start) * 1000),
            success=error is None,
            error_message=str(error) if error is not None else None,
        )
        try:
            await self._usage.track(user_id, request)
        except Exception:
            # An answered request never fails on metering.
            logger.exception("Failed to record concierge usage for %s", user_id)


def get_concierge_service(
    llm: Annotated[BaseChatModel, Depends(get_chat_llm)],
    search: Annotated[HospitalSearchService, Depends(get_search_service)],
    hospitals: Annotated[HospitalRepository, Depends(get_hospital_repository)],
    usage: Annotated[UsageService, Depends(get_usage_service)],
    config: Annotated[ChatConfig, Depends(get_chat_config)],
) -> ConciergeService:
    tools = build_tools(search, hospitals, default_limit=config.tool_result_limit)
    return ConciergeService(llm, tools, usage, config)
