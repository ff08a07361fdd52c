"""Chat model factory for the concierge."""

from typing import Annotated

from fastapi import Depends
from langchain_openai import ChatOpenAI

from medifly.configs.config import get_chat_config
from medifly.configs.system import ChatConfig


def get_chat_llm(
    config: Annotated[ChatConfig, Depends(get_chat_config)],
) -> ChatOpenAI:
    """Create a streaming ChatOpenAI client for the configured endpoint."""
    return ChatOpenAI(
        base_url=config.endpoint,
        api_key=config.api_key,
        model=config.model_name,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout=config.request_timeout.total_seconds(),
        max_retries=config.max_retries,
        streaming=True,
    )
