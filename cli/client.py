"""HTTP client for the MediFly API with SSE stream parsing."""

import json
import logging
from typing import Any, AsyncIterator

import httpx

from .config import CLIConfig

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "


class APIError(Exception):
    """Non-2xx answer from the server."""

    def __init__(self, status_code: int, detail: str, code: str | None = None):
        super().__init__(f"HTTP {status_code} [{code or 'ERROR'}]: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.code = code


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
        detail, code = str(body.get("detail")), body.get("code")
    except ValueError:
        detail, code = response.text, None
    raise APIError(response.status_code, detail, code)


def parse_sse_lines(buffer: str) -> tuple[list[dict], str]:
    """Split complete ``data:`` events off *buffer*; return them and the rest."""
    events: list[dict] = []
    while "\n\n" in buffer:
        block, buffer = buffer.split("\n\n", 1)
        for line in block.split("\n"):
            line = line.strip()
            if not line.startswith(SSE_DATA_PREFIX):
                continue
            data = line[len(SSE_DATA_PREFIX):]
            try:
                events.append(json.loads(data))
            except json.JSONDecodeError as e:
                logger.warning("Failed to parse SSE data: %s, error: %s", data, e)
    return events, buffer


class MediflyClient:
    """Admin and concierge calls against a running MediFly server."""

    def __init__(self, config: CLIConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.client = httpx.AsyncClient(
            timeout=config.timeout, headers=config.headers, transport=transport
        )

    # -- indexing --------------------------------------------------------------

    async def status(self) -> dict[str, Any]:
        response = await self.client.get(self.config.embeddings_url)
        _raise_for_error(response)
        return response.json()

    async def start_index(
        self,
        batch_size: int | None = None,
        force: bool = False,
        delay_ms: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"force_regenerate": force}
        if batch_size is not None:
            payload["batch_size"] = batch_size
        if delay_ms is not None:
            payload["delay_ms"] = delay_ms
        response = await self.client.post(self.config.embeddings_url, json=payload)
        _raise_for_error(response)
        return response.json()

    async def progress(self) -> dict[str, Any]:
        response = await self.client.get(f"{self.config.embeddings_url}/progress")
        _raise_for_error(response)
        return response.json()

    async def reindex(self, hospital_ids: list[str]) -> dict[str, Any]:
        response = await self.client.put(
            self.config.embeddings_url, json={"hospital_ids": hospital_ids}
        )
        _raise_for_error(response)
        return response.json()

    async def reset(self) -> dict[str, Any]:
        response = await self.client.delete(self.config.embeddings_url)
        _raise_for_error(response)
        return response.json()

    # -- concierge -------------------------------------------------------------

    async def chat(self, messages: list[dict[str, str]]) -> AsyncIterator[dict]:
        """Send the conversation and stream events.

        Transport failures and non-200 answers are yielded as ``error``
        events so the interactive loop keeps running.
        """
        payload = {"messages": messages}
        logger.debug("POST %s with %d message(s)", self.config.chat_url, len(messages))
        try:
            async with self.client.stream(
                "POST",
                self.config.chat_url,
                json=payload,
                headers={"Accept": "text/event-stream"},
            ) as response:
                logger.debug("Response status: %s", response.status_code)
                if response.status_code != 200:
                    body = await response.aread()
                    try:
                        data = json.loads(body)
                        message, code = data.get("detail"), data.get("code")
                    except ValueError:
                        message, code = body.decode(), None
                    yield {
                        "type": "error",
                        "message": f"HTTP {response.status_code}: {message}",
                        "code": code or "HTTP_ERROR",
                    }
                    return

                buffer = ""
                async for chunk in response.aiter_text():
                    events, buffer = parse_sse_lines(buffer + chunk)
                    for event in events:
                        yield event

        except httpx.TimeoutException:
            yield {"type": "error", "message": "Request timed out.", "code": "TIMEOUT"}
        except httpx.ConnectError as e:
            yield {
                "type": "error",
                "message": f"Connection error: {e}",
                "code": "CONNECTION_ERROR",
            }

    async def close(self) -> None:
        await self.client.aclose()
