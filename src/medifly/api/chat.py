"""AI concierge chat endpoint."""

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from .deps import ChatConfigDep, ConciergeServiceDep, UserIdDep
from .models import ChatRequest
from .streaming import STREAMING_HEADERS, STREAMING_MEDIA_TYPE, sse_stream

router = APIRouter(prefix="/api/v1/ai", tags=["chat"])


@router.post("/chat")
async def chat(
    chat_request: ChatRequest,
    user_id: UserIdDep,
    service: ConciergeServiceDep,
    config: ChatConfigDep,
) -> StreamingResponse:
    """
    Answer a conversation with a stream of Server-Sent Events.

    Each event is a JSON object with a ``type``:
    - thinking: the model's reasoning, streamed
    - content: answer text, streamed
    - tool_call: a hospital search or lookup started / finished
    - error: the stream failed; a ``code`` says why
    - done: always the last event

    The budget is checked before streaming starts, so a user over budget
    gets a plain 429 rather than an event stream.
    """
    await service.enforce_budget(user_id)
    return StreamingResponse(
        sse_stream(
            service.stream_response(
                user_id, chat_request.messages, chat_request.search_context
            ),
            request_timeout=config.request_timeout,
        ),
        media_type=STREAMING_MEDIA_TYPE,
        headers=STREAMING_HEADERS,
    )
