"""Chat assistant endpoints.

POST /messages streams the answer as newline-delimited JSON, one ChatEvent
per line, ending with a ``done`` event.
"""

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from aiforge.core.auth import get_current_user_id
from aiforge.schemas.chat import ChatHistoryResponse, ChatMessageRequest, ChatTurnResponse
from aiforge.services.generation.assistant import ERROR_REPLY, ChatAssistant
from aiforge.services.generation.exceptions import (
    ConversationStateError,
    GeminiConfigurationError,
    GenerationError,
)
from aiforge.services.generation.models import ChatEvent, ChatEventType

logger = logging.getLogger(__name__)

router = APIRouter()


def _assistant(request: Request) -> ChatAssistant:
    return request.app.state.chat_assistant


@router.get("/history", response_model=ChatHistoryResponse)
def get_history(request: Request, user_id: str = Depends(get_current_user_id)) -> ChatHistoryResponse:
    turns = _assistant(request).history(user_id)
    return ChatHistoryResponse(turns=[ChatTurnResponse.from_turn(t) for t in turns])


@router.delete("/history", status_code=204)
def clear_history(request: Request, user_id: str = Depends(get_current_user_id)) -> None:
    try:
        _assistant(request).clear(user_id)
    except ConversationStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/messages")
async def send_message(
    body: ChatMessageRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> StreamingResponse:
    assistant = _assistant(request)
    gate = request.app.state.credential_gate

    # Fail before the stream starts so the client gets a real status code
    try:
        gate.require_ready()
    except GeminiConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if assistant.is_busy(user_id):
        raise HTTPException(status_code=409, detail="A response is still streaming; please wait")

    async def event_stream() -> AsyncIterator[str]:
        try:
            async for event in assistant.send_message(user_id, body.text):
                yield event.model_dump_json(exclude_none=True) + "\n"
        except GenerationError as exc:
            logger.warning("Chat message for user %s failed: %s", user_id, exc)
            yield ChatEvent(type=ChatEventType.ERROR, text=ERROR_REPLY).model_dump_json(exclude_none=True) + "\n"

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")
