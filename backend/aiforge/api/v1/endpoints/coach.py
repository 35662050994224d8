"""WebSocket endpoint for the live presentation coach.

The browser streams microphone audio as binary frames of little-endian
float32 samples (one capture block per frame) and receives transcript
fragments as they arrive. A ``{"type": "stop"}`` text frame ends the
session; the server replies with the full transcript and speaking feedback.

Route: /api/v1/coach/ws
"""

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket
from pydantic import ValidationError

from aiforge.schemas.coach import (
    CoachControlMessage,
    CoachErrorMessage,
    CoachFeedbackMessage,
    CoachStateMessage,
    CoachTranscriptMessage,
)
from aiforge.services.generation.coach import CoachSessionManager, PushAudioCapture
from aiforge.services.generation.exceptions import GenerationError, TranscriptTooShortError
from aiforge.services.generation.models import LiveSessionState

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def coach_websocket(websocket: WebSocket) -> None:
    """Run one coaching attempt over a WebSocket.

    Lifecycle:
        1. Accept the connection and resolve the user id
        2. Start a live session fed by the socket's binary frames
        3. Relay transcript fragments until "stop" or disconnect
        4. On "stop", reply with the transcript and feedback
    """
    await websocket.accept()

    user_id = (websocket.headers.get("x-user-id") or websocket.query_params.get("user_id") or "").strip()
    if not user_id:
        await websocket.send_json(CoachErrorMessage(detail="Missing user identity").model_dump())
        await websocket.close(code=4401)
        return

    manager: CoachSessionManager = websocket.app.state.coach_manager
    capture = PushAudioCapture()
    outbox: asyncio.Queue[str] = asyncio.Queue()

    try:
        session = await manager.start(user_id, capture, on_transcript=outbox.put_nowait)
    except GenerationError as exc:
        logger.warning("Coach session for user %s failed to start: %s", user_id, exc)
        await websocket.send_json(CoachErrorMessage(detail=str(exc)).model_dump())
        await websocket.close()
        return

    await websocket.send_json(CoachStateMessage(state=session.state).model_dump(mode="json"))

    async def relay_transcript() -> None:
        while True:
            text = await outbox.get()
            await websocket.send_json(CoachTranscriptMessage(text=text).model_dump())

    relay = asyncio.create_task(relay_transcript())
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Coach client %s disconnected", user_id)
                break

            if message.get("bytes") is not None:
                capture.push(message["bytes"])
            elif message.get("text") is not None:
                try:
                    CoachControlMessage.model_validate(json.loads(message["text"]))
                except (ValueError, ValidationError):
                    await websocket.send_json(CoachErrorMessage(detail="Unknown control message").model_dump())
                    continue
                await _finish(websocket, manager, user_id, session)
                break

            if session.state == LiveSessionState.ERROR:
                await websocket.send_json(CoachErrorMessage(detail=session.error or "Session failed").model_dump())
                break
    finally:
        relay.cancel()
        # A newer attempt by the same user owns the slot now
        if manager.get_session(user_id) is session:
            await manager.stop(user_id)


async def _finish(websocket: WebSocket, manager: CoachSessionManager, user_id: str, session) -> None:
    try:
        feedback = await manager.stop_and_analyze(user_id)
    except TranscriptTooShortError as exc:
        await websocket.send_json(CoachErrorMessage(detail=str(exc)).model_dump())
        return
    except GenerationError as exc:
        logger.error("Presentation analysis for user %s failed: %s", user_id, exc)
        await websocket.send_json(
            CoachErrorMessage(detail="Failed to get feedback from the AI. Please try again.").model_dump()
        )
        return

    reply = CoachFeedbackMessage(transcript=session.transcript, feedback=feedback)
    await websocket.send_json(reply.model_dump(mode="json", by_alias=True))
