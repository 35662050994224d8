"""Pydantic schemas for the presentation coach WebSocket protocol.

Client -> server: binary frames of little-endian float32 samples, plus JSON
text frames ``{"type": "stop"}``.

Server -> client: JSON text frames, one of the messages below.
"""

from typing import Literal

from pydantic import BaseModel

from aiforge.services.generation.models import LiveSessionState, PresentationFeedback


class CoachControlMessage(BaseModel):
    type: Literal["stop"]


class CoachStateMessage(BaseModel):
    type: Literal["state"] = "state"
    state: LiveSessionState


class CoachTranscriptMessage(BaseModel):
    type: Literal["transcript"] = "transcript"
    text: str


class CoachFeedbackMessage(BaseModel):
    type: Literal["feedback"] = "feedback"
    transcript: str
    feedback: PresentationFeedback


class CoachErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    detail: str
