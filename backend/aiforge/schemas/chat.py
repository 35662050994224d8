"""Pydantic schemas for chat assistant endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from aiforge.services.generation.models import Role, Turn


class ChatMessageRequest(BaseModel):
    """POST /api/v1/chat/messages request body."""

    text: str = Field(..., min_length=1, max_length=8000)


class ChatTurnResponse(BaseModel):
    role: Role
    text: str
    tool_names: list[str] = Field(default_factory=list)
    error: str | None = None
    timestamp: datetime

    @classmethod
    def from_turn(cls, turn: Turn) -> "ChatTurnResponse":
        names = [c.name for c in turn.tool_calls] or [r.name for r in turn.tool_results]
        return cls(role=turn.role, text=turn.text, tool_names=names, error=turn.error, timestamp=turn.timestamp)


class ChatHistoryResponse(BaseModel):
    """GET /api/v1/chat/history response."""

    turns: list[ChatTurnResponse]
