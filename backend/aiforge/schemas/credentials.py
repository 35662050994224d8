"""Pydantic schemas for Gemini credential endpoints."""

from pydantic import BaseModel, Field

from aiforge.services.generation.models import CredentialState


class CredentialStatusResponse(BaseModel):
    """GET /api/v1/credentials/status response."""

    state: CredentialState
    ready: bool
    initializing: bool = False
    error: str | None = None


class CredentialUpdateRequest(BaseModel):
    """POST /api/v1/credentials request body."""

    api_key: str = Field(..., min_length=1, description="Gemini API key to validate and store")
