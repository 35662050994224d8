"""Pydantic schemas for video clip generation endpoints."""

from pydantic import BaseModel, Field


class VideoClipCreateRequest(BaseModel):
    """POST /api/v1/video-clips request body."""

    prompt: str = Field(..., min_length=1, max_length=4000)
    image_base64: str | None = Field(None, description="Optional reference image, base64 encoded")
    mime_type: str | None = Field(None, description="MIME type of the reference image")


class VideoClipResponse(BaseModel):
    """POST /api/v1/video-clips response."""

    operation: str
    uri: str
    mime_type: str | None = None
    download_url: str
