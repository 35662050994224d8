import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from aiforge.core.auth import get_current_user_id
from aiforge.core.config import settings
from aiforge.schemas.video import VideoClipCreateRequest, VideoClipResponse
from aiforge.services.generation.exceptions import (
    GeminiClientError,
    GeminiConfigurationError,
    JobCancelledError,
    OperationFailedError,
)
from aiforge.services.generation.jobs import LongRunningJobPoller
from aiforge.services.generation.models import ArtifactReference, VideoClipRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _poller(request: Request) -> LongRunningJobPoller:
    return request.app.state.video_poller


@router.post("", response_model=VideoClipResponse)
async def create_video_clip(
    body: VideoClipCreateRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> VideoClipResponse:
    """Generate a video clip and wait for the long-running job to finish.

    Generation typically takes a few minutes.
    """
    poller = _poller(request)
    clip_request = VideoClipRequest(prompt=body.prompt, image_base64=body.image_base64, mime_type=body.mime_type)

    try:
        operation = await poller.submit(clip_request)
        logger.info("User %s submitted video operation %s", user_id, operation.name)
        artifact = await poller.poll_until_done(operation)
    except GeminiConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except JobCancelledError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (OperationFailedError, GeminiClientError) as exc:
        logger.error("Video generation failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return VideoClipResponse(
        operation=operation.name,
        uri=artifact.uri,
        mime_type=artifact.mime_type,
        download_url=f"{settings.API_V1_PREFIX}/video-clips/download?uri={quote(artifact.uri, safe='')}",
    )


@router.post("/{operation_name:path}/cancel", status_code=202)
def cancel_video_clip(operation_name: str, request: Request, user_id: str = Depends(get_current_user_id)) -> dict:
    if not _poller(request).cancel(operation_name):
        raise HTTPException(status_code=404, detail=f"Unknown operation '{operation_name}'")
    return {"operation": operation_name, "cancelled": True}


@router.get("/download")
async def download_video_clip(
    request: Request,
    uri: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user_id),
) -> StreamingResponse:
    """Stream a generated video using the server-side credential."""
    if not uri.startswith(settings.VIDEO_DOWNLOAD_ALLOWED_PREFIX):
        raise HTTPException(status_code=400, detail="Unsupported artifact location")

    poller = _poller(request)
    artifact = ArtifactReference(uri=uri)
    try:
        request.app.state.credential_gate.require_ready()
    except GeminiConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return StreamingResponse(poller.stream_artifact(artifact), media_type="video/mp4")
