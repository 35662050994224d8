"""Submit-and-poll driver for long-running video generation jobs.

The remote operation is re-fetched on a fixed interval until it reports
``done``. Cancellation is cooperative: ``cancel()`` marks the operation and
the poll loop notices before its next remote call.
"""

import asyncio
import base64
import binascii
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime

import httpx
from google.genai.types import GenerateVideosConfig, Image

from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.exceptions import (
    GeminiClientError,
    JobCancelledError,
    OperationFailedError,
)
from aiforge.services.generation.models import ArtifactReference, LongRunningOperation, VideoClipRequest

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_MODEL = "veo-2.0-generate-001"
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_MAX_POLL_FAILURES = 3
_DOWNLOAD_CHUNK_BYTES = 64 * 1024


class LongRunningJobPoller:
    """Drives long-running generation operations to completion.

    Usage::

        poller = LongRunningJobPoller(gate)
        operation = await poller.submit(VideoClipRequest(prompt="a cat surfing"))
        artifact = await poller.poll_until_done(operation)
        async for chunk in poller.stream_artifact(artifact):
            ...
    """

    def __init__(
        self,
        gate: CredentialGate,
        model_id: str = DEFAULT_VIDEO_MODEL,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_failures: int = DEFAULT_MAX_POLL_FAILURES,
        download_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gate = gate
        self._model_id = model_id
        self._poll_interval = poll_interval
        self._max_poll_failures = max_poll_failures
        self._download_timeout = download_timeout
        self._sleep = sleep
        self._operations: dict[str, LongRunningOperation] = {}
        self._cancelled: set[str] = set()

    @property
    def active_operations(self) -> list[str]:
        return list(self._operations.keys())

    def get_operation(self, name: str) -> LongRunningOperation | None:
        return self._operations.get(name)

    async def submit(self, request: VideoClipRequest) -> LongRunningOperation:
        """Start a video generation job.

        Raises:
            GeminiConfigurationError: If the credential gate is not ready.
            GeminiClientError: If the request is malformed or the submit fails.
        """
        client = self._gate.client
        image = _build_image(request)

        try:
            handle = await client.aio.models.generate_videos(
                model=self._model_id,
                prompt=request.prompt,
                image=image,
                config=GenerateVideosConfig(number_of_videos=request.number_of_videos),
            )
        except Exception as exc:
            raise GeminiClientError(f"Failed to submit video generation: {exc}") from exc

        name = getattr(handle, "name", None) or f"local-{len(self._operations) + 1}"
        operation = LongRunningOperation(name=name, handle=handle)
        _apply_status(operation, handle)
        self._operations[name] = operation
        logger.info("Submitted video operation %s (model=%s, image=%s)", name, self._model_id, image is not None)
        return operation

    async def poll_until_done(self, operation: LongRunningOperation) -> ArtifactReference:
        """Poll until the operation is done and return its artifact.

        Raises:
            GeminiConfigurationError: If the credential is revoked while polling.
            JobCancelledError: If ``cancel()`` was called for this operation.
            OperationFailedError: If the operation finished with an error or
                without an artifact, or transport failures exceeded the limit.
        """
        name = operation.name
        consecutive_failures = 0

        try:
            while not operation.done:
                self._check_cancelled(name)
                await self._sleep(self._poll_interval)
                self._check_cancelled(name)

                client = self._gate.client
                try:
                    handle = await client.aio.operations.get(operation.handle)
                except Exception as exc:
                    consecutive_failures += 1
                    logger.warning(
                        "Poll of operation %s failed (%d/%d): %s",
                        name,
                        consecutive_failures,
                        self._max_poll_failures,
                        exc,
                    )
                    if consecutive_failures >= self._max_poll_failures:
                        raise OperationFailedError(name, f"Polling failed {consecutive_failures} times: {exc}") from exc
                    continue

                consecutive_failures = 0
                operation.handle = handle
                operation.polls += 1
                operation.last_poll_at = datetime.now(UTC)
                _apply_status(operation, handle)
                logger.debug("Operation %s poll #%d done=%s", name, operation.polls, operation.done)

            if operation.error:
                raise OperationFailedError(name, operation.error)
            if operation.result is None:
                raise OperationFailedError(name, "Operation completed without producing a video")

            logger.info("Operation %s completed after %d poll(s)", name, operation.polls)
            return operation.result
        finally:
            # Retrieved, failed or cancelled: the poller is done with it
            self._operations.pop(name, None)
            self._cancelled.discard(name)

    def cancel(self, operation_name: str) -> bool:
        """Request cancellation. Returns False if the operation is unknown."""
        if operation_name not in self._operations:
            return False
        self._cancelled.add(operation_name)
        logger.info("Cancellation requested for operation %s", operation_name)
        return True

    async def generate(self, request: VideoClipRequest) -> ArtifactReference:
        """Submit a job and poll it to completion."""
        operation = await self.submit(request)
        return await self.poll_until_done(operation)

    async def stream_artifact(self, artifact: ArtifactReference) -> AsyncIterator[bytes]:
        """Download the artifact bytes using the process-wide credential.

        Raises:
            GeminiClientError: If the download fails.
        """
        url = httpx.URL(artifact.uri).copy_merge_params({"key": self._gate.api_key})
        try:
            async with httpx.AsyncClient(timeout=self._download_timeout, follow_redirects=True) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK_BYTES):
                        yield chunk
        except httpx.HTTPStatusError as exc:
            logger.error("Artifact download returned %d", exc.response.status_code)
            raise GeminiClientError(f"Artifact download failed with status {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.error("Artifact download request failed: %s", exc)
            raise GeminiClientError(f"Artifact download failed: {exc}") from exc

    def _check_cancelled(self, name: str) -> None:
        if name in self._cancelled:
            logger.info("Operation %s cancelled", name)
            raise JobCancelledError(name)


def _build_image(request: VideoClipRequest) -> Image | None:
    if not request.image_base64:
        return None
    try:
        image_bytes = base64.b64decode(request.image_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise GeminiClientError(f"Reference image is not valid base64: {exc}") from exc
    return Image(image_bytes=image_bytes, mime_type=request.mime_type or "image/png")


def _apply_status(operation: LongRunningOperation, handle) -> None:
    """Copy done/error/artifact from an SDK operation onto our view of it."""
    operation.done = bool(getattr(handle, "done", False))
    if not operation.done:
        return

    error = getattr(handle, "error", None)
    if error:
        operation.error = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        return

    response = getattr(handle, "response", None) or getattr(handle, "result", None)
    videos = getattr(response, "generated_videos", None) or []
    video = getattr(videos[0], "video", None) if videos else None
    uri = getattr(video, "uri", None)
    if uri:
        operation.result = ArtifactReference(uri=uri, mime_type=getattr(video, "mime_type", None))
