"""Gemini Live API duplex channel for input transcription.

Wraps the google-genai SDK live session and turns its loosely-typed server
messages into a small tagged union of channel events:

    ChannelOpened | TranscriptFragment(text) | ChannelError(reason) | ChannelClosed

The channel is configured for audio input with input transcription enabled;
the model's own audio output is ignored.
"""

import logging
from collections.abc import AsyncIterator

from google import genai
from google.genai.types import AudioTranscriptionConfig, Blob, LiveConnectConfig, Modality
from websockets.exceptions import ConnectionClosedOK

from aiforge.services.generation.exceptions import GeminiClientError
from aiforge.services.generation.models import (
    AudioFrame,
    ChannelClosed,
    ChannelError,
    ChannelOpened,
    LiveConfig,
    LiveEvent,
    TranscriptFragment,
)

logger = logging.getLogger(__name__)


def _build_live_config() -> LiveConnectConfig:
    return LiveConnectConfig(
        response_modalities=[Modality.AUDIO],
        input_audio_transcription=AudioTranscriptionConfig(),
    )


class GeminiLiveChannel:
    """Async duplex channel to the Gemini Live API.

    Manages a single WebSocket session. ``events()`` first yields
    ChannelOpened (the SDK has completed the setup handshake by the time
    ``connect()`` returns), then transcript fragments until the remote side
    closes or fails.

    Usage::

        channel = GeminiLiveChannel(client=gate.client, config=LiveConfig())
        await channel.connect()
        try:
            await channel.send_frame(frame)
            async for event in channel.events():
                ...
        finally:
            await channel.close()
    """

    def __init__(self, client: genai.Client, config: LiveConfig) -> None:
        self._client = client
        self._config = config
        self._live_config = _build_live_config()
        self._context = None
        self._session = None
        self._connected = False
        self._closing = False

    @property
    def session_id(self) -> str:
        return self._config.session_id

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the WebSocket and complete the setup handshake.

        Raises:
            GeminiClientError: If the connection fails.
        """
        if self._connected:
            logger.warning("Live channel %s already connected, skipping", self.session_id)
            return

        try:
            self._context = self._client.aio.live.connect(
                model=self._config.model_id,
                config=self._live_config,
            )
            self._session = await self._context.__aenter__()
            self._connected = True
            logger.info("Live channel %s connected (model=%s)", self.session_id, self._config.model_id)
        except Exception as exc:
            self._connected = False
            self._context = None
            raise GeminiClientError(f"Failed to connect live channel {self.session_id}: {exc}") from exc

    async def close(self) -> None:
        """Close the WebSocket. Safe to call more than once."""
        self._closing = True
        if self._context is None:
            return
        context = self._context
        self._context = None
        try:
            await context.__aexit__(None, None, None)
        except Exception as exc:
            logger.warning("Error closing live channel %s: %s", self.session_id, exc)
        finally:
            self._session = None
            self._connected = False
            logger.info("Live channel %s closed", self.session_id)

    async def send_frame(self, frame: AudioFrame) -> None:
        """Send one encoded capture frame as realtime input.

        Raises:
            GeminiClientError: If not connected or the send fails.
        """
        if not self._connected or self._session is None:
            raise GeminiClientError(f"Live channel {self.session_id} is not connected")
        try:
            await self._session.send_realtime_input(
                audio=Blob(data=frame.pcm, mime_type=frame.mime_type),
            )
        except Exception as exc:
            raise GeminiClientError(f"Failed to send audio on live channel {self.session_id}: {exc}") from exc

    async def events(self) -> AsyncIterator[LiveEvent]:
        """Yield channel events until the channel closes or fails."""
        if not self._connected or self._session is None:
            yield ChannelError(reason="channel is not connected")
            return

        yield ChannelOpened()

        try:
            while self._session is not None:
                received = 0
                # The SDK ends each receive() iteration at a turn boundary
                async for message in self._session.receive():
                    received += 1
                    server_content = getattr(message, "server_content", None)
                    transcription = getattr(server_content, "input_transcription", None)
                    if transcription is not None and transcription.text:
                        yield TranscriptFragment(text=transcription.text)

                    if getattr(message, "go_away", None) is not None:
                        logger.warning(
                            "Live channel %s received GoAway, ending in %s",
                            self.session_id,
                            getattr(message.go_away, "time_left", "unknown"),
                        )
                if received == 0:
                    break
        except ConnectionClosedOK:
            pass
        except Exception as exc:
            if self._closing:
                yield ChannelClosed(reason="closed locally")
                return
            yield ChannelError(reason=str(exc) or type(exc).__name__)
            return

        yield ChannelClosed(reason="closed locally" if self._closing else "closed by server")
