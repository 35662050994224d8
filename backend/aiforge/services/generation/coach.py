"""Live presentation coach: duplex audio transcription session lifecycle.

State machine::

    IDLE -> CONNECTING -> OPEN -> STREAMING -> CLOSING -> CLOSED | ERROR

The capture pipeline is a bounded producer/consumer channel. The capture
callback is the only producer: it encodes one block and ``put_nowait``s the
frame, dropping the oldest frame when the queue is full, and never awaits.
A sender task is the only consumer and does the actual network send.

Teardown runs once per session, however many stop requests and remote
close/error events race to trigger it. Steps, in order: stop the capture
device, disconnect the encoder pipeline, close the audio processing context,
close the remote channel.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Protocol

from google import genai

from aiforge.services.generation.audio import AudioFrameEncoder
from aiforge.services.generation.content import ContentGenerator
from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.exceptions import LiveSessionError, PermissionDeniedError
from aiforge.services.generation.live import GeminiLiveChannel
from aiforge.services.generation.models import (
    AudioFrame,
    ChannelClosed,
    ChannelError,
    ChannelOpened,
    LiveConfig,
    LiveEvent,
    LiveSessionInfo,
    LiveSessionState,
    PresentationFeedback,
    TranscriptFragment,
)

logger = logging.getLogger(__name__)

CaptureCallback = Callable[[Sequence[float] | bytes], None]
TranscriptListener = Callable[[str], None]


class LiveChannel(Protocol):
    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def send_frame(self, frame: AudioFrame) -> None: ...

    def events(self): ...


ChannelFactory = Callable[[genai.Client, LiveConfig], LiveChannel]


class AudioCapture(Protocol):
    """An audio capture device and its processing context."""

    async def open(self) -> None:
        """Acquire the device. Raises PermissionError when access is denied."""

    def start(self, callback: CaptureCallback) -> None:
        """Connect the processor so each fixed-size block reaches ``callback``."""

    def stop(self) -> None:
        """Stop the device tracks."""

    def disconnect(self) -> None:
        """Detach the processor callback."""

    async def close(self) -> None:
        """Close the audio processing context."""


class PushAudioCapture:
    """Capture device fed by an external producer, e.g. a browser WebSocket.

    ``push()`` plays the role of the processor's audio callback: it hands
    the block to the connected callback synchronously.
    """

    def __init__(self, permitted: bool = True) -> None:
        self._permitted = permitted
        self._callback: CaptureCallback | None = None
        self._opened = False
        self._running = False
        self._closed = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        if not self._permitted:
            raise PermissionError("Microphone access was denied")
        self._opened = True

    def start(self, callback: CaptureCallback) -> None:
        if not self._opened:
            raise RuntimeError("Capture device is not open")
        self._callback = callback
        self._running = True

    def push(self, samples: Sequence[float] | bytes) -> bool:
        """Deliver one capture block. Returns False when nothing is listening."""
        if not self._running or self._callback is None:
            return False
        self._callback(samples)
        return True

    def stop(self) -> None:
        self._running = False

    def disconnect(self) -> None:
        self._callback = None

    async def close(self) -> None:
        self._closed = True


class LiveAudioSession:
    """Manages one duplex audio-transcription session.

    Usage::

        session = LiveAudioSession(gate, capture=PushAudioCapture())
        await session.start()          # -> STREAMING
        capture.push(samples)          # capture callback path
        transcript = await session.stop()
    """

    def __init__(
        self,
        gate: CredentialGate,
        capture: AudioCapture,
        config: LiveConfig | None = None,
        encoder: AudioFrameEncoder | None = None,
        channel_factory: ChannelFactory | None = None,
        on_transcript: TranscriptListener | None = None,
    ) -> None:
        self._gate = gate
        self._capture = capture
        self._config = config or LiveConfig()
        self._encoder = encoder or AudioFrameEncoder(frame_samples=self._config.frame_samples)
        self._channel_factory = channel_factory or GeminiLiveChannel
        self._on_transcript = on_transcript
        self._channel: LiveChannel | None = None

        self._state = LiveSessionState.IDLE
        self._created_at = datetime.now(UTC)
        self._error: str | None = None
        self._fragments: list[str] = []

        self._queue: asyncio.Queue[AudioFrame] = asyncio.Queue(maxsize=self._config.queue_size)
        self._ready = asyncio.Event()
        self._receiver_task: asyncio.Task | None = None
        self._sender_task: asyncio.Task | None = None
        self._teardown_task: asyncio.Task | None = None

        # Metrics
        self._frames_enqueued = 0
        self._frames_sent = 0
        self._frames_dropped = 0

    @property
    def session_id(self) -> str:
        return self._config.session_id

    @property
    def state(self) -> LiveSessionState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def transcript(self) -> str:
        return "".join(self._fragments)

    @property
    def info(self) -> LiveSessionInfo:
        return LiveSessionInfo(
            session_id=self.session_id,
            state=self._state,
            created_at=self._created_at,
            frames_enqueued=self._frames_enqueued,
            frames_sent=self._frames_sent,
            frames_dropped=self._frames_dropped,
            fragments_received=len(self._fragments),
            transcript_chars=len(self.transcript),
            error=self._error,
        )

    async def start(self) -> None:
        """Acquire the capture device, open the channel, and begin streaming.

        Raises:
            GeminiConfigurationError: If the credential gate is not ready.
            PermissionDeniedError: If the capture device cannot be acquired.
            LiveSessionError: If the session was already started or the
                channel fails before streaming begins.
        """
        if self._state != LiveSessionState.IDLE:
            raise LiveSessionError(self.session_id, f"Session is {self._state.value}; start a new session instead")

        client = self._gate.client
        self._state = LiveSessionState.CONNECTING

        try:
            await self._capture.open()
        except Exception as exc:
            self._state = LiveSessionState.ERROR
            self._error = "Could not access the microphone. Please grant permission and try again."
            logger.warning("Live session %s capture denied: %s", self.session_id, exc)
            raise PermissionDeniedError(self.session_id, self._error) from exc

        if self._teardown_task is not None:
            await self._begin_teardown()
            await self._step("close audio context", self._capture.close)
            raise LiveSessionError(self.session_id, "Session was stopped while starting")

        self._channel = self._channel_factory(client, self._config)
        try:
            await self._channel.connect()
        except Exception as exc:
            await self._begin_teardown(error=f"Failed to connect: {exc}")
            raise LiveSessionError(self.session_id, f"Failed to connect: {exc}") from exc

        if self._teardown_task is not None:
            # Stopped mid-connect: teardown closed the channel before it opened
            await self._begin_teardown()
            await self._step("close channel", self._channel.close)
            raise LiveSessionError(self.session_id, "Session was stopped while connecting")

        self._state = LiveSessionState.OPEN
        self._receiver_task = asyncio.create_task(self._receive_loop())

        await self._ready.wait()
        if self._state != LiveSessionState.STREAMING:
            raise LiveSessionError(self.session_id, f"Session ended before streaming: {self._error or 'closed'}")
        logger.info("Live session %s streaming", self.session_id)

    async def stop(self) -> str:
        """Tear the session down and return the accumulated transcript.

        Idempotent: later calls wait for the same teardown and return the
        same transcript.
        """
        if self._state == LiveSessionState.IDLE:
            self._state = LiveSessionState.CLOSED
            self._ready.set()
            return self.transcript
        await self._begin_teardown()
        return self.transcript

    # ------------------------------------------------------------------
    # Capture callback (producer)
    # ------------------------------------------------------------------

    def _on_capture(self, samples: Sequence[float] | bytes) -> None:
        if self._state != LiveSessionState.STREAMING:
            return
        try:
            frame = self._encoder.encode(samples)
        except ValueError as exc:
            logger.warning("Live session %s dropped malformed capture block: %s", self.session_id, exc)
            self._frames_dropped += 1
            return

        if self._queue.full():
            self._queue.get_nowait()
            self._frames_dropped += 1
        self._queue.put_nowait(frame)
        self._frames_enqueued += 1

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def _send_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            if self._state != LiveSessionState.STREAMING:
                return
            try:
                await self._channel.send_frame(frame)
            except Exception as exc:
                logger.warning("Live session %s send failed: %s", self.session_id, exc)
                self._schedule_teardown(error=f"Send failed: {exc}")
                return
            self._frames_sent += 1

    async def _receive_loop(self) -> None:
        try:
            async for event in self._channel.events():
                if self._handle_event(event):
                    return
        except Exception as exc:
            logger.error("Live session %s receive error: %s", self.session_id, exc, exc_info=True)
            self._schedule_teardown(error=str(exc) or type(exc).__name__)
            return
        self._schedule_teardown()

    def _handle_event(self, event: LiveEvent) -> bool:
        """Apply one channel event. Returns True when the channel is done."""
        if isinstance(event, ChannelOpened):
            self._on_open()
        elif isinstance(event, TranscriptFragment):
            self._fragments.append(event.text)
            if self._on_transcript is not None:
                self._on_transcript(event.text)
        elif isinstance(event, ChannelError):
            logger.error("Live session %s channel error: %s", self.session_id, event.reason)
            self._schedule_teardown(error="A connection error occurred. Please try again.")
            return True
        elif isinstance(event, ChannelClosed):
            logger.info("Live session %s channel closed (%s)", self.session_id, event.reason)
            self._schedule_teardown()
            return True
        return False

    def _on_open(self) -> None:
        if self._state != LiveSessionState.OPEN:
            return
        self._sender_task = asyncio.create_task(self._send_loop())
        self._capture.start(self._on_capture)
        self._state = LiveSessionState.STREAMING
        self._ready.set()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _schedule_teardown(self, error: str | None = None) -> asyncio.Task:
        if self._teardown_task is None:
            if error is not None:
                self._error = error
            self._teardown_task = asyncio.create_task(self._teardown(failed=error is not None))
        return self._teardown_task

    async def _begin_teardown(self, error: str | None = None) -> None:
        await asyncio.shield(self._schedule_teardown(error))

    async def _teardown(self, failed: bool) -> None:
        self._state = LiveSessionState.CLOSING
        logger.info("Live session %s closing", self.session_id)

        await self._step("stop capture device", self._capture.stop)
        await self._step("disconnect encoder pipeline", self._disconnect_pipeline)
        await self._step("close audio context", self._capture.close)
        if self._channel is not None:
            await self._step("close channel", self._channel.close)

        receiver = self._receiver_task
        if receiver is not None and receiver is not asyncio.current_task() and not receiver.done():
            receiver.cancel()

        self._state = LiveSessionState.ERROR if failed else LiveSessionState.CLOSED
        self._ready.set()
        logger.info(
            "Live session %s %s (enqueued=%d sent=%d dropped=%d fragments=%d)",
            self.session_id,
            self._state.value,
            self._frames_enqueued,
            self._frames_sent,
            self._frames_dropped,
            len(self._fragments),
        )

    async def _disconnect_pipeline(self) -> None:
        self._capture.disconnect()
        sender = self._sender_task
        self._sender_task = None
        if sender is not None and not sender.done():
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            self._queue.get_nowait()

    async def _step(self, name: str, action: Callable) -> None:
        try:
            outcome = action()
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as exc:
            logger.warning("Live session %s teardown step '%s' failed: %s", self.session_id, name, exc)


class CoachSessionManager:
    """One live coaching session per owner; a new attempt closes the old one first.

    Usage::

        manager = CoachSessionManager(gate, generator)
        session = await manager.start("user-1", capture)
        ...
        feedback = await manager.stop_and_analyze("user-1")
    """

    def __init__(
        self,
        gate: CredentialGate,
        generator: ContentGenerator,
        config_factory: Callable[[], LiveConfig] | None = None,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        self._gate = gate
        self._generator = generator
        self._config_factory = config_factory or LiveConfig
        self._channel_factory = channel_factory
        self._sessions: dict[str, LiveAudioSession] = {}
        self._lock = asyncio.Lock()

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def get_session(self, owner_id: str) -> LiveAudioSession | None:
        return self._sessions.get(owner_id)

    async def start(
        self,
        owner_id: str,
        capture: AudioCapture,
        on_transcript: TranscriptListener | None = None,
    ) -> LiveAudioSession:
        """Close any previous session for ``owner_id`` and start a new one."""
        async with self._lock:
            previous = self._sessions.pop(owner_id, None)
            if previous is not None:
                logger.warning("Owner %s started a new coaching attempt; closing %s", owner_id, previous.session_id)
                await previous.stop()

            session = LiveAudioSession(
                self._gate,
                capture,
                config=self._config_factory(),
                channel_factory=self._channel_factory,
                on_transcript=on_transcript,
            )
            self._sessions[owner_id] = session

        try:
            await session.start()
        except Exception:
            async with self._lock:
                if self._sessions.get(owner_id) is session:
                    del self._sessions[owner_id]
            raise
        return session

    async def stop(self, owner_id: str) -> str:
        """Stop the owner's session and return its transcript ("" if none)."""
        async with self._lock:
            session = self._sessions.pop(owner_id, None)
        if session is None:
            return ""
        return await session.stop()

    async def stop_and_analyze(self, owner_id: str) -> PresentationFeedback:
        """Stop the owner's session and analyse the transcript.

        Raises:
            TranscriptTooShortError: Locally, for a too-short transcript.
        """
        transcript = await self.stop(owner_id)
        return await self._generator.analyze_presentation(transcript)

    async def teardown_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        if not sessions:
            return

        logger.info("Coach teardown: closing %d live sessions", len(sessions))
        await asyncio.gather(*(s.stop() for s in sessions), return_exceptions=True)
