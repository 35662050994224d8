"""Generation service Pydantic models."""

import base64
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from google.genai.types import Content, FunctionCall, FunctionResponse, Part
from pydantic import BaseModel, Field

# Audio constants for the live channel
INPUT_SAMPLE_RATE = 16000
INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"
DEFAULT_FRAME_SAMPLES = 4096


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Credential gate
# ---------------------------------------------------------------------------


class CredentialState(str, Enum):
    """Lifecycle of the process-wide Gemini credential."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Conversation turns and tool calls
# ---------------------------------------------------------------------------


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    TOOL = "tool"  # Resolution turn carrying tool results


class ConversationPhase(str, Enum):
    """Where a conversation is in the stream and tool-call cycle."""

    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOLS = "awaiting_tools"
    RESUMING = "resuming"


class ToolCall(BaseModel):
    """A model-issued request to invoke a named tool."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    call_id: str | None = None

    @classmethod
    def from_function_call(cls, fc: FunctionCall) -> "ToolCall":
        return cls(name=fc.name or "", args=dict(fc.args) if fc.args else {}, call_id=fc.id)

    def to_part(self) -> Part:
        return Part(function_call=FunctionCall(id=self.call_id, name=self.name, args=self.args))


class ToolResult(BaseModel):
    """Normalized outcome of one tool call: exactly one of result or error."""

    name: str
    call_id: str | None = None
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_function_response(self) -> FunctionResponse:
        """Convert to a google.genai FunctionResponse for sending back to Gemini."""
        response = {"error": self.error} if self.error is not None else {"result": self.result}
        return FunctionResponse(id=self.call_id, name=self.name, response=response)


class Turn(BaseModel):
    """One logical message in a conversation."""

    role: Role
    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    error: str | None = None
    timestamp: datetime = Field(default_factory=_now)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_content(self) -> Content:
        """Render this turn as SDK Content for request history."""
        if self.role == Role.TOOL:
            parts = [Part(function_response=r.to_function_response()) for r in self.tool_results]
            return Content(role="user", parts=parts)

        parts: list[Part] = []
        text = self.text or self.error or ""
        if text:
            parts.append(Part(text=text))
        parts.extend(call.to_part() for call in self.tool_calls)
        if not parts:
            # Gemini rejects empty turns
            parts.append(Part(text=""))
        return Content(role=self.role.value, parts=parts)


class ResponseChunk(BaseModel):
    """One increment of a streamed model response."""

    text: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


class ChatConfig(BaseModel):
    """Configuration for a streamed chat conversation."""

    model_id: str = "gemini-2.5-flash"
    system_instruction: str = ""
    temperature: float = 0.9
    top_k: float = 1
    top_p: float = 1
    max_output_tokens: int = 2048


class ChatEventType(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    DONE = "done"


class ChatEvent(BaseModel):
    """A UI-facing event produced while a chat message is being answered."""

    type: ChatEventType
    text: str | None = None
    tool_name: str | None = None
    tool_result: ToolResult | None = None
    turns: int | None = None


# ---------------------------------------------------------------------------
# Live audio session
# ---------------------------------------------------------------------------


class LiveSessionState(str, Enum):
    """Lifecycle states of a live transcription session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"


class LiveConfig(BaseModel):
    """Configuration for a live transcription session."""

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    model_id: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    frame_samples: int = DEFAULT_FRAME_SAMPLES
    queue_size: int = 64


class AudioFrame(BaseModel):
    """One encoded unit of capture audio, ready for the live channel."""

    data: str  # base64 of 16-bit little-endian PCM
    mime_type: str = INPUT_MIME_TYPE
    sample_rate: int = INPUT_SAMPLE_RATE
    sample_count: int = 0

    @property
    def pcm(self) -> bytes:
        return base64.b64decode(self.data)

    def to_wire(self) -> dict[str, Any]:
        return {"media": {"data": self.data, "mimeType": self.mime_type}}


class ChannelOpened(BaseModel):
    kind: Literal["open"] = "open"


class TranscriptFragment(BaseModel):
    kind: Literal["transcript"] = "transcript"
    text: str


class ChannelError(BaseModel):
    kind: Literal["error"] = "error"
    reason: str


class ChannelClosed(BaseModel):
    kind: Literal["closed"] = "closed"
    reason: str | None = None


LiveEvent = Annotated[
    ChannelOpened | TranscriptFragment | ChannelError | ChannelClosed,
    Field(discriminator="kind"),
]


class LiveSessionInfo(BaseModel):
    """Snapshot of live session metadata for monitoring."""

    session_id: str
    state: LiveSessionState
    created_at: datetime = Field(default_factory=_now)
    frames_enqueued: int = 0
    frames_sent: int = 0
    frames_dropped: int = 0
    fragments_received: int = 0
    transcript_chars: int = 0
    error: str | None = None


# ---------------------------------------------------------------------------
# Long-running video jobs
# ---------------------------------------------------------------------------


class VideoClipRequest(BaseModel):
    prompt: str
    image_base64: str | None = None
    mime_type: str | None = None
    number_of_videos: int = 1


class ArtifactReference(BaseModel):
    """Where a finished artifact can be fetched from."""

    uri: str
    mime_type: str | None = None


class LongRunningOperation(BaseModel):
    """Poller-owned view of a remote long-running job."""

    name: str
    done: bool = False
    result: ArtifactReference | None = None
    error: str | None = None
    submitted_at: datetime = Field(default_factory=_now)
    last_poll_at: datetime | None = None
    polls: int = 0
    handle: Any = Field(default=None, exclude=True)

    model_config = {"arbitrary_types_allowed": True}


# ---------------------------------------------------------------------------
# One-shot analysis results
# ---------------------------------------------------------------------------


class FeedbackDetail(BaseModel):
    clarity: str
    pacing: str
    filler_words: str = Field(alias="fillerWords")
    engagement: str

    model_config = {"populate_by_name": True}


class FillerWordCount(BaseModel):
    word: str
    count: int


class PresentationFeedback(BaseModel):
    overall_score: float = Field(alias="overallScore")
    feedback: FeedbackDetail
    suggestions: list[str] = Field(default_factory=list)
    filler_word_count: list[FillerWordCount] = Field(default_factory=list, alias="fillerWordCount")

    model_config = {"populate_by_name": True}


class ThumbnailPrompts(BaseModel):
    prompts: list[str]
    cues: list[str]
