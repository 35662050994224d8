"""Generation service: Gemini chat, live transcription and video jobs.

Public API:
    - CredentialGate: Process-wide Gemini credential and SDK client.
    - ConversationSession: Streamed chat with mid-stream tool calls.
    - ChatAssistant: One conversation per user, with history persistence.
    - ToolDispatcher: Name-dispatches tool calls to handlers.
    - AudioFrameEncoder: Float capture blocks to base64 PCM16 frames.
    - LiveAudioSession: Duplex audio transcription session lifecycle.
    - CoachSessionManager: One live coaching session per owner.
    - GeminiLiveChannel: Low-level Live API channel.
    - LongRunningJobPoller: Submit-and-poll video generation.
    - ContentGenerator: One-shot structured generation.
    - tools: Tool definitions (build_tools, TOOL_DECLARATIONS).
"""

from aiforge.services.generation.assistant import ChatAssistant
from aiforge.services.generation.audio import AudioFrameEncoder
from aiforge.services.generation.coach import (
    AudioCapture,
    CoachSessionManager,
    LiveAudioSession,
    PushAudioCapture,
)
from aiforge.services.generation.content import ContentGenerator
from aiforge.services.generation.conversation import ConversationSession
from aiforge.services.generation.credentials import CredentialGate, CredentialStore
from aiforge.services.generation.exceptions import (
    ConversationStateError,
    GeminiClientError,
    GeminiConfigurationError,
    GenerationError,
    JobCancelledError,
    LiveSessionError,
    OperationFailedError,
    PermissionDeniedError,
    StreamInterruptionError,
    ToolExecutionError,
    TranscriptTooShortError,
)
from aiforge.services.generation.history import HistoryStore, SqlCredentialStore, SqlHistoryStore
from aiforge.services.generation.jobs import LongRunningJobPoller
from aiforge.services.generation.live import GeminiLiveChannel
from aiforge.services.generation.models import (
    ArtifactReference,
    AudioFrame,
    ChatConfig,
    ChatEvent,
    ChatEventType,
    ConversationPhase,
    CredentialState,
    LiveConfig,
    LiveSessionState,
    LongRunningOperation,
    PresentationFeedback,
    ResponseChunk,
    Role,
    ToolCall,
    ToolResult,
    Turn,
    VideoClipRequest,
)
from aiforge.services.generation.tools import (
    DEFAULT_TOOLS,
    TOOL_DECLARATIONS,
    ToolDispatcher,
    build_default_dispatcher,
    build_tools,
)

__all__ = [
    "ArtifactReference",
    "AudioCapture",
    "AudioFrame",
    "AudioFrameEncoder",
    "ChatAssistant",
    "ChatConfig",
    "ChatEvent",
    "ChatEventType",
    "CoachSessionManager",
    "ContentGenerator",
    "ConversationPhase",
    "ConversationSession",
    "ConversationStateError",
    "CredentialGate",
    "CredentialState",
    "CredentialStore",
    "DEFAULT_TOOLS",
    "GeminiClientError",
    "GeminiConfigurationError",
    "GeminiLiveChannel",
    "GenerationError",
    "HistoryStore",
    "JobCancelledError",
    "LiveAudioSession",
    "LiveConfig",
    "LiveSessionError",
    "LiveSessionState",
    "LongRunningJobPoller",
    "LongRunningOperation",
    "OperationFailedError",
    "PermissionDeniedError",
    "PresentationFeedback",
    "PushAudioCapture",
    "ResponseChunk",
    "Role",
    "SqlCredentialStore",
    "SqlHistoryStore",
    "StreamInterruptionError",
    "TOOL_DECLARATIONS",
    "ToolCall",
    "ToolDispatcher",
    "ToolExecutionError",
    "ToolResult",
    "TranscriptTooShortError",
    "Turn",
    "VideoClipRequest",
    "build_default_dispatcher",
    "build_tools",
]
