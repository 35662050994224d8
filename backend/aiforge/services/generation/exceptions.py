"""Generation service exceptions."""


class GenerationError(Exception):
    """Base exception for all AI generation operations."""


class GeminiConfigurationError(GenerationError):
    """Raised when the Gemini credential is missing, invalid, or revoked."""


class GeminiClientError(GenerationError):
    """Raised when a Gemini API call fails or returns unusable data."""

    def __init__(self, message: str) -> None:
        super().__init__(f"[gemini] {message}")


class ConversationStateError(GenerationError):
    """Raised when a conversation is driven out of order by its caller."""

    def __init__(self, conversation_id: str, message: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"[conversation:{conversation_id}] {message}")


class StreamInterruptionError(GenerationError):
    """Raised when a response stream breaks off mid-turn.

    ``partial_text`` holds every fragment already delivered to the caller.
    """

    def __init__(self, conversation_id: str, partial_text: str, message: str) -> None:
        self.conversation_id = conversation_id
        self.partial_text = partial_text
        super().__init__(f"[conversation:{conversation_id}] stream interrupted: {message}")


class ToolExecutionError(GenerationError):
    """Raised by a tool handler; the dispatcher turns it into an error envelope."""

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(message)


class LiveSessionError(GenerationError):
    """Raised when a live audio session operation fails."""

    def __init__(self, session_id: str, message: str) -> None:
        self.session_id = session_id
        super().__init__(f"[live:{session_id}] {message}")


class PermissionDeniedError(LiveSessionError):
    """Raised when the audio capture device cannot be acquired."""


class TranscriptTooShortError(GenerationError):
    """Raised locally when a transcript is too short to analyse."""

    def __init__(self, length: int, minimum: int) -> None:
        self.length = length
        self.minimum = minimum
        super().__init__(
            f"Transcript too short for feedback ({length} < {minimum} characters). "
            "Please speak for a bit longer and try again."
        )


class OperationFailedError(GenerationError):
    """Raised when a long-running operation finishes without a usable result."""

    def __init__(self, operation_name: str, message: str) -> None:
        self.operation_name = operation_name
        super().__init__(f"[operation:{operation_name}] {message}")


class JobCancelledError(GenerationError):
    """Raised when polling stops because the caller cancelled the operation."""

    def __init__(self, operation_name: str) -> None:
        self.operation_name = operation_name
        super().__init__(f"[operation:{operation_name}] polling cancelled")
