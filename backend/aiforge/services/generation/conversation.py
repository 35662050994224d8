"""Streamed chat conversation with mid-stream tool calls.

A ConversationSession owns one ordered turn list and drives it through an
explicit phase machine::

    IDLE --send(text)--> STREAMING --stream ends--> IDLE
                             |
                             +--stream ends with tool calls--> AWAITING_TOOLS
    AWAITING_TOOLS --send(results)--> RESUMING --stream ends--> IDLE | AWAITING_TOOLS

Every request carries the full turn list, so the turn list is the single
source of truth for history handoff and replay. A stream that ends with
pending tool calls is not a finished model turn: the next send() must carry
a result for every pending call (join-before-resume).
"""

import logging
from collections import Counter
from collections.abc import AsyncIterator

from google.genai.types import GenerateContentConfig, GenerateContentResponse, Tool

from aiforge.services.generation.content import SAFETY_SETTINGS
from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.exceptions import ConversationStateError, StreamInterruptionError
from aiforge.services.generation.models import (
    ChatConfig,
    ConversationPhase,
    ResponseChunk,
    Role,
    ToolCall,
    ToolResult,
    Turn,
)

logger = logging.getLogger(__name__)

ABANDONED_MESSAGE = "stream abandoned before completion"


class ConversationSession:
    """Manages one logical chat: streamed turns and tool-call round trips.

    Usage::

        session = ConversationSession(gate, "user-1", tools=dispatcher.tools())
        async for chunk in session.send("hello"):
            render(chunk.text)
        if session.pending_tool_calls:
            results = await dispatcher.dispatch(session.pending_tool_calls)
            async for chunk in session.send(results):
                render(chunk.text)
        store.save(session.history())
    """

    def __init__(
        self,
        gate: CredentialGate,
        conversation_id: str,
        config: ChatConfig | None = None,
        history: list[Turn] | None = None,
        tools: list[Tool] | None = None,
    ) -> None:
        self._gate = gate
        self._conversation_id = conversation_id
        self._config = config or ChatConfig()
        self._tools = tools or []
        # Replayed history is trusted as-is
        self._turns: list[Turn] = list(history or [])
        self._phase = ConversationPhase.IDLE
        self._pending: list[ToolCall] = []

        if self._turns and self._turns[-1].role == Role.MODEL and self._turns[-1].has_tool_calls:
            self._phase = ConversationPhase.AWAITING_TOOLS
            self._pending = list(self._turns[-1].tool_calls)

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def phase(self) -> ConversationPhase:
        return self._phase

    @property
    def pending_tool_calls(self) -> list[ToolCall]:
        return list(self._pending)

    @property
    def in_flight(self) -> bool:
        return self._phase in (ConversationPhase.STREAMING, ConversationPhase.RESUMING)

    def history(self) -> list[Turn]:
        """Copy of the turn list, for persistence."""
        return [turn.model_copy(deep=True) for turn in self._turns]

    def reset(self) -> None:
        """Forget every turn. Not allowed while a stream is in flight."""
        if self.in_flight:
            raise ConversationStateError(self._conversation_id, "Cannot reset while a response is streaming")
        self._turns.clear()
        self._pending.clear()
        self._phase = ConversationPhase.IDLE

    async def send(self, message: str | list[ToolResult]) -> AsyncIterator[ResponseChunk]:
        """Send user text or tool results; yield the model's response chunks.

        Raises:
            GeminiConfigurationError: If the credential gate is not ready.
            ConversationStateError: On a second send while streaming, text
                while tool calls are pending, or results that do not cover
                every pending call.
            StreamInterruptionError: If the stream breaks off. Chunks already
                yielded stay valid; a synthetic error turn is recorded and
                the session is reusable.
        """
        self._gate.require_ready()
        self._begin(message)

        fragments: list[str] = []
        calls: list[ToolCall] = []
        settled = False
        try:
            try:
                stream = await self._gate.client.aio.models.generate_content_stream(
                    model=self._config.model_id,
                    contents=[turn.to_content() for turn in self._turns],
                    config=self._build_config(),
                )
                async for response in stream:
                    chunk = _to_chunk(response)
                    if chunk is None:
                        continue
                    if chunk.text:
                        fragments.append(chunk.text)
                    calls.extend(chunk.tool_calls)
                    yield chunk
            except Exception as exc:
                partial = "".join(fragments)
                self._interrupt(partial, str(exc) or type(exc).__name__)
                settled = True
                raise StreamInterruptionError(self._conversation_id, partial, str(exc)) from exc

            self._complete("".join(fragments), calls)
            settled = True
        finally:
            if not settled:
                # Caller stopped consuming (aclose / cancellation)
                self._interrupt("".join(fragments), ABANDONED_MESSAGE)

    def _begin(self, message: str | list[ToolResult]) -> None:
        if self.in_flight:
            raise ConversationStateError(
                self._conversation_id,
                "A response is still streaming; wait for it to finish before sending again",
            )

        if isinstance(message, str):
            if self._phase == ConversationPhase.AWAITING_TOOLS:
                raise ConversationStateError(
                    self._conversation_id,
                    f"Resolve pending tool calls first: {[c.name for c in self._pending]}",
                )
            if not message.strip():
                raise ConversationStateError(self._conversation_id, "Message text is empty")
            self._turns.append(Turn(role=Role.USER, text=message))
            self._phase = ConversationPhase.STREAMING
            return

        if self._phase != ConversationPhase.AWAITING_TOOLS:
            raise ConversationStateError(self._conversation_id, "No tool calls are pending")

        expected = Counter(call.name for call in self._pending)
        received = Counter(result.name for result in message)
        if expected != received:
            raise ConversationStateError(
                self._conversation_id,
                f"Tool results {dict(received)} do not match pending calls {dict(expected)}",
            )

        self._turns.append(Turn(role=Role.TOOL, tool_results=list(message)))
        self._pending = []
        self._phase = ConversationPhase.RESUMING

    def _complete(self, text: str, calls: list[ToolCall]) -> None:
        self._turns.append(Turn(role=Role.MODEL, text=text, tool_calls=calls))
        if calls:
            self._pending = list(calls)
            self._phase = ConversationPhase.AWAITING_TOOLS
            logger.info(
                "Conversation %s awaiting %d tool call(s): %s",
                self._conversation_id,
                len(calls),
                [c.name for c in calls],
            )
        else:
            self._phase = ConversationPhase.IDLE

    def _interrupt(self, partial: str, reason: str) -> None:
        logger.warning("Conversation %s stream interrupted: %s", self._conversation_id, reason)
        self._turns.append(Turn(role=Role.MODEL, text=partial, error=reason))
        self._pending = []
        self._phase = ConversationPhase.IDLE

    def _build_config(self) -> GenerateContentConfig:
        kwargs: dict = {
            "temperature": self._config.temperature,
            "top_k": self._config.top_k,
            "top_p": self._config.top_p,
            "max_output_tokens": self._config.max_output_tokens,
            "safety_settings": SAFETY_SETTINGS,
        }
        if self._config.system_instruction:
            kwargs["system_instruction"] = self._config.system_instruction
        if self._tools:
            kwargs["tools"] = self._tools
        return GenerateContentConfig(**kwargs)


def _to_chunk(response: GenerateContentResponse) -> ResponseChunk | None:
    """Extract text and function calls from one streamed response, in part order."""
    candidates = response.candidates or []
    if not candidates or candidates[0].content is None:
        return None

    texts: list[str] = []
    calls: list[ToolCall] = []
    for part in candidates[0].content.parts or []:
        if part.thought:
            continue
        if part.text:
            texts.append(part.text)
        if part.function_call is not None:
            calls.append(ToolCall.from_function_call(part.function_call))

    if not texts and not calls:
        return None
    return ResponseChunk(text="".join(texts) or None, tool_calls=calls)
