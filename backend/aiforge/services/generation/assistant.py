"""Per-user chat assistant built on ConversationSession and ToolDispatcher.

Keeps one active conversation per user, replays persisted history when a
conversation is opened, and runs the stream -> tools -> resume loop until the
model produces a final answer. History is persisted after every completed
exchange, including interrupted ones.
"""

import logging
from collections.abc import AsyncIterator

from aiforge.services.generation.conversation import ConversationSession
from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.exceptions import ConversationStateError, StreamInterruptionError
from aiforge.services.generation.history import HistoryStore, history_storage_key
from aiforge.services.generation.models import ChatConfig, ChatEvent, ChatEventType, ToolResult, Turn
from aiforge.services.generation.tools import ToolDispatcher

logger = logging.getLogger(__name__)

ERROR_REPLY = "Sorry, something went wrong. Please try again."
MAX_TOOL_ROUNDS = 8


class ChatAssistant:
    """Registry of active conversations, one per user.

    Usage::

        assistant = ChatAssistant(gate, SqlHistoryStore(SessionLocal), dispatcher)
        async for event in assistant.send_message("user-1", "Give me video ideas"):
            ...
    """

    def __init__(
        self,
        gate: CredentialGate,
        history_store: HistoryStore,
        dispatcher: ToolDispatcher,
        config: ChatConfig | None = None,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ) -> None:
        self._gate = gate
        self._store = history_store
        self._dispatcher = dispatcher
        self._config = config or ChatConfig()
        self._max_tool_rounds = max_tool_rounds
        self._sessions: dict[str, ConversationSession] = {}
        # Users with a send_message in progress, tool dispatch included
        self._active: set[str] = set()

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def open(self, user_id: str) -> ConversationSession:
        """Return the user's active conversation, replaying stored history on first use."""
        session = self._sessions.get(user_id)
        if session is not None:
            return session

        history = self._store.load(history_storage_key(user_id))
        session = ConversationSession(
            self._gate,
            user_id,
            config=self._config,
            history=history,
            tools=self._dispatcher.tools(),
        )
        self._sessions[user_id] = session
        logger.info("Opened conversation for user %s (%d stored turns)", user_id, len(history))
        return session

    def history(self, user_id: str) -> list[Turn]:
        return self.open(user_id).history()

    def is_busy(self, user_id: str) -> bool:
        if user_id in self._active:
            return True
        session = self._sessions.get(user_id)
        return session is not None and session.in_flight

    def clear(self, user_id: str) -> None:
        """Delete stored history and start the user's conversation over.

        Raises:
            ConversationStateError: If a message is still being answered.
        """
        if user_id in self._active:
            raise ConversationStateError(user_id, "Cannot clear history while a message is being answered")
        session = self._sessions.get(user_id)
        if session is not None:
            session.reset()
        self._store.clear(history_storage_key(user_id))
        logger.info("Cleared chat history for user %s", user_id)

    async def send_message(self, user_id: str, text: str) -> AsyncIterator[ChatEvent]:
        """Answer one user message, yielding UI events as they happen.

        Tool calls left pending by replayed history are resolved before the
        new message is sent.

        Raises:
            GeminiConfigurationError: If the credential gate is not ready.
            ConversationStateError: If a message for this user is already
                being answered, or the message is empty.
        """
        if user_id in self._active:
            raise ConversationStateError(user_id, "A message is already being answered")
        self._active.add(user_id)
        try:
            session = self.open(user_id)
            unsent: str | None = text
            rounds = 0

            while True:
                calls = session.pending_tool_calls
                message: str | list[ToolResult]
                if calls:
                    rounds += 1
                    if rounds > self._max_tool_rounds:
                        logger.error("Chat for user %s exceeded %d tool rounds", user_id, self._max_tool_rounds)
                        yield ChatEvent(type=ChatEventType.ERROR, text=ERROR_REPLY)
                        break
                    for call in calls:
                        yield ChatEvent(type=ChatEventType.TOOL_CALL, tool_name=call.name)
                    results = await self._dispatcher.dispatch(calls)
                    for result in results:
                        yield ChatEvent(type=ChatEventType.TOOL_RESULT, tool_name=result.name, tool_result=result)
                    message = results
                elif unsent is not None:
                    message, unsent = unsent, None
                else:
                    break

                try:
                    async for chunk in session.send(message):
                        if chunk.text:
                            yield ChatEvent(type=ChatEventType.TEXT, text=chunk.text)
                except StreamInterruptionError as exc:
                    logger.warning("Chat for user %s interrupted: %s", user_id, exc)
                    self._persist(user_id, session)
                    yield ChatEvent(type=ChatEventType.ERROR, text=ERROR_REPLY)
                    break

                self._persist(user_id, session)

            yield ChatEvent(type=ChatEventType.DONE, turns=len(session.history()))
        finally:
            self._active.discard(user_id)

    def teardown(self) -> None:
        self._sessions.clear()

    def _persist(self, user_id: str, session: ConversationSession) -> None:
        self._store.save(history_storage_key(user_id), session.history())
