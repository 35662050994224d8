"""Tests for the per-user chat assistant loop."""

import asyncio

import pytest
from conftest import TestSessionLocal, call_response, stream_of, text_response

from aiforge.services.generation.assistant import ERROR_REPLY, ChatAssistant
from aiforge.services.generation.exceptions import ConversationStateError
from aiforge.services.generation.history import SqlHistoryStore, history_storage_key
from aiforge.services.generation.models import ChatEventType, Role, ToolCall, Turn
from aiforge.services.generation.tools import ToolDispatcher


@pytest.fixture
def store():
    return SqlHistoryStore(TestSessionLocal)


@pytest.fixture
def dispatcher():
    dispatcher = ToolDispatcher()
    dispatcher.register("generateTitlesAndHooks", lambda topic, audience: [f"Title: {topic} for {audience}"])
    return dispatcher


@pytest.fixture
def assistant(gate, store, dispatcher):
    return ChatAssistant(gate, store, dispatcher)


async def _events(assistant: ChatAssistant, user_id: str, text: str) -> list:
    return [event async for event in assistant.send_message(user_id, text)]


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_plain_answer_streams_and_persists(self, assistant, store, genai_client):
        genai_client.aio.models.generate_content_stream.return_value = stream_of(
            text_response("Hello"), text_response(" there")
        )

        events = await _events(assistant, "user-1", "hi")

        assert [e.type for e in events] == [ChatEventType.TEXT, ChatEventType.TEXT, ChatEventType.DONE]
        assert "".join(e.text for e in events if e.type == ChatEventType.TEXT) == "Hello there"
        assert events[-1].turns == 2

        stored = store.load(history_storage_key("user-1"))
        assert [(t.role, t.text) for t in stored] == [(Role.USER, "hi"), (Role.MODEL, "Hello there")]

    @pytest.mark.asyncio
    async def test_tool_call_dispatched_and_resumed(self, assistant, store, genai_client):
        genai_client.aio.models.generate_content_stream.side_effect = [
            stream_of(call_response("generateTitlesAndHooks", {"topic": "python", "audience": "kids"}, "c1")),
            stream_of(text_response("Here are your titles.")),
        ]

        events = await _events(assistant, "user-1", "titles please")

        assert [e.type for e in events] == [
            ChatEventType.TOOL_CALL,
            ChatEventType.TOOL_RESULT,
            ChatEventType.TEXT,
            ChatEventType.DONE,
        ]
        assert events[0].tool_name == "generateTitlesAndHooks"
        assert events[1].tool_result.result == ["Title: python for kids"]
        assert events[1].tool_result.call_id == "c1"
        assert events[-1].turns == 4

        stored = store.load(history_storage_key("user-1"))
        assert [t.role for t in stored] == [Role.USER, Role.MODEL, Role.TOOL, Role.MODEL]

    @pytest.mark.asyncio
    async def test_failing_tool_reported_to_model(self, assistant, genai_client):
        genai_client.aio.models.generate_content_stream.side_effect = [
            stream_of(call_response("generateThumbnailPrompts", {"videoTopic": "x", "tone": "fun"})),
            stream_of(text_response("That tool is unavailable.")),
        ]

        events = await _events(assistant, "user-1", "thumbnail ideas")

        assert events[1].tool_result.error == "Unknown tool called: generateThumbnailPrompts"
        contents = genai_client.aio.models.generate_content_stream.call_args.kwargs["contents"]
        assert contents[-1].parts[0].function_response.response == {
            "error": "Unknown tool called: generateThumbnailPrompts"
        }

    @pytest.mark.asyncio
    async def test_interruption_yields_error_and_persists(self, assistant, store, genai_client):
        genai_client.aio.models.generate_content_stream.return_value = stream_of(
            text_response("Partial"), error=ConnectionError("dropped")
        )

        events = await _events(assistant, "user-1", "hi")

        assert [e.type for e in events] == [ChatEventType.TEXT, ChatEventType.ERROR, ChatEventType.DONE]
        assert events[1].text == ERROR_REPLY

        stored = store.load(history_storage_key("user-1"))
        assert stored[-1].text == "Partial"
        assert stored[-1].error == "dropped"
        assert assistant.is_busy("user-1") is False

    @pytest.mark.asyncio
    async def test_tool_round_cap(self, gate, store, dispatcher, genai_client):
        genai_client.aio.models.generate_content_stream.side_effect = [
            stream_of(call_response("generateTitlesAndHooks", {"topic": "a", "audience": "b"})),
            stream_of(call_response("generateTitlesAndHooks", {"topic": "a", "audience": "b"})),
        ]
        assistant = ChatAssistant(gate, store, dispatcher, max_tool_rounds=1)

        events = await _events(assistant, "user-1", "loop forever")

        assert events[-2].type == ChatEventType.ERROR
        assert events[-1].type == ChatEventType.DONE
        assert genai_client.aio.models.generate_content_stream.await_count == 2


class TestHistoryHandoff:
    def test_open_replays_stored_history(self, assistant, store):
        store.save(
            history_storage_key("user-1"),
            [Turn(role=Role.USER, text="earlier"), Turn(role=Role.MODEL, text="reply")],
        )

        session = assistant.open("user-1")

        assert [t.text for t in session.history()] == ["earlier", "reply"]
        assert assistant.open("user-1") is session
        assert assistant.active_count == 1

    @pytest.mark.asyncio
    async def test_pending_calls_from_replay_resolved_first(self, assistant, store, genai_client):
        store.save(
            history_storage_key("user-1"),
            [
                Turn(role=Role.USER, text="titles"),
                Turn(
                    role=Role.MODEL,
                    tool_calls=[ToolCall(name="generateTitlesAndHooks", args={"topic": "t", "audience": "a"})],
                ),
            ],
        )
        genai_client.aio.models.generate_content_stream.side_effect = [
            stream_of(text_response("Done with titles.")),
            stream_of(text_response("New answer.")),
        ]

        events = await _events(assistant, "user-1", "next question")

        assert [e.type for e in events] == [
            ChatEventType.TOOL_CALL,
            ChatEventType.TOOL_RESULT,
            ChatEventType.TEXT,
            ChatEventType.TEXT,
            ChatEventType.DONE,
        ]
        roles = [t.role for t in store.load(history_storage_key("user-1"))]
        assert roles == [Role.USER, Role.MODEL, Role.TOOL, Role.MODEL, Role.USER, Role.MODEL]

    @pytest.mark.asyncio
    async def test_concurrent_message_does_not_redispatch_pending_calls(self, gate, store, genai_client):
        release = asyncio.Event()
        runs: list[str] = []

        async def lookup(query):
            runs.append(query)
            await release.wait()
            return {"answer": query}

        dispatcher = ToolDispatcher()
        dispatcher.register("lookup", lookup)
        assistant = ChatAssistant(gate, store, dispatcher)
        store.save(
            history_storage_key("user-1"),
            [
                Turn(role=Role.USER, text="look it up"),
                Turn(role=Role.MODEL, tool_calls=[ToolCall(name="lookup", args={"query": "x"})]),
            ],
        )
        genai_client.aio.models.generate_content_stream.side_effect = [
            stream_of(text_response("Found it.")),
            stream_of(text_response("Next answer.")),
        ]

        first = asyncio.create_task(_events(assistant, "user-1", "next"))
        while not runs:
            await asyncio.sleep(0)

        assert assistant.is_busy("user-1") is True
        with pytest.raises(ConversationStateError, match="already being answered"):
            await _events(assistant, "user-1", "next")
        with pytest.raises(ConversationStateError):
            assistant.clear("user-1")

        release.set()
        events = await first

        assert runs == ["x"]
        assert events[-1].type == ChatEventType.DONE
        assert assistant.is_busy("user-1") is False

    @pytest.mark.asyncio
    async def test_clear_deletes_history(self, assistant, store, genai_client):
        genai_client.aio.models.generate_content_stream.return_value = stream_of(text_response("Hi"))
        await _events(assistant, "user-1", "hello")

        assistant.clear("user-1")

        assert store.load(history_storage_key("user-1")) == []
        assert assistant.history("user-1") == []

    def test_users_are_isolated(self, assistant, store):
        store.save(history_storage_key("user-1"), [Turn(role=Role.USER, text="mine")])

        assert assistant.history("user-2") == []
        assert [t.text for t in assistant.history("user-1")] == ["mine"]
