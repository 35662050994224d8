import asyncio
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from google.genai.types import Candidate, Content, FunctionCall, GenerateContentResponse, Part
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import sessionmaker

import aiforge.models  # noqa: F401
from aiforge.core.database import Base, get_db
from aiforge.main import app as fastapi_app
from aiforge.services.generation.assistant import ChatAssistant
from aiforge.services.generation.coach import CoachSessionManager
from aiforge.services.generation.content import ContentGenerator
from aiforge.services.generation.credentials import CredentialGate
from aiforge.services.generation.history import SqlHistoryStore
from aiforge.services.generation.jobs import LongRunningJobPoller
from aiforge.services.generation.models import ChannelOpened
from aiforge.services.generation.tools import build_default_dispatcher

# In-memory SQLite for tests
TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ---------------------------------------------------------------------------
# google-genai response builders
# ---------------------------------------------------------------------------


def text_response(text: str) -> GenerateContentResponse:
    return GenerateContentResponse(
        candidates=[Candidate(content=Content(role="model", parts=[Part(text=text)]))],
    )


def call_response(name: str, args: dict, call_id: str | None = None, text: str | None = None) -> GenerateContentResponse:
    parts = []
    if text:
        parts.append(Part(text=text))
    parts.append(Part(function_call=FunctionCall(id=call_id, name=name, args=args)))
    return GenerateContentResponse(candidates=[Candidate(content=Content(role="model", parts=parts))])


def stream_of(*responses, error: Exception | None = None):
    """An awaitable-returned async stream, as generate_content_stream gives."""

    async def _gen() -> AsyncIterator[GenerateContentResponse]:
        for response in responses:
            yield response
        if error is not None:
            raise error

    return _gen()


class FakeLiveChannel:
    """In-memory live channel driven by the test."""

    def __init__(self, client=None, config=None) -> None:
        self.config = config
        self.sent = []
        self.connected = False
        self.close_calls = 0
        self.connect_error: Exception | None = None
        self._events: asyncio.Queue = asyncio.Queue()

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        self._events.put_nowait(ChannelOpened())

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False
        self._events.put_nowait(None)

    async def send_frame(self, frame) -> None:
        self.sent.append(frame)

    def emit(self, event) -> None:
        self._events.put_nowait(event)

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    """Provide a test database session."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def genai_client():
    """MagicMock standing in for google.genai.Client; the probe call succeeds."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=text_response("ok"))
    client.aio.models.generate_content_stream = AsyncMock()
    client.aio.models.generate_videos = AsyncMock()
    client.aio.operations.get = AsyncMock()
    return client


@pytest.fixture
def gate(genai_client):
    """A READY CredentialGate whose SDK client is ``genai_client``."""
    gate = CredentialGate(default_api_key="test-key")
    with patch("aiforge.services.generation.credentials.genai.Client", return_value=genai_client):
        assert asyncio.run(gate.initialize()) is True
    genai_client.aio.models.generate_content.reset_mock()
    return gate


@pytest.fixture
def live_channels():
    """Records every FakeLiveChannel created through ``channel_factory``."""
    return []


@pytest.fixture
def channel_factory(live_channels):
    def _factory(client, config):
        channel = FakeLiveChannel(client, config)
        live_channels.append(channel)
        return channel

    return _factory


@pytest.fixture
def client(db, gate, channel_factory):
    """TestClient with generation services wired to test doubles."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    generator = ContentGenerator(gate)
    fastapi_app.state.credential_gate = gate
    fastapi_app.state.session_factory = TestSessionLocal
    fastapi_app.state.content_generator = generator
    fastapi_app.state.chat_assistant = ChatAssistant(
        gate, SqlHistoryStore(TestSessionLocal), build_default_dispatcher(generator)
    )
    fastapi_app.state.coach_manager = CoachSessionManager(gate, generator, channel_factory=channel_factory)
    fastapi_app.state.video_poller = LongRunningJobPoller(gate, poll_interval=0, sleep=AsyncMock())

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()
