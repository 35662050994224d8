"""Tests for the process-wide Gemini credential gate."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import TestSessionLocal

from aiforge.services.generation.credentials import INVALID_KEY_MESSAGE, MISSING_KEY_MESSAGE, CredentialGate
from aiforge.services.generation.exceptions import GeminiConfigurationError
from aiforge.services.generation.history import SqlCredentialStore
from aiforge.services.generation.models import CredentialState

CLIENT_PATH = "aiforge.services.generation.credentials.genai.Client"


class MemoryStore:
    def __init__(self, key: str | None = None) -> None:
        self.key = key
        self.saved: list[str] = []

    def load(self) -> str | None:
        return self.key

    def save(self, api_key: str) -> None:
        self.saved.append(api_key)
        self.key = api_key


def _client(probe_error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(side_effect=probe_error)
    return client


class TestInitialize:
    def test_starts_uninitialized(self):
        gate = CredentialGate()
        assert gate.state == CredentialState.UNINITIALIZED
        assert gate.is_ready is False
        assert gate.is_initializing is False

    @pytest.mark.asyncio
    async def test_supplied_key_validated_and_stored(self):
        client = _client()
        store = MemoryStore()
        gate = CredentialGate()

        with patch(CLIENT_PATH, return_value=client) as client_cls:
            assert await gate.initialize(api_key="  user-key  ", store=store) is True

        client_cls.assert_called_once_with(api_key="user-key")
        probe = client.aio.models.generate_content.call_args.kwargs
        assert probe["model"] == "gemini-2.5-flash"
        assert gate.state == CredentialState.READY
        assert gate.client is client
        assert gate.api_key == "user-key"
        assert gate.error == ""
        assert store.saved == ["user-key"]

    @pytest.mark.asyncio
    async def test_invalid_key_records_error(self):
        store = MemoryStore()
        gate = CredentialGate()

        with patch(CLIENT_PATH, return_value=_client(RuntimeError("API key not valid"))):
            assert await gate.initialize(api_key="bad", store=store) is False

        assert gate.state == CredentialState.UNINITIALIZED
        assert gate.error == INVALID_KEY_MESSAGE
        assert store.saved == []
        with pytest.raises(GeminiConfigurationError, match="Invalid API Key"):
            gate.require_ready()

    @pytest.mark.asyncio
    async def test_no_key_available(self):
        gate = CredentialGate()
        with patch(CLIENT_PATH) as client_cls:
            assert await gate.initialize() is False
        client_cls.assert_not_called()
        assert gate.error == MISSING_KEY_MESSAGE

    @pytest.mark.asyncio
    async def test_discovers_configured_key_before_store(self):
        store = MemoryStore("stored-key")
        gate = CredentialGate(default_api_key="env-key")

        with patch(CLIENT_PATH, return_value=_client()) as client_cls:
            assert await gate.initialize(store=store) is True

        client_cls.assert_called_once_with(api_key="env-key")
        assert store.saved == []

    @pytest.mark.asyncio
    async def test_discovers_stored_key(self):
        gate = CredentialGate()
        with patch(CLIENT_PATH, return_value=_client()) as client_cls:
            assert await gate.initialize(store=MemoryStore("stored-key")) is True
        client_cls.assert_called_once_with(api_key="stored-key")


    @pytest.mark.asyncio
    async def test_rejected_key_keeps_ready_credential(self, gate, genai_client):
        store = MemoryStore()
        with patch(CLIENT_PATH, return_value=_client(RuntimeError("API key not valid"))):
            assert await gate.initialize(api_key="bad-key", store=store) is False

        assert gate.state == CredentialState.READY
        assert gate.client is genai_client
        assert gate.api_key == "test-key"
        assert gate.error == INVALID_KEY_MESSAGE
        assert store.saved == []


class TestAutoInitialize:
    @pytest.mark.asyncio
    async def test_noop_when_ready(self, gate):
        with patch(CLIENT_PATH) as client_cls:
            assert await gate.attempt_auto_initialize() is True
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_initializes_from_configuration(self):
        gate = CredentialGate(default_api_key="env-key")
        with patch(CLIENT_PATH, return_value=_client()):
            assert await gate.attempt_auto_initialize() is True
        assert gate.is_ready


class TestRevoke:
    def test_revoke_fails_fast(self, gate):
        gate.revoke()

        assert gate.state == CredentialState.REVOKED
        with pytest.raises(GeminiConfigurationError):
            _ = gate.client
        with pytest.raises(GeminiConfigurationError):
            _ = gate.api_key

    @pytest.mark.asyncio
    async def test_revoked_gate_not_auto_initialized(self, gate):
        gate.revoke()
        with patch(CLIENT_PATH) as client_cls:
            assert await gate.attempt_auto_initialize() is False
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_explicit_key_after_revoke(self, gate):
        gate.revoke()
        with patch(CLIENT_PATH, return_value=_client()):
            assert await gate.initialize(api_key="new-key") is True
        assert gate.state == CredentialState.READY

    @pytest.mark.asyncio
    async def test_failed_key_after_revoke_stays_revoked(self, gate):
        gate.revoke()
        with patch(CLIENT_PATH, return_value=_client(RuntimeError("bad"))):
            assert await gate.initialize(api_key="bad-key") is False
        assert gate.state == CredentialState.REVOKED
        assert gate.error == INVALID_KEY_MESSAGE


class TestSqlCredentialStore:
    def test_save_and_load(self):
        store = SqlCredentialStore(TestSessionLocal, "user-1")
        assert store.load() is None

        store.save("key-1")
        store.save("key-2")

        assert store.load() == "key-2"
        assert SqlCredentialStore(TestSessionLocal, "user-2").load() is None
