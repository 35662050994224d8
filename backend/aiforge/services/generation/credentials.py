"""Process-wide Gemini credential gate.

Holds the single API key and SDK client shared by every generation
component. Components call ``require_ready()`` (or read ``client``) before
any network I/O, so a missing or revoked credential fails fast with a
GeminiConfigurationError instead of a remote error.
"""

import asyncio
import logging
from typing import Protocol

from google import genai

from aiforge.services.generation.exceptions import GeminiConfigurationError
from aiforge.services.generation.models import CredentialState

logger = logging.getLogger(__name__)

INVALID_KEY_MESSAGE = "Invalid API Key or network error."
MISSING_KEY_MESSAGE = "API Key not available."


class CredentialStore(Protocol):
    """Persistence endpoint for a user-supplied credential."""

    def load(self) -> str | None: ...

    def save(self, api_key: str) -> None: ...


class CredentialGate:
    """Explicit holder for the Gemini credential and its lifecycle.

    Usage::

        gate = CredentialGate(default_api_key=settings.GEMINI_API_KEY)
        await gate.attempt_auto_initialize()
        if gate.is_ready:
            response = await gate.client.aio.models.generate_content(...)
    """

    def __init__(self, default_api_key: str = "", probe_model: str = "gemini-2.5-flash") -> None:
        self._default_api_key = default_api_key.strip()
        self._probe_model = probe_model
        self._state = CredentialState.UNINITIALIZED
        self._api_key: str | None = None
        self._client: genai.Client | None = None
        self._error = ""
        self._initializing = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CredentialState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == CredentialState.READY

    @property
    def is_initializing(self) -> bool:
        return self._initializing

    @property
    def error(self) -> str:
        return self._error

    @property
    def client(self) -> genai.Client:
        self.require_ready()
        return self._client

    @property
    def api_key(self) -> str:
        self.require_ready()
        return self._api_key

    def require_ready(self) -> None:
        """Raise GeminiConfigurationError unless the gate is READY."""
        if self._state != CredentialState.READY or self._client is None:
            detail = self._error or "AI service is not configured. Please set your API key."
            raise GeminiConfigurationError(detail)

    async def initialize(self, api_key: str | None = None, store: CredentialStore | None = None) -> bool:
        """Validate a credential and make it the process-wide one.

        Args:
            api_key: A user-supplied key. When omitted, the key is discovered
                from configuration, then from ``store``.
            store: Credential persistence endpoint. A user-supplied key is
                saved there once it validates.

        Returns:
            True when the key validated. A rejected key leaves an already
            READY credential in place.
        """
        provided = (api_key or "").strip()
        async with self._lock:
            self._initializing = True
            try:
                key = provided or self._discover(store)
                if not key:
                    self._mark_failed(MISSING_KEY_MESSAGE)
                    return False

                candidate = genai.Client(api_key=key)
                try:
                    await candidate.aio.models.generate_content(model=self._probe_model, contents="hi")
                except Exception as exc:
                    logger.warning("Gemini credential probe failed: %s", exc)
                    self._mark_failed(INVALID_KEY_MESSAGE)
                    return False

                self._client = candidate
                self._api_key = key
                self._state = CredentialState.READY
                self._error = ""

                if provided and store is not None:
                    store.save(provided)

                logger.info("Gemini credential initialized (source=%s)", "user" if provided else "discovered")
                return True
            finally:
                self._initializing = False

    async def attempt_auto_initialize(self, store: CredentialStore | None = None) -> bool:
        """Initialize from discovered credentials unless already READY.

        A revoked gate stays revoked until a key is supplied explicitly.
        """
        if self.is_ready:
            return True
        if self._state == CredentialState.REVOKED:
            return False
        return await self.initialize(store=store)

    def revoke(self) -> None:
        """Drop the credential; every component fails fast until reconfigured."""
        self._client = None
        self._api_key = None
        self._state = CredentialState.REVOKED
        self._error = "API key was revoked."
        logger.info("Gemini credential revoked")

    def _discover(self, store: CredentialStore | None) -> str | None:
        if self._default_api_key:
            return self._default_api_key
        if store is not None:
            stored = store.load()
            if stored:
                return stored.strip()
        return None

    def _mark_failed(self, message: str) -> None:
        self._error = message
        if self._state == CredentialState.READY:
            # A working credential survives a rejected replacement
            return
        self._client = None
        self._api_key = None
        if self._state != CredentialState.REVOKED:
            self._state = CredentialState.UNINITIALIZED
