"""Persistence adapters for chat history and user-supplied credentials.

Both stores take a database session factory and open a short-lived session
per call so no connection is held across a streamed response.
"""

import logging
from collections.abc import Callable
from typing import Protocol

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from aiforge.models.chat_history import ChatHistory
from aiforge.models.user_credential import UserCredential
from aiforge.services.generation.models import Turn

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def history_storage_key(user_id: str) -> str:
    return f"chatHistory_{user_id}"


def serialize_turns(turns: list[Turn]) -> list[dict]:
    return [turn.model_dump(mode="json") for turn in turns]


def deserialize_turns(data: list[dict]) -> list[Turn]:
    return [Turn.model_validate(item) for item in data]


class HistoryStore(Protocol):
    """Key-value store for persisted turn lists."""

    def load(self, key: str) -> list[Turn]: ...

    def save(self, key: str, turns: list[Turn]) -> None: ...

    def clear(self, key: str) -> None: ...


class SqlHistoryStore:
    """HistoryStore backed by the chat_histories table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def load(self, key: str) -> list[Turn]:
        db = self._session_factory()
        try:
            row = db.execute(select(ChatHistory).where(ChatHistory.storage_key == key)).scalar_one_or_none()
            if row is None:
                return []
            try:
                return deserialize_turns(row.turns or [])
            except ValidationError as exc:
                # Corrupt history falls back to an empty conversation
                logger.error("Failed to parse chat history %s: %s", key, exc)
                return []
        finally:
            db.close()

    def save(self, key: str, turns: list[Turn]) -> None:
        db = self._session_factory()
        try:
            row = db.execute(select(ChatHistory).where(ChatHistory.storage_key == key)).scalar_one_or_none()
            if row is None:
                row = ChatHistory(storage_key=key, turns=serialize_turns(turns))
                db.add(row)
            else:
                row.turns = serialize_turns(turns)
            db.commit()
        finally:
            db.close()

    def clear(self, key: str) -> None:
        db = self._session_factory()
        try:
            row = db.execute(select(ChatHistory).where(ChatHistory.storage_key == key)).scalar_one_or_none()
            if row is not None:
                db.delete(row)
                db.commit()
        finally:
            db.close()


class SqlCredentialStore:
    """CredentialStore for one user, backed by the user_credentials table."""

    def __init__(self, session_factory: SessionFactory, user_id: str) -> None:
        self._session_factory = session_factory
        self._user_id = user_id

    def load(self) -> str | None:
        db = self._session_factory()
        try:
            row = db.execute(
                select(UserCredential).where(UserCredential.user_id == self._user_id)
            ).scalar_one_or_none()
            return row.api_key if row is not None else None
        finally:
            db.close()

    def save(self, api_key: str) -> None:
        db = self._session_factory()
        try:
            row = db.execute(
                select(UserCredential).where(UserCredential.user_id == self._user_id)
            ).scalar_one_or_none()
            if row is None:
                db.add(UserCredential(user_id=self._user_id, api_key=api_key))
            else:
                row.api_key = api_key
            db.commit()
            logger.info("Stored Gemini credential for user %s", self._user_id)
        finally:
            db.close()
