import uuid
from datetime import datetime

from sqlalchemy import JSON, String, func
from sqlalchemy.orm import Mapped, mapped_column

from aiforge.core.database import Base


class ChatHistory(Base):
    """Persisted turn list for one conversation, keyed by storage key."""

    __tablename__ = "chat_histories"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    storage_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    turns: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<ChatHistory key={self.storage_key} turns={len(self.turns or [])}>"
