from aiforge.models.chat_history import ChatHistory
from aiforge.models.user_credential import UserCredential

__all__ = [
    "ChatHistory",
    "UserCredential",
]
