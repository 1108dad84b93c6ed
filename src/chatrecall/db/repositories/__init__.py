"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from chatrecall.db.repositories.base import BaseRepository
from chatrecall.db.repositories.conversation import (
    ConversationKey,
    ConversationRepository,
)
from chatrecall.db.repositories.message import MessageRepository

__all__ = [
    "BaseRepository",
    "ConversationKey",
    "ConversationRepository",
    "MessageRepository",
]
