"""
Conversation repository.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from chatrecall.db.repositories.base import BaseRepository
from chatrecall.models.db import Conversation, Message


@dataclass(frozen=True)
class ConversationKey:
    """Plain copy of the fields the dedup engine needs from a stored conversation."""

    id: uuid.UUID
    title: str
    created_at: datetime
    import_source_id: Optional[str]


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation model."""

    def __init__(self, session: Session):
        super().__init__(Conversation, session)

    def get_with_messages(self, id: uuid.UUID) -> Optional[Conversation]:
        """Get a conversation with messages and attachments eagerly loaded."""
        stmt = (
            select(Conversation)
            .options(
                selectinload(Conversation.messages).selectinload(Message.attachments)
            )
            .where(Conversation.id == id)
        )
        return self.session.scalars(stmt).first()

    def list_recent(self, limit: Optional[int] = None) -> List[Conversation]:
        """
        Get conversations ordered by most recently updated first.

        Args:
            limit: Maximum number of results

        Returns:
            List of conversations with messages eagerly loaded
        """
        stmt = (
            select(Conversation)
            .options(selectinload(Conversation.messages))
            .order_by(Conversation.updated_at.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    def list_by_created(self) -> List[Conversation]:
        """Get all conversations ordered by creation time (oldest first)."""
        stmt = (
            select(Conversation)
            .options(
                selectinload(Conversation.messages).selectinload(Message.attachments)
            )
            .order_by(Conversation.created_at.asc())
        )
        return list(self.session.scalars(stmt))

    def dedup_keys(self) -> List[ConversationKey]:
        """Get plain identity rows for every stored conversation."""
        stmt = select(
            Conversation.id,
            Conversation.title,
            Conversation.created_at,
            Conversation.import_source_id,
        ).order_by(Conversation.created_at.asc())
        return [
            ConversationKey(
                id=row.id,
                title=row.title,
                created_at=row.created_at,
                import_source_id=row.import_source_id,
            )
            for row in self.session.execute(stmt)
        ]
