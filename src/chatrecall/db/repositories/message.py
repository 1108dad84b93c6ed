"""
Message repository.
"""

import uuid
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from chatrecall.db.repositories.base import BaseRepository
from chatrecall.models.db import Message, MessageRole


class MessageRepository(BaseRepository[Message]):
    """Repository for Message model."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def list_embedded(
        self,
        exclude_conversation_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        """
        Get messages that carry an embedding, most recent first.

        Args:
            exclude_conversation_id: Conversation to leave out (the current one)
            limit: Maximum number of messages to fetch

        Returns:
            List of messages with their conversation loaded
        """
        stmt = (
            select(Message)
            .options(joinedload(Message.conversation))
            .where(Message.embedding.is_not(None))
            .order_by(Message.timestamp.desc())
        )
        if exclude_conversation_id is not None:
            stmt = stmt.where(Message.conversation_id != exclude_conversation_id)
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    def pending_embedding_ids(
        self, conversation_ids: Optional[Iterable[uuid.UUID]] = None
    ) -> List[uuid.UUID]:
        """
        Get ids of assistant messages with text and no embedding yet.

        Args:
            conversation_ids: Restrict to these conversations (all if None)

        Returns:
            Message ids ordered by timestamp
        """
        stmt = (
            select(Message.id)
            .where(
                Message.role == MessageRole.ASSISTANT,
                Message.embedding.is_(None),
                Message.content != "",
            )
            .order_by(Message.timestamp.asc())
        )
        if conversation_ids is not None:
            stmt = stmt.where(Message.conversation_id.in_(list(conversation_ids)))
        return list(self.session.scalars(stmt))
