"""
SQLAlchemy database models for chatrecall.

These models represent the persistent store: conversations, their messages
(with optional embedding vectors) and message attachments.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from chatrecall.utils.timestamps import utc_now

IMPORTED_MODEL_LABEL = "ChatGPT (imported)"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class MessageRole(str, enum.Enum):
    """Role of the message author."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class AttachmentKind(str, enum.Enum):
    """Kind of binary attachment."""

    IMAGE = "image"
    DOCUMENT = "document"


class Conversation(Base):
    """Conversation record, either created interactively or imported."""

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    # Stable external identity; once set it is never cleared
    import_source_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.sequence",
    )

    @property
    def attachment_count(self) -> int:
        return sum(len(message.attachments) for message in self.messages)

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, title={self.title!r}, "
            f"import_source_id={self.import_source_id!r})>"
        )


class Message(Base):
    """Individual message within a conversation."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[MessageRole] = mapped_column(
        Enum(
            MessageRole,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # External node id from the export tree (message-level dedup)
    import_message_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Embedding vector, always produced from `content`
    embedding: Mapped[Optional[list]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    embedded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")
    attachments: Mapped[list["Attachment"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="Attachment.created_at",
    )

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, role={self.role!r}, timestamp={self.timestamp})>"
        )


class Attachment(Base):
    """Binary attachment (image or document) owned by a message."""

    __tablename__ = "attachments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[AttachmentKind] = mapped_column(
        Enum(
            AttachmentKind,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    filename: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    message: Mapped["Message"] = relationship(back_populates="attachments")

    def __repr__(self) -> str:
        return (
            f"<Attachment(id={self.id}, kind={self.kind!r}, filename={self.filename!r})>"
        )
