"""Persistent (SQLAlchemy) and transient (export) data models."""

from chatrecall.models.db import (
    IMPORTED_MODEL_LABEL,
    Attachment,
    AttachmentKind,
    Base,
    Conversation,
    Message,
    MessageRole,
)
from chatrecall.models.export import (
    ExportConversation,
    ExportMessage,
    ExportNode,
    ExtractedMessage,
)

__all__ = [
    "IMPORTED_MODEL_LABEL",
    "Attachment",
    "AttachmentKind",
    "Base",
    "Conversation",
    "ExportConversation",
    "ExportMessage",
    "ExportNode",
    "ExtractedMessage",
    "Message",
    "MessageRole",
]
