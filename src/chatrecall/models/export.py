"""
Export archive data models.

Pydantic schemas model the nested JSON inside a chat-history export's
``conversations.json``; plain dataclasses carry the linearized output of
the path extractor.  Neither is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

CLIENT_CREATED_ROOT = "client-created-root"


class ExportAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str


class ExportContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content_type: str = "text"
    parts: Optional[list[Any]] = None


class ExportMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_visually_hidden_from_conversation: bool = False


class ExportMessage(BaseModel):
    """Message payload of an export tree node."""

    model_config = ConfigDict(extra="ignore")

    id: str
    author: ExportAuthor
    create_time: Optional[float] = None
    content: ExportContent = Field(default_factory=ExportContent)
    metadata: Optional[ExportMetadata] = None

    @property
    def is_hidden(self) -> bool:
        return bool(self.metadata and self.metadata.is_visually_hidden_from_conversation)


class ExportNode(BaseModel):
    """Node in the conversation tree (message + parent/children pointers by id)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    message: Optional[ExportMessage] = None
    parent: Optional[str] = None
    children: list[str] = Field(default_factory=list)


class ExportConversation(BaseModel):
    """Root conversation object from an export."""

    model_config = ConfigDict(extra="ignore")

    title: str = "Untitled"
    create_time: float
    update_time: Optional[float] = None
    mapping: dict[str, ExportNode] = Field(default_factory=dict)

    @property
    def effective_update_time(self) -> float:
        return self.update_time if self.update_time is not None else self.create_time


@dataclass
class ExtractedMessage:
    """A message on the main branch, flattened from the export tree."""

    id: str
    role: str  # 'user' or 'assistant'
    content: str
    create_time: Optional[float] = None
    image_file_ids: list[str] = field(default_factory=list)
