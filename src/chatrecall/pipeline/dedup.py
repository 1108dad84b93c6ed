"""
Conversation and message level deduplication for re-imports.

Stored conversations are looked up through a ``DedupIndex`` built once per
import run from plain ``ConversationKey`` rows.  The index is an explicit
value, so tests can build one from a fixed corpus without touching the
database.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from chatrecall.config import settings
from chatrecall.db.repositories import ConversationKey, ConversationRepository
from chatrecall.models.db import Attachment, Conversation, Message
from chatrecall.parsers.chatgpt_export import SOURCE_TAG
from chatrecall.utils.timestamps import to_epoch

logger = logging.getLogger(__name__)


def make_import_source_id(create_time: float, source: str = SOURCE_TAG) -> str:
    """
    Build the stable identity of an exported conversation.

    Derived only from the export's own creation timestamp, so importing the
    same source conversation twice yields the same id.
    """
    return f"{source}:{float(create_time)}"


@dataclass
class _Entry:
    id: uuid.UUID
    title: str
    created_epoch: float
    import_source_id: Optional[str]


@dataclass(frozen=True)
class DedupMatch:
    """Result of a conversation lookup."""

    conversation_id: uuid.UUID
    matched_by: str  # 'source_id' or 'title_time'
    needs_backfill: bool


class DedupIndex:
    """
    In-memory lookup of stored conversations by source id and by title.

    Args:
        keys: Identity rows of stored conversations
        tolerance_seconds: Maximum creation-time distance (inclusive) for the
            title+time fallback
    """

    def __init__(
        self,
        keys: Iterable[ConversationKey] = (),
        tolerance_seconds: Optional[float] = None,
    ):
        self.tolerance_seconds = (
            tolerance_seconds
            if tolerance_seconds is not None
            else settings.dedup_time_tolerance_seconds
        )
        self._by_source_id: Dict[str, _Entry] = {}
        self._by_title: Dict[str, List[_Entry]] = defaultdict(list)
        for key in keys:
            self.add(key.id, key.title, key.created_at, key.import_source_id)

    @classmethod
    def from_session(
        cls, session: Session, tolerance_seconds: Optional[float] = None
    ) -> "DedupIndex":
        keys = ConversationRepository(session).dedup_keys()
        logger.debug(f"Built dedup index over {len(keys)} stored conversations")
        return cls(keys, tolerance_seconds=tolerance_seconds)

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._by_title.values())

    def add(
        self,
        id: uuid.UUID,
        title: str,
        created_at: datetime,
        import_source_id: Optional[str] = None,
    ) -> None:
        """Register a conversation (stored earlier or created in this run)."""
        entry = _Entry(
            id=id,
            title=title,
            created_epoch=to_epoch(created_at),
            import_source_id=import_source_id,
        )
        self._by_title[title].append(entry)
        if import_source_id and import_source_id not in self._by_source_id:
            self._by_source_id[import_source_id] = entry

    def find(
        self, import_source_id: str, title: str, created_at: datetime
    ) -> Optional[DedupMatch]:
        """
        Find the stored conversation an exported one corresponds to.

        The source id is tried first.  Failing that, a conversation with the
        exact same title created within the tolerance window matches (closest
        creation time wins); this catches records imported before source ids
        existed.
        """
        entry = self._by_source_id.get(import_source_id)
        if entry is not None:
            return DedupMatch(entry.id, "source_id", needs_backfill=False)

        created_epoch = to_epoch(created_at)
        candidates = [
            e
            for e in self._by_title.get(title, ())
            if abs(e.created_epoch - created_epoch) <= self.tolerance_seconds
        ]
        if not candidates:
            return None

        best = min(candidates, key=lambda e: abs(e.created_epoch - created_epoch))
        return DedupMatch(
            best.id, "title_time", needs_backfill=best.import_source_id is None
        )

    def has_source_id(self, import_source_id: str) -> bool:
        return import_source_id in self._by_source_id

    def record_backfill(self, conversation_id: uuid.UUID, import_source_id: str) -> None:
        """Note that a stored conversation now carries ``import_source_id``."""
        for entries in self._by_title.values():
            for entry in entries:
                if entry.id == conversation_id and entry.import_source_id is None:
                    entry.import_source_id = import_source_id
                    self._by_source_id.setdefault(import_source_id, entry)
                    return


def find_existing_conversation(
    session: Session,
    index: DedupIndex,
    import_source_id: str,
    title: str,
    created_at: datetime,
) -> Optional[Conversation]:
    """
    Load the stored conversation matching an exported one, if any.

    When the match came from the title+time fallback and the stored record
    has no source id yet, the id is backfilled so later runs match directly.
    An existing source id is never overwritten.  The index is left alone;
    callers record the backfill with ``DedupIndex.record_backfill`` once the
    change is persisted.
    """
    match = index.find(import_source_id, title, created_at)
    if match is None:
        return None

    conversation = ConversationRepository(session).get_with_messages(
        match.conversation_id
    )
    if conversation is None:
        logger.warning(f"Dedup index references missing conversation {match.conversation_id}")
        return None

    if match.needs_backfill and conversation.import_source_id is None:
        conversation.import_source_id = import_source_id
        logger.debug(f"Backfilled import source id on '{title}'")

    return conversation


def find_existing_message(
    conversation: Conversation, import_message_id: str
) -> Optional[Message]:
    for message in conversation.messages:
        if message.import_message_id == import_message_id:
            return message
    return None


def merge_missing_attachments(
    message: Message, candidates: Sequence[Attachment]
) -> int:
    """
    Attach the candidates whose filename the message does not already have.

    Text, timestamp and existing attachments are left untouched.

    Returns:
        Number of attachments added
    """
    existing = {attachment.filename or "" for attachment in message.attachments}
    added = 0
    for attachment in candidates:
        filename = attachment.filename or ""
        if filename in existing:
            continue
        message.attachments.append(attachment)
        existing.add(filename)
        added += 1
    return added
