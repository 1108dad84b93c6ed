"""
Store maintenance for imported conversations.

Both operations are safe to run repeatedly: a second invocation finds
nothing left to do.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from chatrecall.config import settings
from chatrecall.db.repositories import ConversationRepository
from chatrecall.models.db import IMPORTED_MODEL_LABEL, Conversation, Message
from chatrecall.parsers.chatgpt_export import SOURCE_TAG
from chatrecall.pipeline.dedup import make_import_source_id
from chatrecall.utils.timestamps import to_epoch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupResult:
    duplicates_removed: int
    conversations_kept: int


def _bucket(conversation: Conversation, bucket_seconds: int) -> Tuple[str, int]:
    seconds = int(to_epoch(conversation.created_at))
    return conversation.title, (seconds // bucket_seconds) * bucket_seconds


def remove_duplicate_conversations(
    session: Session, bucket_seconds: Optional[int] = None
) -> CleanupResult:
    """
    Delete duplicate copies of conversations.

    Conversations are grouped by title and creation time rounded down to a
    small bucket.  In each group the copy with the most attachments, then the
    most messages, is kept; the others are deleted with their messages.  The
    kept copy gets a source id and message ids backfilled where missing so
    later imports match it directly.

    Returns:
        CleanupResult with the number removed and the number of conversations kept
    """
    bucket_seconds = bucket_seconds or settings.dedup_bucket_seconds
    repo = ConversationRepository(session)

    groups: Dict[Tuple[str, int], List[Conversation]] = defaultdict(list)
    for conversation in repo.list_by_created():
        groups[_bucket(conversation, bucket_seconds)].append(conversation)

    removed = 0
    kept = 0
    for (title, _), members in groups.items():
        if len(members) < 2:
            kept += 1
            continue

        best = max(
            members,
            key=lambda c: (c.attachment_count, len(c.messages)),
        )
        for conversation in members:
            if conversation is not best:
                repo.delete(conversation)
                removed += 1

        if best.import_source_id is None:
            best.import_source_id = make_import_source_id(to_epoch(best.created_at))
        for message in best.messages:
            if message.import_message_id is None:
                message.import_message_id = str(message.id)

        kept += 1
        logger.debug(f"Kept one of {len(members)} copies of '{title}'")

    session.flush()
    logger.info(f"Removed {removed} duplicate conversations, kept {kept}")
    return CleanupResult(duplicates_removed=removed, conversations_kept=kept)


def remove_all_imported_conversations(session: Session) -> int:
    """
    Delete every conversation that came from an export import.

    Imported conversations carry a ``chatgpt:`` source id; older imports are
    recognized by their ``ChatGPT (imported)`` assistant messages.

    Returns:
        Number of conversations deleted
    """
    legacy = select(Message.conversation_id).where(
        Message.model_used == IMPORTED_MODEL_LABEL
    )
    stmt = select(Conversation).where(
        or_(
            Conversation.import_source_id.like(f"{SOURCE_TAG}:%"),
            Conversation.id.in_(legacy),
        )
    )

    repo = ConversationRepository(session)
    conversations = list(session.scalars(stmt))
    for conversation in conversations:
        repo.delete(conversation)
    session.flush()

    logger.info(f"Removed {len(conversations)} imported conversations")
    return len(conversations)
