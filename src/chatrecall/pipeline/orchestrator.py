"""
Import orchestrator for chat history exports.

Drives parsing, main-branch extraction, asset resolution, deduplication and
persistence for a whole export, in source order.  Each conversation is
persisted inside its own SAVEPOINT so that a failure rolls back only that
conversation; the run itself always produces an ``ImportResult``.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from chatrecall.config import settings
from chatrecall.exceptions import ImportAbortedError
from chatrecall.models.db import (
    IMPORTED_MODEL_LABEL,
    Attachment,
    Conversation,
    Message,
    MessageRole,
)
from chatrecall.models.export import ExportConversation, ExtractedMessage
from chatrecall.parsers.base import ParseDataError, ParseFormatError
from chatrecall.parsers.chatgpt_export import load_export, parse_conversation, raw_title
from chatrecall.parsers.path_extractor import extract_main_branch
from chatrecall.pipeline.archive import extracted_archive, find_conversations_json
from chatrecall.pipeline.assets import AssetIndex, ResolvedAsset, load_attachment
from chatrecall.pipeline.dedup import (
    DedupIndex,
    find_existing_conversation,
    find_existing_message,
    make_import_source_id,
    merge_missing_attachments,
)
from chatrecall.utils.timestamps import from_epoch, utc_now

if TYPE_CHECKING:
    from chatrecall.embeddings.scheduler import EmbeddingScheduler

logger = logging.getLogger(__name__)


class ImportPhase(str, enum.Enum):
    """Phase of an import run."""

    PARSING = "parsing"
    IMPORTING = "importing"
    EMBEDDING = "embedding"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ImportProgress:
    """Snapshot delivered to the progress callback."""

    total: int
    processed: int
    current_title: str
    phase: ImportPhase


ProgressCallback = Callable[[ImportProgress], None]


@dataclass
class ImportResult:
    """Summary of an import run."""

    conversations_imported: int = 0
    conversations_updated: int = 0
    conversations_skipped: int = 0  # already stored, nothing new to add
    conversations_empty: int = 0  # nothing left after extraction
    messages_imported: int = 0
    messages_updated: int = 0
    images_imported: int = 0
    errors: List[str] = field(default_factory=list)
    unresolved_assets: List[Tuple[str, str]] = field(default_factory=list)
    queued_message_ids: List[uuid.UUID] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


@dataclass
class _Outcome:
    """Effect of one conversation, applied to the result once it is persisted."""

    status: str  # 'created', 'updated', 'skipped' or 'empty'
    conversation: Optional[Conversation] = None
    messages_imported: int = 0
    messages_updated: int = 0
    images_imported: int = 0
    unresolved_assets: List[Tuple[str, str]] = field(default_factory=list)
    queued_message_ids: List[uuid.UUID] = field(default_factory=list)
    backfilled_source_id: Optional[str] = None


class ConversationImporter:
    """
    Import chat history exports into the store.

    Args:
        session: Session owning all record mutation for the run
        progress_callback: Called after every conversation and at phase changes
        embedding_scheduler: Background scheduler that embeds newly imported
            assistant messages when ``generate_embeddings`` is requested
        batch_size: Conversations per commit
        tolerance_seconds: Creation-time window for the title+time dedup fallback
    """

    def __init__(
        self,
        session: Session,
        progress_callback: Optional[ProgressCallback] = None,
        embedding_scheduler: Optional["EmbeddingScheduler"] = None,
        batch_size: Optional[int] = None,
        tolerance_seconds: Optional[float] = None,
    ):
        self.session = session
        self.progress_callback = progress_callback
        self.embedding_scheduler = embedding_scheduler
        self.batch_size = batch_size or settings.import_batch_size
        self.tolerance_seconds = tolerance_seconds

    def import_file(self, path: Path, generate_embeddings: bool = False) -> ImportResult:
        """
        Import a bare ``conversations.json``.

        No assets are available, so a conversation that is already stored is
        always skipped.

        Raises:
            ImportAbortedError: If the document cannot be decoded
        """
        self._report(0, 0, "", ImportPhase.PARSING)
        try:
            raw_conversations = load_export(path)
        except ParseFormatError as e:
            logger.error(f"Failed to parse {path}: {e}")
            raise ImportAbortedError(str(path), str(e)) from e

        logger.info(f"Parsed {len(raw_conversations)} conversations from {path}")
        return self.import_conversations(
            raw_conversations, generate_embeddings=generate_embeddings
        )

    def import_archive(
        self, path: Path, generate_embeddings: bool = False
    ) -> ImportResult:
        """
        Import a zip export with its image assets.

        Re-importing an archive adds images that are missing from messages
        imported earlier.  The extraction directory is removed afterwards.

        Raises:
            ImportAbortedError: If the archive or its document is unusable
        """
        self._report(0, 0, "", ImportPhase.PARSING)
        try:
            with extracted_archive(path) as root:
                raw_conversations = load_export(find_conversations_json(root))
                logger.info(
                    f"Parsed {len(raw_conversations)} conversations from {path}"
                )
                asset_index = AssetIndex.build(root)
                return self.import_conversations(
                    raw_conversations,
                    asset_index=asset_index,
                    generate_embeddings=generate_embeddings,
                )
        except ParseFormatError as e:
            logger.error(f"Failed to parse {path}: {e}")
            raise ImportAbortedError(str(path), str(e)) from e

    def import_conversations(
        self,
        raw_conversations: Sequence[dict[str, Any]],
        asset_index: Optional[AssetIndex] = None,
        generate_embeddings: bool = False,
    ) -> ImportResult:
        """
        Import already-decoded conversation objects in source order.

        Args:
            raw_conversations: Raw conversation dicts from ``load_export``
            asset_index: Image files to resolve references against (None when
                the export carries no assets)
            generate_embeddings: Queue new assistant messages for embedding

        Returns:
            ImportResult, produced even when some conversations failed
        """
        result = ImportResult()
        total = len(raw_conversations)
        index = DedupIndex.from_session(
            self.session, tolerance_seconds=self.tolerance_seconds
        )

        for position, raw in enumerate(raw_conversations):
            title = raw_title(raw)
            try:
                exported = parse_conversation(raw)
                title = exported.title
                with self.session.begin_nested():
                    outcome = self._import_one(exported, index, asset_index)
            except ParseDataError as e:
                result.errors.append(f"Failed to import '{e.title}': {e.reason}")
                logger.warning(str(e))
            except Exception as e:
                result.errors.append(f"Failed to import '{title}': {e}")
                logger.warning(f"Failed to import conversation '{title}': {e}", exc_info=True)
            else:
                self._apply(outcome, result, index)

            processed = position + 1
            if processed % self.batch_size == 0:
                self.session.commit()
            self._report(total, processed, title, ImportPhase.IMPORTING)

        self.session.commit()

        if generate_embeddings and result.queued_message_ids:
            self._report(total, total, "", ImportPhase.EMBEDDING)
            if self.embedding_scheduler is not None:
                self.embedding_scheduler.start(result.queued_message_ids)
            else:
                logger.warning("Embeddings requested but no scheduler configured")

        self._report(total, total, "", ImportPhase.COMPLETE)
        logger.info(
            f"Import complete: {result.conversations_imported} imported, "
            f"{result.conversations_updated} updated, "
            f"{result.conversations_skipped} skipped, "
            f"{result.conversations_empty} empty, "
            f"{result.messages_imported} messages, "
            f"{result.images_imported} images, {len(result.errors)} errors"
        )
        return result

    def _import_one(
        self,
        exported: ExportConversation,
        index: DedupIndex,
        asset_index: Optional[AssetIndex],
    ) -> _Outcome:
        source_id = make_import_source_id(exported.create_time)
        created_at = from_epoch(exported.create_time) or utc_now()
        extracted = extract_main_branch(exported.mapping)

        existing = find_existing_conversation(
            self.session, index, source_id, exported.title, created_at
        )
        if existing is not None:
            if asset_index is None:
                logger.debug(f"Skipped duplicate: {exported.title}")
                outcome = _Outcome(status="skipped")
            else:
                outcome = self._update_images(existing, extracted, asset_index)
            outcome.conversation = existing
            if existing.import_source_id == source_id and not index.has_source_id(source_id):
                outcome.backfilled_source_id = source_id
            return outcome

        if not extracted:
            logger.debug(f"Skipped empty conversation: {exported.title}")
            return _Outcome(status="empty")

        return self._create(exported, extracted, source_id, created_at, asset_index)

    def _create(
        self,
        exported: ExportConversation,
        extracted: List[ExtractedMessage],
        source_id: str,
        created_at: datetime,
        asset_index: Optional[AssetIndex],
    ) -> _Outcome:
        outcome = _Outcome(status="created")
        conversation = Conversation(
            id=uuid.uuid4(),
            title=exported.title,
            created_at=created_at,
            updated_at=from_epoch(exported.effective_update_time) or created_at,
            import_source_id=source_id,
        )

        for sequence, item in enumerate(extracted):
            role = MessageRole(item.role)
            message = Message(
                id=uuid.uuid4(),
                role=role,
                content=item.content,
                timestamp=from_epoch(item.create_time) or created_at,
                sequence=sequence,
                model_used=IMPORTED_MODEL_LABEL if role == MessageRole.ASSISTANT else None,
                import_message_id=item.id,
            )
            if asset_index is not None and item.image_file_ids:
                assets = self._resolve(item.image_file_ids, asset_index, exported.title, outcome)
                outcome.images_imported += merge_missing_attachments(
                    message, self._load(assets)
                )
            conversation.messages.append(message)

            if role == MessageRole.ASSISTANT and item.content.strip():
                outcome.queued_message_ids.append(message.id)

        self.session.add(conversation)
        self.session.flush()

        outcome.conversation = conversation
        outcome.messages_imported = len(extracted)
        logger.debug(
            f"Imported: {exported.title} with {len(extracted)} messages, "
            f"{outcome.images_imported} images"
        )
        return outcome

    def _update_images(
        self,
        existing: Conversation,
        extracted: List[ExtractedMessage],
        asset_index: AssetIndex,
    ) -> _Outcome:
        """Attach images missing from already-imported messages."""
        outcome = _Outcome(status="skipped")

        for item in extracted:
            if not item.image_file_ids:
                continue
            message = find_existing_message(existing, item.id)
            if message is None:
                continue

            present = {attachment.filename or "" for attachment in message.attachments}
            assets = [
                asset
                for asset in self._resolve(item.image_file_ids, asset_index, existing.title, outcome)
                if asset.filename not in present
            ]
            added = merge_missing_attachments(message, self._load(assets))
            if added:
                outcome.messages_updated += 1
                outcome.images_imported += added

        if outcome.images_imported:
            outcome.status = "updated"
            self.session.flush()
            logger.debug(
                f"Updated: {existing.title} - added {outcome.images_imported} images "
                f"to {outcome.messages_updated} messages"
            )
        else:
            logger.debug(f"Skipped duplicate: {existing.title} (no new images)")
        return outcome

    def _resolve(
        self,
        file_ids: List[str],
        asset_index: AssetIndex,
        title: str,
        outcome: _Outcome,
    ) -> List[ResolvedAsset]:
        resolved = []
        for file_id in file_ids:
            asset = asset_index.resolve(file_id)
            if asset is None:
                logger.debug(f"Could not resolve image {file_id} in '{title}'")
                outcome.unresolved_assets.append((title, file_id))
                continue
            resolved.append(asset)
        return resolved

    def _load(self, assets: List[ResolvedAsset]) -> List[Attachment]:
        attachments = []
        for asset in assets:
            attachment = load_attachment(asset)
            if attachment is not None:
                attachments.append(attachment)
        return attachments

    def _apply(
        self,
        outcome: _Outcome,
        result: ImportResult,
        index: DedupIndex,
    ) -> None:
        if outcome.status == "created":
            result.conversations_imported += 1
            conversation = outcome.conversation
            index.add(
                conversation.id,
                conversation.title,
                conversation.created_at,
                conversation.import_source_id,
            )
        elif outcome.status == "updated":
            result.conversations_updated += 1
        elif outcome.status == "empty":
            result.conversations_empty += 1
        else:
            result.conversations_skipped += 1

        if outcome.backfilled_source_id is not None:
            index.record_backfill(outcome.conversation.id, outcome.backfilled_source_id)

        result.messages_imported += outcome.messages_imported
        result.messages_updated += outcome.messages_updated
        result.images_imported += outcome.images_imported
        result.unresolved_assets.extend(outcome.unresolved_assets)
        result.queued_message_ids.extend(outcome.queued_message_ids)

    def _report(
        self, total: int, processed: int, title: str, phase: ImportPhase
    ) -> None:
        if self.progress_callback is not None:
            self.progress_callback(
                ImportProgress(
                    total=total, processed=processed, current_title=title, phase=phase
                )
            )
