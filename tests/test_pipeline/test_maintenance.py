"""Tests for duplicate cleanup and removal of imported conversations."""

from sqlalchemy import func, select

from chatrecall.models.db import (
    IMPORTED_MODEL_LABEL,
    Attachment,
    AttachmentKind,
    Conversation,
    Message,
    MessageRole,
)
from chatrecall.pipeline import (
    remove_all_imported_conversations,
    remove_duplicate_conversations,
)
from chatrecall.pipeline.dedup import make_import_source_id
from chatrecall.utils.timestamps import from_epoch

BASE_TS = 1700000000.0


def _conversation(session, title, ts, messages=1, images=0, source_id=None, model_used=None):
    conversation = Conversation(
        title=title,
        created_at=from_epoch(ts),
        updated_at=from_epoch(ts),
        import_source_id=source_id,
    )
    for i in range(messages):
        message = Message(
            role=MessageRole.ASSISTANT,
            content=f"message {i}",
            timestamp=from_epoch(ts + i),
            sequence=i,
            model_used=model_used,
        )
        if i == 0:
            for j in range(images):
                message.attachments.append(
                    Attachment(
                        kind=AttachmentKind.IMAGE,
                        mime_type="image/png",
                        data=b"x",
                        filename=f"img{j}.png",
                    )
                )
        conversation.messages.append(message)
    session.add(conversation)
    session.flush()
    return conversation


def _titles(session):
    return sorted(session.scalars(select(Conversation.title)))


class TestRemoveDuplicateConversations:
    def test_keeps_copy_with_most_attachments(self, db_session):
        _conversation(db_session, "Trip", BASE_TS, messages=5)
        with_images = _conversation(db_session, "Trip", BASE_TS + 0.5, messages=2, images=1)

        result = remove_duplicate_conversations(db_session, bucket_seconds=2)

        assert result.duplicates_removed == 1
        assert result.conversations_kept == 1
        remaining = db_session.scalars(select(Conversation)).one()
        assert remaining.id == with_images.id

    def test_message_count_breaks_attachment_tie(self, db_session):
        _conversation(db_session, "Trip", BASE_TS, messages=1)
        longer = _conversation(db_session, "Trip", BASE_TS + 1, messages=3)

        remove_duplicate_conversations(db_session, bucket_seconds=2)

        assert db_session.scalars(select(Conversation)).one().id == longer.id

    def test_backfills_identity_on_kept_copy(self, db_session):
        _conversation(db_session, "Trip", BASE_TS, messages=1)
        kept = _conversation(db_session, "Trip", BASE_TS, messages=2)

        remove_duplicate_conversations(db_session, bucket_seconds=2)

        assert kept.import_source_id == make_import_source_id(BASE_TS)
        assert [m.import_message_id for m in kept.messages] == [str(m.id) for m in kept.messages]

    def test_cascade_deletes_messages(self, db_session):
        _conversation(db_session, "Trip", BASE_TS, messages=2)
        _conversation(db_session, "Trip", BASE_TS, messages=3, images=1)

        remove_duplicate_conversations(db_session, bucket_seconds=2)

        assert db_session.scalar(select(func.count()).select_from(Message)) == 3
        assert db_session.scalar(select(func.count()).select_from(Attachment)) == 1

    def test_distinct_titles_and_buckets_untouched(self, db_session):
        _conversation(db_session, "Trip", BASE_TS)
        _conversation(db_session, "Recipes", BASE_TS)
        _conversation(db_session, "Trip", BASE_TS + 100)

        result = remove_duplicate_conversations(db_session, bucket_seconds=2)

        assert result.duplicates_removed == 0
        assert result.conversations_kept == 3
        assert _titles(db_session) == ["Recipes", "Trip", "Trip"]

    def test_kept_counts_every_surviving_conversation(self, db_session):
        _conversation(db_session, "Trip", BASE_TS)
        _conversation(db_session, "Trip", BASE_TS)
        _conversation(db_session, "Trip", BASE_TS)
        _conversation(db_session, "Recipes", BASE_TS)
        _conversation(db_session, "Taxes", BASE_TS + 100)

        result = remove_duplicate_conversations(db_session, bucket_seconds=2)

        assert (result.duplicates_removed, result.conversations_kept) == (2, 3)
        assert _titles(db_session) == ["Recipes", "Taxes", "Trip"]

    def test_idempotent(self, db_session):
        _conversation(db_session, "Trip", BASE_TS)
        _conversation(db_session, "Trip", BASE_TS)
        remove_duplicate_conversations(db_session, bucket_seconds=2)

        again = remove_duplicate_conversations(db_session, bucket_seconds=2)

        assert again.duplicates_removed == 0
        assert _titles(db_session) == ["Trip"]


class TestRemoveAllImportedConversations:
    def test_removes_by_source_id_and_legacy_marker(self, db_session):
        _conversation(db_session, "Imported", BASE_TS, source_id=make_import_source_id(BASE_TS))
        _conversation(db_session, "Legacy", BASE_TS + 10, model_used=IMPORTED_MODEL_LABEL)
        _conversation(db_session, "Mine", BASE_TS + 20, model_used="gpt-4o")

        removed = remove_all_imported_conversations(db_session)

        assert removed == 2
        assert _titles(db_session) == ["Mine"]

    def test_idempotent(self, db_session):
        _conversation(db_session, "Imported", BASE_TS, source_id=make_import_source_id(BASE_TS))
        remove_all_imported_conversations(db_session)

        assert remove_all_imported_conversations(db_session) == 0
