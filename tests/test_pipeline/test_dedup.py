"""Tests for the dedup engine."""

import uuid
from datetime import UTC, datetime

from chatrecall.db.repositories import ConversationKey
from chatrecall.models.db import Attachment, AttachmentKind, Conversation, Message, MessageRole
from chatrecall.pipeline.dedup import (
    DedupIndex,
    find_existing_conversation,
    make_import_source_id,
    merge_missing_attachments,
)

BASE_TS = 1700000000.0


def _at(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=UTC)


def _key(title, ts, source_id=None, id=None):
    return ConversationKey(
        id=id or uuid.uuid4(), title=title, created_at=_at(ts), import_source_id=source_id
    )


class TestImportSourceId:
    def test_deterministic(self):
        assert make_import_source_id(BASE_TS) == make_import_source_id(BASE_TS)

    def test_format(self):
        assert make_import_source_id(1700000000.25) == "chatgpt:1700000000.25"
        assert make_import_source_id(1700000000) == "chatgpt:1700000000.0"


class TestDedupIndex:
    """Tests for in-memory lookups."""

    def test_match_by_source_id(self):
        key = _key("Anything", BASE_TS, make_import_source_id(BASE_TS))
        index = DedupIndex([key], tolerance_seconds=2.0)

        match = index.find(make_import_source_id(BASE_TS), "Renamed", _at(BASE_TS + 500))

        assert match.conversation_id == key.id
        assert match.matched_by == "source_id"
        assert not match.needs_backfill

    def test_title_and_time_fallback_within_tolerance(self):
        """Two 'Trip Planning' records 2.0 s apart are the same conversation."""
        legacy = _key("Trip Planning", BASE_TS)
        index = DedupIndex([legacy], tolerance_seconds=2.0)

        match = index.find(
            make_import_source_id(BASE_TS + 2.0), "Trip Planning", _at(BASE_TS + 2.0)
        )

        assert match is not None
        assert match.conversation_id == legacy.id
        assert match.matched_by == "title_time"
        assert match.needs_backfill

    def test_fallback_matches_record_that_already_has_source_id(self):
        backfilled = _key("Trip Planning", BASE_TS, make_import_source_id(BASE_TS))
        index = DedupIndex([backfilled], tolerance_seconds=2.0)

        match = index.find(
            make_import_source_id(BASE_TS + 2.0), "Trip Planning", _at(BASE_TS + 2.0)
        )

        assert match.conversation_id == backfilled.id
        assert not match.needs_backfill

    def test_outside_tolerance_no_match(self):
        index = DedupIndex([_key("Trip Planning", BASE_TS)], tolerance_seconds=2.0)

        assert index.find("chatgpt:x", "Trip Planning", _at(BASE_TS + 2.5)) is None

    def test_title_must_match_exactly(self):
        index = DedupIndex([_key("Trip Planning", BASE_TS)], tolerance_seconds=2.0)

        assert index.find("chatgpt:x", "trip planning", _at(BASE_TS)) is None

    def test_closest_candidate_wins(self):
        far = _key("Notes", BASE_TS - 1.5)
        near = _key("Notes", BASE_TS + 0.5)
        index = DedupIndex([far, near], tolerance_seconds=2.0)

        assert index.find("chatgpt:x", "Notes", _at(BASE_TS)).conversation_id == near.id

    def test_added_conversations_are_found(self):
        index = DedupIndex([], tolerance_seconds=2.0)
        new_id = uuid.uuid4()
        index.add(new_id, "Fresh", _at(BASE_TS), make_import_source_id(BASE_TS))

        assert len(index) == 1
        assert index.find(make_import_source_id(BASE_TS), "Fresh", _at(BASE_TS)).conversation_id == new_id

    def test_naive_datetimes_are_treated_as_utc(self):
        naive = ConversationKey(
            id=uuid.uuid4(),
            title="Naive",
            created_at=_at(BASE_TS).replace(tzinfo=None),
            import_source_id=None,
        )
        index = DedupIndex([naive], tolerance_seconds=2.0)

        assert index.find("chatgpt:x", "Naive", _at(BASE_TS + 1.0)) is not None


class TestFindExistingConversation:
    """Tests for store lookups with backfill."""

    def _store(self, db_session, title, ts, source_id=None):
        conversation = Conversation(
            title=title, created_at=_at(ts), updated_at=_at(ts), import_source_id=source_id
        )
        db_session.add(conversation)
        db_session.flush()
        return conversation

    def test_backfills_missing_source_id(self, db_session):
        legacy = self._store(db_session, "Trip Planning", BASE_TS)
        index = DedupIndex.from_session(db_session, tolerance_seconds=2.0)
        source_id = make_import_source_id(BASE_TS + 2.0)

        found = find_existing_conversation(
            db_session, index, source_id, "Trip Planning", _at(BASE_TS + 2.0)
        )

        assert found.id == legacy.id
        assert found.import_source_id == source_id
        assert not index.has_source_id(source_id)

        index.record_backfill(legacy.id, source_id)

        # Subsequent lookups match directly on the id
        assert index.find(source_id, "Other", _at(0)).matched_by == "source_id"

    def test_never_overwrites_existing_source_id(self, db_session):
        original = make_import_source_id(BASE_TS)
        stored = self._store(db_session, "Trip Planning", BASE_TS, original)
        index = DedupIndex.from_session(db_session, tolerance_seconds=2.0)

        found = find_existing_conversation(
            db_session,
            index,
            make_import_source_id(BASE_TS + 1.0),
            "Trip Planning",
            _at(BASE_TS + 1.0),
        )

        assert found.id == stored.id
        assert found.import_source_id == original

    def test_no_match(self, db_session):
        self._store(db_session, "Something", BASE_TS)
        index = DedupIndex.from_session(db_session, tolerance_seconds=2.0)

        assert (
            find_existing_conversation(db_session, index, "chatgpt:1.0", "Else", _at(BASE_TS))
            is None
        )


class TestMergeMissingAttachments:
    def _attachment(self, filename):
        return Attachment(
            kind=AttachmentKind.IMAGE, mime_type="image/png", data=b"x", filename=filename
        )

    def test_adds_only_missing_filenames(self):
        message = Message(role=MessageRole.USER, content="look", timestamp=_at(BASE_TS))
        message.attachments.append(self._attachment("a.png"))

        added = merge_missing_attachments(
            message,
            [self._attachment("a.png"), self._attachment("b.png"), self._attachment("b.png")],
        )

        assert added == 1
        assert sorted(a.filename for a in message.attachments) == ["a.png", "b.png"]
        assert message.content == "look"
