"""
Conversation-level semantic search.

A conversation is represented by its single best-matching message: the score
is the highest similarity between the query and any of its most recent
embedded messages.
"""

import enum
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from chatrecall.config import settings
from chatrecall.db.repositories import ConversationRepository
from chatrecall.embeddings.service import EmbeddingService
from chatrecall.embeddings.similarity import cosine_similarity
from chatrecall.exceptions import EmbeddingError
from chatrecall.utils.timestamps import to_epoch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationMatch:
    conversation_id: uuid.UUID
    similarity: float


@dataclass(frozen=True)
class ConversationVectors:
    """Plain copy of a conversation's recent message embeddings."""

    id: uuid.UUID
    updated_at: float
    embeddings: List[Sequence[float]]


class SearchStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SearchHandle:
    """Tracks one submitted query."""

    query: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    status: SearchStatus = SearchStatus.PENDING
    matches: List[ConversationMatch] = field(default_factory=list)
    error: Optional[str] = None
    thread: Optional[threading.Thread] = None

    def cancel(self) -> None:
        self.cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        if self.thread is not None:
            self.thread.join(timeout)
            return not self.thread.is_alive()
        return True


SearchCallback = Callable[[SearchHandle], None]


class ConversationSearchService:
    """
    Rank conversations by semantic similarity to a query.

    ``search`` runs synchronously.  ``submit`` is the interactive entry point:
    it supersedes the previous query, waits out a debounce delay and scores on
    a worker thread over values collected beforehand.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        min_similarity: Optional[float] = None,
        max_conversations: Optional[int] = None,
        max_embeddings_per_conversation: Optional[int] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.embedding_service = embedding_service
        self.min_similarity = (
            min_similarity if min_similarity is not None else settings.search_min_similarity
        )
        self.max_conversations = max_conversations or settings.search_max_conversations
        self.max_embeddings_per_conversation = (
            max_embeddings_per_conversation
            or settings.search_max_embeddings_per_conversation
        )
        self.debounce_seconds = (
            debounce_seconds
            if debounce_seconds is not None
            else settings.search_debounce_seconds
        )
        self._lock = threading.Lock()
        self._current: Optional[SearchHandle] = None

    def collect(self, session: Session) -> List[ConversationVectors]:
        """
        Copy recent embeddings of the most recently updated conversations.

        Conversations without any embedded message are left out.
        """
        data = []
        for conversation in ConversationRepository(session).list_recent(
            limit=self.max_conversations
        ):
            recent = sorted(
                (m for m in conversation.messages if m.embedding),
                key=lambda m: to_epoch(m.timestamp),
                reverse=True,
            )[: self.max_embeddings_per_conversation]
            if not recent:
                continue
            data.append(
                ConversationVectors(
                    id=conversation.id,
                    updated_at=to_epoch(conversation.updated_at),
                    embeddings=[list(m.embedding) for m in recent],
                )
            )
        return data

    def search(
        self, session: Session, query: str, limit: int = 20
    ) -> List[ConversationMatch]:
        """Embed ``query`` and rank stored conversations against it."""
        query = query.strip()
        if not query or not self.embedding_service.is_configured:
            return []

        data = self.collect(session)
        if not data:
            return []

        query_embedding = self.embedding_service.embed(query)
        return self.score(query_embedding, data, limit=limit) or []

    def score(
        self,
        query_embedding: Sequence[float],
        data: Sequence[ConversationVectors],
        limit: int = 20,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[List[ConversationMatch]]:
        """
        Score conversations against a query vector.

        Returns:
            Top ``limit`` matches (score desc, then most recently updated), or
            None if cancelled part way
        """
        dimension = len(query_embedding)
        scored = []

        for conversation in data:
            if cancel_event is not None and cancel_event.is_set():
                return None

            best = -1.0
            for embedding in conversation.embeddings:
                if len(embedding) != dimension:
                    continue
                best = max(best, cosine_similarity(query_embedding, embedding))

            if best >= self.min_similarity:
                scored.append((best, conversation.updated_at, conversation.id))

        scored.sort(key=lambda item: (-item[0], -item[1]))
        return [
            ConversationMatch(conversation_id=conversation_id, similarity=similarity)
            for similarity, _, conversation_id in scored[:limit]
        ]

    def submit(
        self,
        query: str,
        data: Sequence[ConversationVectors],
        callback: SearchCallback,
        limit: int = 20,
    ) -> SearchHandle:
        """
        Start a debounced background search, cancelling the previous one.

        ``callback`` receives the handle once results are ready; it is not
        called for a query that was superseded or cancelled.
        """
        handle = SearchHandle(query=query.strip())
        with self._lock:
            if self._current is not None:
                self._current.cancel()
            self._current = handle

        handle.thread = threading.Thread(
            target=self._run,
            args=(handle, list(data), callback, limit),
            name="conversation-search",
            daemon=True,
        )
        handle.thread.start()
        return handle

    def cancel(self) -> None:
        with self._lock:
            if self._current is not None:
                self._current.cancel()
                self._current = None

    def _run(
        self,
        handle: SearchHandle,
        data: List[ConversationVectors],
        callback: SearchCallback,
        limit: int,
    ) -> None:
        # Debounce: a newer keystroke cancels us while we wait
        if handle.cancel_event.wait(self.debounce_seconds):
            handle.status = SearchStatus.CANCELLED
            return

        if not handle.query or not data:
            matches: Optional[List[ConversationMatch]] = []
        else:
            try:
                query_embedding = self.embedding_service.embed(handle.query)
            except EmbeddingError as e:
                logger.warning(f"Semantic search failed for {handle.query!r}: {e}")
                handle.error = str(e)
                handle.status = SearchStatus.FAILED
                return
            matches = self.score(query_embedding, data, limit, handle.cancel_event)

        if matches is None or handle.cancel_event.is_set():
            handle.status = SearchStatus.CANCELLED
            return

        handle.matches = matches
        handle.status = SearchStatus.COMPLETED
        callback(handle)
