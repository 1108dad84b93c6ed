"""
Message-level retrieval of past conversation context.

The corpus (embedded messages and conversation transcripts) is copied out of
the session into plain values first; ranking then works on those copies only
and never touches live records.
"""

import enum
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatrecall.config import settings
from chatrecall.db.repositories import MessageRepository
from chatrecall.embeddings.service import EmbeddingService
from chatrecall.embeddings.similarity import cosine_similarity
from chatrecall.models.db import Message, MessageRole
from chatrecall.utils.timestamps import to_epoch

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 120
PROMPT_SNIPPET_CHARS = 220
MAX_SNIPPETS = 8

ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "Assistant",
    MessageRole.SYSTEM: "System",
}


class RAGContextKind(str, enum.Enum):
    FULL_CONVERSATION = "full"
    SNIPPET = "snippet"


@dataclass(frozen=True)
class RAGResult:
    """One piece of retrieved context."""

    conversation_id: uuid.UUID
    summary: str
    similarity: float
    conversation_title: str
    kind: RAGContextKind = RAGContextKind.SNIPPET


@dataclass(frozen=True)
class CorpusMessage:
    """Copy of an embedded message and the fields ranking needs."""

    conversation_id: uuid.UUID
    conversation_title: str
    conversation_updated_at: float
    timestamp: float
    content: str
    summary: Optional[str]
    embedding: Sequence[float]


@dataclass
class RAGCorpus:
    messages: List[CorpusMessage] = field(default_factory=list)
    transcripts: Dict[uuid.UUID, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _Scored:
    message: CorpusMessage
    similarity: float


def truncate_for_summary(content: str, max_length: int = SNIPPET_CHARS) -> str:
    """Trimmed excerpt of at most ``max_length`` characters plus an ellipsis."""
    trimmed = content.strip()
    if len(trimmed) > max_length:
        return trimmed[:max_length] + "..."
    return trimmed


def truncate_middle(text: str, max_length: int) -> str:
    """Keep the head and tail of ``text`` with a marker in between."""
    if len(text) <= max_length or max_length <= 40:
        return text
    head = text[: int(max_length * 0.55)]
    tail_count = max(0, max_length - len(head) - 14)
    tail = text[-tail_count:] if tail_count else ""
    return f"{head}\n\n...[truncated]...\n\n{tail}"


def _snippet_text(message: CorpusMessage) -> str:
    if message.summary and message.summary.strip():
        return message.summary.strip()
    return truncate_for_summary(message.content)


def _max_full_by_confidence(top: float) -> int:
    if top >= 0.80:
        return 5
    if top >= 0.72:
        return 4
    if top >= 0.64:
        return 3
    if top >= 0.58:
        return 2
    return 1


def _snippet_limit(top: float) -> int:
    if top >= 0.78:
        return 6
    if top >= 0.65:
        return 5
    if top >= 0.52:
        return 4
    return 2


class RAGService:
    """
    Retrieve stored messages semantically related to a query.

    With full context disabled this is a plain top-K over all embedded
    messages.  With it enabled, hits are collapsed per conversation, the
    strongest conversations are returned as whole (middle-truncated)
    transcripts and the rest as one snippet each.  Either way results are in
    non-increasing similarity order and never below ``min_similarity``.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        min_similarity: Optional[float] = None,
        weak_signal_cutoff: Optional[float] = None,
        max_messages: Optional[int] = None,
        full_context_enabled: Optional[bool] = None,
        strong_threshold: Optional[float] = None,
        strong_relative_delta: Optional[float] = None,
        max_full_conversations: Optional[int] = None,
        max_transcript_chars: Optional[int] = None,
    ):
        def pick(value, default):
            return default if value is None else value

        self.embedding_service = embedding_service
        self.min_similarity = pick(min_similarity, settings.rag_min_similarity)
        self.weak_signal_cutoff = pick(weak_signal_cutoff, settings.rag_weak_signal_cutoff)
        self.max_messages = pick(max_messages, settings.rag_max_messages)
        self.full_context_enabled = pick(
            full_context_enabled, settings.rag_full_context_enabled
        )
        self.strong_threshold = pick(strong_threshold, settings.rag_strong_threshold)
        self.strong_relative_delta = pick(
            strong_relative_delta, settings.rag_strong_relative_delta
        )
        self.max_full_conversations = pick(
            max_full_conversations, settings.rag_max_full_conversations
        )
        self.max_transcript_chars = pick(
            max_transcript_chars, settings.rag_max_transcript_chars
        )

    def retrieve(
        self,
        session: Session,
        query: str,
        exclude_conversation_id: Optional[uuid.UUID] = None,
        limit: int = 5,
    ) -> List[RAGResult]:
        """
        Find context relevant to ``query`` outside the current conversation.

        Returns an empty list when the query is blank, embeddings are not
        configured or nothing is embedded yet.  Query embedding errors
        propagate.
        """
        query = query.strip()
        if not query:
            return []
        if not self.embedding_service.is_configured:
            logger.warning("RAG not configured - OpenAI API key missing")
            return []

        corpus = self.load_corpus(session, exclude_conversation_id)
        if not corpus.messages:
            logger.debug("No messages with embeddings found for RAG")
            return []

        logger.info(
            f"RAG: searching {len(corpus.messages)} embedded messages across "
            f"{len({m.conversation_id for m in corpus.messages})} conversations"
        )
        query_embedding = self.embedding_service.embed(query)
        return self.rank(corpus, query_embedding, limit=limit)

    def load_corpus(
        self, session: Session, exclude_conversation_id: Optional[uuid.UUID] = None
    ) -> RAGCorpus:
        """Copy embedded messages (and, if needed, transcripts) out of the session."""
        corpus = RAGCorpus()
        messages = MessageRepository(session).list_embedded(
            exclude_conversation_id=exclude_conversation_id, limit=self.max_messages
        )

        for message in messages:
            if message.role == MessageRole.SYSTEM or not message.embedding:
                continue
            content = message.content.strip()
            if not content:
                continue
            conversation = message.conversation
            corpus.messages.append(
                CorpusMessage(
                    conversation_id=conversation.id,
                    conversation_title=conversation.title,
                    conversation_updated_at=to_epoch(conversation.updated_at),
                    timestamp=to_epoch(message.timestamp),
                    content=content,
                    summary=message.summary,
                    embedding=list(message.embedding),
                )
            )

        if self.full_context_enabled and corpus.messages:
            corpus.transcripts = self._load_transcripts(
                session, {m.conversation_id for m in corpus.messages}
            )
        return corpus

    def _load_transcripts(
        self, session: Session, conversation_ids: set
    ) -> Dict[uuid.UUID, str]:
        stmt = (
            select(Message.conversation_id, Message.role, Message.content)
            .where(Message.conversation_id.in_(list(conversation_ids)))
            .order_by(Message.conversation_id, Message.timestamp, Message.sequence)
        )
        lines: Dict[uuid.UUID, List[str]] = defaultdict(list)
        for row in session.execute(stmt):
            text = (row.content or "").strip()
            if text:
                lines[row.conversation_id].append(f"{ROLE_LABELS[row.role]}: {text}")

        return {
            conversation_id: truncate_middle("\n".join(parts), self.max_transcript_chars)
            for conversation_id, parts in lines.items()
        }

    def rank(
        self, corpus: RAGCorpus, query_embedding: Sequence[float], limit: int = 5
    ) -> List[RAGResult]:
        """Score a copied corpus against a query vector."""
        dimension = len(query_embedding)
        scored: List[_Scored] = []
        mismatched = 0

        for message in corpus.messages:
            if len(message.embedding) != dimension:
                mismatched += 1
                continue
            similarity = cosine_similarity(query_embedding, message.embedding)
            if similarity >= self.min_similarity:
                scored.append(_Scored(message, similarity))

        if mismatched:
            logger.warning(
                f"RAG: ignored {mismatched} embeddings with dimension other than {dimension}"
            )
        if not scored:
            logger.info("RAG: No messages above similarity threshold")
            return []

        scored.sort(key=lambda s: (-s.similarity, -s.message.timestamp))

        if not self.full_context_enabled:
            return [
                RAGResult(
                    conversation_id=s.message.conversation_id,
                    summary=_snippet_text(s.message),
                    similarity=s.similarity,
                    conversation_title=s.message.conversation_title,
                )
                for s in scored[:limit]
            ]
        return self._adaptive(scored, corpus.transcripts, limit)

    def _adaptive(
        self,
        scored: List[_Scored],
        transcripts: Dict[uuid.UUID, str],
        limit: int,
    ) -> List[RAGResult]:
        top = scored[0].similarity
        if top < self.weak_signal_cutoff:
            logger.info(
                f"RAG: Top similarity {top:.3f} below weak cutoff "
                f"{self.weak_signal_cutoff}, skipping context"
            )
            return []

        # scored is sorted, so the first hit per conversation is its best
        best_by_conversation: Dict[uuid.UUID, _Scored] = {}
        for item in scored:
            best_by_conversation.setdefault(item.message.conversation_id, item)

        conversations = sorted(
            best_by_conversation.values(),
            key=lambda s: (-s.similarity, -s.message.conversation_updated_at),
        )

        full_threshold = max(self.strong_threshold, top - self.strong_relative_delta)
        full_cap = min(self.max_full_conversations, _max_full_by_confidence(top))
        full_ids = [
            s.message.conversation_id
            for s in conversations
            if s.similarity >= full_threshold
        ][:full_cap]

        results: List[RAGResult] = []
        for best in conversations:
            conversation_id = best.message.conversation_id
            if conversation_id not in full_ids:
                continue
            transcript = transcripts.get(conversation_id)
            if not transcript:
                continue
            results.append(
                RAGResult(
                    conversation_id=conversation_id,
                    summary=transcript,
                    similarity=best.similarity,
                    conversation_title=best.message.conversation_title,
                    kind=RAGContextKind.FULL_CONVERSATION,
                )
            )

        target_snippets = min(MAX_SNIPPETS, max(_snippet_limit(top), max(1, limit)))
        snippets = 0
        for best in conversations:
            if snippets >= target_snippets:
                break
            if best.message.conversation_id in full_ids:
                continue
            results.append(
                RAGResult(
                    conversation_id=best.message.conversation_id,
                    summary=_snippet_text(best.message),
                    similarity=best.similarity,
                    conversation_title=best.message.conversation_title,
                )
            )
            snippets += 1

        logger.info(
            f"RAG selection: top={top:.3f} full={len(results) - snippets} "
            f"snippets={snippets} conversations={len(conversations)}"
        )
        return results


def format_results_for_prompt(
    results: Sequence[RAGResult], max_chars: Optional[int] = None
) -> str:
    """
    Render retrieved context as a labeled block for a system prompt.

    The block never exceeds ``max_chars`` characters.
    """
    if not results:
        return ""

    remaining = max_chars if max_chars is not None else settings.rag_max_prompt_chars
    parts: List[str] = []

    def append(text: str) -> None:
        nonlocal remaining
        if remaining <= 0:
            return
        chunk = text[:remaining]
        parts.append(chunk)
        remaining -= len(chunk)

    append(
        "## Relevant Past Conversations\n"
        "Use the following prior context only when relevant to the current user request.\n"
    )

    full = [r for r in results if r.kind == RAGContextKind.FULL_CONVERSATION]
    snippets = [r for r in results if r.kind == RAGContextKind.SNIPPET]

    if full:
        append("\n### Highly Relevant Conversations (Full Context)\n")
        for result in full:
            if remaining <= 0:
                break
            append(
                f'\n#### From "{result.conversation_title}" '
                f"(score: {result.similarity:.2f})\n"
            )
            body_max = min(settings.rag_max_transcript_chars, max(0, remaining - 4))
            append(truncate_middle(result.summary, body_max) + "\n")

    if snippets and remaining > 0:
        append("\n### Additional Relevant Snippets\n")
        for result in snippets:
            if remaining <= 0:
                break
            snippet = truncate_for_summary(result.summary, PROMPT_SNIPPET_CHARS)
            append(
                f'\n- "{result.conversation_title}" '
                f"(score: {result.similarity:.2f}): {snippet}\n"
            )

    return "".join(parts)
