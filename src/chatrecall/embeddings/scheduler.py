"""
Background embedding of imported messages.

The scheduler walks a list of message ids on a worker thread, embedding and
persisting them in small batches.  Each batch uses its own session, so the
worker never touches records owned by the foreground session.
"""

import enum
import logging
import queue
import threading
import uuid
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from chatrecall.config import settings
from chatrecall.db.connection import background_session
from chatrecall.embeddings.service import EmbeddingService
from chatrecall.exceptions import EmbeddingError, EmbeddingNotConfiguredError
from chatrecall.models.db import Message
from chatrecall.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


class EmbeddingStatus(str, enum.Enum):
    """Lifecycle of an embedding run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class EmbeddingProgress:
    """Progress snapshot; counts only grow during a run."""

    processed: int
    total: int
    embedded: int
    failed: int
    status: EmbeddingStatus


class EmbeddingScheduler:
    """
    Compute embeddings for messages in the background.

    Features:
    - Fixed-size batches with a short pause between them
    - Idempotent: a message that already has an embedding is never re-sent
    - Restartable: ``start`` cancels any in-flight run first
    - Cancellation checked before every batch and every item
    """

    def __init__(
        self,
        service: EmbeddingService,
        session_factory: Optional[SessionFactory] = None,
        batch_size: Optional[int] = None,
        pause_seconds: Optional[float] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            service: Embedding client
            session_factory: Context manager factory yielding a committed
                session per batch (defaults to ``background_session``)
            batch_size: Messages per batch
            pause_seconds: Delay between batches
        """
        self.service = service
        self.session_factory = session_factory or background_session
        self.batch_size = batch_size or settings.embedding_batch_size
        self.pause_seconds = (
            pause_seconds
            if pause_seconds is not None
            else settings.embedding_batch_pause_seconds
        )
        self.events: "queue.Queue[EmbeddingProgress]" = queue.Queue()

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._cancel_event = threading.Event()
        self._processed = 0
        self._total = 0
        self._embedded = 0
        self._failed = 0
        self._status = EmbeddingStatus.IDLE

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def total(self) -> int:
        return self._total

    @property
    def embedded(self) -> int:
        return self._embedded

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def status(self) -> EmbeddingStatus:
        return self._status

    def progress(self) -> EmbeddingProgress:
        with self._lock:
            return EmbeddingProgress(
                processed=self._processed,
                total=self._total,
                embedded=self._embedded,
                failed=self._failed,
                status=self._status,
            )

    def start(self, message_ids: Sequence[uuid.UUID]) -> None:
        """
        Start a background run over ``message_ids``, cancelling any previous one.

        Raises:
            EmbeddingNotConfiguredError: If the service has no credentials
        """
        if not self.service.is_configured:
            raise EmbeddingNotConfiguredError()

        self.cancel()
        self.wait()

        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        ids = list(message_ids)
        self._reset(len(ids))

        self._thread = threading.Thread(
            target=self._run_in_thread,
            args=(ids, cancel_event),
            name="embedding-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Started background embedding for {len(ids)} messages")

    def cancel(self) -> None:
        """Signal the current run to stop at the next batch or item boundary."""
        if self.is_running:
            logger.info("Embedding run cancellation requested")
        self._cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the current run to finish.

        Returns:
            True if no run is active anymore
        """
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    def run(
        self,
        message_ids: Sequence[uuid.UUID],
        cancel_event: Optional[threading.Event] = None,
    ) -> EmbeddingProgress:
        """
        Embed the given messages synchronously on the calling thread.

        ``start`` runs this on a worker thread; calling it directly is useful
        for command line tools.

        Returns:
            Final progress with status ``completed`` or ``cancelled``
        """
        ids: List[uuid.UUID] = list(message_ids)
        self._reset(len(ids))
        return self._execute(ids, cancel_event or threading.Event())

    def _execute(
        self, ids: List[uuid.UUID], cancel_event: threading.Event
    ) -> EmbeddingProgress:
        cancelled = False
        for start in range(0, len(ids), self.batch_size):
            if cancel_event.is_set():
                cancelled = True
                break

            batch = ids[start : start + self.batch_size]
            cancelled = self._run_batch(batch, cancel_event)
            self._publish()
            if cancelled:
                break

            if start + self.batch_size < len(ids) and self.pause_seconds > 0:
                # wait() returns early when cancelled
                cancel_event.wait(self.pause_seconds)

        with self._lock:
            self._status = (
                EmbeddingStatus.CANCELLED if cancelled else EmbeddingStatus.COMPLETED
            )
        final = self._publish()
        logger.info(
            f"Embedding run {final.status.value}: {final.embedded} embedded, "
            f"{final.failed} failed, {final.processed}/{final.total} processed"
        )
        return final

    def _run_in_thread(
        self, message_ids: Sequence[uuid.UUID], cancel_event: threading.Event
    ) -> None:
        try:
            self._execute(list(message_ids), cancel_event)
        except Exception as e:
            logger.error(f"Embedding run aborted: {e}", exc_info=True)
            with self._lock:
                self._status = EmbeddingStatus.FAILED
            self._publish()

    def _run_batch(
        self, batch: Sequence[uuid.UUID], cancel_event: threading.Event
    ) -> bool:
        """Process one batch in its own session; returns True if cancelled."""
        with self.session_factory() as session:
            for message_id in batch:
                if cancel_event.is_set():
                    return True

                # Re-read right before embedding so finished work is never redone
                message = session.get(Message, message_id, populate_existing=True)
                text = message.content if message is not None else ""
                skip = message is None or message.has_embedding or not text.strip()

                if not skip:
                    try:
                        vector = self.service.embed(text)
                    except EmbeddingError as e:
                        logger.warning(f"Failed to embed message {message_id}: {e}")
                        with self._lock:
                            self._failed += 1
                    else:
                        message.embedding = vector
                        message.embedded_at = utc_now()
                        session.flush()
                        with self._lock:
                            self._embedded += 1

                with self._lock:
                    self._processed += 1
        return False

    def _reset(self, total: int) -> None:
        with self._lock:
            self._processed = 0
            self._total = total
            self._embedded = 0
            self._failed = 0
            self._status = EmbeddingStatus.RUNNING

    def _publish(self) -> EmbeddingProgress:
        snapshot = self.progress()
        self.events.put(snapshot)
        return snapshot
