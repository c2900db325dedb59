from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from webhook_processor.datetime_utils import utcnow
from webhook_processor.errors import InvalidTransitionError, QueueStoreError, StaleEntryError
from webhook_processor.logging_config import get_logger
from webhook_processor.models import (
    QueueStatus,
    WebhookEvent,
    WebhookQueueEntry,
    db,
    is_allowed_transition,
)

logger = get_logger(__name__)

STUCK_ENTRY_ERROR = "Processing abandoned: claim expired before the entry was finished"


@dataclass
class SweepResult:
    """Entry ids moved by one stuck-entry sweep."""
    reclaimed: List[int] = field(default_factory=list)  # back to pending
    failed: List[int] = field(default_factory=list)     # retries exhausted


class WebhookQueueStore:
    """
    Data access for the webhook event store and delivery queue.

    Every mutating method is one transaction covering both the queue entry
    and its event, so an event is never marked processed while its entry
    is still pending (or the other way round). Database failures are rolled
    back and surfaced as QueueStoreError.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    @contextmanager
    def _unit_of_work(self, operation: str, **context):
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Queue store operation failed", operation=operation, error=str(exc), **context)
            raise QueueStoreError(f"{operation} failed: {exc}") from exc
        except Exception:
            self.session.rollback()
            raise

    def _transition(self, entry_id: int, expected: QueueStatus, target: QueueStatus, values: dict) -> int:
        """
        Compare-and-swap the entry status from ``expected`` to ``target``.

        Returns the number of rows updated (0 or 1).
        """
        if not is_allowed_transition(expected, target):
            raise InvalidTransitionError(entry_id, expected, target)

        values = dict(values)
        values["status"] = target
        values.setdefault("updated_at", utcnow())

        return (
            self.session.query(WebhookQueueEntry)
            .filter(WebhookQueueEntry.id == entry_id, WebhookQueueEntry.status == expected)
            .update(values, synchronize_session=False)
        )

    def _leave_processing(self, entry_id: int, target: QueueStatus, values: dict) -> int:
        """Move a claimed entry out of processing; returns its webhook_events primary key."""
        event_pk = (
            self.session.query(WebhookQueueEntry.webhook_event_id)
            .filter(WebhookQueueEntry.id == entry_id)
            .scalar()
        )
        if event_pk is None:
            raise StaleEntryError(entry_id, QueueStatus.PROCESSING)

        values = dict(values)
        values["claimed_at"] = None
        updated = self._transition(entry_id, QueueStatus.PROCESSING, target, values)
        if updated != 1:
            current = (
                self.session.query(WebhookQueueEntry.status)
                .filter(WebhookQueueEntry.id == entry_id)
                .scalar()
            )
            raise InvalidTransitionError(entry_id, current, target)
        return event_pk

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(
        self,
        source: str,
        event_type: str,
        event_id: str,
        payload: Optional[dict] = None,
        signature: Optional[str] = None,
        now=None,
    ) -> Tuple[WebhookEvent, bool]:
        """
        Store a webhook event and queue it for processing.

        Returns (event, created). A repeated event_id returns the stored
        event with created=False and queues nothing.
        """
        now = now or utcnow()
        try:
            existing = self.session.query(WebhookEvent).filter_by(event_id=event_id).first()
            if existing is not None:
                logger.info("Duplicate webhook event ignored", event_id=event_id, source=source)
                return existing, False

            event = WebhookEvent(
                event_id=event_id,
                source=source,
                event_type=event_type,
                payload=payload or {},
                signature=signature,
                processed=False,
                retry_count=0,
                created_at=now,
            )
            entry = WebhookQueueEntry(
                event=event,
                status=QueueStatus.PENDING,
                next_retry_at=now,
                retry_count=0,
                created_at=now,
                updated_at=now,
            )
            self.session.add(event)
            self.session.add(entry)
            self.session.commit()
        except IntegrityError:
            # Lost an insert race on the unique event_id
            self.session.rollback()
            existing = self.session.query(WebhookEvent).filter_by(event_id=event_id).first()
            if existing is None:
                raise QueueStoreError(f"enqueue failed for event {event_id}")
            logger.info("Duplicate webhook event ignored", event_id=event_id, source=source)
            return existing, False
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Queue store operation failed", operation="enqueue", error=str(exc), event_id=event_id)
            raise QueueStoreError(f"enqueue failed: {exc}") from exc

        logger.info("Webhook event stored and queued", event_id=event_id, source=source, webhook_event_id=event.id)
        return event, True

    # ------------------------------------------------------------------
    # Runner side
    # ------------------------------------------------------------------

    def fetch_due_entries(self, limit: int = 10, now=None) -> List[WebhookQueueEntry]:
        """Pending entries whose next_retry_at has passed, oldest first, at most ``limit``."""
        now = now or utcnow()
        try:
            return (
                self.session.query(WebhookQueueEntry)
                .options(joinedload(WebhookQueueEntry.event))
                .filter(
                    WebhookQueueEntry.status == QueueStatus.PENDING,
                    WebhookQueueEntry.next_retry_at <= now,
                )
                .order_by(WebhookQueueEntry.next_retry_at.asc(), WebhookQueueEntry.id.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Queue store operation failed", operation="fetch_due_entries", error=str(exc))
            raise QueueStoreError(f"fetch_due_entries failed: {exc}") from exc

    def mark_processing(self, entry_id: int, now=None) -> bool:
        """
        Claim a pending entry. Only one caller can win: the update is
        conditional on the row still being pending.
        """
        now = now or utcnow()
        with self._unit_of_work("mark_processing", entry_id=entry_id):
            updated = self._transition(
                entry_id,
                QueueStatus.PENDING,
                QueueStatus.PROCESSING,
                {"claimed_at": now, "updated_at": now},
            )

        if updated != 1:
            logger.info("Queue entry already claimed, skipping", entry_id=entry_id)
            return False
        return True

    def mark_completed(self, entry_id: int, now=None) -> None:
        now = now or utcnow()
        with self._unit_of_work("mark_completed", entry_id=entry_id):
            event_pk = self._leave_processing(
                entry_id,
                QueueStatus.COMPLETED,
                {"error_message": None, "updated_at": now},
            )
            event = self.session.get(WebhookEvent, event_pk)
            event.processed = True
            # A duplicate completion keeps the original timestamp
            if event.processed_at is None:
                event.processed_at = now
            event.last_error = None

    def mark_retry(self, entry_id: int, error: str, next_retry_at, new_retry_count: int) -> None:
        with self._unit_of_work("mark_retry", entry_id=entry_id):
            event_pk = self._leave_processing(
                entry_id,
                QueueStatus.PENDING,
                {
                    "next_retry_at": next_retry_at,
                    "retry_count": new_retry_count,
                    "error_message": error,
                },
            )
            event = self.session.get(WebhookEvent, event_pk)
            event.retry_count = new_retry_count
            event.last_error = error

    def mark_failed_terminal(self, entry_id: int, error: str, new_retry_count: int) -> None:
        with self._unit_of_work("mark_failed_terminal", entry_id=entry_id):
            event_pk = self._leave_processing(
                entry_id,
                QueueStatus.FAILED,
                {
                    "retry_count": new_retry_count,
                    "error_message": error,
                },
            )
            event = self.session.get(WebhookEvent, event_pk)
            event.retry_count = new_retry_count
            event.last_error = error

    def reclaim_stuck(self, older_than_seconds: int, max_retries: Optional[int] = None, now=None) -> SweepResult:
        """
        Release entries stuck in processing longer than the threshold.

        A reclaim counts as a failed attempt: the entry goes back to pending,
        or to failed once ``max_retries`` is reached, so an event that keeps
        killing its worker still ends in a terminal state.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=older_than_seconds)
        result = SweepResult()
        with self._unit_of_work("reclaim_stuck"):
            stuck = (
                self.session.query(WebhookQueueEntry.id, WebhookQueueEntry.webhook_event_id, WebhookQueueEntry.retry_count)
                .filter(
                    WebhookQueueEntry.status == QueueStatus.PROCESSING,
                    or_(WebhookQueueEntry.claimed_at.is_(None), WebhookQueueEntry.claimed_at < cutoff),
                )
                .all()
            )
            for entry_id, event_pk, retry_count in stuck:
                new_retry_count = retry_count + 1
                terminal = max_retries is not None and new_retry_count >= max_retries
                values = {
                    "claimed_at": None,
                    "retry_count": new_retry_count,
                    "error_message": STUCK_ENTRY_ERROR,
                    "updated_at": now,
                }
                if not terminal:
                    values["next_retry_at"] = now

                target = QueueStatus.FAILED if terminal else QueueStatus.PENDING
                if self._transition(entry_id, QueueStatus.PROCESSING, target, values) != 1:
                    continue

                event = self.session.get(WebhookEvent, event_pk)
                event.retry_count = new_retry_count
                event.last_error = STUCK_ENTRY_ERROR
                (result.failed if terminal else result.reclaimed).append(entry_id)

        if result.reclaimed or result.failed:
            logger.warning(
                "Reclaimed stuck queue entries",
                reclaimed=len(result.reclaimed),
                failed=len(result.failed),
                older_than_seconds=older_than_seconds,
            )
        return result

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: int) -> Optional[WebhookQueueEntry]:
        return self.session.get(WebhookQueueEntry, entry_id)

    def count_by_status(self) -> Dict[str, int]:
        try:
            rows = (
                self.session.query(WebhookQueueEntry.status, func.count(WebhookQueueEntry.id))
                .group_by(WebhookQueueEntry.status)
                .all()
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise QueueStoreError(f"count_by_status failed: {exc}") from exc

        counts = {status.value: 0 for status in QueueStatus}
        for status, count in rows:
            counts[status.value] = count
        return counts
