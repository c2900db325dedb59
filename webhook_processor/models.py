from enum import Enum

from flask_sqlalchemy import SQLAlchemy

from webhook_processor.datetime_utils import format_iso_utc, utcnow

db = SQLAlchemy()


class WebhookSource(Enum):
    STRIPE = "stripe"
    QUICKBOOKS = "quickbooks"
    PLAID = "plaid"
    ZAPIER = "zapier"
    OTHER = "other"


class QueueStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self):
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


# Only the runner (and the stuck-entry sweep) may move an entry, and only along these edges.
ALLOWED_TRANSITIONS = {
    QueueStatus.PENDING: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.PROCESSING: frozenset({
        QueueStatus.COMPLETED,
        QueueStatus.PENDING,
        QueueStatus.FAILED,
    }),
    QueueStatus.COMPLETED: frozenset(),
    QueueStatus.FAILED: frozenset(),
}


def is_allowed_transition(current: QueueStatus, target: QueueStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class WebhookEvent(db.Model):
    """Durable record of an inbound webhook. The payload is never mutated."""
    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), unique=True, nullable=False, index=True)
    source = db.Column(db.String(50), nullable=False, index=True)  # 'stripe', 'quickbooks', 'plaid', ...
    event_type = db.Column(db.String(255), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    signature = db.Column(db.Text, nullable=True)

    # Mirrors webhook_queue.retry_count for reporting
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    processed = db.Column(db.Boolean, nullable=False, default=False)
    processed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    queue_entry = db.relationship(
        "WebhookQueueEntry", back_populates="event", uselist=False
    )

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} - {self.source} - {self.event_type}>"

    def to_dict(self):
        return {
            'id': self.id,
            'event_id': self.event_id,
            'source': self.source,
            'event_type': self.event_type,
            'payload': self.payload,
            'retry_count': self.retry_count,
            'last_error': self.last_error,
            'processed': self.processed,
            'processed_at': format_iso_utc(self.processed_at),
            'created_at': format_iso_utc(self.created_at),
        }


class WebhookQueueEntry(db.Model):
    """Scheduling state for one webhook event. Rows are never deleted."""
    __tablename__ = "webhook_queue"
    __table_args__ = (
        db.Index('idx_webhook_queue_due', 'status', 'next_retry_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    webhook_event_id = db.Column(
        db.Integer, db.ForeignKey("webhook_events.id"), unique=True, nullable=False
    )
    status = db.Column(
        db.Enum(
            QueueStatus,
            name="webhook_queue_status",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=QueueStatus.PENDING,
    )
    next_retry_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)

    # Set while the entry is claimed; used to reclaim entries left behind by a crashed run
    claimed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    event = db.relationship("WebhookEvent", back_populates="queue_entry")

    def __repr__(self):
        return f"<WebhookQueueEntry {self.id} - {self.status.value} - retries={self.retry_count}>"

    def to_dict(self):
        return {
            'id': self.id,
            'webhook_event_id': self.webhook_event_id,
            'status': self.status.value,
            'next_retry_at': format_iso_utc(self.next_retry_at),
            'retry_count': self.retry_count,
            'error_message': self.error_message,
            'claimed_at': format_iso_utc(self.claimed_at),
            'created_at': format_iso_utc(self.created_at),
            'updated_at': format_iso_utc(self.updated_at),
        }
