from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class EventEnvelope:
    """Read-only snapshot of a webhook event handed to provider handlers."""
    event_id: str                     # Provider-assigned or synthesized idempotency key
    source: str                       # 'stripe', 'quickbooks', 'plaid', 'zapier', ...
    event_type: str                   # e.g. 'invoice.paid', 'TRANSACTIONS'
    payload: Dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    processed: bool = False

    @classmethod
    def from_model(cls, event, retry_count: Optional[int] = None) -> "EventEnvelope":
        return cls(
            event_id=event.event_id,
            source=event.source,
            event_type=event.event_type,
            payload=dict(event.payload or {}),
            retry_count=event.retry_count if retry_count is None else retry_count,
            processed=bool(event.processed),
        )


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "DispatchResult":
        return cls(success=True)

    @classmethod
    def failure(cls, error) -> "DispatchResult":
        return cls(success=False, error=str(error) or type(error).__name__)
