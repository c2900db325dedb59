from typing import Any, Optional

import requests

from webhook_processor.datetime_utils import format_iso_utc, utcnow
from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)


class LoggingOwnerAlerter:
    """Owner alerts written to the log only. Used when no alert channel is configured."""

    def send(self, subject: str, details: dict) -> None:
        logger.error(f"Owner alert: {subject}", **details)

    def terminal_failure(self, event, error: Optional[str], retry_count: int) -> None:
        """Alert operators that an event exhausted its retries and was marked failed."""
        self.send(
            "Webhook processing failed permanently",
            {
                "event_id": event.event_id,
                "source": event.source,
                "event_type": event.event_type,
                "retry_count": retry_count,
                "error": error,
            },
        )

    def provider_error(self, event, detail: Any) -> None:
        self.send(
            "Provider reported an error",
            {
                "event_id": event.event_id,
                "source": event.source,
                "event_type": event.event_type,
                "detail": detail,
            },
        )


class HttpOwnerAlerter(LoggingOwnerAlerter):
    """
    Posts owner alerts as JSON to an alerting webhook (Slack-compatible
    ``text`` field plus structured details).

    Fire-and-forget: delivery problems are logged, never raised.
    """

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, subject: str, details: dict) -> None:
        super().send(subject, details)
        body = {
            "text": f"[webhook-processor] {subject}",
            "details": details,
            "sent_at": format_iso_utc(utcnow()),
        }
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Owner alert delivery failed", subject=subject, error=str(exc))


def build_alerter(settings):
    """Pick the owner alert channel from the processor settings."""
    if settings.alert_webhook_url:
        return HttpOwnerAlerter(settings.alert_webhook_url, timeout=settings.alert_timeout_seconds)
    return LoggingOwnerAlerter()
