from typing import Dict

from webhook_processor.dispatch.collaborators import Collaborators
from webhook_processor.dispatch.envelope import DispatchResult, EventEnvelope
from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)


class ProviderHandler:
    """
    Base class for source-specific webhook handlers.

    Subclasses map event types to handler methods in ``routes``. Event types
    without a route are benign no-ops. A handler method signals a retryable
    failure by raising; the dispatcher turns the exception into a failed
    DispatchResult.
    """
    source: str = ""
    routes: Dict[str, str] = {}

    def __init__(self, collaborators: Collaborators):
        self.collaborators = collaborators

    def handle(self, event: EventEnvelope) -> DispatchResult:
        method_name = self.routes.get(event.event_type)
        if method_name is None:
            logger.info(
                f"Unhandled {self.source} event",
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return DispatchResult.ok()

        result = getattr(self, method_name)(event)
        return result if isinstance(result, DispatchResult) else DispatchResult.ok()

    def notify(self, action: str, *args) -> None:
        """Call a UserNotifier method; notification failures never fail the event."""
        try:
            getattr(self.collaborators.notifier, action)(*args)
        except Exception as exc:
            logger.warning(
                "User notification failed",
                source=self.source,
                action=action,
                error=str(exc),
            )

    def alert_owner(self, event: EventEnvelope, detail) -> None:
        """Raise an owner alert; alert failures never fail the event."""
        alerter = self.collaborators.alerter
        if alerter is None:
            return
        try:
            alerter.provider_error(event, detail)
        except Exception as exc:
            logger.warning("Owner alert failed", event_id=event.event_id, error=str(exc))
