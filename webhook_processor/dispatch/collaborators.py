"""
Downstream collaborators the provider handlers call into.

The defaults only log the call. Deployments replace them with gateways to
the billing store, the finance/CRM sync services and the notification
channel. Every method receives the webhook ``event_id`` so implementations
can make their side effects idempotent per event.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)


class BillingGateway:
    """Subscription and payment state."""

    def record_payment(self, event_id: str, invoice: Dict[str, Any]) -> None:
        logger.info("Billing: payment recorded", event_id=event_id, invoice_id=invoice.get("id"))

    def activate_subscription(self, event_id: str, session: Dict[str, Any]) -> None:
        logger.info("Billing: subscription activated", event_id=event_id, checkout_session_id=session.get("id"))

    def downgrade_subscription(self, event_id: str, subscription: Dict[str, Any]) -> None:
        logger.info("Billing: subscription downgraded", event_id=event_id, subscription_id=subscription.get("id"))


class FinanceSyncGateway:
    """Accounting and bank data sync."""

    def sync_accounting_entity(
        self,
        event_id: str,
        realm_id: Optional[str],
        entity_name: str,
        entity_id: str,
        operation: Optional[str] = None,
    ) -> None:
        logger.info(
            "Finance sync: accounting entity changed",
            event_id=event_id,
            realm_id=realm_id,
            entity_name=entity_name,
            entity_id=entity_id,
            operation=operation,
        )

    def sync_bank_transactions(self, event_id: str, item_id: Optional[str], webhook_code: Optional[str]) -> None:
        logger.info(
            "Finance sync: bank transactions available",
            event_id=event_id,
            item_id=item_id,
            webhook_code=webhook_code,
        )


class AutomationGateway:
    """Custom automation actions (Zapier and friends)."""

    def run_action(self, event_id: str, action: str, payload: Dict[str, Any]) -> None:
        logger.info("Automation action received", event_id=event_id, action=action)


class UserNotifier:
    """Customer-facing notifications. Fire-and-forget."""

    def payment_failed(self, event_id: str, invoice: Dict[str, Any]) -> None:
        logger.info("Notify: payment failed", event_id=event_id, invoice_id=invoice.get("id"))

    def reauth_required(self, event_id: str, item_id: Optional[str]) -> None:
        logger.info("Notify: bank re-authentication required", event_id=event_id, item_id=item_id)

    def provider_error(self, event_id: str, source: str, detail: Any) -> None:
        logger.info("Notify: provider error", event_id=event_id, source=source, detail=detail)


@dataclass
class Collaborators:
    billing: BillingGateway = field(default_factory=BillingGateway)
    finance_sync: FinanceSyncGateway = field(default_factory=FinanceSyncGateway)
    automations: AutomationGateway = field(default_factory=AutomationGateway)
    notifier: UserNotifier = field(default_factory=UserNotifier)
    # Owner alerts (see services.alert_service); optional so handlers can run without one
    alerter: Any = None
