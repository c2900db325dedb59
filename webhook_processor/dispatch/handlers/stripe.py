from webhook_processor.dispatch.handlers.base import ProviderHandler
from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)


class StripeHandler(ProviderHandler):
    """Billing events from Stripe. ``payload`` is the Stripe event body."""
    source = "stripe"
    routes = {
        "invoice.paid": "invoice_paid",
        "invoice.payment_succeeded": "invoice_paid",
        "invoice.payment_failed": "invoice_payment_failed",
        "customer.subscription.deleted": "subscription_deleted",
        "checkout.session.completed": "checkout_completed",
    }

    @staticmethod
    def _object(event):
        # Stripe nests the resource under data.object; tolerate flattened payloads
        data = event.payload.get("data") or {}
        return data.get("object") or event.payload

    def invoice_paid(self, event):
        invoice = self._object(event)
        logger.info("Stripe invoice paid", event_id=event.event_id, invoice_id=invoice.get("id"))
        self.collaborators.billing.record_payment(event.event_id, invoice)

    def invoice_payment_failed(self, event):
        invoice = self._object(event)
        logger.info("Stripe payment failed", event_id=event.event_id, invoice_id=invoice.get("id"))
        self.notify("payment_failed", event.event_id, invoice)

    def subscription_deleted(self, event):
        subscription = self._object(event)
        logger.info("Stripe subscription cancelled", event_id=event.event_id, subscription_id=subscription.get("id"))
        self.collaborators.billing.downgrade_subscription(event.event_id, subscription)

    def checkout_completed(self, event):
        session = self._object(event)
        logger.info("Stripe checkout completed", event_id=event.event_id, checkout_session_id=session.get("id"))
        self.collaborators.billing.activate_subscription(event.event_id, session)
