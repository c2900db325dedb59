from webhook_processor.dispatch.handlers.base import ProviderHandler
from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)


class PlaidHandler(ProviderHandler):
    """Plaid webhooks are typed by ``webhook_type``, which the receiver stores as event_type."""
    source = "plaid"
    routes = {
        "TRANSACTIONS": "transactions",
        "ITEM_LOGIN_REQUIRED": "item_login_required",
        "ERROR": "item_error",
    }

    def transactions(self, event):
        item_id = event.payload.get("item_id")
        logger.info("Plaid transactions available", event_id=event.event_id, item_id=item_id)
        self.collaborators.finance_sync.sync_bank_transactions(
            event.event_id, item_id, event.payload.get("webhook_code")
        )

    def item_login_required(self, event):
        item_id = event.payload.get("item_id")
        logger.info("Plaid re-auth required", event_id=event.event_id, item_id=item_id)
        self.notify("reauth_required", event.event_id, item_id)

    def item_error(self, event):
        detail = event.payload.get("error")
        logger.warning("Plaid error", event_id=event.event_id, item_id=event.payload.get("item_id"), detail=detail)
        self.notify("provider_error", event.event_id, self.source, detail)
        self.alert_owner(event, detail)
