from webhook_processor.dispatch.envelope import DispatchResult
from webhook_processor.dispatch.handlers.base import ProviderHandler
from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)


def iter_changed_entities(payload):
    """Yield (realm_id, entity) for every entity in a QuickBooks notification."""
    for notification in payload.get("eventNotifications") or []:
        realm_id = notification.get("realmId")
        change_event = notification.get("dataChangeEvent") or {}
        for entity in change_event.get("entities") or []:
            yield realm_id, entity


class QuickBooksHandler(ProviderHandler):
    """
    QuickBooks sends data-change notifications rather than typed events:
    every changed entity is synced regardless of the event type.
    """
    source = "quickbooks"

    def handle(self, event):
        synced = 0
        for realm_id, entity in iter_changed_entities(event.payload):
            entity_name = entity.get("name")  # 'Invoice', 'Payment', 'Customer', ...
            entity_id = entity.get("id")
            if not entity_name or not entity_id:
                logger.warning("QuickBooks entity missing name or id", event_id=event.event_id, entity=entity)
                continue

            logger.info(f"QuickBooks {entity_name} changed", event_id=event.event_id, entity_id=entity_id)
            self.collaborators.finance_sync.sync_accounting_entity(
                event.event_id,
                realm_id,
                entity_name,
                entity_id,
                entity.get("operation"),
            )
            synced += 1

        if synced == 0:
            logger.info("QuickBooks notification had no entities", event_id=event.event_id)
        return DispatchResult.ok()
