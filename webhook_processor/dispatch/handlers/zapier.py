from webhook_processor.dispatch.envelope import DispatchResult
from webhook_processor.dispatch.handlers.base import ProviderHandler


class ZapierHandler(ProviderHandler):
    """Zapier actions are user-defined; every one goes to the automation gateway."""
    source = "zapier"

    def handle(self, event):
        self.collaborators.automations.run_action(event.event_id, event.event_type, event.payload)
        return DispatchResult.ok()
