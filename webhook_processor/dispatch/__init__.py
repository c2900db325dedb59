from webhook_processor.dispatch.collaborators import (
    AutomationGateway,
    BillingGateway,
    Collaborators,
    FinanceSyncGateway,
    UserNotifier,
)
from webhook_processor.dispatch.dispatcher import ProviderDispatcher
from webhook_processor.dispatch.envelope import DispatchResult, EventEnvelope
from webhook_processor.dispatch.registry import HandlerRegistry, build_default_registry

__all__ = [
    "AutomationGateway",
    "BillingGateway",
    "Collaborators",
    "DispatchResult",
    "EventEnvelope",
    "FinanceSyncGateway",
    "HandlerRegistry",
    "ProviderDispatcher",
    "UserNotifier",
    "build_default_registry",
]
