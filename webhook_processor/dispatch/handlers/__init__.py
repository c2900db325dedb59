from webhook_processor.dispatch.handlers.base import ProviderHandler
from webhook_processor.dispatch.handlers.plaid import PlaidHandler
from webhook_processor.dispatch.handlers.quickbooks import QuickBooksHandler
from webhook_processor.dispatch.handlers.stripe import StripeHandler
from webhook_processor.dispatch.handlers.zapier import ZapierHandler

DEFAULT_HANDLERS = (StripeHandler, QuickBooksHandler, PlaidHandler, ZapierHandler)

__all__ = [
    "DEFAULT_HANDLERS",
    "PlaidHandler",
    "ProviderHandler",
    "QuickBooksHandler",
    "StripeHandler",
    "ZapierHandler",
]
