from webhook_processor.processing.results import EntryResult, ProcessingSummary
from webhook_processor.processing.retry import RetryDecision, RetryPolicy
from webhook_processor.processing.runner import WebhookProcessor, build_processor

__all__ = [
    "EntryResult",
    "ProcessingSummary",
    "RetryDecision",
    "RetryPolicy",
    "WebhookProcessor",
    "build_processor",
]
