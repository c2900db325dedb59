from typing import Dict, Iterable, Optional

from webhook_processor.dispatch.collaborators import Collaborators
from webhook_processor.dispatch.handlers import DEFAULT_HANDLERS, ProviderHandler


class HandlerRegistry:
    """Maps a webhook ``source`` to the handler that processes it."""

    def __init__(self):
        self._handlers: Dict[str, ProviderHandler] = {}

    def register(self, source: str, handler: ProviderHandler) -> None:
        key = source.strip().lower()
        if not key:
            raise ValueError("source must not be empty")
        self._handlers[key] = handler

    def get(self, source: Optional[str]) -> Optional[ProviderHandler]:
        if not source:
            return None
        return self._handlers.get(source.strip().lower())

    def sources(self) -> Iterable[str]:
        return sorted(self._handlers)

    def __contains__(self, source) -> bool:
        return self.get(source) is not None


def build_default_registry(collaborators: Optional[Collaborators] = None) -> HandlerRegistry:
    """Registry with the stripe, quickbooks, plaid and zapier handlers."""
    collaborators = collaborators or Collaborators()
    registry = HandlerRegistry()
    for handler_class in DEFAULT_HANDLERS:
        registry.register(handler_class.source, handler_class(collaborators))
    return registry
