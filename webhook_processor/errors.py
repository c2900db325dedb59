class WebhookProcessorError(Exception):
    """Base class for errors raised by the webhook processor."""


class QueueStoreError(WebhookProcessorError):
    """The event store or queue could not be reached or written.

    Aborts the whole processor invocation.
    """


class InvalidTransitionError(WebhookProcessorError, ValueError):
    """A queue entry was asked to move along a transition the state machine forbids."""

    def __init__(self, entry_id, current, target):
        self.entry_id = entry_id
        self.current = current
        self.target = target
        super().__init__(
            f"Queue entry {entry_id}: transition {_name(current)} -> {_name(target)} is not allowed"
        )


class StaleEntryError(WebhookProcessorError):
    """The queue entry was no longer in the expected state when it was written."""

    def __init__(self, entry_id, expected):
        self.entry_id = entry_id
        self.expected = expected
        super().__init__(f"Queue entry {entry_id} is no longer {_name(expected)}")


class SignatureVerificationError(WebhookProcessorError):
    """An inbound webhook failed provider signature verification."""


def _name(status):
    return getattr(status, "value", status)
