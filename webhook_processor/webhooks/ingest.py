"""
Helpers for the webhook receiver: provider signature checks and
extraction of the (event_type, event_id) pair from provider payloads.
"""
import base64
import hashlib
import hmac
import json
from typing import Optional, Tuple

import stripe

from webhook_processor.errors import SignatureVerificationError
from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADERS = {
    "stripe": ("Stripe-Signature",),
    "quickbooks": ("intuit-signature", "X-QuickBooks-Signature"),
    "plaid": ("Plaid-Verification",),
}

# Stripe SDK default; older signatures are treated as replays
STRIPE_SIGNATURE_TOLERANCE_SECONDS = 300


def _to_bytes(value) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def verify_stripe_signature(raw_body, signature_header: str, secret: str,
                            tolerance: int = STRIPE_SIGNATURE_TOLERANCE_SECONDS) -> bool:
    """
    Check a ``Stripe-Signature`` header with the Stripe SDK.

    Signatures whose timestamp is older than ``tolerance`` seconds are
    rejected so a captured request cannot be replayed later.
    """
    if not signature_header:
        return False
    try:
        stripe.Webhook.construct_event(raw_body, signature_header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Stripe signature rejected", reason=str(exc))
        return False
    except ValueError:
        # Body is not UTF-8 JSON
        return False
    return True


def verify_quickbooks_signature(raw_body, signature: str, verifier_token: str) -> bool:
    """QuickBooks signs the raw body with HMAC-SHA256 and sends it base64 encoded."""
    if not signature:
        return False
    digest = hmac.new(_to_bytes(verifier_token), _to_bytes(raw_body), hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


def find_signature(source: str, headers) -> Optional[str]:
    for header in SIGNATURE_HEADERS.get(source, ()):
        value = headers.get(header)
        if value:
            return value
    return None


def verify_signature(source: str, raw_body, signature: Optional[str], settings) -> None:
    """
    Verify the provider signature when a secret for the source is configured.

    Raises:
        SignatureVerificationError: missing or mismatched signature
    """
    if source == "stripe" and settings.stripe_webhook_secret:
        if not signature or not verify_stripe_signature(
            raw_body, signature, settings.stripe_webhook_secret, settings.stripe_signature_tolerance_seconds
        ):
            logger.error("Invalid Stripe signature")
            raise SignatureVerificationError("Invalid signature")
    elif source == "quickbooks" and settings.quickbooks_verifier_token:
        if not signature or not verify_quickbooks_signature(raw_body, signature, settings.quickbooks_verifier_token):
            logger.error("Invalid QuickBooks signature")
            raise SignatureVerificationError("Invalid signature")


def payload_fingerprint(source: str, payload: dict) -> str:
    """Stable id for payloads that carry no provider id; identical re-deliveries collide."""
    payload_json = json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)
    digest = hashlib.sha256(f"{source}:{payload_json}".encode("utf-8")).hexdigest()
    return f"{source}_{digest[:32]}"


def extract_event_identity(source: str, payload: dict) -> Tuple[str, str]:
    """Return (event_type, event_id) for a provider payload."""
    if source == "stripe":
        event_type = payload.get("type") or "unknown"
        event_id = payload.get("id")
    elif source == "quickbooks":
        notifications = payload.get("eventNotifications") or [{}]
        entities = (notifications[0].get("dataChangeEvent") or {}).get("entities") or [{}]
        event_type = entities[0].get("name") or "unknown"
        event_id = None
    elif source == "plaid":
        event_type = payload.get("webhook_type") or "unknown"
        event_id = None
    elif source == "zapier":
        event_type = payload.get("event_type") or "zapier.action"
        event_id = payload.get("id")
    else:
        event_type = payload.get("type") or payload.get("event") or "unknown"
        event_id = payload.get("id")

    if not event_id:
        event_id = payload_fingerprint(source, payload)
    return str(event_type), str(event_id)
