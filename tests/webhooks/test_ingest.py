"""
Tests for receiver helpers: event identity extraction and signature checks.
"""
import base64
import hashlib
import hmac
import time

import pytest

from webhook_processor.config import ProcessorSettings
from webhook_processor.errors import SignatureVerificationError
from webhook_processor.webhooks.ingest import (
    extract_event_identity,
    find_signature,
    payload_fingerprint,
    verify_quickbooks_signature,
    verify_signature,
    verify_stripe_signature,
)


class TestExtractEventIdentity:

    def test_stripe_uses_provider_id_and_type(self):
        assert extract_event_identity("stripe", {"id": "evt_9", "type": "invoice.paid"}) == ("invoice.paid", "evt_9")

    def test_stripe_without_type(self):
        event_type, event_id = extract_event_identity("stripe", {"id": "evt_9"})
        assert event_type == "unknown"
        assert event_id == "evt_9"

    def test_quickbooks_uses_first_entity_name(self):
        payload = {"eventNotifications": [{"dataChangeEvent": {"entities": [{"name": "Payment", "id": "3"}]}}]}

        event_type, event_id = extract_event_identity("quickbooks", payload)

        assert event_type == "Payment"
        assert event_id == payload_fingerprint("quickbooks", payload)

    def test_plaid_uses_webhook_type(self):
        payload = {"webhook_type": "ITEM_LOGIN_REQUIRED", "item_id": "item_1"}

        event_type, event_id = extract_event_identity("plaid", payload)

        assert event_type == "ITEM_LOGIN_REQUIRED"
        assert event_id.startswith("plaid_")

    def test_zapier_defaults_event_type(self):
        assert extract_event_identity("zapier", {"id": "zap_1"}) == ("zapier.action", "zap_1")

    def test_unknown_source_falls_back_to_fingerprint(self):
        payload = {"event": "ping"}

        event_type, event_id = extract_event_identity("acme", payload)

        assert event_type == "ping"
        assert event_id == payload_fingerprint("acme", payload)


class TestPayloadFingerprint:

    def test_is_independent_of_key_order(self):
        assert payload_fingerprint("plaid", {"a": 1, "b": 2}) == payload_fingerprint("plaid", {"b": 2, "a": 1})

    def test_differs_per_source_and_payload(self):
        base = payload_fingerprint("plaid", {"a": 1})
        assert payload_fingerprint("quickbooks", {"a": 1}) != base
        assert payload_fingerprint("plaid", {"a": 2}) != base


class TestStripeSignature:

    def header(self, body, secret="whsec_1", timestamp=None, extra=""):
        timestamp = int(time.time()) if timestamp is None else timestamp
        digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
        return f"t={timestamp},{extra}v1={digest}"

    def test_valid(self):
        body = b'{"id": "evt_1"}'
        assert verify_stripe_signature(body, self.header(body), "whsec_1") is True

    def test_any_v1_candidate_may_match(self):
        body = b'{"id": "evt_1"}'
        assert verify_stripe_signature(body, self.header(body, extra="v1=deadbeef,"), "whsec_1") is True

    def test_tampered_body(self):
        header = self.header(b'{"id": "original"}')
        assert verify_stripe_signature(b'{"id": "tampered"}', header, "whsec_1") is False

    def test_wrong_secret(self):
        body = b'{"id": "evt_1"}'
        assert verify_stripe_signature(body, self.header(body, secret="whsec_other"), "whsec_1") is False

    def test_stale_timestamp_is_rejected(self):
        body = b'{"id": "evt_1"}'
        # Correctly signed, but from 2001
        header = self.header(body, timestamp=978307200)
        assert verify_stripe_signature(body, header, "whsec_1") is False

    def test_tolerance_is_configurable(self):
        body = b'{"id": "evt_1"}'
        header = self.header(body, timestamp=int(time.time()) - 120)
        assert verify_stripe_signature(body, header, "whsec_1", tolerance=300) is True
        assert verify_stripe_signature(body, header, "whsec_1", tolerance=60) is False

    @pytest.mark.parametrize("header", ["", None, "v1=abc", "t=1700000000", "garbage"])
    def test_malformed_header(self, header):
        assert verify_stripe_signature(b"{}", header, "whsec_1") is False


class TestQuickBooksSignature:

    def test_valid(self):
        body = b'{"eventNotifications": []}'
        signature = base64.b64encode(hmac.new(b"token", body, hashlib.sha256).digest()).decode()
        assert verify_quickbooks_signature(body, signature, "token") is True

    def test_invalid(self):
        assert verify_quickbooks_signature(b"{}", "bm9wZQ==", "token") is False
        assert verify_quickbooks_signature(b"{}", None, "token") is False


class TestVerifySignature:

    def test_no_secret_means_no_check(self):
        verify_signature("stripe", b"{}", None, ProcessorSettings())

    def test_missing_signature_with_secret(self):
        settings = ProcessorSettings(stripe_webhook_secret="whsec_1")
        with pytest.raises(SignatureVerificationError):
            verify_signature("stripe", b"{}", None, settings)

    def test_find_signature_checks_alternate_headers(self):
        assert find_signature("quickbooks", {"X-QuickBooks-Signature": "abc"}) == "abc"
        assert find_signature("zapier", {"X-Anything": "abc"}) is None
