"""
Tests for the webhook processor run loop: claiming, dispatch outcomes,
exponential backoff, terminal failure and owner alerting.
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

from webhook_processor import create_app
from webhook_processor.dispatch import (
    AutomationGateway,
    BillingGateway,
    Collaborators,
    FinanceSyncGateway,
    ProviderDispatcher,
    UserNotifier,
    build_default_registry,
)
from webhook_processor.errors import QueueStoreError
from webhook_processor.models import QueueStatus, db
from webhook_processor.processing import RetryPolicy, WebhookProcessor
from webhook_processor.processing.results import IDLE_MESSAGE
from webhook_processor.services.queue_store import STUCK_ENTRY_ERROR, WebhookQueueStore


T0 = datetime(2025, 3, 1, 12, 0, 0)

PLAID_TRANSACTIONS = {"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "item_1"}


class FakeClock:
    """Deterministic replacement for utcnow."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def app():
    """Create Flask application for testing."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "WEBHOOK_SCHEDULER_ENABLED": None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def store(app):
    return WebhookQueueStore()


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def collaborators():
    return Collaborators(
        billing=Mock(spec=BillingGateway),
        finance_sync=Mock(spec=FinanceSyncGateway),
        automations=Mock(spec=AutomationGateway),
        notifier=Mock(spec=UserNotifier),
        alerter=Mock(),
    )


@pytest.fixture
def alerter():
    return Mock()


@pytest.fixture
def processor(store, collaborators, alerter, clock):
    dispatcher = ProviderDispatcher(build_default_registry(collaborators), timeout_seconds=2.0)
    yield WebhookProcessor(store=store, dispatcher=dispatcher, alerter=alerter, batch_size=10, clock=clock)
    dispatcher.close()


def enqueue(store, event_id, source="stripe", event_type="invoice.paid", payload=None, now=T0):
    event, _ = store.enqueue(source, event_type, event_id, payload or {"id": event_id}, now=now)
    return event.queue_entry


# ==============================================================================
# SUCCESSFUL PROCESSING
# ==============================================================================

class TestSuccessfulProcessing:

    def test_idle_run_reports_no_pending_webhooks(self, processor):
        summary = processor.run()

        assert summary.is_idle
        assert summary.to_dict() == {"success": True, "message": IDLE_MESSAGE}

    def test_payment_failed_event_is_completed(self, processor, store, collaborators):
        payload = {"id": "evt_1", "type": "invoice.payment_failed", "data": {"object": {"id": "in_1"}}}
        entry = enqueue(store, "evt_1", event_type="invoice.payment_failed", payload=payload)

        summary = processor.run()

        assert summary.to_dict() == {
            "success": True,
            "processed": 1,
            "results": [{"event_id": "evt_1", "status": "completed"}],
        }
        collaborators.notifier.payment_failed.assert_called_once_with("evt_1", {"id": "in_1"})
        entry = store.get_entry(entry.id)
        assert entry.status == QueueStatus.COMPLETED
        assert entry.event.processed is True
        assert entry.event.processed_at == T0

    def test_unknown_source_completes_without_retries(self, processor, store):
        entry = enqueue(store, "evt_unknown", source="unknown_provider", event_type="something.happened")

        summary = processor.run()

        assert summary.results[0].status == "completed"
        entry = store.get_entry(entry.id)
        assert entry.status == QueueStatus.COMPLETED
        assert entry.retry_count == 0


# ==============================================================================
# RETRIES AND BACKOFF
# ==============================================================================

class TestRetries:

    def test_failures_back_off_exponentially(self, processor, store, collaborators, clock):
        collaborators.finance_sync.sync_bank_transactions.side_effect = ConnectionError("Plaid API unavailable")
        entry = enqueue(store, "evt_plaid", source="plaid", event_type="TRANSACTIONS", payload=PLAID_TRANSACTIONS)

        for expected_count, expected_delay in [(1, 1), (2, 2), (3, 4)]:
            summary = processor.run()

            result = summary.results[0]
            assert result.status == "retrying"
            assert result.retry_count == expected_count
            assert result.error == "Plaid API unavailable"

            refreshed = store.get_entry(entry.id)
            assert refreshed.status == QueueStatus.PENDING
            assert refreshed.retry_count == expected_count
            assert refreshed.next_retry_at == clock.now + timedelta(seconds=expected_delay)
            assert refreshed.event.retry_count == expected_count
            assert refreshed.event.processed is False

            clock.advance(expected_delay)

    def test_entry_is_not_retried_before_backoff_elapses(self, processor, store, collaborators, clock):
        collaborators.finance_sync.sync_bank_transactions.side_effect = ConnectionError("down")
        enqueue(store, "evt_wait", source="plaid", event_type="TRANSACTIONS", payload=PLAID_TRANSACTIONS)

        processor.run()
        clock.advance(0.5)

        assert processor.run().is_idle
        assert collaborators.finance_sync.sync_bank_transactions.call_count == 1

    def test_sixth_failure_is_terminal_and_alerts_owner(self, processor, store, collaborators, alerter, clock):
        collaborators.finance_sync.sync_bank_transactions.side_effect = ConnectionError("Plaid API unavailable")
        entry = enqueue(store, "evt_doomed", source="plaid", event_type="TRANSACTIONS", payload=PLAID_TRANSACTIONS)

        statuses = []
        for _ in range(6):
            summary = processor.run()
            statuses.append(summary.results[0].status)
            clock.advance(60)

        assert statuses == ["retrying"] * 5 + ["failed"]
        entry = store.get_entry(entry.id)
        assert entry.status == QueueStatus.FAILED
        assert entry.retry_count == 6
        assert entry.error_message == "Plaid API unavailable"
        assert entry.event.retry_count == 6
        assert entry.event.processed is False
        alerter.terminal_failure.assert_called_once()
        _, error, retry_count = alerter.terminal_failure.call_args.args
        assert error == "Plaid API unavailable"
        assert retry_count == 6

        # Terminal entries are never picked up again
        clock.advance(3600)
        assert processor.run().is_idle
        assert collaborators.finance_sync.sync_bank_transactions.call_count == 6

    def test_alert_failure_does_not_break_the_run(self, store, collaborators, clock):
        collaborators.billing.record_payment.side_effect = ConnectionError("billing down")
        alerter = Mock()
        alerter.terminal_failure.side_effect = RuntimeError("alert channel down")
        dispatcher = ProviderDispatcher(build_default_registry(collaborators))
        processor = WebhookProcessor(
            store=store,
            dispatcher=dispatcher,
            policy=RetryPolicy(delays=(1,), max_retries=1),
            alerter=alerter,
            clock=clock,
        )
        enqueue(store, "evt_alert")

        try:
            summary = processor.run()
        finally:
            dispatcher.close()

        assert summary.results[0].status == "failed"
        assert summary.results[0].error == "billing down"


# ==============================================================================
# IDEMPOTENCY AND CONCURRENCY
# ==============================================================================

class TestIdempotency:

    def test_completed_entry_is_not_dispatched_again(self, processor, store, collaborators, clock):
        entry = enqueue(store, "evt_once")
        processor.run()
        clock.advance(30)

        assert processor.run().is_idle
        assert collaborators.billing.record_payment.call_count == 1
        assert store.get_entry(entry.id).event.processed_at == T0

    def test_already_processed_event_completes_without_dispatch(self, processor, store, collaborators):
        entry = enqueue(store, "evt_replayed")
        event = store.get_entry(entry.id).event
        event.processed = True
        event.processed_at = T0 - timedelta(hours=1)
        db.session.commit()

        summary = processor.run()

        assert summary.results[0].status == "completed"
        collaborators.billing.record_payment.assert_not_called()
        entry = store.get_entry(entry.id)
        assert entry.status == QueueStatus.COMPLETED
        assert entry.event.processed_at == T0 - timedelta(hours=1)

    def test_losing_the_claim_skips_the_entry(self, processor, store, collaborators):
        entry = enqueue(store, "evt_contended")
        # Another runner claims the entry between fetch and claim
        assert store.mark_processing(entry.id, now=T0) is True

        assert processor.process_entry(entry) is None
        collaborators.billing.record_payment.assert_not_called()
        assert store.get_entry(entry.id).status == QueueStatus.PROCESSING

    def test_run_that_loses_every_claim_is_not_idle(self, processor, store, collaborators):
        enqueue(store, "evt_raced")

        with patch.object(store, "mark_processing", return_value=False):
            summary = processor.run()

        assert summary.is_idle is False
        assert summary.skipped == 1
        assert summary.to_dict() == {"success": True, "processed": 0, "results": [], "skipped": 1}
        collaborators.billing.record_payment.assert_not_called()


# ==============================================================================
# BATCHING AND RECOVERY
# ==============================================================================

class TestBatching:

    def test_batch_size_bounds_each_run(self, processor, store, clock):
        for i in range(15):
            enqueue(store, f"evt_{i}", now=T0 + timedelta(milliseconds=i))
        clock.advance(1)

        summary = processor.run()

        assert summary.processed == 10
        counts = store.count_by_status()
        assert counts["completed"] == 10
        assert counts["pending"] == 5
        for entry in store.fetch_due_entries(limit=10, now=clock.now):
            assert entry.retry_count == 0
            assert entry.next_retry_at < T0 + timedelta(seconds=1)

    def test_store_failure_aborts_the_run(self, collaborators):
        store = Mock(spec=WebhookQueueStore)
        store.fetch_due_entries.side_effect = QueueStoreError("database unreachable")
        dispatcher = ProviderDispatcher(build_default_registry(collaborators))
        processor = WebhookProcessor(store=store, dispatcher=dispatcher)

        try:
            with pytest.raises(QueueStoreError):
                processor.run()
        finally:
            dispatcher.close()

    def test_stuck_entries_are_reclaimed_and_processed(self, store, collaborators, clock):
        dispatcher = ProviderDispatcher(build_default_registry(collaborators))
        processor = WebhookProcessor(store=store, dispatcher=dispatcher, claim_timeout_seconds=60, clock=clock)
        entry = enqueue(store, "evt_stuck")
        store.mark_processing(entry.id, now=T0)
        clock.advance(120)

        try:
            summary = processor.run()
        finally:
            dispatcher.close()

        assert summary.reclaimed == 1
        assert summary.results[0].status == "completed"
        assert store.get_entry(entry.id).status == QueueStatus.COMPLETED

    def test_entry_that_keeps_getting_stuck_ends_failed(self, store, collaborators, alerter, clock):
        dispatcher = ProviderDispatcher(build_default_registry(collaborators))
        processor = WebhookProcessor(
            store=store, dispatcher=dispatcher, alerter=alerter, claim_timeout_seconds=60, clock=clock
        )
        entry = enqueue(store, "evt_kills_worker")
        store.mark_processing(entry.id, now=T0)
        store.mark_retry(entry.id, STUCK_ENTRY_ERROR, T0, 5)
        # Claimed again by a worker that never comes back
        store.mark_processing(entry.id, now=T0)
        clock.advance(120)

        try:
            summary = processor.run()
        finally:
            dispatcher.close()

        assert summary.reclaimed == 0
        assert [result.to_dict() for result in summary.results] == [
            {"event_id": "evt_kills_worker", "status": "failed", "retry_count": 6, "error": STUCK_ENTRY_ERROR},
        ]
        alerter.terminal_failure.assert_called_once()
        collaborators.billing.record_payment.assert_not_called()
        entry = store.get_entry(entry.id)
        assert entry.status == QueueStatus.FAILED
        assert entry.retry_count == 6
