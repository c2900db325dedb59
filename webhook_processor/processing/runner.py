from typing import Callable, Optional

from webhook_processor.datetime_utils import utcnow
from webhook_processor.dispatch import (
    Collaborators,
    DispatchResult,
    EventEnvelope,
    ProviderDispatcher,
    build_default_registry,
)
from webhook_processor.errors import InvalidTransitionError, StaleEntryError
from webhook_processor.logging_config import ProcessorRunContext, get_logger
from webhook_processor.models import WebhookQueueEntry
from webhook_processor.processing.results import EntryResult, ProcessingSummary
from webhook_processor.processing.retry import RetryPolicy
from webhook_processor.services.alert_service import LoggingOwnerAlerter, build_alerter
from webhook_processor.services.queue_store import STUCK_ENTRY_ERROR, WebhookQueueStore

logger = get_logger(__name__)


class WebhookProcessor:
    """
    Pulls due queue entries and drives each one through
    pending -> processing -> completed | pending (retry) | failed.

    The processor owns every queue state change; the dispatcher only reports
    success or failure. Store failures (QueueStoreError) abort the run,
    dispatcher failures never do.
    """

    def __init__(
        self,
        store: WebhookQueueStore,
        dispatcher: ProviderDispatcher,
        policy: Optional[RetryPolicy] = None,
        alerter=None,
        batch_size: int = 10,
        claim_timeout_seconds: Optional[int] = None,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.policy = policy or RetryPolicy()
        self.alerter = alerter or LoggingOwnerAlerter()
        self.batch_size = batch_size
        self.claim_timeout_seconds = claim_timeout_seconds
        self.clock = clock

    def run(self, trigger: str = "manual", limit: Optional[int] = None) -> ProcessingSummary:
        """Process one batch of due entries and return the per-entry summary."""
        with ProcessorRunContext(trigger) as context:
            summary = ProcessingSummary(run_id=context.run_id)

            if self.claim_timeout_seconds is not None:
                self._sweep_stuck(summary)

            entries = self.store.fetch_due_entries(limit=limit or self.batch_size, now=self.clock())
            if not entries:
                logger.debug("No pending webhooks to process", run_id=context.run_id)
                return summary

            logger.info(f"Processing {len(entries)} webhook events", run_id=context.run_id)

            for entry in entries:
                result = self.process_entry(entry)
                if result is None:
                    summary.skipped += 1
                else:
                    summary.results.append(result)

            if summary.skipped:
                logger.info(
                    f"Skipped {summary.skipped} entries claimed by another runner",
                    run_id=context.run_id,
                )

            logger.debug(
                f"Processed {summary.processed}/{len(entries)} due webhook entries",
                run_id=context.run_id,
            )
            return summary

    def _sweep_stuck(self, summary: ProcessingSummary) -> None:
        sweep = self.store.reclaim_stuck(
            self.claim_timeout_seconds, max_retries=self.policy.max_retries, now=self.clock()
        )
        summary.reclaimed = len(sweep.reclaimed)

        for entry_id in sweep.failed:
            entry = self.store.get_entry(entry_id)
            event = EventEnvelope.from_model(entry.event, retry_count=entry.retry_count)
            logger.error(
                f"Failed after {self.policy.max_retries} retries: {event.event_id}",
                source=event.source,
                event_type=event.event_type,
                error=STUCK_ENTRY_ERROR,
            )
            self._alert_owner(event, STUCK_ENTRY_ERROR, entry.retry_count)
            summary.results.append(EntryResult(
                event_id=event.event_id,
                status="failed",
                retry_count=entry.retry_count,
                error=STUCK_ENTRY_ERROR,
            ))

    def process_entry(self, entry: WebhookQueueEntry) -> Optional[EntryResult]:
        """
        Claim and process a single entry.

        Returns None when another runner already claimed it.
        """
        entry_id = entry.id
        if not self.store.mark_processing(entry_id, now=self.clock()):
            return None

        # Re-read after the claim; the commit expired the loaded state
        entry = self.store.get_entry(entry_id)
        retry_count = entry.retry_count
        event = EventEnvelope.from_model(entry.event, retry_count=retry_count)

        try:
            if event.processed:
                # Duplicate delivery of an event that already succeeded
                logger.info("Event already processed, skipping dispatch", event_id=event.event_id)
                self.store.mark_completed(entry_id, now=self.clock())
                return EntryResult(event_id=event.event_id, status="completed")

            outcome = self.dispatcher.dispatch(event)
            if outcome.success:
                return self._complete(entry_id, event)
            return self._fail(entry_id, event, retry_count, outcome)
        except (InvalidTransitionError, StaleEntryError) as exc:
            # The entry moved under us (e.g. reclaimed by the stuck-entry sweep)
            logger.warning("Queue entry changed during processing", entry_id=entry_id, event_id=event.event_id, error=str(exc))
            return None

    def _complete(self, entry_id: int, event: EventEnvelope) -> EntryResult:
        self.store.mark_completed(entry_id, now=self.clock())
        logger.info(f"Successfully processed: {event.event_id}", source=event.source, event_type=event.event_type)
        return EntryResult(event_id=event.event_id, status="completed")

    def _fail(self, entry_id: int, event: EventEnvelope, retry_count: int, outcome: DispatchResult) -> EntryResult:
        decision = self.policy.decide(retry_count, self.clock())

        if decision.terminal:
            error = outcome.error or "Max retries exceeded"
            self.store.mark_failed_terminal(entry_id, error, decision.new_retry_count)
            logger.error(
                f"Failed after {self.policy.max_retries} retries: {event.event_id}",
                source=event.source,
                event_type=event.event_type,
                error=error,
            )
            self._alert_owner(event, error, decision.new_retry_count)
            return EntryResult(
                event_id=event.event_id,
                status="failed",
                retry_count=decision.new_retry_count,
                error=error,
            )

        error = outcome.error or "Unknown error"
        self.store.mark_retry(entry_id, error, decision.next_retry_at, decision.new_retry_count)
        logger.warning(
            f"Scheduled retry {decision.new_retry_count}/{self.policy.max_retries} for: {event.event_id}",
            next_retry_at=decision.next_retry_at.isoformat(),
            error=error,
        )
        return EntryResult(
            event_id=event.event_id,
            status="retrying",
            retry_count=decision.new_retry_count,
            next_retry=decision.next_retry_at,
            error=error,
        )

    def _alert_owner(self, event: EventEnvelope, error: str, retry_count: int) -> None:
        try:
            self.alerter.terminal_failure(event, error, retry_count)
        except Exception as exc:
            logger.warning("Owner alert failed", event_id=event.event_id, error=str(exc))


def build_processor(settings, collaborators: Optional[Collaborators] = None, store: Optional[WebhookQueueStore] = None,
                    alerter=None, clock: Callable = utcnow) -> WebhookProcessor:
    """Wire the default processor object graph from ProcessorSettings."""
    alerter = alerter or build_alerter(settings)
    collaborators = collaborators or Collaborators()
    if collaborators.alerter is None:
        collaborators.alerter = alerter

    dispatcher = ProviderDispatcher(
        build_default_registry(collaborators),
        timeout_seconds=settings.dispatch_timeout_seconds,
        max_workers=settings.dispatch_workers,
    )
    return WebhookProcessor(
        store=store or WebhookQueueStore(),
        dispatcher=dispatcher,
        policy=RetryPolicy.from_settings(settings),
        alerter=alerter,
        batch_size=settings.batch_size,
        claim_timeout_seconds=settings.claim_timeout_seconds,
        clock=clock,
    )
