import threading
from concurrent.futures import ThreadPoolExecutor, wait

from webhook_processor.dispatch.envelope import DispatchResult, EventEnvelope
from webhook_processor.dispatch.registry import HandlerRegistry
from webhook_processor.logging_config import get_logger

logger = get_logger(__name__)


class ProviderDispatcher:
    """
    Routes an event to its source handler and reports success or failure.

    ``dispatch`` never raises. Unknown sources are treated as success since
    retrying cannot fix a routing problem. Each handler call runs on a
    long-lived worker pool and is bounded by ``timeout_seconds``; a call
    that overruns is reported as a failure and left to finish in the
    background. Once overrunning calls occupy every worker, the pool is
    swapped for a fresh one so other sources keep being served.
    """

    def __init__(self, registry: HandlerRegistry, timeout_seconds: float = 10.0, max_workers: int = 4):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self._lock = threading.Lock()
        self._executor = self._new_executor()
        self._abandoned = set()
        self._closed = False

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="webhook-dispatch")

    def _submit(self, handler, event: EventEnvelope):
        with self._lock:
            if self._closed:
                raise RuntimeError("dispatcher is closed")

            self._abandoned = {future for future in self._abandoned if not future.done()}
            if len(self._abandoned) >= self.max_workers:
                logger.warning(
                    "Dispatch pool exhausted by hung handlers, starting a new pool",
                    hung_handlers=len(self._abandoned),
                )
                # Hung threads are left running; anything still queued has already timed out
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = self._new_executor()
                self._abandoned = set()

            return self._executor.submit(handler.handle, event)

    def _abandon(self, future) -> None:
        if future.cancel():
            return
        with self._lock:
            self._abandoned.add(future)

    @property
    def hung_handlers(self) -> int:
        with self._lock:
            return sum(1 for future in self._abandoned if not future.done())

    def dispatch(self, event: EventEnvelope) -> DispatchResult:
        logger.info(f"Processing {event.source} webhook: {event.event_type}", event_id=event.event_id)

        handler = self.registry.get(event.source)
        if handler is None:
            logger.info("Unknown webhook source, not retrying", event_id=event.event_id, source=event.source)
            return DispatchResult.ok()

        try:
            future = self._submit(handler, event)
        except RuntimeError as exc:
            # Dispatcher or executor already shut down
            return DispatchResult.failure(exc)

        # wait() keeps a handler's own TimeoutError apart from the dispatch deadline
        done, _ = wait([future], timeout=self.timeout_seconds)
        if not done:
            self._abandon(future)
            logger.warning(
                "Webhook handler timed out",
                event_id=event.event_id,
                source=event.source,
                timeout_seconds=self.timeout_seconds,
            )
            return DispatchResult.failure(f"Handler timed out after {self.timeout_seconds}s")

        try:
            result = future.result()
        except Exception as exc:
            logger.error(
                "Error processing webhook",
                event_id=event.event_id,
                source=event.source,
                error=str(exc),
                exc_info=True,
            )
            return DispatchResult.failure(exc)

        if not isinstance(result, DispatchResult):
            return DispatchResult.ok()
        return result

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._executor.shutdown(wait=False)
