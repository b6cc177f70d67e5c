import threading
from collections import defaultdict
from collections.abc import Callable, Collection, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Generic, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential_jitter,
)

from app.ai.base import BaseAIService
from app.ai.exceptions import AdapterPermanentError, AdapterTransientError
from app.ai.factory import AIServiceFactory
from app.ai.labels import UNCLASSIFIED
from app.analysis.formatting import classification_text, describe_event, group_value
from app.analysis.models import (
    SUMMARY_UNAVAILABLE,
    CallStatus,
    ClassificationScan,
    ClassifiedEvent,
    SummaryOutcome,
)
from app.config.settings import Settings
from app.database.models import CuratedEvent
from app.logging.logger import Log

T = TypeVar("T")


class _Attempts:
    """Counts attempts made by one retried call."""

    def __init__(self) -> None:
        self.count = 0


class _CallResult(Generic[T]):
    """Value or exception handed back from a call's daemon thread."""

    def __init__(self) -> None:
        self.value: T | None = None
        self.error: BaseException | None = None


class AnalysisScanner:
    """Runs classify and summarize scans against the AI service.

    Calls go through a bounded worker pool. Every attempt has a hard timeout;
    a timeout or transient adapter error is retried with exponential backoff
    up to ``max_attempts``. A stalled call is abandoned on a daemon thread,
    so it blocks neither the rest of the scan nor process exit. Any other
    adapter failure ends that one call, never the scan.
    """

    def __init__(
        self,
        service: BaseAIService,
        *,
        max_workers: int = 4,
        call_timeout_seconds: float = 45.0,
        max_attempts: int = 3,
        backoff_initial_seconds: float = 0.5,
        backoff_max_seconds: float = 8.0,
    ) -> None:
        self._service = service
        self._max_workers = max_workers
        self._call_timeout = call_timeout_seconds
        self._max_attempts = max_attempts
        self._backoff_initial = backoff_initial_seconds
        self._backoff_max = backoff_max_seconds

    def classify_events(
        self,
        events: Iterable[CuratedEvent],
        labels: Collection[str],
        cancel_event: threading.Event | None = None,
    ) -> ClassificationScan:
        """Label every event; a failing event never aborts the scan.

        Raises:
            AdapterPermanentError: if the label set is empty. Checked before
                any call is made.
        """
        vocabulary = [label for label in dict.fromkeys(labels) if label]
        if not vocabulary:
            raise AdapterPermanentError("Label set must contain at least one label")

        items = list(events)
        stop = cancel_event or threading.Event()
        Log.info(f"Classifying {len(items)} events", labels=len(vocabulary))
        outcomes = self._map(lambda event: self._classify_one(event, vocabulary, stop), items)
        scan = ClassificationScan(outcomes=outcomes)
        Log.info(
            "Classification scan complete",
            ok=scan.count(CallStatus.OK),
            unavailable=scan.count(CallStatus.UNAVAILABLE),
            rejected=scan.count(CallStatus.REJECTED),
            cancelled=scan.count(CallStatus.CANCELLED),
        )
        return scan

    def summarize_events(
        self,
        events: Iterable[CuratedEvent],
        cancel_event: threading.Event | None = None,
    ) -> SummaryOutcome:
        """Summarize all events as one digest.

        Raises:
            AdapterPermanentError: if the service rejects the request.
        """
        texts = [describe_event(event) for event in events]
        outcome = self._summarize(texts, cancel_event or threading.Event())
        if outcome.status == CallStatus.REJECTED:
            raise AdapterPermanentError(outcome.error or "Summary request rejected")
        return outcome

    def summarize_by(
        self,
        events: Iterable[CuratedEvent],
        field: str,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, SummaryOutcome]:
        """Summarize the message text of each group of events sharing ``field``.

        Groups are independent: a rejected or unavailable group is reported
        in its own outcome.
        """
        groups: dict[str, list[str]] = defaultdict(list)
        for event in events:
            groups[group_value(event, field)].append(event.event or "")

        stop = cancel_event or threading.Event()
        keys = sorted(groups)
        outcomes = self._map(lambda key: self._summarize(groups[key], stop), keys)
        return dict(zip(keys, outcomes, strict=True))

    def _classify_one(
        self,
        event: CuratedEvent,
        labels: list[str],
        stop: threading.Event,
    ) -> ClassifiedEvent:
        if stop.is_set():
            return ClassifiedEvent(event=event, label=UNCLASSIFIED, status=CallStatus.CANCELLED)

        attempts = _Attempts()
        try:
            label = self._call(
                lambda: self._service.classify(classification_text(event), labels),
                stop,
                attempts,
            )
        except AdapterTransientError as exc:
            Log.warning(
                f"Classification unavailable after retries: {exc}",
                raw_record_id=event.raw_record_id,
                attempts=attempts.count,
            )
            return ClassifiedEvent(
                event=event,
                label=UNCLASSIFIED,
                status=CallStatus.UNAVAILABLE,
                attempts=attempts.count,
                error=str(exc),
            )
        except AdapterPermanentError as exc:
            Log.error(
                f"Classification rejected: {exc}",
                raw_record_id=event.raw_record_id,
            )
            return ClassifiedEvent(
                event=event,
                label=UNCLASSIFIED,
                status=CallStatus.REJECTED,
                attempts=attempts.count,
                error=str(exc),
            )
        except Exception as exc:
            Log.exception(
                f"Classification failed: {exc}",
                raw_record_id=event.raw_record_id,
            )
            return ClassifiedEvent(
                event=event,
                label=UNCLASSIFIED,
                status=CallStatus.UNAVAILABLE,
                attempts=attempts.count,
                error=str(exc),
            )

        return ClassifiedEvent(
            event=event,
            label=label,
            status=CallStatus.OK,
            attempts=attempts.count,
        )

    def _summarize(self, texts: list[str], stop: threading.Event) -> SummaryOutcome:
        if stop.is_set():
            return SummaryOutcome(
                text=SUMMARY_UNAVAILABLE,
                status=CallStatus.CANCELLED,
                event_count=len(texts),
            )

        attempts = _Attempts()
        try:
            text = self._call(lambda: self._service.summarize(texts), stop, attempts)
        except AdapterTransientError as exc:
            Log.warning(f"Summary unavailable after retries: {exc}", attempts=attempts.count)
            return SummaryOutcome(
                text=SUMMARY_UNAVAILABLE,
                status=CallStatus.UNAVAILABLE,
                event_count=len(texts),
                attempts=attempts.count,
                error=str(exc),
            )
        except AdapterPermanentError as exc:
            Log.error(f"Summary rejected: {exc}")
            return SummaryOutcome(
                text=SUMMARY_UNAVAILABLE,
                status=CallStatus.REJECTED,
                event_count=len(texts),
                attempts=attempts.count,
                error=str(exc),
            )
        except Exception as exc:
            Log.exception(f"Summary failed: {exc}")
            return SummaryOutcome(
                text=SUMMARY_UNAVAILABLE,
                status=CallStatus.UNAVAILABLE,
                event_count=len(texts),
                attempts=attempts.count,
                error=str(exc),
            )
        return SummaryOutcome(
            text=text,
            status=CallStatus.OK,
            event_count=len(texts),
            attempts=attempts.count,
        )

    def _map(self, fn: Callable[[T], object], items: list[T]) -> list:
        if not items:
            return []
        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(items)),
            thread_name_prefix="ai-scan",
        ) as pool:
            return list(pool.map(fn, items))

    def _call(
        self,
        fn: Callable[[], T],
        stop: threading.Event,
        attempts: _Attempts,
    ) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts) | stop_when_event_set(stop),
            wait=wait_exponential_jitter(
                multiplier=self._backoff_initial, max=self._backoff_max
            ),
            retry=retry_if_exception_type(AdapterTransientError),
            sleep=stop.wait,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                attempts.count += 1
                return self._with_timeout(fn)
        raise AssertionError("unreachable: Retrying either returns or reraises")

    def _with_timeout(self, fn: Callable[[], T]) -> T:
        # Daemon thread per attempt: an abandoned call keeps running in the
        # background without holding a scan worker or the interpreter open.
        result: _CallResult[T] = _CallResult()

        def run() -> None:
            try:
                result.value = fn()
            except BaseException as exc:  # noqa: BLE001
                result.error = exc

        worker = threading.Thread(target=run, name="ai-call", daemon=True)
        worker.start()
        worker.join(self._call_timeout)
        if worker.is_alive():
            raise AdapterTransientError(f"AI call timed out after {self._call_timeout}s")
        if result.error is not None:
            raise result.error
        return result.value  # type: ignore[return-value]


def build_scanner(settings: Settings) -> AnalysisScanner:
    """Build an AnalysisScanner around the configured AI service."""
    return AnalysisScanner(
        AIServiceFactory.create(settings),
        max_workers=settings.ai_max_workers,
        call_timeout_seconds=settings.ai_call_timeout_seconds,
        max_attempts=settings.ai_max_attempts,
        backoff_initial_seconds=settings.ai_backoff_initial_seconds,
        backoff_max_seconds=settings.ai_backoff_max_seconds,
    )
