import threading
import warnings
from collections.abc import Collection, Sequence
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from app.ai.base import BaseAIService
from app.ai.exceptions import AdapterPermanentError, AdapterTransientError
from app.ai.labels import UNCLASSIFIED
from app.analysis.models import SUMMARY_UNAVAILABLE, CallStatus
from app.analysis.scanner import AnalysisScanner, build_scanner
from app.database.models import CuratedEvent


def _event(raw_id: int, text: str, **fields: object) -> CuratedEvent:
    return CuratedEvent(
        raw_record_id=raw_id,
        source_file_id="events_a.json",
        position_in_file=raw_id,
        event=text,
        **fields,  # type: ignore[arg-type]
    )


class ScriptedService(BaseAIService):
    """Answers by event text; scripted texts hang or raise."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.hang_on: set[str] = set()
        self.fail_times: dict[str, int] = {}
        self.reject_on: set[str] = set()
        self.summaries: list[list[str]] = []
        self.summary_error: Exception | None = None
        self.crash_on: set[str] = set()
        self._lock = threading.Lock()

    def classify(self, text: str, labels: Collection[str]) -> str:
        message = text.split(" | ")[0]
        if message in self.hang_on:
            self.release.wait(5)
            return "late"
        if message in self.reject_on:
            raise AdapterPermanentError("request rejected with status 400")
        if message in self.crash_on:
            raise RuntimeError("adapter blew up")
        with self._lock:
            remaining = self.fail_times.get(message, 0)
            if remaining:
                self.fail_times[message] = remaining - 1
                raise AdapterTransientError("status 503")
        return "waf_block" if "blocked" in message else "benign"

    def summarize(self, texts: Sequence[str]) -> str:
        with self._lock:
            self.summaries.append(list(texts))
        if self.summary_error is not None:
            raise self.summary_error
        return f"{len(texts)} events"


def _scanner(service: BaseAIService, **overrides: float) -> AnalysisScanner:
    options = {
        "max_workers": 3,
        "call_timeout_seconds": 1.0,
        "max_attempts": 3,
        "backoff_initial_seconds": 0.0,
        "backoff_max_seconds": 0.0,
    }
    options.update(overrides)
    return AnalysisScanner(service, **options)  # type: ignore[arg-type]


_LABELS = ["benign", "waf_block"]


class TestClassifyEvents:
    def test_labels_every_event_in_input_order(self) -> None:
        events = [_event(1, "GET / 200"), _event(2, "request blocked"), _event(3, "login ok")]

        scan = _scanner(ScriptedService()).classify_events(events, _LABELS)

        assert [o.event.raw_record_id for o in scan.outcomes] == [1, 2, 3]
        assert [o.label for o in scan.outcomes] == ["benign", "waf_block", "benign"]
        assert scan.count(CallStatus.OK) == 3
        assert scan.label_counts() == {"benign": 2, "waf_block": 1}

    def test_hanging_call_times_out_and_scan_completes(self) -> None:
        service = ScriptedService()
        service.hang_on.add("stuck")
        events = [_event(1, "a"), _event(2, "stuck"), _event(3, "blocked here")]

        try:
            scan = _scanner(service, call_timeout_seconds=0.05).classify_events(events, _LABELS)
        finally:
            service.release.set()

        stuck = scan.outcomes[1]
        assert stuck.label == UNCLASSIFIED
        assert stuck.status == CallStatus.UNAVAILABLE
        assert stuck.attempts == 3
        assert "timed out" in (stuck.error or "")
        assert scan.outcomes[0].label == "benign"
        assert scan.outcomes[2].label == "waf_block"

    def test_transient_error_is_retried(self) -> None:
        service = ScriptedService()
        service.fail_times["flaky"] = 2

        scan = _scanner(service).classify_events([_event(1, "flaky")], _LABELS)

        outcome = scan.outcomes[0]
        assert outcome.status == CallStatus.OK
        assert outcome.label == "benign"
        assert outcome.attempts == 3

    def test_transient_errors_past_limit_are_unavailable(self) -> None:
        service = ScriptedService()
        service.fail_times["flaky"] = 5

        scan = _scanner(service, max_attempts=2).classify_events([_event(1, "flaky")], _LABELS)

        assert scan.outcomes[0].status == CallStatus.UNAVAILABLE
        assert scan.outcomes[0].attempts == 2
        assert service.fail_times["flaky"] == 3

    def test_permanent_error_is_not_retried(self) -> None:
        service = ScriptedService()
        service.reject_on.add("bad")

        scan = _scanner(service).classify_events([_event(1, "bad"), _event(2, "ok")], _LABELS)

        assert scan.outcomes[0].status == CallStatus.REJECTED
        assert scan.outcomes[0].attempts == 1
        assert scan.outcomes[0].label == UNCLASSIFIED
        assert scan.outcomes[1].status == CallStatus.OK

    def test_unexpected_adapter_error_is_isolated(self) -> None:
        service = ScriptedService()
        service.crash_on.add("boom")
        events = [_event(1, "a"), _event(2, "boom"), _event(3, "blocked here")]

        scan = _scanner(service).classify_events(events, _LABELS)

        failed = scan.outcomes[1]
        assert failed.label == UNCLASSIFIED
        assert failed.status == CallStatus.UNAVAILABLE
        assert failed.attempts == 1
        assert failed.error == "adapter blew up"
        assert [o.label for o in scan.outcomes] == ["benign", UNCLASSIFIED, "waf_block"]

    def test_abandoned_call_does_not_hold_process_open(self) -> None:
        service = ScriptedService()
        service.hang_on.add("stuck")

        try:
            scan = _scanner(service, call_timeout_seconds=0.05, max_attempts=1).classify_events(
                [_event(1, "stuck")], _LABELS
            )
            stalled = [t for t in threading.enumerate() if t.name == "ai-call" and t.is_alive()]
        finally:
            service.release.set()

        assert scan.outcomes[0].status == CallStatus.UNAVAILABLE
        assert stalled
        assert all(thread.daemon for thread in stalled)

    def test_backoff_uses_current_tenacity_api(self) -> None:
        service = ScriptedService()
        service.fail_times["flaky"] = 1

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            _scanner(service, max_workers=1).classify_events([_event(1, "flaky")], _LABELS)

        assert not [w for w in caught if issubclass(w.category, DeprecationWarning)]

    def test_empty_label_set_fails_before_any_call(self) -> None:
        service = MagicMock(spec=BaseAIService)

        with pytest.raises(AdapterPermanentError, match="at least one label"):
            _scanner(service).classify_events([_event(1, "a")], [])
        service.classify.assert_not_called()

    def test_cancelled_scan_marks_events_cancelled(self) -> None:
        cancel = threading.Event()
        cancel.set()

        scan = _scanner(ScriptedService()).classify_events(
            [_event(1, "a"), _event(2, "b")], _LABELS, cancel_event=cancel
        )

        assert scan.count(CallStatus.CANCELLED) == 2

    def test_no_events(self) -> None:
        scan = _scanner(ScriptedService()).classify_events([], _LABELS)
        assert scan.outcomes == []


class TestSummarizeEvents:
    def test_summarizes_rendered_lines(self) -> None:
        service = ScriptedService()
        events = [
            _event(1, "login failed", user_name="bob", event_ts=datetime(2026, 1, 1, 8, 0)),
            _event(2, "login ok"),
        ]

        outcome = _scanner(service).summarize_events(events)

        assert outcome.status == CallStatus.OK
        assert outcome.text == "2 events"
        assert outcome.event_count == 2
        assert service.summaries[0][0].startswith("[2026-01-01 08:00:00.000]")
        assert "user=bob" in service.summaries[0][0]

    def test_exhausted_retries_return_unavailable_marker(self) -> None:
        service = ScriptedService()
        service.summary_error = AdapterTransientError("status 503")

        outcome = _scanner(service, max_attempts=2).summarize_events([_event(1, "a")])

        assert outcome.text == SUMMARY_UNAVAILABLE
        assert outcome.status == CallStatus.UNAVAILABLE
        assert len(service.summaries) == 2

    def test_unexpected_error_returns_unavailable_marker(self) -> None:
        service = ScriptedService()
        service.summary_error = RuntimeError("adapter blew up")

        outcome = _scanner(service).summarize_events([_event(1, "a")])

        assert outcome.text == SUMMARY_UNAVAILABLE
        assert outcome.status == CallStatus.UNAVAILABLE
        assert len(service.summaries) == 1

    def test_rejected_request_raises(self) -> None:
        service = ScriptedService()
        service.summary_error = AdapterPermanentError("status 401")

        with pytest.raises(AdapterPermanentError, match="status 401"):
            _scanner(service).summarize_events([_event(1, "a")])
        assert len(service.summaries) == 1


class TestSummarizeBy:
    def test_groups_message_text_by_field(self) -> None:
        service = ScriptedService()
        events = [
            _event(1, "a", sourcetype="nginx"),
            _event(2, "b", sourcetype="okta"),
            _event(3, "c", sourcetype="nginx"),
            _event(4, "d"),
        ]

        result = _scanner(service).summarize_by(events, "sourcetype")

        assert list(result) == ["(none)", "nginx", "okta"]
        assert result["nginx"].text == "2 events"
        assert result["nginx"].event_count == 2
        assert sorted(sorted(texts) for texts in service.summaries) == [["a", "c"], ["b"], ["d"]]

    def test_rejected_group_is_isolated(self) -> None:
        service = ScriptedService()
        service.summary_error = AdapterPermanentError("status 400")

        result = _scanner(service).summarize_by([_event(1, "a", host="h1")], "host")

        assert result["h1"].status == CallStatus.REJECTED
        assert result["h1"].text == SUMMARY_UNAVAILABLE

    def test_unexpected_error_in_group_is_isolated(self) -> None:
        service = ScriptedService()
        service.summary_error = RuntimeError("adapter blew up")
        events = [_event(1, "a", host="h1"), _event(2, "b", host="h2")]

        result = _scanner(service).summarize_by(events, "host")

        assert [outcome.status for outcome in result.values()] == [
            CallStatus.UNAVAILABLE,
            CallStatus.UNAVAILABLE,
        ]
        assert result["h2"].error == "adapter blew up"


class TestBuildScanner:
    @patch("app.analysis.scanner.AIServiceFactory")
    def test_uses_settings(self, mock_factory: MagicMock) -> None:
        settings = MagicMock()
        settings.ai_max_workers = 2
        settings.ai_call_timeout_seconds = 9.0
        settings.ai_max_attempts = 4

        scanner = build_scanner(settings)

        mock_factory.create.assert_called_once_with(settings)
        assert scanner._max_workers == 2
        assert scanner._call_timeout == 9.0
        assert scanner._max_attempts == 4
