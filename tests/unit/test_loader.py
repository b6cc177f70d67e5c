import threading
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import psycopg
import pytest

from app.database.models import LoadStatus
from app.ingestion.loader import IngestionLoader
from app.staging.codec import serialize_records
from app.staging.exceptions import StagingUnavailableError
from app.staging.stager import FileStager
from app.staging.staging_area import LocalStagingArea
from tests.fakes import FakeLoadStateRepository, FakeRawRecordsRepository


def _event(n: int) -> dict[str, object]:
    return {
        "time": 1700000000 + n,
        "index": "security",
        "sourcetype": "nginx:access",
        "event": f"request {n}",
        "fields": {"http_status": 200, "user": f"user{n}"},
    }


def _make_loader(
    staging_root: Path,
    max_workers: int = 2,
    max_file_attempts: int = 3,
) -> tuple[IngestionLoader, FakeRawRecordsRepository, FakeLoadStateRepository]:
    load_state = FakeLoadStateRepository()
    raw = FakeRawRecordsRepository(load_state)
    loader = IngestionLoader(
        LocalStagingArea(staging_root),
        raw,
        load_state,
        max_workers=max_workers,
        max_file_attempts=max_file_attempts,
        clock=lambda: datetime(2026, 1, 1, tzinfo=UTC),
    )
    return loader, raw, load_state


def _stage(root: Path, file_id: str, records: list[object]) -> None:
    LocalStagingArea(root).publish(file_id, serialize_records(records))


class TestRefreshLoadsNewFiles:
    def test_two_files_three_records_each(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0), _event(1), _event(2)])
        _stage(tmp_path, "b.json", [_event(3), _event(4), _event(5)])
        loader, raw, _ = _make_loader(tmp_path)

        result = loader.refresh()

        assert result.files_loaded == 2
        assert result.records_inserted == 6
        assert raw.count() == 6
        for file_id in ("a.json", "b.json"):
            positions = [r.position_in_file for r in raw.scan_by_source_file(file_id)]
            assert positions == [0, 1, 2]

    def test_positions_follow_file_order(self, tmp_path: Path) -> None:
        records = [_event(n) for n in range(5)]
        _stage(tmp_path, "a.json", records)
        loader, raw, _ = _make_loader(tmp_path)

        loader.refresh()

        stored = raw.scan_by_source_file("a.json")
        assert [r.payload for r in stored] == records
        assert [r.position_in_file for r in stored] == list(range(5))

    def test_records_carry_ingest_timestamp(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0)])
        loader, raw, _ = _make_loader(tmp_path)

        loader.refresh()

        assert raw.records[0].ingest_ts == datetime(2026, 1, 1, tzinfo=UTC)

    def test_empty_file_is_loaded_with_zero_records(self, tmp_path: Path) -> None:
        (tmp_path / "empty.json").write_bytes(b"")
        loader, raw, _ = _make_loader(tmp_path)

        result = loader.refresh()

        assert result.files_loaded == 1
        assert raw.count() == 0
        assert loader.status("empty.json") == LoadStatus.LOADED


class TestRefreshIdempotence:
    def test_second_refresh_is_a_no_op(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0), _event(1)])
        loader, raw, _ = _make_loader(tmp_path)
        loader.refresh()
        before = list(raw.records)

        result = loader.refresh()

        assert result.files_loaded == 0
        assert result.records_inserted == 0
        assert raw.records == before

    def test_only_new_files_load_on_later_refresh(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0)])
        loader, raw, _ = _make_loader(tmp_path)
        loader.refresh()
        _stage(tmp_path, "b.json", [_event(1), _event(2)])

        result = loader.refresh()

        assert result.files_loaded == 1
        assert raw.count() == 3

    def test_concurrent_refreshes_do_not_duplicate(self, tmp_path: Path) -> None:
        for i in range(6):
            _stage(tmp_path, f"f{i}.json", [_event(i), _event(i + 100)])
        loader, raw, _ = _make_loader(tmp_path, max_workers=3)

        threads = [threading.Thread(target=loader.refresh) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        keys = [(r.source_file_id, r.position_in_file) for r in raw.records]
        assert len(keys) == len(set(keys)) == 12


class TestParseFailure:
    def test_bad_file_fails_without_partial_rows(self, tmp_path: Path) -> None:
        _stage(tmp_path, "good.json", [_event(0), _event(1)])
        (tmp_path / "bad.json").write_bytes(b'{"time": 1}\n{"time": \n{"time": 3}\n')
        loader, raw, _ = _make_loader(tmp_path)

        result = loader.refresh()

        assert result.files_loaded == 1
        assert result.files_failed == 1
        assert "bad.json" in result.failures
        assert raw.scan_by_source_file("bad.json") == []
        assert len(raw.scan_by_source_file("good.json")) == 2
        assert loader.status("bad.json") == LoadStatus.FAILED

    def test_failed_file_is_retried_until_attempt_limit(self, tmp_path: Path) -> None:
        (tmp_path / "bad.json").write_bytes(b"not json\n")
        loader, _, load_state = _make_loader(tmp_path, max_file_attempts=2)

        loader.refresh()
        loader.refresh()
        third = loader.refresh()

        assert load_state.states["bad.json"].attempts == 2
        assert third.files_failed == 0

    def test_fixed_file_loads_on_retry(self, tmp_path: Path) -> None:
        (tmp_path / "late.json").write_bytes(b"{broken\n")
        loader, raw, _ = _make_loader(tmp_path)
        loader.refresh()
        (tmp_path / "late.json").write_bytes(b'{"time": 1}\n')

        result = loader.refresh()

        assert result.files_loaded == 1
        assert raw.count() == 1
        assert loader.status("late.json") == LoadStatus.LOADED


class TestAbort:
    def test_unreachable_staging_area_raises_and_writes_nothing(self, tmp_path: Path) -> None:
        loader, raw, load_state = _make_loader(tmp_path / "missing")

        with pytest.raises(StagingUnavailableError):
            loader.refresh()

        assert raw.count() == 0
        assert load_state.states == {}

    def test_store_failure_rolls_back_that_file_and_propagates(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0)])
        loader, raw, _ = _make_loader(tmp_path, max_workers=1)
        raw.fail_on_file = "a.json"

        with pytest.raises(ConnectionError):
            loader.refresh()

        assert raw.count() == 0
        assert loader.status("a.json") == LoadStatus.PENDING


class TestCancellation:
    def test_set_cancel_event_skips_unstarted_files(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0)])
        _stage(tmp_path, "b.json", [_event(1)])
        loader, raw, _ = _make_loader(tmp_path)
        cancel = threading.Event()
        cancel.set()

        result = loader.refresh(cancel_event=cancel)

        assert result.files_skipped == 2
        assert raw.count() == 0
        assert loader.status("a.json") == LoadStatus.PENDING


class TestStatus:
    def test_unknown_file_is_pending(self, tmp_path: Path) -> None:
        loader, _, _ = _make_loader(tmp_path)
        assert loader.status("never-seen.json") == LoadStatus.PENDING

    def test_loaded_record_count_sums_loaded_files(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0), _event(1)])
        _stage(tmp_path, "b.json", [_event(2)])
        loader, _, _ = _make_loader(tmp_path)
        loader.refresh()

        assert loader.loaded_record_count() == 3

    def test_status_delegates_to_repository(self, tmp_path: Path) -> None:
        load_state = MagicMock()
        load_state.find.return_value = None
        loader = IngestionLoader(LocalStagingArea(tmp_path), MagicMock(), load_state)

        assert loader.status("x.json") == LoadStatus.PENDING
        load_state.find.assert_called_once_with("x.json")

    def test_status_counts_by_state(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0)])
        (tmp_path / "bad.json").write_bytes(b"not json\n")
        loader, _, _ = _make_loader(tmp_path)
        loader.refresh()

        counts = loader.status_counts()

        assert counts[LoadStatus.LOADED] == 1
        assert counts[LoadStatus.FAILED] == 1
        assert counts[LoadStatus.PENDING] == 0


class TestStagedFileRoundTrip:
    def _stage_and_load(
        self, tmp_path: Path, records: list[object]
    ) -> tuple[list[str], FakeRawRecordsRepository]:
        file_ids = FileStager(LocalStagingArea(tmp_path)).stage(records, batch_size=10)
        loader, raw, _ = _make_loader(tmp_path)
        result = loader.refresh()
        assert result.files_failed == 0
        return file_ids, raw

    def test_single_array_record_keeps_its_shape(self, tmp_path: Path) -> None:
        [file_id], raw = self._stage_and_load(tmp_path, [[1, 2]])

        stored = raw.scan_by_source_file(file_id)
        assert [(r.position_in_file, r.payload) for r in stored] == [(0, [1, 2])]

    def test_several_array_records(self, tmp_path: Path) -> None:
        [file_id], raw = self._stage_and_load(tmp_path, [[1, 2], [3, 4]])

        assert [r.payload for r in raw.scan_by_source_file(file_id)] == [[1, 2], [3, 4]]

    def test_line_separator_characters_in_event_text(self, tmp_path: Path) -> None:
        records = [{"event": "a\u2028b"}, {"event": "c\u2029d\u0085e"}]

        [file_id], raw = self._stage_and_load(tmp_path, records)

        assert [r.payload for r in raw.scan_by_source_file(file_id)] == records


class TestStoreRejectsFile:
    def test_data_error_marks_only_that_file_failed(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0)])
        _stage(tmp_path, "b.json", [_event(1), _event(2)])
        loader, raw, load_state = _make_loader(tmp_path, max_workers=1)
        raw.fail_on_file = "a.json"
        raw.fail_error = psycopg.DataError("unsupported Unicode escape sequence")

        result = loader.refresh()

        assert result.files_failed == 1
        assert result.files_loaded == 1
        assert "unsupported Unicode" in result.failures["a.json"]
        assert load_state.states["a.json"].attempts == 1
        assert raw.scan_by_source_file("a.json") == []
        assert len(raw.scan_by_source_file("b.json")) == 2

    def test_rejected_file_stops_after_attempt_limit(self, tmp_path: Path) -> None:
        _stage(tmp_path, "a.json", [_event(0)])
        loader, raw, load_state = _make_loader(tmp_path, max_file_attempts=2)
        raw.fail_on_file = "a.json"
        raw.fail_error = psycopg.DataError("invalid input syntax for type json")

        loader.refresh()
        loader.refresh()
        third = loader.refresh()

        assert load_state.states["a.json"].attempts == 2
        assert third.files_failed == 0

    def test_unpaired_surrogate_fails_before_reaching_store(self, tmp_path: Path) -> None:
        (tmp_path / "bad.ndjson").write_bytes(b'{"event": "\\ud800"}\n')
        (tmp_path / "good.ndjson").write_bytes(b'{"event": "ok"}\n')
        loader, raw, _ = _make_loader(tmp_path)

        result = loader.refresh()

        assert "surrogate" in result.failures["bad.ndjson"]
        assert loader.status("bad.ndjson") == LoadStatus.FAILED
        assert [r.payload for r in raw.records] == [{"event": "ok"}]
