import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import UTC, datetime
from pathlib import Path

import psycopg

from app.config.settings import Settings
from app.database.models import LoadState, LoadStatus
from app.database.repositories.load_state_repository import LoadStateRepository
from app.database.repositories.raw_records_repository import RawRecordsRepository
from app.ingestion.models import FileOutcome, FileOutcomeKind, RefreshResult
from app.logging.logger import Log
from app.staging.codec import is_ndjson, parse_records
from app.staging.exceptions import ParseFailureError, StagingUnavailableError
from app.staging.staging_area import LocalStagingArea


class IngestionLoader:
    """Loads staged files into the raw store exactly once.

    Each file is all-or-nothing: either every record and the 'loaded' state
    commit together, or nothing is written and the file is marked 'failed'
    for a later retry (bounded by ``max_file_attempts``).
    """

    def __init__(
        self,
        staging_area: LocalStagingArea,
        raw_repo: RawRecordsRepository,
        load_state_repo: LoadStateRepository,
        *,
        max_workers: int = 4,
        max_file_attempts: int = 3,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._staging_area = staging_area
        self._raw_repo = raw_repo
        self._load_state_repo = load_state_repo
        self._max_workers = max_workers
        self._max_file_attempts = max_file_attempts
        self._clock = clock or (lambda: datetime.now(UTC))

    def refresh(self, cancel_event: threading.Event | None = None) -> RefreshResult:
        """Load every staged file that is not loaded yet.

        Raises:
            StagingUnavailableError: if the staging area cannot be listed or
                read. Files already committed in this call stay committed.
        """
        listing = self._staging_area.list_files()
        file_ids = [info.file_id for info in listing]
        states = self._load_state_repo.find_many(file_ids)
        candidates = [file_id for file_id in file_ids if self._needs_load(states.get(file_id))]

        result = RefreshResult(files_listed=len(file_ids))
        if not candidates:
            Log.debug("Refresh found no new staged files", listed=len(file_ids))
            return result

        Log.info(f"Refresh loading {len(candidates)} staged files", listed=len(file_ids))
        stop = cancel_event or threading.Event()
        pool = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(candidates)),
            thread_name_prefix="loader",
        )
        futures: dict[Future[FileOutcome], str] = {
            pool.submit(self._load_file, file_id, stop): file_id for file_id in candidates
        }
        try:
            for future in as_completed(futures):
                result.add(future.result())
        except BaseException:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        pool.shutdown(wait=True)

        Log.info(
            "Refresh complete",
            loaded=result.files_loaded,
            failed=result.files_failed,
            skipped=result.files_skipped,
            records=result.records_inserted,
            duplicates=result.records_duplicate,
        )
        return result

    def status(self, file_id: str) -> LoadStatus:
        """Return the load status of a file; untracked files are pending."""
        state = self._load_state_repo.find(file_id)
        if state is None:
            return LoadStatus.PENDING
        return state.status

    def loaded_record_count(self) -> int:
        return self._load_state_repo.count_loaded_records()

    def status_counts(self) -> dict[LoadStatus, int]:
        """Number of tracked files per load status."""
        return self._load_state_repo.count_by_status()

    def _needs_load(self, state: LoadState | None) -> bool:
        if state is None or state.status == LoadStatus.PENDING:
            return True
        if state.status == LoadStatus.FAILED:
            return state.attempts < self._max_file_attempts
        return False

    def _load_file(self, file_id: str, stop: threading.Event) -> FileOutcome:
        if stop.is_set():
            return FileOutcome(file_id=file_id, kind=FileOutcomeKind.SKIPPED)

        try:
            content = self._staging_area.read(file_id)
        except FileNotFoundError:
            Log.warning("Staged file disappeared before load", file_id=file_id)
            return FileOutcome(file_id=file_id, kind=FileOutcomeKind.SKIPPED)
        except StagingUnavailableError:
            stop.set()
            raise

        try:
            payloads = parse_records(content, ndjson=is_ndjson(file_id))
        except ParseFailureError as exc:
            Log.error(f"Failed to parse staged file: {exc}", file_id=file_id)
            return self._fail(file_id, str(exc))

        try:
            appended = self._raw_repo.append_file(file_id, payloads, self._clock())
        except psycopg.DataError as exc:
            # The transaction rolled back; only this file's content is at fault.
            Log.error(f"Store rejected staged file: {exc}", file_id=file_id)
            return self._fail(file_id, str(exc))
        if appended.already_loaded:
            Log.debug("Staged file already loaded by another worker", file_id=file_id)
            return FileOutcome(file_id=file_id, kind=FileOutcomeKind.ALREADY_LOADED)

        Log.info(
            f"Loaded {len(payloads)} records",
            file_id=file_id,
            inserted=appended.inserted,
        )
        return FileOutcome(
            file_id=file_id,
            kind=FileOutcomeKind.LOADED,
            records_inserted=appended.inserted,
            records_duplicate=appended.duplicates,
        )

    def _fail(self, file_id: str, error: str) -> FileOutcome:
        self._load_state_repo.mark_failed(file_id, error)
        return FileOutcome(file_id=file_id, kind=FileOutcomeKind.FAILED, error_message=error)


def build_loader(settings: Settings) -> IngestionLoader:
    """Build an IngestionLoader wired to the configured staging area and stores."""
    load_state_repo = LoadStateRepository()
    return IngestionLoader(
        staging_area=LocalStagingArea(Path(settings.staging_root)),
        raw_repo=RawRecordsRepository(load_state_repo),
        load_state_repo=load_state_repo,
        max_workers=settings.loader_max_workers,
        max_file_attempts=settings.max_file_attempts,
    )
