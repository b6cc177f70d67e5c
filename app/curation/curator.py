import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.config.settings import Settings
from app.curation.extractors import project
from app.database.models import CURATED_FIELDS, CuratedEvent, RawRecord
from app.database.repositories.curated_events_repository import CuratedEventsRepository
from app.logging.logger import Log


@dataclass
class CurationResult:
    """Aggregate counters for one curate invocation."""

    curated: int = 0
    duplicates: int = 0
    skipped: int = 0
    null_fields: int = 0
    batches: int = 0
    cancelled: bool = False


def count_null_fields(event: CuratedEvent) -> int:
    return sum(1 for name in CURATED_FIELDS if getattr(event, name) is None)


class Curator:
    """Deterministic raw -> curated projection job.

    Progress is tracked by the lineage key: raw records that already have a
    curated row are never fetched again, and the unique constraint turns a
    concurrent duplicate insert into a no-op. Each batch commits atomically.
    """

    def __init__(
        self,
        curated_repo: CuratedEventsRepository,
        *,
        batch_size: int = 500,
        projector: Callable[[RawRecord], CuratedEvent] = project,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._curated_repo = curated_repo
        self._batch_size = batch_size
        self._projector = projector

    def curate(
        self,
        since: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CurationResult:
        """Project every not-yet-curated raw record, oldest first.

        Args:
            since: Only consider raw records ingested at or after this time.
            cancel_event: Checked between batches; a set event stops the run
                after the current batch has committed.
        """
        result = CurationResult()
        after_id = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                Log.warning("Curation cancelled", curated=result.curated)
                break

            batch = self._curated_repo.fetch_uncurated(
                since=since, after_id=after_id, limit=self._batch_size
            )
            if not batch:
                break
            after_id = batch[-1].id

            events = self._project_batch(batch, result)
            inserted = self._curated_repo.append_batch(events)
            result.curated += inserted
            result.duplicates += len(events) - inserted
            result.batches += 1
            Log.debug(
                f"Curated batch of {len(batch)} raw records",
                inserted=inserted,
                last_raw_id=after_id,
            )

        Log.info(
            "Curation complete",
            curated=result.curated,
            duplicates=result.duplicates,
            skipped=result.skipped,
            null_fields=result.null_fields,
        )
        return result

    def rebuild(self, cancel_event: threading.Event | None = None) -> CurationResult:
        """Drop the curated store and project every raw record again."""
        Log.warning("Rebuilding curated store from raw records")
        self._curated_repo.truncate()
        return self.curate(cancel_event=cancel_event)

    def _project_batch(self, batch: list[RawRecord], result: CurationResult) -> list[CuratedEvent]:
        events: list[CuratedEvent] = []
        for record in batch:
            try:
                event = self._projector(record)
            except Exception:
                Log.exception("Projection failed, record skipped", raw_record_id=record.id)
                result.skipped += 1
                continue

            nulls = count_null_fields(event)
            if nulls == len(CURATED_FIELDS):
                Log.warning(
                    "No curated field could be extracted, record skipped",
                    raw_record_id=record.id,
                    source_file_id=record.source_file_id,
                    position_in_file=record.position_in_file,
                )
                result.skipped += 1
                continue

            result.null_fields += nulls
            events.append(event)
        return events


def build_curator(settings: Settings) -> Curator:
    return Curator(CuratedEventsRepository(), batch_size=settings.curation_batch_size)
