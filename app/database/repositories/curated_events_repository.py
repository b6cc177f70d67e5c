from collections.abc import Iterator
from datetime import datetime
from typing import Any

from psycopg.rows import dict_row

from app.database.connection import get_connection
from app.database.models import CURATED_FIELDS, CuratedEvent, RawRecord
from app.database.repositories.raw_records_repository import to_raw_record

_INSERT_COLUMNS = ("raw_record_id", "source_file_id", "position_in_file", *CURATED_FIELDS)
_INSERT_SQL = f"""
    INSERT INTO curated_events ({", ".join(_INSERT_COLUMNS)})
    VALUES ({", ".join(["%s"] * len(_INSERT_COLUMNS))})
    ON CONFLICT ON CONSTRAINT curated_events_lineage_key DO NOTHING
    RETURNING id
"""
_SELECT_COLUMNS = ", ".join(("id", *_INSERT_COLUMNS))


class CuratedEventsRepository:
    """Database operations for the curated_events table."""

    def fetch_uncurated(
        self,
        since: datetime | None = None,
        after_id: int = 0,
        limit: int = 500,
    ) -> list[RawRecord]:
        """Return raw records without a curated row, in ingestion order.

        The anti-join on the lineage key is the curation cursor: a raw record
        disappears from this result as soon as its curated row commits.
        """
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT r.id, r.ingest_ts, r.source_file_id,
                           r.position_in_file, r.payload
                    FROM raw_records r
                    WHERE NOT EXISTS (
                        SELECT 1 FROM curated_events c WHERE c.raw_record_id = r.id
                    )
                      AND r.id > %s
                      AND (%s::timestamptz IS NULL OR r.ingest_ts >= %s::timestamptz)
                    ORDER BY r.id
                    LIMIT %s
                    """,
                    (after_id, since, since, limit),
                )
                rows = cur.fetchall()
        return [to_raw_record(row) for row in rows]

    def append(self, event: CuratedEvent) -> int | None:
        """Insert one curated event; None when its lineage key already exists."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_SQL, _insert_params(event))
                row = cur.fetchone()
            conn.commit()
        return int(row[0]) if row is not None else None

    def append_batch(self, events: list[CuratedEvent]) -> int:
        """Insert a batch in one transaction and return how many rows were new."""
        if not events:
            return 0
        inserted = 0
        with get_connection() as conn:
            with conn.cursor() as cur:
                for event in events:
                    cur.execute(_INSERT_SQL, _insert_params(event))
                    if cur.fetchone() is not None:
                        inserted += 1
            conn.commit()
        return inserted

    def find_by_lineage(self, raw_record_id: int) -> CuratedEvent | None:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM curated_events WHERE raw_record_id = %s",
                    (raw_record_id,),
                )
                row = cur.fetchone()
        return _to_curated_event(row) if row is not None else None

    def scan(self, after_id: int = 0, limit: int = 1000) -> list[CuratedEvent]:
        """Return curated events in curation order after a keyset cursor."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM curated_events
                    WHERE id > %s
                    ORDER BY id
                    LIMIT %s
                    """,
                    (after_id, limit),
                )
                rows = cur.fetchall()
        return [_to_curated_event(row) for row in rows]

    def latest(self, limit: int) -> list[CuratedEvent]:
        """Return the most recent events by event time; untimed events come last."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM curated_events
                    ORDER BY event_ts DESC NULLS LAST, id DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
                rows = cur.fetchall()
        return [_to_curated_event(row) for row in rows]

    def iter_all(self, page_size: int = 1000) -> Iterator[CuratedEvent]:
        """Stream every curated event page by page."""
        after_id = 0
        while True:
            page = self.scan(after_id=after_id, limit=page_size)
            if not page:
                return
            yield from page
            last_id = page[-1].id
            if last_id is None:
                return
            after_id = last_id

    def count(self) -> int:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM curated_events")
                row = cur.fetchone()
        return int(row[0]) if row is not None else 0

    def truncate(self) -> None:
        """Drop every curated row so the store can be rebuilt from raw."""
        with get_connection() as conn:
            conn.execute("TRUNCATE TABLE curated_events")
            conn.commit()


def _insert_params(event: CuratedEvent) -> tuple[Any, ...]:
    return tuple(getattr(event, column) for column in _INSERT_COLUMNS)


def _to_curated_event(row: dict[str, Any]) -> CuratedEvent:
    return CuratedEvent(**{column: row[column] for column in ("id", *_INSERT_COLUMNS)})
