import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from app.database.connection import get_connection
from app.database.models import LoadStatus, RawRecord
from app.database.repositories.load_state_repository import LoadStateRepository


@dataclass(frozen=True)
class AppendResult:
    """Outcome of appending one staged file's records."""

    source_file_id: str
    inserted: int
    duplicates: int
    already_loaded: bool = False


class RawRecordsRepository:
    """Database operations for the raw_records table."""

    def __init__(self, load_state_repo: LoadStateRepository) -> None:
        self._load_state_repo = load_state_repo

    def append(
        self,
        ingest_ts: datetime,
        source_file_id: str,
        position_in_file: int,
        payload: Any,
    ) -> int | None:
        """Insert one raw record.

        Returns:
            The new record id, or None if (source_file_id, position_in_file)
            already exists. A duplicate is an idempotent no-op, not an error.
        """
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO raw_records
                        (ingest_ts, source_file_id, position_in_file, payload)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT ON CONSTRAINT raw_records_dedup_key DO NOTHING
                    RETURNING id
                    """,
                    (ingest_ts, source_file_id, position_in_file, Jsonb(payload)),
                )
                row = cur.fetchone()
            conn.commit()
        return int(row[0]) if row is not None else None

    def append_file(
        self,
        source_file_id: str,
        payloads: list[Any],
        ingest_ts: datetime,
    ) -> AppendResult:
        """Append every record of one file and mark the file loaded, atomically.

        Positions are the list indexes (0..N-1). All rows and the load_state
        update commit in one transaction; any exception rolls the whole file
        back.
        """
        with get_connection() as conn:
            state = self._load_state_repo.lock_file(conn, source_file_id)
            if state is not None and state.status == LoadStatus.LOADED:
                conn.rollback()
                return AppendResult(
                    source_file_id=source_file_id,
                    inserted=0,
                    duplicates=len(payloads),
                    already_loaded=True,
                )

            inserted = 0
            if payloads:
                positions = list(range(len(payloads)))
                documents = [json.dumps(payload) for payload in payloads]
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO raw_records
                            (ingest_ts, source_file_id, position_in_file, payload)
                        SELECT %s, %s, t.position_in_file, t.document::jsonb
                        FROM unnest(%s::integer[], %s::text[])
                            AS t(position_in_file, document)
                        ON CONFLICT ON CONSTRAINT raw_records_dedup_key DO NOTHING
                        """,
                        (ingest_ts, source_file_id, positions, documents),
                    )
                    inserted = max(cur.rowcount, 0)

            self._load_state_repo.mark_loaded(conn, source_file_id, len(payloads))
            conn.commit()

        return AppendResult(
            source_file_id=source_file_id,
            inserted=inserted,
            duplicates=len(payloads) - inserted,
        )

    def scan_by_source_file(self, source_file_id: str) -> list[RawRecord]:
        """Return all records of one file ordered by position."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, ingest_ts, source_file_id, position_in_file, payload
                    FROM raw_records
                    WHERE source_file_id = %s
                    ORDER BY position_in_file
                    """,
                    (source_file_id,),
                )
                rows = cur.fetchall()
        return [to_raw_record(row) for row in rows]

    def scan_since(
        self,
        since: datetime | None = None,
        after_id: int = 0,
        limit: int = 1000,
    ) -> list[RawRecord]:
        """Return records in ingestion order, optionally from an ingest timestamp.

        ``after_id`` is a keyset cursor: pass the last id of the previous page.
        """
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, ingest_ts, source_file_id, position_in_file, payload
                    FROM raw_records
                    WHERE id > %s
                      AND (%s::timestamptz IS NULL OR ingest_ts >= %s::timestamptz)
                    ORDER BY id
                    LIMIT %s
                    """,
                    (after_id, since, since, limit),
                )
                rows = cur.fetchall()
        return [to_raw_record(row) for row in rows]

    def count(self) -> int:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM raw_records")
                row = cur.fetchone()
        return int(row[0]) if row is not None else 0


def to_raw_record(row: dict[str, Any]) -> RawRecord:
    return RawRecord(
        id=row["id"],
        ingest_ts=row["ingest_ts"],
        source_file_id=row["source_file_id"],
        position_in_file=row["position_in_file"],
        payload=row["payload"],
    )
