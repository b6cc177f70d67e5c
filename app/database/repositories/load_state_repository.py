from typing import Any

import psycopg
from psycopg.rows import dict_row

from app.database.connection import get_connection
from app.database.models import LoadState, LoadStatus


class LoadStateRepository:
    """Database operations for the load_state table."""

    def find(self, source_file_id: str) -> LoadState | None:
        """Return the tracked state of a file, or None if it was never attempted."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT source_file_id, status, loaded_record_count,
                           attempts, error_message, updated_at
                    FROM load_state
                    WHERE source_file_id = %s
                    """,
                    (source_file_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None
        return _to_load_state(row)

    def find_many(self, source_file_ids: list[str]) -> dict[str, LoadState]:
        """Return tracked states keyed by file id; untracked ids are absent."""
        if not source_file_ids:
            return {}
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT source_file_id, status, loaded_record_count,
                           attempts, error_message, updated_at
                    FROM load_state
                    WHERE source_file_id = ANY(%s)
                    """,
                    (source_file_ids,),
                )
                rows = cur.fetchall()
        return {row["source_file_id"]: _to_load_state(row) for row in rows}

    def lock_file(self, conn: psycopg.Connection[Any], source_file_id: str) -> LoadState | None:
        """Take a transaction-scoped advisory lock on a file and re-read its state.

        Two workers loading the same file serialize here; the second one sees
        the first one's committed 'loaded' state.
        """
        conn.execute(
            "SELECT pg_advisory_xact_lock(hashtext(%s))",
            (source_file_id,),
        )
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT source_file_id, status, loaded_record_count,
                       attempts, error_message, updated_at
                FROM load_state
                WHERE source_file_id = %s
                """,
                (source_file_id,),
            )
            row = cur.fetchone()
        return _to_load_state(row) if row is not None else None

    def mark_loaded(
        self,
        conn: psycopg.Connection[Any],
        source_file_id: str,
        record_count: int,
    ) -> None:
        """Record a file as loaded inside the caller's transaction."""
        conn.execute(
            """
            INSERT INTO load_state
                (source_file_id, status, loaded_record_count, attempts,
                 error_message, updated_at)
            VALUES (%s, 'loaded', %s, 1, NULL, NOW())
            ON CONFLICT (source_file_id) DO UPDATE
            SET status = 'loaded',
                loaded_record_count = EXCLUDED.loaded_record_count,
                attempts = load_state.attempts + 1,
                error_message = NULL,
                updated_at = NOW()
            """,
            (source_file_id, record_count),
        )

    def mark_failed(self, source_file_id: str, error: str) -> None:
        """Record a failed load attempt. Never downgrades a loaded file."""
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO load_state
                    (source_file_id, status, loaded_record_count, attempts,
                     error_message, updated_at)
                VALUES (%s, 'failed', 0, 1, %s, NOW())
                ON CONFLICT (source_file_id) DO UPDATE
                SET status = 'failed',
                    attempts = load_state.attempts + 1,
                    error_message = EXCLUDED.error_message,
                    updated_at = NOW()
                WHERE load_state.status <> 'loaded'
                """,
                (source_file_id, error),
            )
            conn.commit()

    def count_loaded_records(self) -> int:
        """Sum of records committed by every loaded file."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT COALESCE(SUM(loaded_record_count), 0)
                    FROM load_state
                    WHERE status = 'loaded'
                    """
                )
                row = cur.fetchone()
        return int(row[0]) if row is not None else 0

    def count_by_status(self) -> dict[LoadStatus, int]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT status, COUNT(*) FROM load_state GROUP BY status")
                rows = cur.fetchall()
        counts = {status: 0 for status in LoadStatus}
        for status, count in rows:
            counts[LoadStatus(status)] = int(count)
        return counts


def _to_load_state(row: dict[str, Any]) -> LoadState:
    return LoadState(
        source_file_id=row["source_file_id"],
        status=LoadStatus(row["status"]),
        loaded_record_count=row["loaded_record_count"],
        attempts=row["attempts"],
        error_message=row["error_message"],
        updated_at=row["updated_at"],
    )
