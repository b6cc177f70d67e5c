"""DDL for the raw, load-state and curated tables.

Statements are idempotent so ``create_schema`` can run on every deploy.
"""

from app.database.connection import get_connection

RAW_RECORDS_DDL = """
CREATE TABLE IF NOT EXISTS raw_records (
    id               BIGSERIAL PRIMARY KEY,
    ingest_ts        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    source_file_id   TEXT        NOT NULL,
    position_in_file INTEGER     NOT NULL CHECK (position_in_file >= 0),
    payload          JSONB       NOT NULL,
    CONSTRAINT raw_records_dedup_key UNIQUE (source_file_id, position_in_file)
)
"""

RAW_RECORDS_INGEST_TS_INDEX = """
CREATE INDEX IF NOT EXISTS raw_records_ingest_ts_idx ON raw_records (ingest_ts)
"""

LOAD_STATE_DDL = """
CREATE TABLE IF NOT EXISTS load_state (
    source_file_id      TEXT        PRIMARY KEY,
    status              TEXT        NOT NULL
        CHECK (status IN ('pending', 'loaded', 'failed')),
    loaded_record_count INTEGER     NOT NULL DEFAULT 0,
    attempts            INTEGER     NOT NULL DEFAULT 0,
    error_message       TEXT,
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

CURATED_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS curated_events (
    id               BIGSERIAL PRIMARY KEY,
    raw_record_id    BIGINT      NOT NULL REFERENCES raw_records (id),
    source_file_id   TEXT        NOT NULL,
    position_in_file INTEGER     NOT NULL,
    event_ts         TIMESTAMP,
    index_name       TEXT,
    sourcetype       TEXT,
    host             TEXT,
    source           TEXT,
    event            TEXT,
    src_ip           TEXT,
    user_name        TEXT,
    action           TEXT,
    http_status      INTEGER,
    uri              TEXT,
    bytes_out        BIGINT,
    latency_ms       BIGINT,
    severity         TEXT,
    curated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT curated_events_lineage_key UNIQUE (raw_record_id)
)
"""

SCHEMA_STATEMENTS: tuple[str, ...] = (
    RAW_RECORDS_DDL,
    RAW_RECORDS_INGEST_TS_INDEX,
    LOAD_STATE_DDL,
    CURATED_EVENTS_DDL,
)


def create_schema() -> None:
    """Create all pipeline tables if they do not exist yet."""
    with get_connection() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(statement)
        conn.commit()
