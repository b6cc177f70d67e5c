from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class LoadStatus(StrEnum):
    """Per-file ingestion state."""

    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class RawRecord:
    """Represents a row from the raw_records table.

    ``payload`` is the decoded JSON value exactly as staged: a mapping, a
    sequence or a scalar. Structure is imposed only by the curator.
    """

    id: int
    ingest_ts: datetime
    source_file_id: str
    position_in_file: int
    payload: Any


@dataclass(frozen=True)
class LoadState:
    """Represents a row from the load_state table."""

    source_file_id: str
    status: LoadStatus
    loaded_record_count: int = 0
    attempts: int = 0
    error_message: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CuratedEvent:
    """Fixed-schema projection of one raw record.

    Every extracted field is nullable; the lineage fields are not.
    """

    raw_record_id: int
    source_file_id: str
    position_in_file: int
    event_ts: datetime | None = None
    index_name: str | None = None
    sourcetype: str | None = None
    host: str | None = None
    source: str | None = None
    event: str | None = None
    src_ip: str | None = None
    user_name: str | None = None
    action: str | None = None
    http_status: int | None = None
    uri: str | None = None
    bytes_out: int | None = None
    latency_ms: int | None = None
    severity: str | None = None
    id: int | None = None


CURATED_FIELDS: tuple[str, ...] = (
    "event_ts",
    "index_name",
    "sourcetype",
    "host",
    "source",
    "event",
    "src_ip",
    "user_name",
    "action",
    "http_status",
    "uri",
    "bytes_out",
    "latency_ms",
    "severity",
)
