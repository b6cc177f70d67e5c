"""Total extraction functions from schema-on-read payloads.

Every function here returns a value or None and never raises for any JSON
input. None is the curated representation of a field that is missing, null
or not castable.
"""

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from app.database.models import CuratedEvent, RawRecord

_MISSING = object()

INT32_MAX = 2**31 - 1
INT64_MAX = 2**63 - 1


def lookup(payload: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings.

    Returns None when any step is absent or an intermediate value is not a
    mapping. A present JSON null is also returned as None.
    """
    current: Any = payload
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(key, _MISSING)
        if current is _MISSING:
            return None
    return current


def to_number(value: Any) -> Decimal | None:
    """Cast a JSON scalar to a finite number, as a permissive numeric cast does."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value)) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except ArithmeticError:
            return None
        return number if number.is_finite() else None
    return None


def to_int(value: Any, limit: int = INT64_MAX) -> int | None:
    """Cast to an integer; fractional values round half-even like NUMBER(10,0).

    Values whose magnitude exceeds ``limit`` (the target column range) are None.
    """
    number = to_number(value)
    if number is None or number.adjusted() > 18:
        return None
    integral = int(number.to_integral_value())
    if abs(integral) > limit:
        return None
    return integral


def to_text(value: Any) -> str | None:
    """Project a JSON scalar to text; containers and null become None."""
    if value is None or isinstance(value, (Mapping, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return str(value)


def to_timestamp(value: Any) -> datetime | None:
    """Convert epoch seconds to a naive UTC datetime (TIMESTAMP_NTZ semantics).

    The epoch goes through the same whole-number cast as ``to_int``, so
    fractional seconds round half-even.
    """
    seconds = to_int(value)
    if seconds is None:
        return None
    try:
        moment = datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
    return moment.replace(tzinfo=None)


def project(record: RawRecord) -> CuratedEvent:
    """Build the curated row for one raw record."""
    payload = record.payload
    return CuratedEvent(
        raw_record_id=record.id,
        source_file_id=record.source_file_id,
        position_in_file=record.position_in_file,
        event_ts=to_timestamp(lookup(payload, "time")),
        index_name=to_text(lookup(payload, "index")),
        sourcetype=to_text(lookup(payload, "sourcetype")),
        host=to_text(lookup(payload, "host")),
        source=to_text(lookup(payload, "source")),
        event=to_text(lookup(payload, "event")),
        src_ip=to_text(lookup(payload, "fields.src_ip")),
        user_name=to_text(lookup(payload, "fields.user")),
        action=to_text(lookup(payload, "fields.action")),
        http_status=to_int(lookup(payload, "fields.http_status"), limit=INT32_MAX),
        uri=to_text(lookup(payload, "fields.uri")),
        bytes_out=to_int(lookup(payload, "fields.bytes_out")),
        latency_ms=to_int(lookup(payload, "fields.latency_ms")),
        severity=to_text(lookup(payload, "fields.severity")),
    )
