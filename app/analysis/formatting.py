"""Text renderings of curated events for the AI service."""

from datetime import datetime

from app.database.models import CuratedEvent

NO_GROUP = "(none)"


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat(sep=" ", timespec="milliseconds")
    return str(value)


def describe_event(event: CuratedEvent) -> str:
    """One summary line: ``[ts] sourcetype status=.. user=.. ip=.. message``.

    Null fields render as empty strings so a partially extracted event still
    contributes a line.
    """
    return (
        f"[{_text(event.event_ts)}] {_text(event.sourcetype)} "
        f"status={_text(event.http_status)} "
        f"user={_text(event.user_name)} "
        f"ip={_text(event.src_ip)} "
        f"{_text(event.event)}"
    )


def classification_text(event: CuratedEvent) -> str:
    """Message plus request context, as sent to the classifier."""
    return (
        f"{_text(event.event)}"
        f" | status={_text(event.http_status)}"
        f" | uri={_text(event.uri)}"
        f" | sourcetype={_text(event.sourcetype)}"
        f" | action={_text(event.action)}"
        f" | severity={_text(event.severity)}"
    )


def group_value(event: CuratedEvent, field: str) -> str:
    value = getattr(event, field)
    return NO_GROUP if value is None else _text(value)
