"""Encoding of staged event files.

Files named ``*.ndjson`` or ``*.jsonl`` always hold one JSON value per line;
this is what the stager writes. Any other file is read as a single top-level
JSON array whose outer brackets are stripped, so that each array element
becomes one record, when it starts with ``[``, and as NDJSON otherwise.
"""

import json
import re
from collections.abc import Iterable
from typing import Any

from app.staging.exceptions import ParseFailureError

NDJSON_SUFFIXES = (".ndjson", ".jsonl")

# jsonb stores neither NUL nor unpaired UTF-16 surrogates.
_UNSTORABLE = re.compile("[\x00\ud800-\udfff]")


def _reject_constant(token: str) -> Any:
    raise ValueError(f"non-standard JSON constant {token}")


_decoder = json.JSONDecoder(parse_constant=_reject_constant)


def is_ndjson(name: str) -> bool:
    return name.lower().endswith(NDJSON_SUFFIXES)


def parse_records(content: bytes, *, ndjson: bool = False) -> list[Any]:
    """Decode a staged file into its ordered records.

    With ``ndjson`` set, every non-blank line is one record, even a line that
    holds an array.

    Raises:
        ParseFailureError: if the content is not UTF-8, any record is not
            valid JSON, or a string cannot be stored. No partial result is
            returned.
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseFailureError(f"File is not valid UTF-8: {exc}") from exc

    stripped = text.strip()
    if not stripped:
        return []
    if not ndjson and stripped.startswith("["):
        records = _parse_array(stripped)
    else:
        records = _parse_lines(text)
    for record in records:
        char = _find_unstorable(record)
        if char == "\x00":
            raise ParseFailureError("Record contains a NUL character, which cannot be stored")
        if char is not None:
            raise ParseFailureError(
                f"Record contains an unpaired surrogate U+{ord(char):04X}, which cannot be stored"
            )
    return records


def _parse_array(text: str) -> list[Any]:
    try:
        value = _decoder.decode(text)
    except (ValueError, RecursionError) as exc:
        raise ParseFailureError(f"Invalid JSON array: {exc}") from exc
    if not isinstance(value, list):
        raise ParseFailureError("Top-level JSON value is not an array")
    return value


def _parse_lines(text: str) -> list[Any]:
    # Only "\n" ends a record; U+2028 and friends may appear raw inside strings.
    records: list[Any] = []
    for line_number, line in enumerate(text.split("\n"), start=1):
        if not line.strip(" \t\r"):
            continue
        try:
            records.append(_decoder.decode(line))
        except (ValueError, RecursionError) as exc:
            raise ParseFailureError(f"Invalid JSON on line {line_number}: {exc}") from exc
    return records


def serialize_records(records: Iterable[Any]) -> bytes:
    """Encode records as NDJSON, preserving their order."""
    lines = [json.dumps(record, ensure_ascii=False, allow_nan=False) for record in records]
    if not lines:
        return b""
    return ("\n".join(lines) + "\n").encode("utf-8")


def _find_unstorable(value: Any) -> str | None:
    if isinstance(value, str):
        match = _UNSTORABLE.search(value)
        return match.group() if match else None
    if isinstance(value, dict):
        for key, item in value.items():
            char = _find_unstorable(key) or _find_unstorable(item)
            if char is not None:
                return char
        return None
    if isinstance(value, list):
        for item in value:
            char = _find_unstorable(item)
            if char is not None:
                return char
    return None
