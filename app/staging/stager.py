import hashlib
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from app.config.settings import Settings
from app.logging.logger import Log
from app.staging.codec import serialize_records
from app.staging.staging_area import LocalStagingArea


def partition(records: Sequence[Any], batch_size: int) -> list[Sequence[Any]]:
    """Split records into consecutive batches of at most batch_size, in order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [records[start : start + batch_size] for start in range(0, len(records), batch_size)]


class FileStager:
    """Serializes event batches into immutable staged files."""

    def __init__(
        self,
        staging_area: LocalStagingArea,
        prefix: str = "events",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._staging_area = staging_area
        self._prefix = prefix
        self._clock = clock or (lambda: datetime.now(UTC))

    def stage(self, records: Sequence[Any], batch_size: int) -> list[str]:
        """Publish records as one or more NDJSON files.

        Identifiers are ``<prefix>_<utc stamp>_<seq>_<sha256[:8]>.ndjson``: the
        stamp and sequence keep lexical order equal to staging order, the
        digest keeps identifiers unique across stagers sharing a directory.

        Returns:
            Published file identifiers, in record order.
        """
        batches = partition(records, batch_size)
        stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
        file_ids: list[str] = []
        for seq, batch in enumerate(batches):
            content = serialize_records(batch)
            digest = hashlib.sha256(content).hexdigest()[:8]
            file_id = f"{self._prefix}_{stamp}_{seq:05d}_{digest}.ndjson"
            self._staging_area.publish(file_id, content)
            file_ids.append(file_id)
            Log.debug(f"Staged {len(batch)} records", file_id=file_id)

        Log.info(
            f"Staged {len(records)} records into {len(file_ids)} files",
            batch_size=batch_size,
        )
        return file_ids


def build_stager(settings: Settings) -> FileStager:
    return FileStager(
        LocalStagingArea(Path(settings.staging_root)),
        prefix=settings.staging_file_prefix,
    )
