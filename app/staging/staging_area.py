import os
import tempfile
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from app.staging.exceptions import FileAlreadyStagedError, StagingUnavailableError


@dataclass(frozen=True)
class StagedFileInfo:
    """Listing entry for one published staged file."""

    file_id: str
    size_bytes: int
    modified_at: datetime


class LocalStagingArea:
    """Directory-backed staging area with atomic publish.

    A file is visible under its final identifier only after its content has
    been fully written and fsynced. In-progress writes use hidden temporary
    names, which ``list_files`` never returns.
    """

    TEMP_PREFIX = ".tmp-"

    def __init__(self, root: Path) -> None:
        self._root = root

    def list_files(self) -> list[StagedFileInfo]:
        """List published files ordered by identifier.

        Raises:
            StagingUnavailableError: if the staging directory cannot be read.
        """
        try:
            entries = list(os.scandir(self._root))
        except OSError as exc:
            raise StagingUnavailableError(
                f"Cannot list staging area {self._root}: {exc}"
            ) from exc

        files: list[StagedFileInfo] = []
        for entry in entries:
            if entry.name.startswith(".") or not entry.is_file():
                continue
            try:
                stat = entry.stat()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StagingUnavailableError(
                    f"Cannot stat staged file {entry.name}: {exc}"
                ) from exc
            files.append(
                StagedFileInfo(
                    file_id=entry.name,
                    size_bytes=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                )
            )
        return sorted(files, key=lambda info: info.file_id)

    def read(self, file_id: str) -> bytes:
        """Read the full content of a published file.

        Raises:
            FileNotFoundError: if no file with this identifier is published.
            StagingUnavailableError: on any other read failure.
        """
        path = self._resolve(file_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise StagingUnavailableError(f"Cannot read staged file {file_id}: {exc}") from exc

    def publish(self, file_id: str, content: bytes) -> None:
        """Write content to a temporary file, then link it under file_id.

        Raises:
            FileAlreadyStagedError: if file_id is already published.
            StagingUnavailableError: if the staging directory is not writable.
        """
        target = self._resolve(file_id)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=self.TEMP_PREFIX, dir=self._root)
        except OSError as exc:
            raise StagingUnavailableError(
                f"Cannot write to staging area {self._root}: {exc}"
            ) from exc

        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.link(temp_path, target)
        except FileExistsError as exc:
            raise FileAlreadyStagedError(f"Staged file {file_id} already exists") from exc
        except OSError as exc:
            raise StagingUnavailableError(f"Cannot publish staged file {file_id}: {exc}") from exc
        finally:
            temp_path.unlink(missing_ok=True)

    def _resolve(self, file_id: str) -> Path:
        if not file_id or "/" in file_id or "\\" in file_id or file_id.startswith("."):
            raise ValueError(f"Invalid staged file identifier: {file_id!r}")
        return self._root / file_id
