from dataclasses import dataclass, field
from enum import StrEnum


class FileOutcomeKind(StrEnum):
    LOADED = "loaded"
    ALREADY_LOADED = "already_loaded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FileOutcome:
    """What happened to one staged file during a refresh."""

    file_id: str
    kind: FileOutcomeKind
    records_inserted: int = 0
    records_duplicate: int = 0
    error_message: str | None = None


@dataclass
class RefreshResult:
    """Aggregate counters for one refresh invocation."""

    files_listed: int = 0
    files_loaded: int = 0
    files_already_loaded: int = 0
    files_failed: int = 0
    files_skipped: int = 0
    records_inserted: int = 0
    records_duplicate: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    def add(self, outcome: FileOutcome) -> None:
        self.records_inserted += outcome.records_inserted
        self.records_duplicate += outcome.records_duplicate
        if outcome.kind == FileOutcomeKind.LOADED:
            self.files_loaded += 1
        elif outcome.kind == FileOutcomeKind.ALREADY_LOADED:
            self.files_already_loaded += 1
        elif outcome.kind == FileOutcomeKind.FAILED:
            self.files_failed += 1
            self.failures[outcome.file_id] = outcome.error_message or ""
        else:
            self.files_skipped += 1
