from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum

from app.database.models import CuratedEvent

SUMMARY_UNAVAILABLE = "summary_unavailable"


class CallStatus(StrEnum):
    OK = "ok"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ClassifiedEvent:
    event: CuratedEvent
    label: str
    status: CallStatus
    attempts: int = 0
    error: str | None = None


@dataclass
class ClassificationScan:
    """Per-event labels plus counters for one classify scan, in input order."""

    outcomes: list[ClassifiedEvent] = field(default_factory=list)

    def count(self, status: CallStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def label_counts(self) -> Counter[str]:
        """Threat mix: how many events received each label."""
        return Counter(outcome.label for outcome in self.outcomes)


@dataclass(frozen=True)
class SummaryOutcome:
    text: str
    status: CallStatus
    event_count: int
    attempts: int = 0
    error: str | None = None
