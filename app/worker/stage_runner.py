import threading
from dataclasses import dataclass

from app.curation.curator import CurationResult, Curator
from app.ingestion.loader import IngestionLoader
from app.ingestion.models import RefreshResult
from app.logging.logger import Log


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one refresh -> curate cycle. None means the stage failed."""

    refresh: RefreshResult | None
    curation: CurationResult | None


class StageRunner:
    """Run pipeline stages and isolate their failures from the caller's loop."""

    def __init__(
        self,
        loader: IngestionLoader,
        curator: Curator,
        cancel_event: threading.Event,
    ) -> None:
        self._loader = loader
        self._curator = curator
        self._cancel_event = cancel_event

    def run_cycle(self) -> CycleResult:
        """Refresh, then curate. Curation runs even when the refresh failed."""
        refresh = self.run_refresh()
        curation = self.run_curate()
        return CycleResult(refresh=refresh, curation=curation)

    def run_refresh(self) -> RefreshResult | None:
        try:
            return self._loader.refresh(cancel_event=self._cancel_event)
        except Exception as exc:
            Log.error(f"Refresh failed, will retry next cycle: {exc}")
            return None

    def run_curate(self) -> CurationResult | None:
        try:
            return self._curator.curate(cancel_event=self._cancel_event)
        except Exception as exc:
            Log.error(f"Curation failed, will retry next cycle: {exc}")
            return None
