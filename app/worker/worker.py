import threading

from app.config.settings import Settings
from app.logging.logger import Log
from app.worker.stage_runner import StageRunner


class Worker:
    """Timer trigger: run a cycle -> sleep -> repeat."""

    def __init__(
        self,
        stage_runner: StageRunner,
        settings: Settings,
        cancel_event: threading.Event,
    ) -> None:
        self._stage_runner = stage_runner
        self._settings = settings
        self._cancel_event = cancel_event

    def run(self, max_cycles: int | None = None) -> int:
        """Main loop. Runs until stopped or interrupted.

        If max_cycles is set, stop after that many cycles (for testing).

        Returns:
            Number of completed cycles.
        """
        Log.info(
            "Worker started",
            poll_interval_seconds=self._settings.poll_interval_seconds,
        )
        cycles = 0
        try:
            while not self._cancel_event.is_set():
                self._stage_runner.run_cycle()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                self._cancel_event.wait(self._settings.poll_interval_seconds)
        except KeyboardInterrupt:
            self._cancel_event.set()
            Log.info("Worker shutting down gracefully")
        return cycles

    def stop(self) -> None:
        """Ask the loop and any in-flight stage to stop at the next safe point."""
        self._cancel_event.set()
