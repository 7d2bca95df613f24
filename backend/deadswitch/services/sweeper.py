"""Background driver that runs the orchestrator sweep on a fixed interval."""

import threading
from datetime import datetime

import schedule

from deadswitch.core.clock import utcnow
from deadswitch.core.config import settings
from deadswitch.core.logger import logger_config
from deadswitch.services.orchestrator import Orchestrator, SweepReport

logger = logger_config.get_logger("sweeper")


class SweepDriver:
    """
    Runs ``Orchestrator.sweep`` every ``interval`` seconds on a daemon thread.

    ``stop()`` lets switches already being processed finish and leaves the
    rest of an in-flight sweep for the next run.
    """

    def __init__(self, orchestrator: Orchestrator, interval: int | None = None):
        self.orchestrator = orchestrator
        self.interval = interval or settings.SWEEP_INTERVAL_SECONDS
        self.scheduler = schedule.Scheduler()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_run_at: datetime | None = None
        self.last_report: SweepReport | None = None

    def run_once(self) -> SweepReport | None:
        self.last_run_at = utcnow()
        try:
            self.last_report = self.orchestrator.sweep(stop=self._stop)
        except Exception:
            logger.exception("Sweep failed")
            self.last_report = None
        return self.last_report

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self.scheduler.clear()
        self.scheduler.every(self.interval).seconds.do(self.run_once)
        self._thread = threading.Thread(target=self._loop, name="sweep-driver", daemon=True)
        self._thread.start()
        logger.info(f"Sweep driver started (every {self.interval}s)")

    def _loop(self) -> None:
        self.run_once()
        while not self._stop.is_set():
            self.scheduler.run_pending()
            self._stop.wait(1)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        self.scheduler.clear()
        logger.info("Sweep driver stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
