"""Timer that drives poll cycles on a background thread."""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)

# First poll shortly after start (and after every settings change)
INITIAL_DELAY_SECONDS = 6.0


class PollScheduler:
    """
    Run `engine.run_cycle()` every `poll_interval` minutes.

    Ticks go through the same entry point as manual refreshes, so they never
    overlap with one. `reschedule()` restarts the countdown with the
    initial delay and picks up a changed poll interval.
    """

    def __init__(self, engine, initial_delay: float = INITIAL_DELAY_SECONDS):
        self.engine = engine
        self.initial_delay = initial_delay
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        engine.add_settings_listener(self.reschedule)

    @property
    def interval_seconds(self) -> float:
        return self.engine.config.poll_interval * 60

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._wake.clear()
        self._thread = threading.Thread(target=self._run, name="pr-poller", daemon=True)
        self._thread.start()
        logger.info(f"Polling every {self.engine.config.poll_interval} minute(s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def reschedule(self) -> None:
        logger.info(f"Rescheduling: polling every {self.engine.config.poll_interval} minute(s)")
        self._wake.set()

    def tick(self) -> None:
        """Run one cycle, logging instead of raising so the timer survives."""
        try:
            self.engine.run_cycle()
        except Exception:
            logger.exception("Poll cycle crashed")

    def _run(self) -> None:
        delay = self.initial_delay
        while not self._stop.is_set():
            woken = self._wake.wait(timeout=delay)
            if self._stop.is_set():
                break
            if woken:
                self._wake.clear()
                delay = self.initial_delay
                continue

            self.tick()
            delay = self.interval_seconds
