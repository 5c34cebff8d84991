"""Periodic triggers for the fleet refresh and search ingestion jobs."""

import logging
import threading
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class Scheduler:
    """Run named jobs at fixed intervals until the stop event is set.

    Each job gets its own daemon thread. The first run happens one interval
    after start, and a failing run is logged without affecting later ones.
    """

    def __init__(self, stop_event: Optional[threading.Event] = None):
        self.stop_event = stop_event or threading.Event()
        self._jobs: List[tuple] = []
        self._threads: List[threading.Thread] = []

    def add_job(self, name: str, interval_seconds: float, func: Callable[[], Any]):
        if interval_seconds <= 0:
            raise ValueError(f"interval for job '{name}' must be positive")
        self._jobs.append((name, interval_seconds, func))

    def start(self):
        for name, interval_seconds, func in self._jobs:
            thread = threading.Thread(
                target=self._loop,
                args=(name, interval_seconds, func),
                name=f"scheduler-{name}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
            logger.info(f"Scheduled job '{name}' every {interval_seconds:.0f} seconds")

    def stop(self, timeout: Optional[float] = None):
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout)

    def _loop(self, name: str, interval_seconds: float, func: Callable[[], Any]):
        while not self.stop_event.wait(interval_seconds):
            logger.info(f"Running scheduled job '{name}'")
            try:
                func()
            except Exception as e:
                logger.error(f"Scheduled job '{name}' failed: {e}", exc_info=True)
