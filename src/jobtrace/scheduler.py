"""Drift-corrected tick scheduler."""

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class DriftCorrectedScheduler:
    """
    Invokes ``tick`` every ``interval_ms`` milliseconds.

    Tick *k* is scheduled at ``T0 + k * interval_ms``; the time spent inside
    ``tick`` is absorbed by the following wait instead of accumulating. An
    overrunning tick is followed immediately by the next one, at most one
    tick is ever owed. Exceptions raised by ``tick`` are logged and the loop
    keeps going until ``stop()`` is called.
    """

    def __init__(
        self,
        interval_ms: int,
        tick: Callable[[], None],
        name: str = "Scheduler",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            interval_ms: Target period between scheduled ticks.
            tick: Unit of work run once per period.
            name: Thread name used by ``start()`` and in log records.
            clock: Millisecond clock, replaceable in tests.
        """
        self._interval_ms = max(1, int(interval_ms))
        self._tick = tick
        self._name = name
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._expected_schedule_time = 0
        self._tick_count = 0

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def tick_count(self) -> int:
        """Number of ticks run so far, failed ones included."""
        return self._tick_count

    @property
    def next_deadline(self) -> int:
        """Scheduled time of the next tick."""
        return self._expected_schedule_time

    @property
    def is_running(self) -> bool:
        """Check if the scheduler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Run the loop in a daemon thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            daemon=True,
            name=self._name,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Cancel the next scheduled tick.

        A tick already in flight runs to completion; when the loop runs in
        its own thread this waits up to ``timeout`` seconds for it.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            self._thread = None

    def run(self) -> None:
        """Run the loop in the calling thread until ``stop()``."""
        self._expected_schedule_time = self._clock()
        logger.info("%s started with %dms interval", self._name, self._interval_ms)

        while not self._stop_event.is_set():
            self.run_tick()

            self._expected_schedule_time += self._interval_ms
            delay_ms = max(0, self._expected_schedule_time - self._clock())
            if self._wait(delay_ms / 1000):
                break

        logger.info("%s stopped after %d ticks", self._name, self._tick_count)

    def run_tick(self) -> bool:
        """Run ``tick`` once outside the schedule; returns False if it raised."""
        self._tick_count += 1
        try:
            self._tick()
            return True
        except Exception:
            logger.exception("%s tick %d failed", self._name, self._tick_count)
            return False

    def _wait(self, seconds: float) -> bool:
        """Sleep until the deadline; True when stop was requested meanwhile."""
        return self._stop_event.wait(timeout=seconds)
