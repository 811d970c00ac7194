"""
Fixed-period, strictly sequential cycle scheduler.
"""

import math
import threading
import time
from typing import Callable, Optional

from logcore import get_logger

logger = get_logger(__name__)


class Scheduler:
    """
    Calls `cycle` every `interval` seconds until stopped.

    A cycle never overlaps the next one. If a cycle overruns its slot the
    schedule re-anchors to the next period boundary instead of firing the
    missed ticks back to back. Exceptions raised by a cycle are logged and
    the loop carries on.
    """

    def __init__(
        self,
        cycle: Callable[[], None],
        interval: float,
        max_cycles: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not math.isfinite(interval) or interval <= 0:
            raise ValueError(f"interval must be a positive finite number: {interval}")
        self.cycle = cycle
        self.interval = interval
        self.max_cycles = max_cycles
        self.cycles_run = 0
        self._clock = clock
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self):
        """Ask the loop to exit after the current cycle"""
        self._stop.set()

    def run(self):
        next_tick = self._clock()
        while not self._stop.is_set():
            self._run_cycle()
            self.cycles_run += 1
            if self.max_cycles is not None and self.cycles_run >= self.max_cycles:
                break

            next_tick += self.interval
            now = self._clock()
            if now > next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                logger.warning(
                    "Cycle overran its interval",
                    extra={'context': {'missed_ticks': missed, 'interval': self.interval}}
                )
                next_tick += missed * self.interval

            self._stop.wait(max(0.0, next_tick - now))

    def _run_cycle(self):
        try:
            self.cycle()
        except Exception:
            logger.exception("Unhandled error in collection cycle")
