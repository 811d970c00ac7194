"""
Concurrent execution of domain collectors for one cycle.
"""

import threading
import time
from concurrent.futures import Future, wait
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from logcore import get_logger
from mkagent.collectors import Collector, Metrics
from mkagent.errors import CollectorError

logger = get_logger(__name__)


@dataclass
class CollectorResult:
    """Outcome of one collector in one cycle"""
    name: str
    metrics: Optional[Metrics] = None
    error: Optional[CollectorError] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_collector(collector: Collector) -> CollectorResult:
    started = time.monotonic()
    try:
        metrics = collector.collect()
    except Exception as e:
        return CollectorResult(
            name=collector.name,
            error=CollectorError(collector.name, f"{type(e).__name__}: {e}"),
            elapsed=time.monotonic() - started,
        )

    if not isinstance(metrics, dict):
        return CollectorResult(
            name=collector.name,
            error=CollectorError(collector.name, f"returned {type(metrics).__name__}, expected dict"),
            elapsed=time.monotonic() - started,
        )
    return CollectorResult(name=collector.name, metrics=metrics, elapsed=time.monotonic() - started)


def _start_worker(collector: Collector) -> Future:
    """Run one collector on a daemon thread; the future resolves with its result"""
    future: Future = Future()
    future.set_running_or_notify_cancel()

    def work():
        try:
            future.set_result(_run_collector(collector))
        except BaseException as e:
            future.set_exception(e)
            raise

    threading.Thread(target=work, name=f'collector-{collector.name}', daemon=True).start()
    return future


class FanOut:
    """
    Runs every collector concurrently and joins them with a deadline.

    Workers live for a single cycle. A collector that misses the deadline
    is reported as failed and its daemon thread is abandoned, so it never
    holds up interpreter exit; until that thread finishes the collector is
    skipped in later cycles.
    """

    def __init__(self, collectors: Sequence[Collector], timeout: float):
        self.collectors = list(collectors)
        self.timeout = timeout
        self._stalled: Dict[str, Future] = {}

    def run(self) -> List[CollectorResult]:
        results: List[CollectorResult] = []
        runnable: List[Collector] = []

        for collector in self.collectors:
            stalled = self._stalled.get(collector.name)
            if stalled is not None and not stalled.done():
                logger.warning("Skipping collector still stuck in a previous cycle: %s", collector.name)
                results.append(CollectorResult(
                    name=collector.name,
                    error=CollectorError(collector.name, "previous run still in progress"),
                ))
                continue
            self._stalled.pop(collector.name, None)
            runnable.append(collector)

        if runnable:
            results.extend(self._run_all(runnable))

        return sorted(results, key=lambda r: r.name)

    def _run_all(self, collectors: List[Collector]) -> List[CollectorResult]:
        # Start every worker before waiting on any of them
        futures = {_start_worker(c): c for c in collectors}
        done, not_done = wait(futures, timeout=self.timeout)

        results = [future.result() for future in done]
        for future in not_done:
            collector = futures[future]
            self._stalled[collector.name] = future
            logger.warning(
                "Collector timed out",
                extra={'context': {'collector': collector.name, 'timeout': self.timeout}}
            )
            results.append(CollectorResult(
                name=collector.name,
                error=CollectorError(collector.name, f"timed out after {self.timeout}s"),
                elapsed=self.timeout,
            ))
        return results
