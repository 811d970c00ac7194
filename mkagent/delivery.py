"""
Delivery of cycle snapshots to the metrics API.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from logcore import get_logger
from mkagent.aggregator import MetricSnapshot
from mkagent.errors import ApiError, DeliveryError
from mkagent.file_writer import DroppedBatchWriter

logger = get_logger(__name__)


def to_wire(snapshot: MetricSnapshot, host_id: str) -> List[Dict[str, Any]]:
    """One record per metric, all carrying the snapshot timestamp"""
    return [
        {
            'hostId': host_id,
            'name': name,
            'time': snapshot.timestamp,
            'value': value,
        }
        for name, value in sorted(snapshot.values.items())
    ]


class Deliverer:
    """
    Sends snapshots with bounded retries.

    A batch that still fails after `retries` attempts, or that cannot be
    sent within `deadline` seconds of the first attempt, is dropped. The
    deadline bounds both the backoff sleeps and each request timeout.
    Delivery failures never propagate to the caller.
    """

    def __init__(
        self,
        client,
        host_id: str,
        retries: int = 3,
        retry_delay: float = 1.0,
        deadline: Optional[float] = None,
        dropped_writer: Optional[DroppedBatchWriter] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.host_id = host_id
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.deadline = deadline
        self.dropped_writer = dropped_writer
        self._sleep = sleep
        self._clock = clock

    def deliver(self, snapshot: MetricSnapshot, deadline: Optional[float] = None) -> bool:
        """
        Send a snapshot; returns True if the API accepted it.

        `deadline` overrides the configured retry budget for this call.
        """
        if not snapshot.values:
            logger.debug("Empty snapshot, nothing to send")
            return True

        values = to_wire(snapshot, self.host_id)
        try:
            self._send_with_retry(values, self.deadline if deadline is None else deadline)
        except DeliveryError as e:
            self._drop(values, str(e))
            return False
        return True

    def _send_with_retry(self, values: List[Dict[str, Any]], deadline: Optional[float]) -> None:
        started = self._clock()
        delay = self.retry_delay

        for attempt in range(1, self.retries + 1):
            timeout = None
            if deadline is not None:
                # Each request is cut to the time left in the budget
                timeout = deadline - (self._clock() - started)
                if timeout <= 0:
                    raise DeliveryError(f"Delivery deadline of {deadline:.1f}s exceeded")
            try:
                self.client.post_metrics(values, timeout=timeout)
                if attempt > 1:
                    logger.info("Metrics delivered after %d attempts", attempt)
                return
            except ApiError as e:
                logger.warning(
                    f"Metric delivery failed (attempt {attempt}/{self.retries}): {e}",
                    extra={'context': {'status_code': e.status_code, 'metrics': len(values)}}
                )
                if not e.retryable:
                    raise DeliveryError(f"Non-retryable error: {e}")
                if attempt == self.retries:
                    raise DeliveryError(f"Failed after {self.retries} attempts: {e}")

            if deadline is not None and self._clock() - started + delay > deadline:
                raise DeliveryError(f"Retry deadline of {deadline:.1f}s exceeded")
            self._sleep(delay)
            delay *= 2

    def _drop(self, values: List[Dict[str, Any]], reason: str) -> None:
        logger.error(
            "Dropping metrics batch",
            extra={'context': {'reason': reason, 'metrics': len(values)}}
        )
        if self.dropped_writer is None:
            return
        try:
            path = self.dropped_writer.write(values, reason)
        except OSError as e:
            logger.error("Could not record dropped batch: %s", e)
        else:
            logger.info("Dropped batch recorded", extra={'context': {'path': str(path)}})
