"""
Merges per-collector results into a single timestamped snapshot.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Mapping, Tuple

from logcore import get_logger
from mkagent.fanout import CollectorResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class MetricSnapshot:
    """All metrics of one cycle, sharing one timestamp"""
    values: Dict[str, float]
    timestamp: int
    domains: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = field(default=())

    def __len__(self) -> int:
        return len(self.values)


def merge_partials(partials: Mapping[str, Mapping[str, float]]) -> Dict[str, float]:
    """
    Disjoint-key union of domain partials keyed by domain name.

    Domains are visited in name order, so on a key collision the domain
    that sorts first wins regardless of arrival order.
    """
    merged: Dict[str, float] = {}
    owner: Dict[str, str] = {}
    for domain in sorted(partials):
        for name, value in partials[domain].items():
            if name in merged:
                logger.warning(
                    "Metric name collision, keeping first",
                    extra={'context': {'metric': name, 'kept': owner[name], 'dropped': domain}}
                )
                continue
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning(
                    "Dropping non-numeric metric",
                    extra={'context': {'metric': name, 'domain': domain}}
                )
                continue
            if not math.isfinite(value):
                logger.debug("Dropping non-finite metric %s from %s", name, domain)
                continue
            merged[name] = value
            owner[name] = domain
    return merged


def aggregate(results: Iterable[CollectorResult], clock: Callable[[], float] = time.time) -> MetricSnapshot:
    """Build the cycle snapshot, stamped once when the merge completes"""
    partials: Dict[str, Mapping[str, float]] = {}
    failed = []
    for result in results:
        if result.ok:
            partials[result.name] = result.metrics or {}
        else:
            failed.append(result.name)

    values = merge_partials(partials)
    return MetricSnapshot(
        values=values,
        timestamp=int(clock()),
        domains=tuple(sorted(partials)),
        failed=tuple(sorted(failed)),
    )
