"""
Domain collectors for host metrics.

Each collector samples one metric family and returns a mapping of
metric name to value. Names are prefixed with the family so that
collectors never produce the same key.
"""

import re
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence

import psutil

Metrics = Dict[str, float]

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_-]')


def sanitize(name: str) -> str:
    """Make a device or interface name safe for use inside a metric name"""
    if name.startswith('/dev/'):
        name = name[len('/dev/'):]
    return _UNSAFE_CHARS.sub('_', name) or '_'


class Collector(ABC):
    """Base class for domain collectors"""

    name = ''

    @abstractmethod
    def collect(self) -> Metrics:
        """Sample the metric family"""
        pass


class _DeltaCollector(Collector):
    """Collector that reports rates between consecutive samples"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._previous: Optional[Dict[str, tuple]] = None
        self._previous_at: Optional[float] = None

    def _rates(self, current: Dict[str, tuple], fields: Sequence[str], per: float) -> Metrics:
        now = self._clock()
        previous, previous_at = self._previous, self._previous_at
        self._previous, self._previous_at = current, now

        if previous is None or previous_at is None or now <= previous_at:
            return {}

        elapsed = now - previous_at
        metrics: Metrics = {}
        for key, values in current.items():
            if key not in previous:
                continue
            for field, value, old in zip(fields, values, previous[key]):
                # Counters reset on wraparound or device re-plug
                if value < old:
                    continue
                metrics[f"{self.name}.{key}.{field}.delta"] = (value - old) / elapsed * per
        return metrics


class CpuCollector(Collector):
    """CPU time percentages since the previous sample"""

    name = 'cpu'
    FIELDS = ('user', 'nice', 'system', 'idle', 'iowait', 'irq', 'softirq', 'steal', 'guest')

    def __init__(self):
        self._previous: Optional[Dict[str, float]] = None

    def collect(self) -> Metrics:
        times = psutil.cpu_times()._asdict()
        current = {field: times[field] for field in self.FIELDS if field in times}
        previous, self._previous = self._previous, current
        if previous is None:
            return {}

        deltas = {field: max(current[field] - previous.get(field, 0.0), 0.0) for field in current}
        # guest time is already counted in user
        total = sum(v for k, v in deltas.items() if k != 'guest')
        if total <= 0:
            return {}
        return {f"cpu.{field}.percentage": delta / total * 100.0 for field, delta in deltas.items()}


class DiskCollector(_DeltaCollector):
    """Block device read/write operations per minute"""

    name = 'disk'
    IGNORED_PREFIXES = ('loop', 'ram', 'sr', 'fd')

    def collect(self) -> Metrics:
        counters = psutil.disk_io_counters(perdisk=True) or {}
        current = {
            sanitize(device): (io.read_count, io.write_count)
            for device, io in counters.items()
            if not device.startswith(self.IGNORED_PREFIXES)
        }
        return self._rates(current, ('reads', 'writes'), per=60.0)


class FilesystemCollector(Collector):
    """Size and usage in bytes of mounted filesystems"""

    name = 'filesystem'

    def collect(self) -> Metrics:
        metrics: Metrics = {}
        seen: List[str] = []
        for partition in psutil.disk_partitions(all=False):
            device = sanitize(partition.device)
            if device in seen:
                continue
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, FileNotFoundError, OSError):
                # Unmounted between listing and stat, or not ours to read
                continue
            seen.append(device)
            metrics[f"filesystem.{device}.size"] = float(usage.total)
            metrics[f"filesystem.{device}.used"] = float(usage.used)
        return metrics


class InterfaceCollector(_DeltaCollector):
    """Network interface bytes per second"""

    name = 'interface'
    IGNORED = ('lo',)

    def collect(self) -> Metrics:
        counters = psutil.net_io_counters(pernic=True) or {}
        current = {
            sanitize(nic): (io.bytes_recv, io.bytes_sent)
            for nic, io in counters.items()
            if nic not in self.IGNORED
        }
        return self._rates(current, ('rxBytes', 'txBytes'), per=1.0)


class LoadavgCollector(Collector):
    name = 'loadavg'

    def collect(self) -> Metrics:
        load1, load5, load15 = psutil.getloadavg()
        return {'loadavg1': load1, 'loadavg5': load5, 'loadavg15': load15}


class MemoryCollector(Collector):
    """Physical memory and swap in bytes"""

    name = 'memory'
    FIELDS = ('total', 'free', 'used', 'cached', 'buffers', 'available')

    def collect(self) -> Metrics:
        mem = psutil.virtual_memory()
        metrics = {
            f"memory.{field}": float(getattr(mem, field))
            for field in self.FIELDS
            if hasattr(mem, field)
        }
        swap = psutil.swap_memory()
        metrics['memory.swap_total'] = float(swap.total)
        metrics['memory.swap_free'] = float(swap.free)
        return metrics


COLLECTORS = {
    'cpu': CpuCollector,
    'disk': DiskCollector,
    'filesystem': FilesystemCollector,
    'interface': InterfaceCollector,
    'loadavg': LoadavgCollector,
    'memory': MemoryCollector,
}


def build_collectors(names: Sequence[str]) -> List[Collector]:
    """Instantiate the named collectors"""
    return [COLLECTORS[name]() for name in names]
