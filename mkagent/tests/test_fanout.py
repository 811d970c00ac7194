"""
Unit tests for concurrent collector execution.
"""

import threading
import time

import pytest

from mkagent.collectors import Collector
from mkagent.errors import CollectorError
from mkagent.fanout import FanOut


class StaticCollector(Collector):
    def __init__(self, name, metrics=None, error=None, delay=0.0):
        self.name = name
        self.metrics = metrics or {}
        self.error = error
        self.delay = delay
        self.calls = 0

    def collect(self):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return dict(self.metrics)


class BlockingCollector(Collector):
    """Blocks until released, to simulate a hung collector"""

    def __init__(self, name):
        self.name = name
        self.release = threading.Event()
        self.calls = 0

    def collect(self):
        self.calls += 1
        self.release.wait(5)
        return {f'{self.name}.value': 1.0}


class TestFanOut:

    def test_collects_all(self):
        fanout = FanOut([
            StaticCollector('memory', {'memory.used': 30.0}),
            StaticCollector('cpu', {'cpu.idle.percentage': 50.0}),
        ], timeout=2)

        results = fanout.run()

        assert [r.name for r in results] == ['cpu', 'memory']
        assert all(r.ok for r in results)
        assert results[0].metrics == {'cpu.idle.percentage': 50.0}
        assert results[1].metrics == {'memory.used': 30.0}

    def test_collectors_run_concurrently(self):
        """All workers should start before any is awaited"""
        barrier = threading.Barrier(3, timeout=2)

        class BarrierCollector(Collector):
            def __init__(self, name):
                self.name = name

            def collect(self):
                barrier.wait()
                return {f'{self.name}.ok': 1.0}

        results = FanOut([BarrierCollector(n) for n in ('a', 'b', 'c')], timeout=3).run()

        assert all(r.ok for r in results)

    def test_failure_is_isolated(self):
        """A failing collector should not affect the others"""
        fanout = FanOut([
            StaticCollector('cpu', {'cpu.idle.percentage': 50.0}),
            StaticCollector('disk', error=OSError('/proc/diskstats missing')),
            StaticCollector('memory', {'memory.used': 30.0}),
        ], timeout=2)

        results = {r.name: r for r in fanout.run()}

        assert results['cpu'].ok
        assert results['memory'].ok
        assert not results['disk'].ok
        assert isinstance(results['disk'].error, CollectorError)
        assert results['disk'].error.collector == 'disk'
        assert 'diskstats' in str(results['disk'].error)

    def test_non_dict_result_is_failure(self):
        class BadCollector(Collector):
            name = 'bad'

            def collect(self):
                return [1, 2, 3]

        result, = FanOut([BadCollector()], timeout=1).run()

        assert not result.ok
        assert 'expected dict' in str(result.error)

    def test_timeout_does_not_block_cycle(self):
        hung = BlockingCollector('hung')
        fanout = FanOut([hung, StaticCollector('cpu', {'cpu.idle.percentage': 50.0})], timeout=0.2)

        started = time.monotonic()
        results = {r.name: r for r in fanout.run()}
        elapsed = time.monotonic() - started
        hung.release.set()

        assert elapsed < 2
        assert results['cpu'].ok
        assert not results['hung'].ok
        assert 'timed out' in str(results['hung'].error)

    def test_stuck_collector_is_skipped_until_it_finishes(self):
        hung = BlockingCollector('hung')
        fanout = FanOut([hung], timeout=0.1)

        fanout.run()
        second, = fanout.run()

        assert hung.calls == 1
        assert 'still in progress' in str(second.error)

        hung.release.set()
        deadline = time.monotonic() + 2
        while fanout._stalled['hung'].running() and time.monotonic() < deadline:
            time.sleep(0.01)

        third, = fanout.run()
        assert third.ok
        assert hung.calls == 2

    def test_workers_are_daemon_threads(self):
        """A hung collector must not keep the process alive at exit"""
        seen = []

        class ThreadCollector(Collector):
            name = 'thread'

            def collect(self):
                seen.append(threading.current_thread())
                return {'thread.ok': 1.0}

        hung = BlockingCollector('hung')
        results = {r.name: r for r in FanOut([hung, ThreadCollector()], timeout=0.1).run()}
        stuck = [t for t in threading.enumerate() if t.name == 'collector-hung']
        hung.release.set()

        assert results['thread'].ok
        assert seen[0].daemon
        assert stuck and all(t.daemon for t in stuck)

    def test_no_collectors(self):
        assert FanOut([], timeout=1).run() == []

    @pytest.mark.parametrize('order', [('a', 'b', 'c'), ('c', 'a', 'b'), ('b', 'c', 'a')])
    def test_result_order_independent_of_input(self, order):
        collectors = [StaticCollector(n, {f'{n}.x': 1.0}, delay=0.01 * i) for i, n in enumerate(order)]

        assert [r.name for r in FanOut(collectors, timeout=2).run()] == ['a', 'b', 'c']
