#!/usr/bin/env python3
"""
Monitoring agent daemon - startup and main collection loop.
"""

import signal
import sys
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

import click

from logcore import add_context, get_logger, setup_logging
from mkagent import __version__
from mkagent.aggregator import MetricSnapshot, aggregate
from mkagent.client import ApiClient
from mkagent.collectors import Collector, build_collectors
from mkagent.config import DEFAULT_CONFIG_PATH, Config, load_config
from mkagent.delivery import Deliverer
from mkagent.errors import ConfigError, StartupError
from mkagent.fanout import FanOut
from mkagent.file_writer import DroppedBatchWriter
from mkagent.host_meta import collect_host_meta
from mkagent.identity import IdentityManager, IdentityStore
from mkagent.scheduler import Scheduler

logger = get_logger(__name__)


class MonitoringAgent:
    """Runs collection cycles for a registered host"""

    def __init__(
        self,
        config: Config,
        client: ApiClient,
        host_id: str,
        collectors: Optional[Sequence[Collector]] = None,
        deliverer: Optional[Deliverer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.client = client
        self.host_id = host_id
        self._clock = clock

        if collectors is None:
            collectors = build_collectors(config.collectors)
        self.fanout = FanOut(collectors, timeout=config.effective_collector_timeout)

        if deliverer is None:
            dropped_writer = DroppedBatchWriter(config.dropped_dir) if config.dropped_dir else None
            deliverer = Deliverer(
                client,
                host_id,
                retries=config.send_retries,
                retry_delay=config.retry_delay,
                dropped_writer=dropped_writer,
            )
        self.deliverer = deliverer
        self.scheduler: Optional[Scheduler] = None

    def _handle_shutdown(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, shutting down")
        if self.scheduler is not None:
            self.scheduler.stop()

    def run_cycle(self) -> MetricSnapshot:
        """Single collection cycle: fan out, merge, deliver"""
        started = time.monotonic()

        results = self.fanout.run()
        for result in results:
            if not result.ok:
                logger.warning(
                    f"Collector failed, skipping its metrics this cycle: {result.error}",
                    extra={'context': {'collector': result.name}}
                )

        snapshot = aggregate(results, clock=self._clock)

        # Retries must not spill into the next tick
        remaining = self.config.interval - (time.monotonic() - started)
        delivered = self.deliverer.deliver(snapshot, deadline=max(0.0, remaining))

        logger.info(
            f"Cycle complete: {len(snapshot)} metrics",
            extra={'context': {
                'timestamp': snapshot.timestamp,
                'domains': list(snapshot.domains),
                'failed': list(snapshot.failed),
                'delivered': delivered,
                'elapsed': round(time.monotonic() - started, 3),
            }}
        )
        return snapshot

    def run(self, max_cycles: Optional[int] = None, handle_signals: bool = True):
        """Main daemon loop"""
        self.scheduler = Scheduler(self.run_cycle, self.config.interval, max_cycles=max_cycles)
        if handle_signals:
            signal.signal(signal.SIGTERM, self._handle_shutdown)
            signal.signal(signal.SIGINT, self._handle_shutdown)

        logger.info(
            "Starting monitoring agent",
            extra={'context': {
                'interval': self.config.interval,
                'collectors': [c.name for c in self.fanout.collectors],
                'apibase': self.config.apibase,
            }}
        )
        try:
            self.scheduler.run()
        finally:
            self._cleanup()

    def _cleanup(self):
        self.client.close()
        logger.info("Agent stopped")


def start_agent(config: Config, client: Optional[ApiClient] = None) -> MonitoringAgent:
    """
    Resolve the host identity and build the agent.

    Raises:
        StartupError: If the host identity cannot be resolved
    """
    if client is None:
        client = ApiClient(config.apikey, config.apibase, timeout=config.send_timeout)

    manager = IdentityManager(
        IdentityStore(config.id_file),
        client,
        display_name=config.display_name,
        meta_provider=collect_host_meta,
    )
    host_id = manager.resolve()
    add_context(host_id=host_id)
    return MonitoringAgent(config, client, host_id)


@click.command()
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              default=str(DEFAULT_CONFIG_PATH), show_default=True, help='Path to the agent config file')
@click.option('--once', is_flag=True, help='Run a single collection cycle and exit')
@click.option('--verbose', '-v', is_flag=True, help='Log at DEBUG level')
@click.version_option(version=__version__)
def main(config_path: str, once: bool, verbose: bool):
    """Run the host monitoring agent"""

    try:
        config = load_config(Path(config_path))
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    try:
        setup_logging(
            level='DEBUG' if verbose else config.log_level,
            log_file=config.log_file,
            use_json=config.log_json,
        )
    except OSError as e:
        click.echo(f"Cannot open log file {config.log_file}: {e}", err=True)
        sys.exit(1)

    try:
        agent = start_agent(config)
    except StartupError as e:
        logger.critical(f"Startup failed: {e}")
        click.echo(f"Startup failed: {e}", err=True)
        sys.exit(1)

    agent.run(max_cycles=1 if once else None)


if __name__ == '__main__':
    main()
