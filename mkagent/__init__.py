"""
mkagent: host monitoring agent

Samples CPU, disk, filesystem, network interface, load average and memory
metrics on a fixed interval and posts them to a Mackerel-compatible API,
registering the host once and persisting its identity locally.
"""

__version__ = '0.1.0'

from mkagent.agent import MonitoringAgent, start_agent  # noqa: E402
from mkagent.config import Config, load_config  # noqa: E402

__all__ = ['Config', 'MonitoringAgent', 'load_config', 'start_agent']
