"""
Static host facts sent along with host registration.
"""

import platform
from typing import Any, Dict, List

import psutil

from mkagent import __version__


def cpu_model_name() -> str:
    if platform.system() == 'Linux':
        try:
            with open('/proc/cpuinfo', 'r', encoding='utf-8') as fh:
                for line in fh:
                    if line.startswith('model name'):
                        return line.split(':', 1)[1].strip()
        except OSError:
            pass
    return platform.processor() or 'unknown'


def _cpu_meta() -> List[Dict[str, Any]]:
    cores = psutil.cpu_count(logical=False) or psutil.cpu_count() or 0
    return [{'model_name': cpu_model_name(), 'cores': cores}]


def collect_host_meta() -> Dict[str, Any]:
    """Collect the meta block for the registration payload"""
    uname = platform.uname()
    return {
        'agent-name': 'mkagent',
        'agent-version': __version__,
        'kernel': {
            'name': uname.system,
            'release': uname.release,
            'version': uname.version,
            'machine': uname.machine,
            'os': platform.platform(),
        },
        'cpu': _cpu_meta(),
        'memory': {'total': psutil.virtual_memory().total},
    }
