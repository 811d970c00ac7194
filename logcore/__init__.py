"""
logcore: structured JSON logging

JSON line output with a fixed set of top-level fields, used by the agent
for everything it writes to stderr or its log file.
"""

from logcore.logger import (
    ContextFilter,
    JSONFormatter,
    add_context,
    get_logger,
    setup_logging,
    validate_log_format,
)

__all__ = [
    'ContextFilter',
    'JSONFormatter',
    'add_context',
    'get_logger',
    'setup_logging',
    'validate_log_format',
]
__version__ = '1.1.0'
