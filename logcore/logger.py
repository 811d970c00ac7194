"""
LogCore: structured JSON logging for the agent.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
REQUIRED_FIELDS = ('timestamp', 'level', 'logger', 'message')
VALID_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class JSONFormatter(logging.Formatter):
    """
    Formats records as one JSON object per line.

    Output format:
    {
        "timestamp": "2026-02-08T20:30:00.123456Z",
        "level": "INFO",
        "logger": "mkagent.agent",
        "message": "Cycle complete",
        "context": {...}  # from extra={'context': {...}} and ContextFilter
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: Dict[str, Any] = {
            'timestamp': timestamp.strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        context = getattr(record, 'context', None)
        if context:
            log_data['context'] = context

        if record.exc_info and record.exc_info[0] is not None:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        if record.levelno <= logging.DEBUG:
            log_data['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_data, default=str)


class ContextFilter(logging.Filter):
    """Adds fixed fields (e.g. host_id) to the context of every record"""

    def __init__(self, **fields: Any):
        super().__init__()
        self.fields = fields

    def filter(self, record: logging.LogRecord) -> bool:
        context = dict(self.fields)
        context.update(getattr(record, 'context', None) or {})
        record.context = context
        return True


def _make_formatter(use_json: bool) -> logging.Formatter:
    return JSONFormatter() if use_json else logging.Formatter(PLAIN_FORMAT)


def setup_logging(
    name: str = 'mkagent',
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    use_json: bool = True,
    stream=None
) -> logging.Logger:
    """
    Configure the handlers of a logger tree.

    Existing handlers on the logger are replaced, so calling this again
    (for example after the config file has been read) reconfigures
    instead of duplicating output.

    Args:
        name: Root of the logger tree to configure
        level: Logging level, as an int or level name
        log_file: Optional file to log to in addition to the stream
        use_json: Use JSONFormatter (default) or plain text lines
        stream: Stream for the console handler (default: stderr)

    Returns:
        The configured logger
    """
    if isinstance(level, str):
        level_name = level.upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level_name}")

    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.propagate = False

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setFormatter(_make_formatter(use_json))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(_make_formatter(use_json))
        logger.addHandler(file_handler)

    return logger


def add_context(name: str = 'mkagent', **fields: Any) -> ContextFilter:
    """Attach fixed context fields to every handler of a configured logger"""
    context_filter = ContextFilter(**fields)
    for handler in logging.getLogger(name).handlers:
        handler.addFilter(context_filter)
    return context_filter


def get_logger(name: str) -> logging.Logger:
    """Module logger; configured through setup_logging on its tree root"""
    return logging.getLogger(name)


def validate_log_format(log_line: str) -> bool:
    """
    Check that a line is a JSON log record with the required fields.

    Returns:
        True if valid JSON with required fields and a known level
    """
    try:
        data = json.loads(log_line)
    except (json.JSONDecodeError, TypeError):
        return False

    if not isinstance(data, dict):
        return False
    if not all(field in data for field in REQUIRED_FIELDS):
        return False
    return data['level'] in VALID_LEVELS
