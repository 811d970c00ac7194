"""
Agent configuration loading and validation.
"""

import configparser
import math
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from mkagent.errors import ConfigError

DEFAULT_CONFIG_PATH = Path('/etc/mkagent/mkagent.conf')
DEFAULT_API_BASE = 'https://api.mackerelio.com/'
DEFAULT_ID_FILE = Path('/var/lib/mkagent/id')
DEFAULT_INTERVAL = 5.0
APIKEY_ENV = 'MKAGENT_APIKEY'
ROOT_SECTION = 'agent'

ALL_COLLECTORS = ('cpu', 'disk', 'filesystem', 'interface', 'loadavg', 'memory')
VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass(frozen=True)
class Config:
    """Immutable agent settings, shared read-only for the process lifetime"""
    apikey: str
    apibase: str = DEFAULT_API_BASE
    interval: float = DEFAULT_INTERVAL
    collector_timeout: Optional[float] = None
    send_timeout: float = 10.0
    send_retries: int = 3
    retry_delay: float = 1.0
    id_file: Path = DEFAULT_ID_FILE
    dropped_dir: Optional[Path] = None
    log_level: str = 'INFO'
    log_file: Optional[str] = None
    log_json: bool = True
    display_name: Optional[str] = None
    collectors: Tuple[str, ...] = field(default=ALL_COLLECTORS)

    @property
    def effective_collector_timeout(self) -> float:
        """Per-cycle deadline for collectors; defaults to 80% of the interval"""
        if self.collector_timeout is not None:
            return self.collector_timeout
        return self.interval * 0.8


def _read_ini(path: Path) -> Dict[str, Any]:
    with open(path, 'r') as f:
        text = f.read()

    # Keys above the first section header land in ROOT_SECTION
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    try:
        parser.read_string(f"[{ROOT_SECTION}]\n{text}", source=str(path))
    except configparser.Error as e:
        raise ConfigError(f"Invalid config file {path}: {e}")

    # Keys may live in any section; the first one wins
    values = dict(parser.defaults())
    for section in parser.sections():
        for key, value in parser.items(section):
            values.setdefault(key, value)
    return {key: _unquote(value) for key, value in values.items()}


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    # Flat mapping, or one level of sections
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                values.setdefault(str(sub_key).lower(), sub_value)
        else:
            values.setdefault(str(key).lower(), value)
    return values


def _as_float(values: Dict[str, Any], key: str, minimum: float = 0.0) -> Optional[float]:
    if values.get(key) in (None, ''):
        return None
    try:
        number = float(values[key])
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {key}: {values[key]!r}")
    if not math.isfinite(number):
        raise ConfigError(f"{key} must be a finite number: {values[key]!r}")
    if number <= minimum:
        raise ConfigError(f"{key} must be greater than {minimum}")
    return number


def _as_bool(values: Dict[str, Any], key: str) -> Optional[bool]:
    value = values.get(key)
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off'):
        return False
    raise ConfigError(f"Invalid boolean for {key}: {value!r}")


def _as_collectors(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        names = [str(v).strip() for v in value]
    else:
        names = [v.strip() for v in str(value).split(',')]
    names = [n for n in names if n]
    unknown = [n for n in names if n not in ALL_COLLECTORS]
    if unknown:
        raise ConfigError(f"Unknown collectors: {unknown}. Must be among {list(ALL_COLLECTORS)}")
    if not names:
        raise ConfigError("collectors must name at least one collector")
    return tuple(dict.fromkeys(names))


def config_from_mapping(values: Dict[str, Any]) -> Config:
    """
    Build a validated Config from raw key/value pairs.

    Raises:
        ConfigError: If a required key is missing or a value is invalid
    """
    apikey = os.environ.get(APIKEY_ENV) or values.get('apikey')
    if not apikey or not str(apikey).strip():
        raise ConfigError("Missing required field: apikey")

    config = Config(apikey=str(apikey).strip())
    overrides: Dict[str, Any] = {}

    apibase = values.get('apibase')
    if apibase:
        apibase = str(apibase).strip()
        if not apibase.startswith(('http://', 'https://')):
            raise ConfigError(f"apibase must be an http(s) URL: {apibase}")
        overrides['apibase'] = apibase

    for key in ('interval', 'collector_timeout', 'send_timeout', 'retry_delay'):
        number = _as_float(values, key)
        if number is not None:
            overrides[key] = number

    if values.get('send_retries') not in (None, ''):
        try:
            retries = int(values['send_retries'])
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid value for send_retries: {values['send_retries']!r}")
        if retries < 1:
            raise ConfigError("send_retries must be at least 1")
        overrides['send_retries'] = retries

    if values.get('id_file'):
        overrides['id_file'] = Path(os.path.expandvars(str(values['id_file'])))
    if values.get('dropped_dir'):
        overrides['dropped_dir'] = Path(os.path.expandvars(str(values['dropped_dir'])))

    if values.get('log_level'):
        level = str(values['log_level']).upper()
        if level not in VALID_LOG_LEVELS:
            raise ConfigError(f"Invalid log_level: {level}. Must be one of {list(VALID_LOG_LEVELS)}")
        overrides['log_level'] = level
    if values.get('log_file'):
        overrides['log_file'] = os.path.expandvars(str(values['log_file']))
    log_json = _as_bool(values, 'log_json')
    if log_json is not None:
        overrides['log_json'] = log_json

    if values.get('display_name'):
        overrides['display_name'] = str(values['display_name']).strip()
    if values.get('collectors'):
        overrides['collectors'] = _as_collectors(values['collectors'])

    return replace(config, **overrides)


def load_config(config_path) -> Config:
    """
    Load the agent config file.

    INI style sectioned files are the default; files ending in .yml or
    .yaml are read as YAML.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    path = Path(config_path)
    try:
        if path.suffix.lower() in ('.yml', '.yaml'):
            values = _read_yaml(path)
        else:
            values = _read_ini(path)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")

    return config_from_mapping(values)
