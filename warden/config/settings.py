"""Configuration management for warden."""

import os
import re
from typing import Any, Dict, Optional

import yaml

from ..errors import ConfigError
from ..validate.registry import RegistryAllowList, parse_allowed_registries
from ..validate.trust_client import TrustServiceConfig


DEFAULT_CONFIG_PATH = "./hack/config.yaml"

_DURATION_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}

ENFORCEMENT_ACTIONS = ("delete", "evict", "audit")


def parse_duration(value: Any, field: str) -> float:
    """Parse ``10``, ``2.5``, ``500ms``, ``10s``, ``5m`` or ``1h`` into seconds."""
    if isinstance(value, bool):
        raise ConfigError(f"{field} must be a duration, got {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ConfigError(f"{field} must be a duration such as '10s', got {value!r}")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ConfigError(f"{field} must be positive, got {value!r}")
    return seconds


def _positive_int(value: Any, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{field} must be an integer, got {value!r}")
    if number < 1:
        raise ConfigError(f"{field} must be at least 1, got {number}")
    return number


class Config:
    """Configuration manager for warden.

    Values come from a YAML file and can be overridden by environment
    variables. Everything is read and validated once, at construction.
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        env = os.environ if environ is None else environ
        self.config_path = config_path or env.get('WARDEN_CONFIG', DEFAULT_CONFIG_PATH)
        raw = self._load_file(self.config_path)

        notary = raw.get('notary') or {}
        operator = raw.get('operator') or {}
        logging_cfg = raw.get('logging') or {}
        backoff = operator.get('backoff') or {}

        self.notary_url = env.get('WARDEN_NOTARY_URL', notary.get('url'))
        if not self.notary_url:
            raise ConfigError("notary.url is required (or set WARDEN_NOTARY_URL)")
        self.notary_timeout = parse_duration(
            env.get('WARDEN_NOTARY_TIMEOUT', notary.get('timeout', '10s')), 'notary.timeout'
        )
        allowed = env.get('WARDEN_ALLOWED_REGISTRIES', notary.get('allowedRegistries', ''))
        if isinstance(allowed, list):
            allowed = ",".join(str(item) for item in allowed)
        self.allowed_registries = allowed or ''

        self.workers = _positive_int(operator.get('workers', 4), 'operator.workers')
        self.max_concurrent_images = _positive_int(
            operator.get('maxConcurrentImages', 5), 'operator.maxConcurrentImages'
        )
        self.enforcement = str(operator.get('enforcement', 'delete')).strip().lower()
        if self.enforcement not in ENFORCEMENT_ACTIONS:
            raise ConfigError(
                f"operator.enforcement must be one of {', '.join(ENFORCEMENT_ACTIONS)}, got '{self.enforcement}'"
            )
        self.backoff_base = parse_duration(backoff.get('base', '1s'), 'operator.backoff.base')
        self.backoff_max = parse_duration(backoff.get('max', '5m'), 'operator.backoff.max')
        if self.backoff_max < self.backoff_base:
            raise ConfigError("operator.backoff.max must not be smaller than operator.backoff.base")
        self.resync_period = parse_duration(operator.get('resyncPeriod', '10m'), 'operator.resyncPeriod')

        self.log_level = str(env.get('WARDEN_LOG_LEVEL', logging_cfg.get('level', 'INFO'))).upper()
        self.log_json = bool(logging_cfg.get('json', False))

        self._trust_service_config = TrustServiceConfig(url=self.notary_url, timeout=self.notary_timeout)
        self._allow_list = parse_allowed_registries(self.allowed_registries)

    @staticmethod
    def _load_file(path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            raise ConfigError(f"Configuration file not found: {path}")
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration in {path} must be a mapping")
        return data

    def trust_service_config(self) -> TrustServiceConfig:
        return self._trust_service_config

    def allow_list(self) -> RegistryAllowList:
        return self._allow_list
