"""Configuration management for actionflow.

This module provides a centralized configuration system that supports:
- Environment variable overrides (``ACTIONFLOW_*``); ``ACTIONFLOW_CONFIG_FILE``
  names the config file when none is passed to ``get_config``
- Configuration file loading (YAML/JSON)
- Sensible defaults
- Validation with ConfigurationError
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

ENV_PREFIX = "ACTIONFLOW_"


@dataclass
class LoggingConfig:
    """Configuration for logging system."""
    level: str = "INFO"
    format: str = "human"  # "json" or "human"
    file: Optional[str] = None
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    include_run_id: bool = True


@dataclass
class RetryConfig:
    """Default retry policy for nodes built from configuration."""
    max_retries: int = 1
    wait_millis: int = 0


@dataclass
class FlowConfig:
    """Configuration for flow execution."""
    max_steps: Optional[int] = None  # None: no step ceiling


@dataclass
class BatchConfig:
    """Configuration for batch nodes and batch flows."""
    fail_fast: bool = True
    collect_actions: bool = False
    max_concurrency: int = 8


@dataclass
class EngineConfig:
    """Top-level engine configuration."""
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    flow: FlowConfig = field(default_factory=FlowConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes')


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}", config_key=name) from None


class ConfigManager:
    """Loads configuration hierarchically: defaults, then file, then environment."""

    def __init__(self, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialize a ConfigManager.

        Parameters:
            config_file (Optional[str]): Path to a YAML/JSON file to load. If None,
                only defaults and environment overrides are used.
            environ (Optional[Dict[str, str]]): Environment mapping to read
                overrides from; defaults to ``os.environ``.
        """
        self.config_file = config_file
        self.environ = os.environ if environ is None else environ
        self._config: Optional[EngineConfig] = None

    def load(self) -> EngineConfig:
        """
        Load, validate, cache and return the configuration.

        Raises:
            ConfigurationError: If the file format is unsupported or a value fails validation.
        """
        if self._config is not None:
            return self._config

        merged = EngineConfig().to_dict()
        if self.config_file:
            merged = self._deep_merge(merged, self._load_config_file())
        merged = self._deep_merge(merged, self._load_from_env())

        config = self._dict_to_config(merged)
        self._validate_config(config)

        self._config = config
        return config

    def _load_config_file(self) -> Dict[str, Any]:
        """
        Load configuration from the configured file path.

        A missing file yields an empty dict (with a warning). YAML (".yaml",
        ".yml") is read with yaml.safe_load and JSON with json.load.

        Raises:
            ConfigurationError: If the extension is unsupported or the file cannot be parsed.
        """
        path = Path(self.config_file)
        if not path.exists():
            logger.warning(f"Config file not found: {self.config_file}")
            return {}

        suffix = path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ConfigurationError(f"Unsupported config file format: {self.config_file}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f) if suffix == '.json' else yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config file {self.config_file}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {self.config_file} must contain a mapping")

        logger.info(f"Loaded configuration from {self.config_file}")
        return data

    def _load_from_env(self) -> Dict[str, Any]:
        """
        Build a nested override dictionary from ``ACTIONFLOW_*`` environment variables.

        Supported variables:
          - Logging: ACTIONFLOW_LOG_LEVEL, ACTIONFLOW_LOG_FORMAT, ACTIONFLOW_LOG_FILE
          - Retry: ACTIONFLOW_MAX_RETRIES (int), ACTIONFLOW_WAIT_MILLIS (int)
          - Flow: ACTIONFLOW_MAX_STEPS (int; empty or "none" disables)
          - Batch: ACTIONFLOW_FAIL_FAST (bool), ACTIONFLOW_COLLECT_ACTIONS (bool),
            ACTIONFLOW_MAX_CONCURRENCY (int)
        """
        env = self.environ
        config: Dict[str, Any] = {}

        def get(name: str) -> Optional[str]:
            return env.get(ENV_PREFIX + name)

        if get('LOG_LEVEL'):
            config.setdefault('logging', {})['level'] = get('LOG_LEVEL')
        if get('LOG_FORMAT'):
            config.setdefault('logging', {})['format'] = get('LOG_FORMAT')
        if get('LOG_FILE'):
            config.setdefault('logging', {})['file'] = get('LOG_FILE')

        if get('MAX_RETRIES'):
            config.setdefault('retry', {})['max_retries'] = _parse_int('MAX_RETRIES', get('MAX_RETRIES'))
        if get('WAIT_MILLIS'):
            config.setdefault('retry', {})['wait_millis'] = _parse_int('WAIT_MILLIS', get('WAIT_MILLIS'))

        max_steps = get('MAX_STEPS')
        if max_steps is not None:
            if max_steps.strip().lower() in ('', 'none'):
                config.setdefault('flow', {})['max_steps'] = None
            else:
                config.setdefault('flow', {})['max_steps'] = _parse_int('MAX_STEPS', max_steps)

        if get('FAIL_FAST'):
            config.setdefault('batch', {})['fail_fast'] = _parse_bool(get('FAIL_FAST'))
        if get('COLLECT_ACTIONS'):
            config.setdefault('batch', {})['collect_actions'] = _parse_bool(get('COLLECT_ACTIONS'))
        if get('MAX_CONCURRENCY'):
            config.setdefault('batch', {})['max_concurrency'] = _parse_int(
                'MAX_CONCURRENCY', get('MAX_CONCURRENCY'))

        return config

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> EngineConfig:
        try:
            return EngineConfig(
                logging=LoggingConfig(**config_dict.get('logging', {})),
                retry=RetryConfig(**config_dict.get('retry', {})),
                flow=FlowConfig(**config_dict.get('flow', {})),
                batch=BatchConfig(**config_dict.get('batch', {})),
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration key: {e}") from e

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge ``override`` into a copy of ``base``."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _validate_config(self, config: EngineConfig) -> None:
        """Raise ConfigurationError for values of the wrong type or out of range."""
        self._validate_types(config)

        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if config.logging.level.upper() not in valid_log_levels:
            raise ConfigurationError(f"Invalid log level: {config.logging.level}", 'logging.level')

        if config.logging.format not in ('human', 'json'):
            raise ConfigurationError(f"Invalid log format: {config.logging.format}", 'logging.format')

        if config.retry.max_retries < 1:
            raise ConfigurationError(f"Invalid max_retries: {config.retry.max_retries}", 'retry.max_retries')
        if config.retry.wait_millis < 0:
            raise ConfigurationError(f"Invalid wait_millis: {config.retry.wait_millis}", 'retry.wait_millis')

        if config.flow.max_steps is not None and config.flow.max_steps < 1:
            raise ConfigurationError(f"Invalid max_steps: {config.flow.max_steps}", 'flow.max_steps')

        if config.batch.max_concurrency < 1:
            raise ConfigurationError(
                f"Invalid max_concurrency: {config.batch.max_concurrency}", 'batch.max_concurrency')

    def _validate_types(self, config: EngineConfig) -> None:
        """Reject values whose type does not match the field (files are not coerced)."""
        for key, value, expected in (
            ('logging.level', config.logging.level, (str,)),
            ('logging.format', config.logging.format, (str,)),
            ('logging.file', config.logging.file, (str, type(None))),
            ('logging.max_size', config.logging.max_size, (int,)),
            ('logging.backup_count', config.logging.backup_count, (int,)),
            ('logging.include_run_id', config.logging.include_run_id, (bool,)),
            ('retry.max_retries', config.retry.max_retries, (int,)),
            ('retry.wait_millis', config.retry.wait_millis, (int, float)),
            ('flow.max_steps', config.flow.max_steps, (int, type(None))),
            ('batch.fail_fast', config.batch.fail_fast, (bool,)),
            ('batch.collect_actions', config.batch.collect_actions, (bool,)),
            ('batch.max_concurrency', config.batch.max_concurrency, (int,)),
        ):
            # bool is an int subclass; only bool fields accept it
            if not isinstance(value, expected) or (isinstance(value, bool) and bool not in expected):
                names = " or ".join(t.__name__ for t in expected)
                raise ConfigurationError(
                    f"Invalid type for {key}: expected {names}, got {type(value).__name__} ({value!r})", key)


@lru_cache(maxsize=None)
def _load_config(config_file: Optional[str]) -> EngineConfig:
    return ConfigManager(config_file).load()


_active_config_file: Optional[str] = None


def get_config(config_file: Optional[str] = None) -> EngineConfig:
    """
    Load and cache the engine configuration (see ConfigManager.load).

    A path passed here becomes the active config file, so later calls without
    one (the engine classes resolving unset options) see the same settings.
    Without an active file, ``ACTIONFLOW_CONFIG_FILE`` names the file to load.
    """
    global _active_config_file
    if config_file is not None:
        _active_config_file = config_file
    path = _active_config_file or os.environ.get(ENV_PREFIX + 'CONFIG_FILE') or None
    return _load_config(path)


def reset_config() -> None:
    """Forget the active config file and every cached configuration."""
    global _active_config_file
    _active_config_file = None
    _load_config.cache_clear()


def apply_logging_config(config: EngineConfig) -> None:
    """Configure the logging system from ``config.logging``."""
    configure_logging(
        level=config.logging.level,
        format_type=config.logging.format,
        log_file=config.logging.file,
        max_size=config.logging.max_size,
        backup_count=config.logging.backup_count,
        include_run_id=config.logging.include_run_id,
    )


def create_config_template(output_path: str = "actionflow.yaml") -> None:
    """Write a YAML file containing every configuration key with its default."""
    with open(output_path, 'w', encoding='utf-8') as f:
        yaml.dump(EngineConfig().to_dict(), f, default_flow_style=False, indent=2)

    logger.info(f"Configuration template written to {output_path}")
