"""DocGraph Configuration

Configuration loading with environment variable support and sensible defaults.

Environment Variables:
    DOCGRAPH_CONFIG_PATH: Path to config file (default: .docgraph/config.yaml in cwd)
    DOCGRAPH_STORAGE_DIR: Override storage directory from config
    DOCGRAPH_LOG_LEVEL: Override logging level from config

Configuration Schema:
    storage:
        dir: str - Directory holding knowledge-graph.json (default: .docgraph/memory)
        backup_on_write: bool - Copy the previous file to backups/ before writing
        backup_keep: int - Number of backups to retain (default: 10)
        lock_timeout: float - Seconds to wait for the writer lock (default: 0)
    thresholds:
        <name>: number - Decision thresholds (see Thresholds)
    analytics:
        retention_days: int | null - Ignore history older than this
        trend_period_days: int - Default trend window width
        trend_max_periods: int - Number of windows considered for trends
        health_window_days: int - Trailing window for health score activity
    recommendation:
        heuristic_confidence: float - Confidence of an ecosystem match
        fallback_confidence: float - Confidence when no ecosystem is detected
    logging:
        level: str - Logging level (default: "INFO")
"""

import copy
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import DocGraphError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class ConfigurationError(DocGraphError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "storage": {
        "dir": None,  # Use .docgraph/memory under the working directory
        "backup_on_write": True,
        "backup_keep": 10,
        "lock_timeout": 0,
    },
    "thresholds": {},  # Empty means Thresholds defaults
    "analytics": {
        "retention_days": None,
        "trend_period_days": 30,
        "trend_max_periods": 12,
        "health_window_days": 30,
    },
    "recommendation": {
        "heuristic_confidence": 0.85,
        "fallback_confidence": 0.70,
    },
    "logging": {
        "level": "INFO",
    },
}


@dataclass(frozen=True)
class Thresholds:
    """Decision thresholds shared by the tracker, analytics and recommender."""

    dedup_window_seconds: int = 300
    min_sample_size: int = 3
    min_failure_sample: int = 2
    high_success_rate: float = 0.80
    low_success_rate: float = 0.50
    switch_rate_margin: float = 0.20
    confidence_boost: float = 0.10
    confidence_cap: float = 0.98
    confidence_penalty: float = 0.15
    confidence_floor: float = 0.50
    switch_confidence_cap: float = 0.95
    preference_min_successes: int = 3
    preference_rate_margin: float = 0.20
    trend_threshold_pp: float = 5.0
    audit_history_limit: int = 20

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> "Thresholds":
        """Build thresholds from the ``thresholds`` section, ignoring unknown keys."""
        section = (config or {}).get("thresholds") or {}
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in section.items():
            if key not in known:
                logger.warning(f"Unknown threshold ignored: {key}")
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(
                    f"Threshold {key} must be a number, got {value!r}"
                )
            values[key] = value
        return cls(**values)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")
    return data


def get_default_config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()) / ".docgraph" / "config.yaml"


def load_config(
    config_path: str | Path | None = None,
    base_dir: Path | None = None,
) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (from DOCGRAPH_CONFIG_PATH or config_path parameter)
    3. Environment variable overrides (DOCGRAPH_STORAGE_DIR, DOCGRAPH_LOG_LEVEL)

    Args:
        config_path: Explicit config file path (overrides DOCGRAPH_CONFIG_PATH)
        base_dir: Directory for the default config file and relative paths

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If an explicit config file is invalid YAML
    """
    base_dir = base_dir or Path.cwd()
    config = copy.deepcopy(DEFAULT_CONFIG)

    file_path = config_path or os.environ.get("DOCGRAPH_CONFIG_PATH")

    if file_path:
        resolved_path = Path(file_path)
        if not resolved_path.is_absolute():
            resolved_path = (base_dir / resolved_path).resolve()
        if resolved_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(resolved_path))
                logger.info(f"Loaded configuration from: {resolved_path}")
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}")
            except OSError as e:
                raise ConfigurationError(f"Cannot read config file: {e}")
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")
    else:
        default_config_path = get_default_config_path(base_dir)
        if default_config_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(default_config_path))
                logger.info(f"Loaded configuration from: {default_config_path}")
            except (yaml.YAMLError, ConfigurationError) as e:
                logger.warning(f"Invalid default config (ignoring): {e}")
            except OSError as e:
                logger.warning(f"Cannot read default config (ignoring): {e}")
        else:
            logger.debug("No config file found, using defaults")

    storage_override = os.environ.get("DOCGRAPH_STORAGE_DIR")
    if storage_override:
        config["storage"]["dir"] = storage_override
        logger.info(f"Storage dir override from env: {storage_override}")

    level_override = os.environ.get("DOCGRAPH_LOG_LEVEL")
    if level_override:
        config["logging"]["level"] = level_override

    storage_dir = config["storage"].get("dir")
    if storage_dir:
        path = Path(storage_dir).expanduser()
        if not path.is_absolute():
            path = (base_dir / path).resolve()
        config["storage"]["dir"] = str(path)

    return config


def get_storage_dir(config: dict[str, Any], base_dir: Path | None = None) -> Path:
    """
    Get the storage directory from config or default.

    Args:
        config: Configuration dictionary from load_config()
        base_dir: Base directory for the default location

    Returns:
        Path to the directory holding knowledge-graph.json
    """
    path_str = config.get("storage", {}).get("dir")
    if path_str:
        return Path(path_str)
    return (base_dir or Path.cwd()) / ".docgraph" / "memory"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for command-line entry points."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ConfigurationError(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
