"""
Configuration for vcblobstore.

Settings are layered: built-in defaults, then a JSON, TOML or YAML file,
then VCBLOBSTORE_* environment variables.
"""

import os
import sys
import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "VCBLOBSTORE_CONFIG"
ENV_PREFIX = "VCBLOBSTORE_"
TOKEN_ENV_VAR = "GITLAB_ACCESS_TOKEN"

CONFIG_FILENAMES = ['config.json', 'config.toml', 'config.yaml', 'config.yml']


def get_config_dir() -> Path:
    return Path.home() / '.vcblobstore'


def get_config_path() -> Path:
    """Get the path to the configuration file.

    Checks in order:
    1. VCBLOBSTORE_CONFIG environment variable
    2. ~/.vcblobstore/config.{json,toml,yaml,yml}

    If no file exists, the default JSON path is returned.
    """
    if CONFIG_ENV_VAR in os.environ:
        path = Path(os.environ[CONFIG_ENV_VAR]).expanduser()
        if path.exists():
            return path

    config_dir = get_config_dir()
    for filename in CONFIG_FILENAMES:
        path = config_dir / filename
        if path.exists():
            return path

    return config_dir / 'config.json'


def get_default_config() -> Dict[str, Any]:
    """Get default configuration."""
    return {
        "backend": "local",
        "local": {
            "location": "~/.vcblobstore/blobs",
            "metadata_format": "structured",
        },
        "gitlab": {
            "namespace_path": "",
            "project_path": "",
            "access_token": "",
            "main_branch": "main",
            "base_url": "https://gitlab.com/api/v4",
            "pool_size": 20,
            "request_timeout": 5.0,
            "create_max_attempts": 20,
            "create_retry_delay": 1.0,
            "rate_limit_low_water": 5,
        },
        "logging": {
            "level": "WARNING",
            "format": "%(levelname)s: %(name)s: %(message)s",
        },
    }


def _read_config_file(config_path: Path) -> Dict[str, Any]:
    suffix = config_path.suffix.lower()
    try:
        if suffix == '.toml':
            with open(config_path, 'rb') as f:
                return tomllib.load(f)
        if suffix in ('.yaml', '.yml'):
            with open(config_path, 'r') as f:
                return yaml.safe_load(f) or {}
        with open(config_path, 'r') as f:
            return json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading config from {config_path}: {e}") from e


def load_config() -> Dict[str, Any]:
    """
    Load configuration from file and environment.

    Raises:
        ConfigError: If the configuration file cannot be read or parsed
    """
    config_path = get_config_path()
    config = get_default_config()

    if config_path.exists():
        file_config = _read_config_file(config_path)
        if not isinstance(file_config, dict):
            raise ConfigError(f"Config file {config_path} does not contain a mapping")
        config = merge_configs(config, file_config)
        logger.debug(f"Loaded config from {config_path}")

    config = apply_env_overrides(config)

    if not config["gitlab"].get("access_token") and os.environ.get(TOKEN_ENV_VAR):
        config["gitlab"]["access_token"] = os.environ[TOKEN_ENV_VAR]

    return config


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config: Base configuration
        override_config: Configuration to merge/override with

    Returns:
        Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def _convert_env_value(value: str) -> Any:
    if value.lower() in ('true', 'yes', 'on'):
        return True
    if value.lower() in ('false', 'no', 'off'):
        return False
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Environment variables follow the pattern VCBLOBSTORE_SECTION_KEY, where
    SECTION and KEY may themselves contain underscores; the longest matching
    key wins at each level. For example: VCBLOBSTORE_GITLAB_POOL_SIZE=4
    """
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX) or env_key == CONFIG_ENV_VAR:
            continue

        key_parts = env_key[len(ENV_PREFIX):].lower().split('_')
        typed_value = _convert_env_value(value)

        current_level = config
        i = 0
        while i < len(key_parts):
            # Longest key in current_level that prefixes the remaining parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts = config_key.split('_')
                if key_parts[i:i + len(config_key_parts)] == config_key_parts:
                    if len(config_key_parts) > best_match_len:
                        best_match_len = len(config_key_parts)
                        matched_key = config_key

            if matched_key is None:
                logger.debug(f"Ignoring unknown config override {env_key}")
                break

            if i + best_match_len == len(key_parts):
                current = current_level[matched_key]
                # String settings keep the raw value, e.g. a numeric project path
                current_level[matched_key] = value if isinstance(current, str) else typed_value
                break

            if not isinstance(current_level[matched_key], dict):
                break
            current_level = current_level[matched_key]
            i += best_match_len

    return config


def setup_logging(config: Dict[str, Any]) -> None:
    """Send vcblobstore log records to stderr at the configured level."""
    log_config = config.get("logging", {})
    level_name = str(log_config.get("level", "WARNING")).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {level_name}")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(log_config.get("format", "%(levelname)s: %(message)s")))

    package_logger = logging.getLogger("vcblobstore")
    for existing in list(package_logger.handlers):
        package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
