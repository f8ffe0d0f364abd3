"""
config.py - Configuration management for ghpin

This module handles loading, validating, and managing configuration for the ghpin tool.
"""

import copy
import os
import yaml
from typing import Any, Dict, Optional, List, cast

from .errors import ConfigurationError

DEFAULT_CONFIG: Dict[str, Any] = {
    "workflows_path": ".github/workflows",
    "max_workers": 4,
    "timeout": 30,
    "run_timeout": None,
    "rate_limit_attempts": 3,
    "rate_limit_backoff": 2,
    "history_limit": 5,
    "allow_prereleases": True,
    "ignore_actions": [],
    "branch_prefix": "action-updates",
    "labels": ["dependencies", "automated-pr"],
    "pr_title": "Update GitHub Actions dependencies",
    "backup": False,
    "api_url": None,
}

POSITIVE_INT_KEYS = ("max_workers", "timeout", "rate_limit_attempts")
BOOL_KEYS = ("allow_prereleases", "backup")
STRING_KEYS = ("workflows_path", "branch_prefix", "pr_title")
STRING_LIST_KEYS = ("ignore_actions", "labels")


def get_config_paths() -> List[str]:
    """
    Get list of possible config file locations in priority order

    Returns:
        List of config file paths to check
    """
    paths = []

    paths.append(os.path.join(os.getcwd(), "ghpin.yml"))
    paths.append(os.path.join(os.getcwd(), "ghpin.yaml"))
    paths.append(os.path.join(os.getcwd(), ".ghpin.yml"))
    paths.append(os.path.join(os.getcwd(), ".ghpin.yaml"))

    home_dir = os.path.expanduser("~")
    paths.append(os.path.join(home_dir, ".ghpin.yml"))
    paths.append(os.path.join(home_dir, ".config", "ghpin", "config.yml"))

    return paths


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two config dictionaries

    Args:
        base: Base configuration
        override: Configuration to override base

    Returns:
        Merged configuration dictionary
    """
    result = base.copy()

    for key, override_value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(override_value, dict):
            result[key] = merge_configs(result[key], override_value)
        else:
            result[key] = override_value

    return result


def _validate_numbers(config: Dict[str, Any]) -> None:
    """Validate numeric settings"""

    for key in POSITIVE_INT_KEYS:
        if key in config:
            value = config[key]
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"'{key}' must be a positive integer")

    if "history_limit" in config:
        value = config["history_limit"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 2:
            raise ConfigurationError("'history_limit' must be an integer of at least 2")

    if config.get("run_timeout") is not None:
        value = config["run_timeout"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigurationError("'run_timeout' must be a positive number of seconds")

    if "rate_limit_backoff" in config:
        value = config["rate_limit_backoff"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigurationError("'rate_limit_backoff' must be a non-negative number of seconds")


def _validate_types(config: Dict[str, Any]) -> None:
    """Validate boolean, string and list settings"""

    for key in BOOL_KEYS:
        if key in config and not isinstance(config[key], bool):
            raise ConfigurationError(f"'{key}' must be a boolean (true/false)")

    for key in STRING_KEYS:
        if key in config and (not isinstance(config[key], str) or not config[key].strip()):
            raise ConfigurationError(f"'{key}' must be a non-empty string")

    for key in STRING_LIST_KEYS:
        if key in config:
            value = config[key]
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise ConfigurationError(f"'{key}' must be a list of strings")

    if config.get("api_url") is not None and not isinstance(config["api_url"], str):
        raise ConfigurationError("'api_url' must be a string")


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration structure and values"""

    if not isinstance(config, dict):
        raise ConfigurationError("Configuration must be a mapping")

    for key in config.keys():
        if key not in DEFAULT_CONFIG:
            raise ConfigurationError(f"Unknown configuration option '{key}'")

    _validate_numbers(config)
    _validate_types(config)


def _read_config_file(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML configuration {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Error loading configuration {config_path}: {e}") from e

    if user_config is None:
        return {}

    validate_config(user_config)
    return cast(Dict[str, Any], user_config)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from file or use defaults

    Args:
        config_path: Path to configuration file, or None to auto-detect

    Returns:
        Loaded configuration dictionary

    Raises:
        ConfigurationError: If configuration file is invalid
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        return merge_configs(config, _read_config_file(config_path))

    for path in get_config_paths():
        if os.path.exists(path):
            return merge_configs(config, _read_config_file(path))

    return config


def save_config(config: Dict[str, Any], config_path: str) -> None:
    """
    Save configuration to file

    Args:
        config: Configuration dictionary to save
        config_path: Path to save configuration to

    Raises:
        ConfigurationError: If configuration cannot be saved
    """
    try:
        os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)

    except OSError as e:
        raise ConfigurationError(f"Error saving configuration: {e}") from e


def generate_default_config(output_path: Optional[str] = None) -> str:
    """
    Generate default configuration YAML

    Args:
        output_path: Path to save default configuration to, or None to return as string

    Returns:
        Default configuration YAML

    Raises:
        ConfigurationError: If configuration cannot be saved
    """
    default_config_yaml = cast(
        str,
        yaml.safe_dump(DEFAULT_CONFIG, default_flow_style=False, sort_keys=False),
    )

    if output_path:
        try:
            os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)

            with open(output_path, "w", encoding="utf-8") as f:
                f.write(default_config_yaml)
        except OSError as e:
            raise ConfigurationError(f"Error saving default configuration: {e}") from e

    return default_config_yaml


def apply_overrides(config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply command-line overrides on top of a loaded configuration

    None values mean "not given" and leave the configured value in place.

    Args:
        config: Loaded configuration
        overrides: Values from the command line

    Returns:
        Updated configuration dictionary

    Raises:
        ConfigurationError: If an override is invalid
    """
    given = {key: value for key, value in overrides.items() if value is not None}
    validate_config(given)
    return merge_configs(config, given)
