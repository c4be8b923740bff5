"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import os
from pathlib import Path
from typing import Any, Callable

from .models import SyncConfig

# Global cache to avoid reloading config multiple times per session
_config_cache: SyncConfig | None = None


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/tasksync/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / "tasksync" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """Path to .tasksync.json in ``cwd`` (defaults to the current directory)."""
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".tasksync.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested
    dicts are merged, not replaced.

    Example:
        >>> base = {"a": 1, "b": {"x": 10, "y": 20}}
        >>> override = {"b": {"y": 30, "z": 40}, "c": 3}
        >>> deep_merge(base, override)
        {"a": 1, "b": {"x": 10, "y": 30, "z": 40}, "c": 3}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        # Config system should be resilient: warn and fall back
        print(f"Warning: Failed to parse config at {path}: {e}")
        return None


def _parse_bool(value: str) -> bool:
    return value.lower() not in ("false", "0", "no", "")


def _parse_positive_float(value: str) -> float:
    parsed = float(value)
    if parsed <= 0:
        raise ValueError("must be > 0")
    return parsed


def _parse_non_negative_int(value: str) -> int:
    parsed = int(value)
    if parsed < 0:
        raise ValueError("must be >= 0")
    return parsed


def _parse_positive_int(value: str) -> int:
    parsed = int(value)
    if parsed < 1:
        raise ValueError("must be >= 1")
    return parsed


# env var -> (section, key, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "TASKSYNC_BASE_URL": ("remote", "base_url", str),
    "TASKSYNC_API_KEY_ENV": ("remote", "api_key_env", str),
    "TASKSYNC_TIMEOUT": ("remote", "timeout_seconds", _parse_positive_float),
    "TASKSYNC_MAX_RETRIES": ("remote", "max_retries", _parse_non_negative_int),
    "TASKSYNC_RESYNC_ON_RECONNECT": ("realtime", "resync_on_reconnect", _parse_bool),
    "TASKSYNC_PAGE_SIZE": ("cache", "page_size", _parse_positive_int),
    "TASKSYNC_EVENT_LOG": ("logging", "event_log", _parse_bool),
    "TASKSYNC_PROJECT": ("logging", "project_name", str),
}


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.
    Invalid values are reported and ignored.

    Supported env vars:
        TASKSYNC_BASE_URL - overrides remote.base_url
        TASKSYNC_API_KEY_ENV - overrides remote.api_key_env
        TASKSYNC_TIMEOUT - overrides remote.timeout_seconds
        TASKSYNC_MAX_RETRIES - overrides remote.max_retries
        TASKSYNC_RESYNC_ON_RECONNECT - overrides realtime.resync_on_reconnect
        TASKSYNC_PAGE_SIZE - overrides cache.page_size
        TASKSYNC_EVENT_LOG - overrides logging.event_log
        TASKSYNC_PROJECT - overrides logging.project_name
    """
    result = config_dict.copy()

    for env_var, (section, key, parse) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None or raw == "":
            continue
        try:
            value = parse(raw)
        except ValueError as e:
            print(f"Warning: Invalid {env_var} value '{raw}' ({e}), ignoring")
            continue
        result[section] = {**result.get(section, {}), key: value}

    return result


def _expand_shorthand(layer: dict[str, Any]) -> dict[str, Any]:
    # "remote": "https://..." merges like {"remote": {"base_url": ...}}
    if isinstance(layer.get("remote"), str):
        return {**layer, "remote": {"base_url": layer["remote"]}}
    return layer


def get_default_config() -> dict[str, Any]:
    """
    Get hardcoded default configuration.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "remote": {"timeout_seconds": 30.0, "max_retries": 2},
        "realtime": {"entity_name": "tasks", "resync_on_reconnect": True},
        "cache": {"page_size": 10, "tombstone_limit": 1024},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> SyncConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (TASKSYNC_*)
        2. Project config (.tasksync.json)
        3. User config (~/.config/tasksync/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .tasksync.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated SyncConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation

    Example:
        >>> config = load_config()
        >>> config.cache.page_size
        10
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, _expand_shorthand(user_config))

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, _expand_shorthand(project_config))

    merged = apply_env_overrides(merged)

    config = SyncConfig(**merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
