"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mqtt_actor.config.models import ActorConfig, ConfigError
from mqtt_actor.config.paths import CONFIG_FILENAME, get_config_path

# (section, key, environment variable)
ENV_MAPPINGS: list[tuple[str, str, str]] = [
    ("mqtt", "broker", "MQTT_BROKER"),
    ("mqtt", "client_id", "MQTT_CLIENT_ID"),
    ("mqtt", "username", "MQTT_USERNAME"),
    ("mqtt", "password", "MQTT_PASSWORD"),
    ("mqtt", "qos", "MQTT_QOS"),
    ("script", "delimiter", "SCRIPT_DELIMITER"),
    ("script", "source_dir", "SCRIPT_SOURCE_DIR"),
]


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path(CONFIG_FILENAME),  # Current directory
        get_config_path(),  # ~/.mqtt-actor/config.toml (or MQTT_ACTOR_HOME)
    ]


def _resolve_env(config: dict[str, Any]) -> dict[str, Any]:
    """Fill values missing from the config file from environment variables."""
    for section_name, key, env_var in ENV_MAPPINGS:
        value = os.environ.get(env_var)
        if not value:
            continue
        section = config.setdefault(section_name, {})
        if section.get(key) is None:
            section[key] = value
    return config


def _apply_overrides(
    config: dict[str, Any], overrides: dict[str, dict[str, Any]] | None
) -> dict[str, Any]:
    """Apply explicit (command line) values; None means "not given"."""
    for section_name, values in (overrides or {}).items():
        section = config.setdefault(section_name, {})
        for key, value in values.items():
            if value is not None:
                section[key] = value
    return config


def find_config_path(path: Path | None = None) -> Path | None:
    """Locate the config file to use.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
    """
    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return config_path

    for default_path in _get_default_config_paths():
        expanded = default_path.expanduser()
        if expanded.exists():
            return expanded
    return None


def load_config(
    path: Path | None = None,
    overrides: dict[str, dict[str, Any]] | None = None,
) -> ActorConfig:
    """Load configuration.

    Precedence: overrides, then the TOML file, then environment variables,
    then model defaults. A missing default config file is not an error.

    Args:
        path: Explicit path to config file. If None, searches default locations.
        overrides: Per-section values taken from the command line.

    Returns:
        Validated ActorConfig instance.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
        ConfigError: If the config file or the resulting values are invalid.
    """
    raw_config: dict[str, Any] = {}

    config_path = find_config_path(path)
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    raw_config = _resolve_env(raw_config)
    raw_config = _apply_overrides(raw_config, overrides)

    try:
        return ActorConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
