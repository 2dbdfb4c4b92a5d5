"""Centralized path management for mqtt-actor.

Local state (config, logs) lives under one base directory, overridable with
the MQTT_ACTOR_HOME environment variable.

Default locations:
- Linux/macOS: ~/.mqtt-actor
- Windows: %USERPROFILE%\\.mqtt-actor
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "MQTT_ACTOR_HOME"
CONFIG_FILENAME = "mqtt-actor.toml"


@lru_cache(maxsize=1)
def get_actor_home() -> Path:
    """Get the base directory for mqtt-actor state.

    Resolution order:
    1. MQTT_ACTOR_HOME environment variable (if set)
    2. Platform default (~/.mqtt-actor)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".mqtt-actor"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_actor_home() / "config.toml"


def get_logs_path() -> Path:
    """Get the directory for JSONL log files."""
    return get_actor_home() / "logs"
