"""Configuration module."""

from mqtt_actor.config.loader import find_config_path, load_config
from mqtt_actor.config.models import (
    ActorConfig,
    ConfigError,
    LoggingConfig,
    MqttConfig,
    ScriptConfig,
)
from mqtt_actor.config.paths import get_actor_home, get_config_path, get_logs_path

__all__ = [
    "ActorConfig",
    "ConfigError",
    "LoggingConfig",
    "MqttConfig",
    "ScriptConfig",
    "find_config_path",
    "get_actor_home",
    "get_config_path",
    "get_logs_path",
    "load_config",
]
