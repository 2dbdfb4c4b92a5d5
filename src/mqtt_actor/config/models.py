"""Configuration models using Pydantic."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator

from mqtt_actor.bus import BrokerAddress

logger = logging.getLogger(__name__)


class MqttConfig(BaseModel):
    """Connection settings for the MQTT broker."""

    broker: str = "tcp://localhost:1883"
    client_id: str = "mqtt-actor"
    username: str | None = None
    password: SecretStr | None = None
    qos: int = Field(default=1, ge=0, le=2)
    keepalive: int = Field(default=5, gt=0)
    # Automatic reconnect back-off (seconds)
    reconnect_min_delay: int = Field(default=1, gt=0)
    reconnect_max_delay: int = Field(default=5, gt=0)

    @field_validator("broker")
    @classmethod
    def _validate_broker(cls, value: str) -> str:
        BrokerAddress.parse(value)
        return value

    @field_validator("username", mode="before")
    @classmethod
    def _empty_username_is_none(cls, value: str | None) -> str | None:
        return value or None


class ScriptConfig(BaseModel):
    """Where scripts live and how they are parsed."""

    source_dir: Path | None = None
    delimiter: str = "|"
    suffix: str = ".txt"
    recursive: bool = True
    debounce_seconds: float = Field(default=0.25, ge=0)

    @field_validator("delimiter")
    @classmethod
    def _validate_delimiter(cls, value: str) -> str:
        if len(value) != 1:
            raise ValueError("delimiter must be a single character")
        if value.isspace():
            raise ValueError("delimiter must not be whitespace")
        return value

    @field_validator("suffix")
    @classmethod
    def _validate_suffix(cls, value: str) -> str:
        if not value.startswith("."):
            value = f".{value}"
        return value


class LoggingConfig(BaseModel):
    """Logging output settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    rich: bool = True
    to_file: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: str | None) -> str | None:
        return value.upper() if isinstance(value, str) else value


class ConfigError(Exception):
    """Configuration error."""

    pass


class ActorConfig(BaseModel):
    """Root configuration model."""

    mqtt: MqttConfig = Field(default_factory=MqttConfig)
    script: ScriptConfig = Field(default_factory=ScriptConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def require_source_dir(self) -> Path:
        """Get the script directory, validating it exists.

        Raises:
            ConfigError: If no directory is configured or it is not accessible.
        """
        source_dir = self.script.source_dir
        if source_dir is None:
            raise ConfigError("No script source directory configured")
        source_dir = source_dir.expanduser()
        if not source_dir.is_dir():
            raise ConfigError(
                f'Path "{source_dir}" is not an accessible directory'
            )
        return source_dir
