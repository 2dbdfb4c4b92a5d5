"""mqtt-actor: schedule MQTT messages from editable script files."""

__version__ = "0.1.0"
