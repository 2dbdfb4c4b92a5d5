"""CLI command modules."""

from mqtt_actor.cli.commands import check, run

__all__ = [
    "check",
    "run",
]
