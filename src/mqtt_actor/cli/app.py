"""Main CLI application."""

import typer

from mqtt_actor.cli.commands import check, run

app = typer.Typer(
    name="mqtt-actor",
    help="mqtt-actor - schedule MQTT messages from script files",
    no_args_is_help=True,
)

run.register(app)
check.register(app)
