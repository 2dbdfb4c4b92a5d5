"""Run command: schedule and publish messages until stopped."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

from mqtt_actor.cli.console import error

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the run command."""

    @app.command()
    def run(
        source_dir: Annotated[
            Path | None,
            typer.Argument(
                help="Directory to watch for script files",
                show_default=False,
            ),
        ] = None,
        broker: Annotated[
            str | None,
            typer.Option("--broker", "-b", help="Address of MQTT broker [env: MQTT_BROKER]"),
        ] = None,
        client_id: Annotated[
            str | None,
            typer.Option("--client-id", help="MQTT client ID [env: MQTT_CLIENT_ID]"),
        ] = None,
        username: Annotated[
            str | None,
            typer.Option("--username", "-u", help="MQTT username [env: MQTT_USERNAME]"),
        ] = None,
        password: Annotated[
            str | None,
            typer.Option("--password", help="MQTT password [env: MQTT_PASSWORD]"),
        ] = None,
        qos: Annotated[
            int | None,
            typer.Option("--qos", min=0, max=2, help="MQTT QoS level [env: MQTT_QOS]"),
        ] = None,
        delimiter: Annotated[
            str | None,
            typer.Option(
                "--delimiter", "-d", help="Script file delimiter [env: SCRIPT_DELIMITER]"
            ),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", "-l", help="DEBUG, INFO, WARNING or ERROR"),
        ] = None,
        dry_run: Annotated[
            bool,
            typer.Option("--dry-run", help="Log messages instead of publishing them"),
        ] = False,
    ) -> None:
        """Publish scripted MQTT messages at their scheduled times.

        Examples:
            mqtt-actor run ./scripts
            mqtt-actor run ./scripts --broker tcp://broker:1883 --qos 2
            mqtt-actor run ./scripts --dry-run
        """
        from mqtt_actor.config import ConfigError, load_config
        from mqtt_actor.logging import configure_logging

        overrides = {
            "mqtt": {
                "broker": broker,
                "client_id": client_id,
                "username": username,
                "password": password,
                "qos": qos,
            },
            "script": {"source_dir": source_dir, "delimiter": delimiter},
        }
        try:
            actor_config = load_config(config, overrides=overrides)
            actor_config.require_source_dir()
        except (ConfigError, FileNotFoundError) as e:
            error(str(e))
            raise typer.Exit(1) from None

        configure_logging(
            level=log_level or actor_config.logging.level,
            use_rich=actor_config.logging.rich,
            log_to_file=actor_config.logging.to_file,
        )

        try:
            asyncio.run(_run_actor(actor_config, dry_run))
        except KeyboardInterrupt:
            # Use print here since logging may already be torn down
            print("\nStopped")


async def _run_actor(actor_config, dry_run: bool) -> None:
    """Run the actor asynchronously."""
    from mqtt_actor.bus import BusConnectError
    from mqtt_actor.runtime import ActorRunner, create_publisher

    publisher = create_publisher(actor_config, dry_run=dry_run)
    runner = ActorRunner(actor_config, publisher)
    try:
        await runner.run()
    except BusConnectError as e:
        logger.error("broker_unreachable", extra={"error.message": str(e)})
        raise typer.Exit(1) from None
