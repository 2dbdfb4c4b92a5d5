"""Check command: compile a script directory and show the resulting schedule."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from mqtt_actor.cli.console import console, create_table, dim, error, success, warning


def format_countdown(due: datetime, now: datetime) -> str:
    """Format a countdown string until a due time."""
    if due <= now:
        return "[green]now[/green]"

    total_seconds = int((due - now).total_seconds())

    if total_seconds < 60:
        return f"in {total_seconds}s"

    total_minutes = total_seconds // 60
    if total_minutes < 60:
        return f"in {total_minutes}m"

    hours = total_minutes // 60
    minutes = total_minutes % 60
    if hours < 24:
        if minutes:
            return f"in {hours}h {minutes}m"
        return f"in {hours}h"

    days = hours // 24
    hours = hours % 24
    if hours:
        return f"in {days}d {hours}h"
    return f"in {days}d"


def register(app: typer.Typer) -> None:
    """Register the check command."""

    @app.command()
    def check(
        source_dir: Annotated[
            Path,
            typer.Argument(help="Directory containing script files"),
        ],
        delimiter: Annotated[
            str,
            typer.Option("--delimiter", "-d", help="Script file delimiter"),
        ] = "|",
        suffix: Annotated[
            str,
            typer.Option("--suffix", help="Script file extension"),
        ] = ".txt",
    ) -> None:
        """Compile every script file and print the schedule.

        Relative timestamps are resolved from the current time, as if the
        scripts were loaded now. Exits with status 1 when any file is invalid.
        """
        from mqtt_actor.scheduling import compile_directory

        if not source_dir.is_dir():
            error(f'Path "{source_dir}" is not an accessible directory')
            raise typer.Exit(1)
        if len(delimiter) != 1:
            error("Delimiter must be a single character")
            raise typer.Exit(1)

        now = datetime.now(UTC)
        result = compile_directory(
            source_dir.absolute(),
            load_time=now,
            delimiter=delimiter,
            suffix=suffix if suffix.startswith(".") else f".{suffix}",
        )
        entries = result.entries()

        if not result.paths:
            warning(f"No script files found in {source_dir}")
            return

        if entries:
            table = create_table(
                "Schedule",
                [
                    ("Due", "cyan"),
                    ("Fires", ""),
                    ("Topic", "bold"),
                    ("Message", ""),
                    ("File", "dim"),
                ],
            )
            for entry in entries:
                message = (
                    entry.payload[:40] + "..."
                    if len(entry.payload) > 40
                    else entry.payload
                )
                table.add_row(
                    entry.due.isoformat(),
                    format_countdown(entry.due, now),
                    escape(entry.topic),
                    escape(message),
                    escape(_relative(entry.origin, source_dir)),
                )
            console.print(table)
        else:
            warning("No scheduled entries")

        for path, parse_error in result.errors.items():
            error(f"{escape(_relative(path, source_dir))}: {escape(str(parse_error))}")

        dim(
            f"Total: {len(entries)} entries from {len(result.fragments)} file(s), "
            f"{len(result.errors)} invalid"
        )
        if result.errors:
            raise typer.Exit(1)
        success("All script files are valid")


def _relative(path: Path, source_dir: Path) -> str:
    try:
        return str(path.relative_to(source_dir.absolute()))
    except ValueError:
        return str(path)
