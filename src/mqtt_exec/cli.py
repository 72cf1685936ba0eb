"""
Typer application for the ``mqtt-exec`` command.

    mqtt-exec run --host tcp://broker:1883 --config entries.yaml
    mqtt-exec check --config entries.yaml

Every ``run`` option falls back to its ``MQTT_*`` environment variable
(``MQTT_HOST``, ``MQTT_CID``, ...) and then to the built-in default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from mqtt_exec.errors import MqttExecError

app = typer.Typer(
    name="mqtt-exec",
    help="mqtt-exec — run commands when MQTT messages arrive.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        from mqtt_exec import __version__

        typer.echo(f"mqtt-exec {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """mqtt-exec — run commands when MQTT messages arrive."""


def _load_settings(**overrides: Any):
    """Settings with explicit (non-None) CLI values taking precedence."""
    from mqtt_exec.settings import Settings

    try:
        return Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        err_console.print(f"[bold red]Invalid settings[/bold red]: {e}")
        raise typer.Exit(code=1)


@app.command("run")
def run(
    host: str | None = typer.Option(None, "--host", help="Broker URL [env: MQTT_HOST]"),  # noqa: UP007
    cid: str | None = typer.Option(None, "--cid", help="MQTT client id [env: MQTT_CID]"),  # noqa: UP007
    username: str | None = typer.Option(None, "--username", help="Broker username [env: MQTT_USERNAME]"),  # noqa: UP007
    password: str | None = typer.Option(None, "--password", help="Broker password [env: MQTT_PASSWORD]"),  # noqa: UP007
    qos: int | None = typer.Option(None, "--qos", help="Default QoS, 0-2 [env: MQTT_QOS]"),  # noqa: UP007
    config: Path | None = typer.Option(None, "--config", "-c", help="Entry document [env: MQTT_CONFIG]"),  # noqa: UP007
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR"),  # noqa: UP007
    log_format: str | None = typer.Option(None, "--log-format", help="console or json"),  # noqa: UP007
) -> None:
    """Subscribe to every entry's topic and run commands until interrupted.

    Example::

        mqtt-exec run --host tcp://localhost:1883 --config config.yaml
        MQTT_HOST=ssl://broker:8883 mqtt-exec run
    """
    from mqtt_exec.logging import configure_logging
    from mqtt_exec.service import run_service

    settings = _load_settings(
        host=host,
        cid=cid,
        username=username,
        password=password,
        qos=qos,
        config=config,
        log_level=log_level.upper() if log_level else None,
        log_format=log_format.lower() if log_format else None,
    )
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")

    try:
        code = run_service(settings)
    except MqttExecError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1)
    raise typer.Exit(code=code)


@app.command("check")
def check(
    config: Path | None = typer.Option(None, "--config", "-c", help="Entry document [env: MQTT_CONFIG]"),  # noqa: UP007
    qos: int | None = typer.Option(None, "--qos", help="Default QoS, 0-2 [env: MQTT_QOS]"),  # noqa: UP007
) -> None:
    """Validate the entry document and list its entries."""
    from mqtt_exec.config import load_entries
    from mqtt_exec.dispatcher import resolve_qos

    settings = _load_settings(config=config, qos=qos)

    try:
        entries = load_entries(settings.config)
    except MqttExecError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1)

    if not entries:
        console.print(f"[yellow]No entries in {settings.config}[/yellow]")
        return

    table = Table(title=f"Entries ({settings.config})")
    table.add_column("Name", style="bold")
    table.add_column("Topic")
    table.add_column("QoS", justify="right")
    table.add_column("Concurrent")
    table.add_column("Command")
    table.add_column("Directory")

    for entry in entries:
        table.add_row(
            entry.name,
            entry.topic,
            str(resolve_qos(entry.qos, settings.qos)),
            "yes" if entry.allow_concurrent else "no",
            entry.command_line,
            entry.working_directory or "-",
        )

    console.print(table)
