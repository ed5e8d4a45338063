from __future__ import annotations

from typing import Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def render_readings(sensor_id: str, reply: str) -> None:
    lines = [line for line in reply.splitlines() if line]
    echo_heading(f"Readings for {sensor_id}")
    if not lines:
        typer.echo("No readings returned.")
        return
    for line in lines:
        typer.echo(f"  {line}")


def render_sensors(sensors: Iterable[str]) -> None:
    echo_heading("Known sensors")
    names = list(sensors)
    if not names:
        typer.echo("No sensors registered.")
        return
    for name in names:
        typer.echo(f"  - {name}")
