from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ServerError, TelemetryClient
from cli.config import CLIConfig, load_config
from cli.render import render_readings, render_sensors
from models.records import ReadingQuery, SensorReading
from protocol.codec import MalformedMessage, decode_log, encode_log


@dataclass
class CLIState:
    config: CLIConfig
    client: TelemetryClient


app = typer.Typer(
    help="Utilities for talking to a running telemetry server.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(
        None,
        "--host",
        "-H",
        help="Server host (defaults to TELEMETRY_HOST env or 127.0.0.1).",
    ),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        help="Server TCP port (defaults to TELEMETRY_PORT env or 9000).",
    ),
    admin_url: Optional[str] = typer.Option(
        None,
        "--admin-url",
        help="Admin API base URL (defaults to TELEMETRY_ADMIN_URL env or http://localhost:8080).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for the server.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(host=host, port=port, admin_url=admin_url, timeout=timeout)
    client = TelemetryClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("log")
def log_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier (at most 31 ASCII characters)."),
    timestamp: str = typer.Argument(..., help="Reading time as YYYY-MM-DDTHH:MM:SS (UTC)."),
    value: str = typer.Argument(..., help="Numeric reading."),
) -> None:
    """Submit one reading. The server does not acknowledge ingestion."""
    state = _get_state(ctx)
    # validate locally; the server drops malformed LOG frames silently
    frame = f"LOG|{sensor_id}|{timestamp}|{value}"
    try:
        reading: SensorReading = decode_log(frame)
    except MalformedMessage as exc:
        raise typer.BadParameter(exc.reason) from exc
    state.client.send_reading(reading)
    typer.secho(
        f"Sent {encode_log(reading).decode('ascii').strip()}", fg=typer.colors.GREEN
    )


@app.command("get")
def get_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
    count: int = typer.Argument(..., min=0, help="Maximum number of readings to fetch."),
) -> None:
    """Fetch the earliest stored readings of a sensor."""
    state = _get_state(ctx)
    try:
        reply = state.client.fetch_readings(ReadingQuery(sensor_id=sensor_id, count=count))
    except ServerError as exc:
        typer.secho(f"Server error: {exc.kind}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    render_readings(sensor_id, reply)


@app.command("sensors")
def sensors_command(ctx: typer.Context) -> None:
    """List sensors known to the server (requires the admin API)."""
    state = _get_state(ctx)
    render_sensors(state.client.list_sensors())
