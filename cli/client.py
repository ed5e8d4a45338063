from __future__ import annotations

import socket
from typing import List, Optional

import httpx
import typer

from cli.config import CLIConfig
from models.records import ReadingQuery, SensorReading
from protocol.codec import FRAME_DELIMITER, encode_get, encode_log

_REPLY_IDLE_SECONDS = 0.25


class ServerError(Exception):
    """The server answered a query with an ``ERROR|<KIND>`` frame."""

    def __init__(self, kind: str) -> None:
        super().__init__(kind)
        self.kind = kind


class TelemetryClient:
    """Speaks the line protocol over TCP and the admin API over HTTP."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._socket: Optional[socket.socket] = None
        self._http: Optional[httpx.Client] = None

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self._http is not None:
            self._http.close()
            self._http = None

    def send_reading(self, reading: SensorReading) -> None:
        self._connection().sendall(encode_log(reading))

    def fetch_readings(self, query: ReadingQuery) -> str:
        """Send a ``GET`` frame and return the server's reply text.

        The protocol does not announce the reply length, so the reply is read
        until the peer goes quiet. An empty reply costs the full ``timeout``.
        """
        conn = self._connection()
        conn.sendall(encode_get(query))
        reply = self._read_reply(conn)
        text = reply.decode("ascii", errors="replace")
        if text.startswith("ERROR|") and text.endswith("\r\n"):
            raise ServerError(text[len("ERROR|") : -2])
        return text

    def list_sensors(self) -> List[str]:
        try:
            response = self._client().get("/sensors")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Admin API unreachable: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        payload = response.json()
        sensors = payload.get("sensors")
        if not isinstance(sensors, list):
            raise typer.BadParameter("Unexpected response payload when listing sensors.")
        return [str(sensor) for sensor in sensors]

    def _connection(self) -> socket.socket:
        if self._socket is None:
            try:
                self._socket = socket.create_connection(
                    (self._config.host, self._config.port), timeout=self._config.timeout
                )
            except OSError as exc:
                typer.secho(
                    f"Cannot connect to {self._config.host}:{self._config.port}: {exc}",
                    fg=typer.colors.RED,
                    err=True,
                )
                raise typer.Exit(code=1)
        return self._socket

    def _read_reply(self, conn: socket.socket) -> bytes:
        chunks: list[bytes] = []
        try:
            while True:
                try:
                    chunk = conn.recv(4096)
                except socket.timeout:
                    break
                if not chunk:
                    break
                chunks.append(chunk)
                data = b"".join(chunks)
                if data.startswith(b"ERROR|") and data.endswith(FRAME_DELIMITER):
                    break
                conn.settimeout(min(_REPLY_IDLE_SECONDS, self._config.timeout))
        finally:
            conn.settimeout(self._config.timeout)
        return b"".join(chunks)

    def _client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(base_url=self._config.admin_url, timeout=self._config.timeout)
        return self._http

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except ValueError:
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
