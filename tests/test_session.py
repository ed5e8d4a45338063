"""End-to-end protocol tests against a real listener on an ephemeral port."""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from app.server import TelemetryServer
from datastore.registry import SensorRegistry
from services.session import Session, SessionState
from services.telemetry import TelemetryService
from storage.log_store import SensorLogStore

INVALID = b"ERROR|INVALID_SENSOR_ID\r\n"
MALFORMED = b"ERROR|MALFORMED_MESSAGE\r\n"

Scenario = Callable[[TelemetryServer], Awaitable[None]]


@pytest.fixture()
def service(tmp_path: Path) -> TelemetryService:
    store = SensorLogStore(root_path=tmp_path / "logs", fsync=False)
    telemetry = TelemetryService(registry=SensorRegistry(), store=store, workers=2)
    yield telemetry
    telemetry.shutdown()


def _run(service: TelemetryService, scenario: Scenario, max_frame_bytes: int = 1024) -> None:
    async def main() -> None:
        server = TelemetryServer(service, host="127.0.0.1", port=0, max_frame_bytes=max_frame_bytes)
        await server.start()
        try:
            await asyncio.wait_for(scenario(server), timeout=10)
        finally:
            await server.close()

    asyncio.run(main())


async def _connect(server: TelemetryServer) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_connection("127.0.0.1", server.port)


async def _request(
    reader: asyncio.StreamReader, writer: asyncio.StreamWriter, frame: bytes, expected: bytes
) -> bytes:
    writer.write(frame)
    await writer.drain()
    return await reader.readexactly(len(expected))


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(ConnectionError):
        await writer.wait_closed()


def test_two_logs_then_get_returns_both_in_order(service: TelemetryService) -> None:
    expected = (
        b"Sensor: temp1, Tempo: 2024-01-01T00:00:00, Valor: 21.5\n"
        b"Sensor: temp1, Tempo: 2024-01-01T00:05:00, Valor: 22.0\n"
    )

    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        writer.write(b"LOG|temp1|2024-01-01T00:00:00|21.5\r\n")
        writer.write(b"LOG|temp1|2024-01-01T00:05:00|22.0\r\n")
        reply = await _request(reader, writer, b"GET|temp1|2\r\n", expected)
        assert reply == expected
        await _close(writer)

    _run(service, scenario)


def test_get_unknown_sensor_returns_invalid_sensor_id(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        assert await _request(reader, writer, b"GET|unknown|1\r\n", INVALID) == INVALID
        assert await _request(reader, writer, b"GET|unknown|0\r\n", INVALID) == INVALID
        assert await _request(reader, writer, b"GET|unknown|500\r\n", INVALID) == INVALID
        await _close(writer)

    _run(service, scenario)


def test_get_zero_on_known_sensor_is_empty_not_error(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        writer.write(b"LOG|temp1|2024-01-01T00:00:00|21.5\r\n")
        writer.write(b"GET|temp1|0\r\n")
        # the empty reply leaves nothing in the stream before the next answer
        reply = await _request(reader, writer, b"GET|other|1\r\n", INVALID)
        assert reply == INVALID
        await _close(writer)

    _run(service, scenario)


def test_get_more_than_stored_returns_all_in_arrival_order(service: TelemetryService) -> None:
    frames = [
        b"LOG|probe|2024-03-01T12:00:00|3.0\r\n",
        b"LOG|probe|2024-01-01T12:00:00|1.0\r\n",
        b"LOG|probe|2024-02-01T12:00:00|2.0\r\n",
    ]
    expected = (
        b"Sensor: probe, Tempo: 2024-03-01T12:00:00, Valor: 3.0\n"
        b"Sensor: probe, Tempo: 2024-01-01T12:00:00, Valor: 1.0\n"
        b"Sensor: probe, Tempo: 2024-02-01T12:00:00, Valor: 2.0\n"
    )

    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        for frame in frames:
            writer.write(frame)
        reply = await _request(reader, writer, b"GET|probe|99\r\n", expected)
        assert reply == expected
        await _close(writer)

    _run(service, scenario)


def test_malformed_log_is_dropped_without_side_effects(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        writer.write(b"LOG|bad|2024-01-01T00:00:00|not-a-number\r\n")
        assert await _request(reader, writer, b"GET|bad|1\r\n", INVALID) == INVALID
        await _close(writer)

    _run(service, scenario)

    assert not service.registry.contains("bad")
    assert not service.store.path_for("bad").exists()


def test_non_ascii_log_gets_no_reply(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        writer.write("LOG|tempé|2024-01-01T00:00:00|1.0\r\n".encode("utf-8"))
        # the first bytes back must answer the GET, not the dropped LOG
        assert await _request(reader, writer, b"GET|nobody|1\r\n", INVALID) == INVALID
        await _close(writer)

    _run(service, scenario)


def test_overflowing_reading_is_dropped(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        writer.write(b"LOG|huge|2024-01-01T00:00:00|1e999\r\n")
        assert await _request(reader, writer, b"GET|huge|1\r\n", INVALID) == INVALID
        await _close(writer)

    _run(service, scenario)

    assert not service.store.path_for("huge").exists()


def test_malformed_get_and_unknown_command_keep_session_open(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        assert await _request(reader, writer, b"GET|temp1|x\r\n", MALFORMED) == MALFORMED
        assert await _request(reader, writer, b"PING\r\n", MALFORMED) == MALFORMED
        assert await _request(reader, writer, b"GET|temp1|1\r\n", INVALID) == INVALID
        await _close(writer)

    _run(service, scenario)


def test_sessions_share_the_registry(service: TelemetryService) -> None:
    expected = b"Sensor: shared, Tempo: 2024-01-01T00:00:00, Valor: 7.0\n"

    async def scenario(server: TelemetryServer) -> None:
        reader_a, writer_a = await _connect(server)
        reader_b, writer_b = await _connect(server)
        writer_a.write(b"LOG|shared|2024-01-01T00:00:00|7.0\r\n")
        # a GET on the same connection guarantees the LOG was processed
        assert await _request(reader_a, writer_a, b"GET|shared|1\r\n", expected) == expected
        assert await _request(reader_b, writer_b, b"GET|shared|5\r\n", expected) == expected
        await _close(writer_a)
        await _close(writer_b)

    _run(service, scenario)


def test_incomplete_frame_on_disconnect_has_no_effect(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        _, writer = await _connect(server)
        writer.write(b"LOG|partial|2024-01-01T00:00:00|1.0")
        await writer.drain()
        await _close(writer)

        reader, writer = await _connect(server)
        assert await _request(reader, writer, b"GET|partial|1\r\n", INVALID) == INVALID
        await _close(writer)

    _run(service, scenario)

    assert not service.store.path_for("partial").exists()


def test_oversized_frame_closes_only_that_session(service: TelemetryService) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        writer.write(b"LOG|" + b"x" * 4096 + b"\r\n")
        await writer.drain()
        try:
            tail = await reader.read()
        except ConnectionResetError:
            tail = b""
        assert tail == b""
        await _close(writer)

        reader, writer = await _connect(server)
        assert await _request(reader, writer, b"GET|x|1\r\n", INVALID) == INVALID
        await _close(writer)

    _run(service, scenario, max_frame_bytes=256)


def test_session_reaches_closed_state_on_eof(service: TelemetryService) -> None:
    async def main() -> SessionState:
        sessions: list[Session] = []
        finished = asyncio.Event()

        async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            session = Session(reader, writer, service)
            sessions.append(session)
            await session.run()
            finished.set()

        server = await asyncio.start_server(handler, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        _, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.close()
        await writer.wait_closed()
        await asyncio.wait_for(finished.wait(), timeout=5)
        server.close()
        await server.wait_closed()
        return sessions[0].state

    assert asyncio.run(main()) is SessionState.closed


def test_state_transitions_are_logged(service: TelemetryService, caplog) -> None:
    async def scenario(server: TelemetryServer) -> None:
        reader, writer = await _connect(server)
        assert await _request(reader, writer, b"GET|nobody|1\r\n", INVALID) == INVALID
        await _close(writer)

    with caplog.at_level("DEBUG", logger="services.session"):
        _run(service, scenario)

    states = [record.state for record in caplog.records if hasattr(record, "state")]
    assert states[:2] == ["dispatching", "awaiting_frame"]
    assert states[-1] == "closed"
