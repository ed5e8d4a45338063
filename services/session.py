"""Per-connection protocol state machine."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from models.records import ReadingQuery
from protocol.codec import (
    FRAME_DELIMITER,
    Command,
    ErrorKind,
    MalformedMessage,
    decode_frame,
    encode_error,
    encode_readings,
)
from services.telemetry import TelemetryService, UnknownSensor

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    awaiting_frame = "awaiting_frame"
    dispatching = "dispatching"
    closed = "closed"


class Session:
    """Reads one ``\\r\\n`` frame at a time and answers it before reading the next.

    ``LOG`` frames are fire-and-forget: nothing is written back, even when the
    frame is malformed. ``GET`` frames always get exactly one write, which may
    be empty when the sensor has no readings to return.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        service: TelemetryService,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.service = service
        self.state = SessionState.awaiting_frame
        peername = writer.get_extra_info("peername")
        self.peer = f"{peername[0]}:{peername[1]}" if peername else "unknown"

    async def run(self) -> None:
        logger.info("Connection opened", extra={"peer": self.peer})
        try:
            while self.state is not SessionState.closed:
                frame = await self._read_frame()
                if frame is None:
                    break
                self._transition(SessionState.dispatching)
                response = await self.handle_frame(frame)
                if response is not None:
                    self.writer.write(response)
                    await self.writer.drain()
                self._transition(SessionState.awaiting_frame)
        except ConnectionError as exc:
            logger.info(
                "Connection lost",
                extra={"peer": self.peer, "reason": type(exc).__name__},
            )
        finally:
            await self.close()

    async def handle_frame(self, frame: bytes) -> Optional[bytes]:
        """Dispatch one frame and return the bytes to send back, if any."""
        logger.debug(
            "Frame received",
            extra={"peer": self.peer, "frame": frame.decode("ascii", errors="replace").rstrip()},
        )
        try:
            request = decode_frame(frame)
        except MalformedMessage as exc:
            logger.warning(
                "Malformed frame",
                extra={
                    "peer": self.peer,
                    "command": exc.command.value if exc.command else None,
                    "reason": exc.reason,
                },
            )
            if exc.command is Command.log:
                return None
            return encode_error(ErrorKind.malformed_message)

        if isinstance(request, ReadingQuery):
            try:
                readings = await self.service.query_async(request)
            except UnknownSensor:
                logger.info(
                    "Query for unknown sensor",
                    extra={"peer": self.peer, "sensor_id": request.sensor_id},
                )
                return encode_error(ErrorKind.invalid_sensor_id)
            return encode_readings(readings)

        await self.service.ingest_async(request)
        return None

    async def close(self) -> None:
        if self.state is SessionState.closed:
            return
        self._transition(SessionState.closed)
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except ConnectionError:
            pass
        logger.info("Connection closed", extra={"peer": self.peer})

    def _transition(self, state: SessionState) -> None:
        logger.debug("Session state", extra={"peer": self.peer, "state": state.value})
        self.state = state

    async def _read_frame(self) -> Optional[bytes]:
        try:
            return await self.reader.readuntil(FRAME_DELIMITER)
        except asyncio.IncompleteReadError as exc:
            if exc.partial:
                logger.info(
                    "Discarding incomplete frame",
                    extra={"peer": self.peer, "count": len(exc.partial)},
                )
            return None
        except asyncio.LimitOverrunError:
            logger.warning(
                "Frame exceeds size limit",
                extra={"peer": self.peer, "reason": "frame too long"},
            )
            return None
