"""TCP listener that hands every accepted connection to its own session."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from services.session import Session
from services.telemetry import TelemetryService

logger = logging.getLogger(__name__)


class TelemetryServer:

    def __init__(
        self,
        service: TelemetryService,
        host: str = "0.0.0.0",
        port: int = 0,
        max_frame_bytes: int = 64 * 1024,
    ) -> None:
        self.service = service
        self.host = host
        self.requested_port = port
        self.max_frame_bytes = max_frame_bytes
        self._server: Optional[asyncio.AbstractServer] = None
        self._sessions: Set[asyncio.Task[None]] = set()

    @property
    def port(self) -> int:
        """Port actually bound, which differs from the requested one for port 0."""
        if self._server is None or not self._server.sockets:
            raise RuntimeError("Server is not listening.")
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.requested_port,
            limit=self.max_frame_bytes,
        )
        logger.info("Listening for sensors", extra={"peer": f"{self.host}:{self.port}"})

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        try:
            await self._server.serve_forever()
        finally:
            await self.close()

    async def close(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.close()
        for task in list(self._sessions):
            task.cancel()
        if self._sessions:
            await asyncio.gather(*self._sessions, return_exceptions=True)
        if server is not None:
            await server.wait_closed()

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._sessions.add(task)
        session = Session(reader, writer, self.service)
        try:
            await session.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            # one broken connection must not take the listener down
            logger.exception("Session failed", extra={"peer": session.peer})
            await session.close()
        finally:
            if task is not None:
                self._sessions.discard(task)
