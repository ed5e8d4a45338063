from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from fastapi import FastAPI

from app.api import get_service, router
from app.server import TelemetryServer
from datastore.registry import build_default_registry
from logging_config import configure_logging
from services.telemetry import TelemetryService
from settings import get_settings
from storage.log_store import build_default_store

logger = logging.getLogger(__name__)


def create_app(service: Optional[TelemetryService] = None) -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Telemetry Log Server",
        description="Read-only view over sensors and readings ingested via TCP.",
        version="0.1.0",
    )
    app.include_router(router)
    if service is not None:
        app.dependency_overrides[get_service] = lambda: service
    return app


cli = typer.Typer(
    help="Accept sensor readings over TCP and serve them back on request.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@cli.command()
def serve(
    port: int = typer.Argument(..., min=0, max=65535, help="TCP port to listen on."),
    host: Optional[str] = typer.Option(
        None, "--host", help="Interface to bind (defaults to TELEMETRY_HOST or 0.0.0.0)."
    ),
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        file_okay=False,
        help="Directory holding per-sensor log files (defaults to TELEMETRY_DATA_DIR).",
    ),
    admin_port: Optional[int] = typer.Option(
        None,
        "--admin-port",
        min=0,
        max=65535,
        help="Also serve the read-only HTTP admin API on this port.",
    ),
) -> None:
    """Run the telemetry server until interrupted."""
    configure_logging()
    settings = get_settings()

    if data_dir is None:
        store = build_default_store()
    else:
        store = build_default_store(root_path=str(data_dir))
    service = TelemetryService(
        registry=build_default_registry(),
        store=store,
        workers=settings.io_workers,
    )
    server = TelemetryServer(
        service,
        host=host or settings.host,
        port=port,
        max_frame_bytes=settings.max_frame_bytes,
    )
    admin_port = admin_port if admin_port is not None else settings.admin_port

    try:
        asyncio.run(_serve(server, admin_port))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        service.shutdown()
        logger.info("Server stopped")


async def _serve(server: TelemetryServer, admin_port: Optional[int]) -> None:
    await server.start()
    tasks = [asyncio.create_task(server.serve_forever())]

    if admin_port is not None:
        config = uvicorn.Config(
            create_app(server.service),
            host=server.host,
            port=admin_port,
            log_config=None,
        )
        tasks.append(asyncio.create_task(uvicorn.Server(config).serve()))

    current = asyncio.current_task()
    loop = asyncio.get_running_loop()
    if current is not None:
        try:
            loop.add_signal_handler(signal.SIGTERM, current.cancel)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()
    except asyncio.CancelledError:
        logger.info("Termination requested")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await server.close()


def run() -> None:
    cli()


if __name__ == "__main__":
    run()
