"""Ingestion and retrieval of sensor readings over the registry and log store."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Optional

from datastore.registry import SensorRegistry, build_default_registry
from models.records import ReadingQuery, SensorReading
from settings import get_settings
from storage.log_store import SensorLogStore, build_default_store

logger = logging.getLogger(__name__)


class UnknownSensor(KeyError):
    """Raised when a query names a sensor that has never been logged."""


class TelemetryService:
    """Coordinates the sensor registry and the per-sensor log store.

    File I/O is blocking, so the async entry points hand it to a bounded
    thread pool and every caller on the event loop stays responsive.
    """

    def __init__(
        self,
        registry: SensorRegistry,
        store: SensorLogStore,
        workers: int = 4,
    ) -> None:
        self.registry = registry
        self.store = store
        self.executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="telemetry-io"
        )

    def ingest(self, reading: SensorReading) -> bool:
        """Persist ``reading`` and register its sensor.

        The sensor only becomes known once its reading is on disk; a failed
        append is logged and leaves the registry untouched.
        """
        try:
            self.store.append(reading)
        except OSError:
            logger.exception(
                "Failed to store reading",
                extra={
                    "sensor_id": reading.sensor_id,
                    "path": str(self.store.path_for(reading.sensor_id)),
                },
            )
            return False

        if self.registry.register(reading.sensor_id):
            logger.info("Registered new sensor", extra={"sensor_id": reading.sensor_id})
        return True

    def query(self, query: ReadingQuery) -> list[SensorReading]:
        if not self.registry.contains(query.sensor_id):
            raise UnknownSensor(query.sensor_id)
        readings = self.store.read_first_n(query.sensor_id, query.count)
        logger.debug(
            "Served readings",
            extra={
                "sensor_id": query.sensor_id,
                "count": query.count,
                "record_count": len(readings),
            },
        )
        return readings

    def known_sensors(self) -> list[str]:
        return self.registry.snapshot()

    async def ingest_async(self, reading: SensorReading) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.ingest, reading)

    async def query_async(self, query: ReadingQuery) -> list[SensorReading]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.query, query)

    def shutdown(self) -> None:
        """Drain queued and in-flight appends, then release the I/O threads."""
        self.executor.shutdown(wait=True)


@lru_cache
def build_default_service(workers: Optional[int] = None) -> TelemetryService:
    """Factory that wires the service with the process-wide registry and store."""
    settings = get_settings()
    registry = build_default_registry()
    store = build_default_store()
    worker_count = workers or settings.io_workers
    return TelemetryService(registry=registry, store=store, workers=worker_count)
