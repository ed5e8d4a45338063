"""Append-only, fixed-record binary log files, one per sensor."""

from __future__ import annotations

import logging
import os
import struct
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterator, Optional

from models.records import SENSOR_ID_MAX_BYTES, SensorReading
from settings import get_settings

logger = logging.getLogger(__name__)

LOG_FILE_SUFFIX = ".dat"


class RecordSerializer:
    """
    Binary layout of one stored reading (version 1).

    +----------------+-------------+-------------+
    |   sensor_id    |  timestamp  |   reading   |
    |     (32B)      |    (8B)     |    (8B)     |
    +----------------+-------------+-------------+

    All values are little-endian with no padding between fields.
    - sensor_id: ASCII, NUL padded, at most 31 significant bytes
    - timestamp: int64 seconds since the Unix epoch (UTC)
    - reading: float64
    """

    version = 1
    id_slot_size = SENSOR_ID_MAX_BYTES + 1

    def __init__(self) -> None:
        self._struct = struct.Struct(f"<{self.id_slot_size}sqd")

    @property
    def record_size(self) -> int:
        return self._struct.size

    def pack(self, reading: SensorReading) -> bytes:
        raw_id = reading.sensor_id.encode("ascii")
        if not raw_id or len(raw_id) > SENSOR_ID_MAX_BYTES:
            raise ValueError(f"Sensor id {reading.sensor_id!r} does not fit the record slot.")
        seconds = int(reading.timestamp.timestamp())
        return self._struct.pack(raw_id, seconds, reading.value)

    def unpack(self, chunk: bytes) -> SensorReading:
        raw_id, seconds, value = self._struct.unpack(chunk)
        sensor_id = raw_id.split(b"\x00", 1)[0].decode("ascii")
        timestamp = datetime.fromtimestamp(seconds, tz=timezone.utc)
        return SensorReading(sensor_id=sensor_id, timestamp=timestamp, value=value)


class SensorLogStore:

    def __init__(
        self,
        root_path: Path,
        serializer: Optional[RecordSerializer] = None,
        fsync: bool = True,
    ) -> None:
        self.root_path = root_path
        self.serializer = serializer or RecordSerializer()
        self.fsync = fsync
        self._sensor_locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()
        root_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, sensor_id: str) -> Path:
        return self.root_path / f"{sensor_id}{LOG_FILE_SUFFIX}"

    def append(self, reading: SensorReading) -> None:
        """Durably append one record; raises ``OSError`` when the write fails."""
        record = self.serializer.pack(reading)
        path = self.path_for(reading.sensor_id)
        with self._lock_for(reading.sensor_id):
            with path.open("ab") as handle:
                handle.write(record)
                handle.flush()
                if self.fsync:
                    os.fsync(handle.fileno())

    def read_first_n(self, sensor_id: str, count: int) -> list[SensorReading]:
        """Return up to ``count`` records in arrival order, oldest first.

        A file that cannot be opened is logged and reported as empty.
        """
        if count <= 0:
            return []

        path = self.path_for(sensor_id)
        with self._lock_for(sensor_id):
            try:
                return list(self._iter_records(path, count))
            except OSError:
                logger.exception(
                    "Failed to read sensor log",
                    extra={"sensor_id": sensor_id, "path": str(path)},
                )
                return []

    def list_sensor_files(self) -> list[str]:
        return sorted(
            path.name[: -len(LOG_FILE_SUFFIX)]
            for path in self.root_path.glob(f"*{LOG_FILE_SUFFIX}")
            if path.is_file()
        )

    def _iter_records(self, path: Path, count: int) -> Iterator[SensorReading]:
        size = self.serializer.record_size
        with path.open("rb") as handle:
            for _ in range(count):
                chunk = handle.read(size)
                # a short tail is an interrupted write, not a record
                if len(chunk) < size:
                    return
                yield self.serializer.unpack(chunk)

    def _lock_for(self, sensor_id: str) -> Lock:
        with self._locks_guard:
            lock = self._sensor_locks.get(sensor_id)
            if lock is None:
                lock = self._sensor_locks[sensor_id] = Lock()
            return lock


@lru_cache
def build_default_store(root_path: Optional[str] = None) -> SensorLogStore:
    settings = get_settings()
    data_dir = settings.data_dir if root_path is None else root_path
    return SensorLogStore(root_path=Path(data_dir), fsync=settings.fsync)
