from __future__ import annotations

from functools import lru_cache
from threading import Lock
from typing import Set


class SensorRegistry:
    """Process-wide set of sensor ids with at least one stored reading.

    Membership lives in memory only and starts empty on every restart,
    whatever log files already exist on disk.
    """

    def __init__(self) -> None:
        self._sensor_ids: Set[str] = set()
        self._lock = Lock()

    def contains(self, sensor_id: str) -> bool:
        with self._lock:
            return sensor_id in self._sensor_ids

    def register(self, sensor_id: str) -> bool:
        """Add ``sensor_id``; return ``True`` only when it was not known yet."""
        with self._lock:
            if sensor_id in self._sensor_ids:
                return False
            self._sensor_ids.add(sensor_id)
            return True

    def snapshot(self) -> list[str]:
        with self._lock:
            return sorted(self._sensor_ids)

    def __contains__(self, sensor_id: object) -> bool:
        return isinstance(sensor_id, str) and self.contains(sensor_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sensor_ids)


@lru_cache
def build_default_registry() -> SensorRegistry:
    return SensorRegistry()
