"""Domain models shared across the protocol, storage and services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

SENSOR_ID_MAX_BYTES = 31


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single timestamped reading submitted by a sensor."""

    sensor_id: str
    timestamp: datetime
    value: float


@dataclass(frozen=True, slots=True)
class ReadingQuery:
    """A request for the first ``count`` stored readings of a sensor."""

    sensor_id: str
    count: int
