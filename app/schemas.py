"""Pydantic schemas for the admin HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from models.records import SensorReading


class SensorList(BaseModel):
    """Sensors registered since the process started."""

    sensors: List[str] = Field(default_factory=list)


class Reading(BaseModel):
    """One stored reading as returned over HTTP."""

    sensor_id: str
    timestamp: datetime
    value: float

    @classmethod
    def from_record(cls, record: SensorReading) -> "Reading":
        return cls(sensor_id=record.sensor_id, timestamp=record.timestamp, value=record.value)


class ReadingPage(BaseModel):
    """The first ``requested`` readings of a sensor in arrival order."""

    sensor_id: str
    requested: int = Field(..., ge=0)
    readings: List[Reading] = Field(default_factory=list)
