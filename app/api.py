"""HTTP route definitions for the read-only admin surface."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import Reading, ReadingPage, SensorList
from models.records import ReadingQuery
from services.telemetry import TelemetryService, UnknownSensor, build_default_service

router = APIRouter()


def get_service() -> TelemetryService:
    return build_default_service()


@router.get(
    "/sensors",
    response_model=SensorList,
    summary="List sensors that have logged at least one reading.",
)
async def list_sensors(
    service: TelemetryService = Depends(get_service),
) -> SensorList:
    return SensorList(sensors=service.known_sensors())


@router.get(
    "/sensors/{sensor_id}/readings",
    response_model=ReadingPage,
    summary="Fetch the earliest stored readings of a sensor.",
)
async def get_readings(
    sensor_id: str,
    count: int = Query(10, ge=0, description="Maximum number of readings to return."),
    service: TelemetryService = Depends(get_service),
) -> ReadingPage:
    try:
        records = await service.query_async(ReadingQuery(sensor_id=sensor_id, count=count))
    except UnknownSensor as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Sensor {sensor_id!r} is not registered.",
        ) from exc
    return ReadingPage(
        sensor_id=sensor_id,
        requested=count,
        readings=[Reading.from_record(record) for record in records],
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
