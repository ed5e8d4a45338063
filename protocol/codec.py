"""Line-oriented wire codec for the telemetry protocol.

Every frame is a run of ASCII bytes terminated by ``\\r\\n`` and split into
pipe-delimited fields::

    LOG|<sensor_id>|<YYYY-MM-DDTHH:MM:SS>|<reading>
    GET|<sensor_id>|<count>

Timestamps carry no zone on the wire and are always interpreted as UTC.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Union

from models.records import SENSOR_ID_MAX_BYTES, ReadingQuery, SensorReading

FRAME_DELIMITER = b"\r\n"
FIELD_SEPARATOR = "|"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

_LOG_FIELD_COUNT = 4
_GET_FIELD_COUNT = 3

_SENSOR_ID_PATTERN = re.compile(r"[A-Za-z0-9_.\-]+")
_DECIMAL_PATTERN = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)
_COUNT_PATTERN = re.compile(r"\d+", re.ASCII)
_TIMESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}", re.ASCII)


class Command(str, Enum):
    """Command tags accepted as the first field of a frame."""

    log = "LOG"
    get = "GET"


class ErrorKind(str, Enum):
    """Error kinds rendered as ``ERROR|<KIND>`` frames."""

    invalid_sensor_id = "INVALID_SENSOR_ID"
    malformed_message = "MALFORMED_MESSAGE"


class MalformedMessage(ValueError):
    """Raised when a frame cannot be decoded into a request."""

    def __init__(self, reason: str, command: Command | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.command = command


Request = Union[SensorReading, ReadingQuery]


def validate_sensor_id(sensor_id: str) -> str:
    """Return ``sensor_id`` unchanged or raise ``MalformedMessage``.

    Identifiers name files on disk, so they are limited to a conservative
    ASCII alphabet and rejected outright when longer than the record slot.
    """
    if not sensor_id:
        raise MalformedMessage("missing sensor_id", Command.log)
    if not _SENSOR_ID_PATTERN.fullmatch(sensor_id) or sensor_id in {".", ".."}:
        raise MalformedMessage("invalid sensor_id", Command.log)
    if len(sensor_id) > SENSOR_ID_MAX_BYTES:
        raise MalformedMessage("sensor_id too long", Command.log)
    return sensor_id


def parse_timestamp(value: str) -> datetime:
    if not _TIMESTAMP_PATTERN.fullmatch(value):
        raise ValueError("Invalid timestamp format")
    try:
        parsed = datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc
    return parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def split_frame(frame: Union[bytes, str]) -> list[str]:
    """Strip an optional trailing delimiter and split ``frame`` into fields."""
    if isinstance(frame, bytes):
        if frame.endswith(FRAME_DELIMITER):
            frame = frame[: -len(FRAME_DELIMITER)]
        try:
            frame = frame.decode("ascii")
        except UnicodeDecodeError as exc:
            raise MalformedMessage("frame is not ASCII", _raw_command_of(frame)) from exc
    elif frame.endswith("\r\n"):
        frame = frame[:-2]
    return frame.split(FIELD_SEPARATOR)


def _raw_command_of(frame: bytes) -> Command | None:
    tag = frame.split(b"|", 1)[0]
    for command in Command:
        if tag == command.value.encode("ascii"):
            return command
    return None


def _command_of(fields: list[str]) -> Command:
    try:
        return Command(fields[0])
    except ValueError as exc:
        raise MalformedMessage("unknown command") from exc


def decode_log(frame: Union[bytes, str]) -> SensorReading:
    fields = split_frame(frame)
    if _command_of(fields) is not Command.log:
        raise MalformedMessage("expected LOG command", Command.log)
    if len(fields) != _LOG_FIELD_COUNT:
        raise MalformedMessage("wrong field count", Command.log)

    _, sensor_raw, timestamp_raw, value_raw = fields
    sensor_id = validate_sensor_id(sensor_raw)

    try:
        timestamp = parse_timestamp(timestamp_raw)
    except ValueError as exc:
        raise MalformedMessage("invalid timestamp", Command.log) from exc

    if not _DECIMAL_PATTERN.fullmatch(value_raw):
        raise MalformedMessage("invalid numeric value", Command.log)
    value = float(value_raw)
    if not math.isfinite(value):
        raise MalformedMessage("invalid numeric value", Command.log)

    return SensorReading(sensor_id=sensor_id, timestamp=timestamp, value=value)


def decode_get(frame: Union[bytes, str]) -> ReadingQuery:
    fields = split_frame(frame)
    if _command_of(fields) is not Command.get:
        raise MalformedMessage("expected GET command", Command.get)
    if len(fields) != _GET_FIELD_COUNT:
        raise MalformedMessage("wrong field count", Command.get)

    _, sensor_id, count_raw = fields
    if not _COUNT_PATTERN.fullmatch(count_raw):
        raise MalformedMessage("invalid record count", Command.get)

    return ReadingQuery(sensor_id=sensor_id, count=int(count_raw))


def decode_frame(frame: Union[bytes, str]) -> Request:
    """Dispatch on the command tag and decode the whole frame."""
    fields = split_frame(frame)
    command = _command_of(fields)
    if command is Command.log:
        return decode_log(frame)
    return decode_get(frame)


def encode_reading_line(reading: SensorReading) -> str:
    return (
        f"Sensor: {reading.sensor_id}, "
        f"Tempo: {format_timestamp(reading.timestamp)}, "
        f"Valor: {reading.value!r}\n"
    )


def encode_readings(readings: Iterable[SensorReading]) -> bytes:
    return "".join(encode_reading_line(reading) for reading in readings).encode("ascii")


def encode_error(kind: ErrorKind) -> bytes:
    return f"ERROR{FIELD_SEPARATOR}{kind.value}".encode("ascii") + FRAME_DELIMITER


def encode_log(reading: SensorReading) -> bytes:
    fields = (
        Command.log.value,
        reading.sensor_id,
        format_timestamp(reading.timestamp),
        repr(reading.value),
    )
    return FIELD_SEPARATOR.join(fields).encode("ascii") + FRAME_DELIMITER


def encode_get(query: ReadingQuery) -> bytes:
    fields = (Command.get.value, query.sensor_id, str(query.count))
    return FIELD_SEPARATOR.join(fields).encode("ascii") + FRAME_DELIMITER
