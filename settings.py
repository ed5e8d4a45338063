from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_HOST_ENV = "TELEMETRY_HOST"
_DATA_DIR_ENV = "TELEMETRY_DATA_DIR"
_IO_WORKERS_ENV = "TELEMETRY_IO_WORKERS"
_MAX_FRAME_ENV = "TELEMETRY_MAX_FRAME_BYTES"
_FSYNC_ENV = "TELEMETRY_FSYNC"
_ADMIN_PORT_ENV = "TELEMETRY_ADMIN_PORT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    host: str
    data_dir: str
    io_workers: int
    max_frame_bytes: int
    fsync: bool
    admin_port: Optional[int]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    return default


def _read_port(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        parsed = int(candidate)
    except ValueError:
        return None
    return parsed if 0 <= parsed <= 65535 else None


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        host=_read_str_env(_HOST_ENV, "0.0.0.0"),
        data_dir=_read_str_env(_DATA_DIR_ENV, "./tmp/sensor_logs"),
        io_workers=_read_positive_int(_IO_WORKERS_ENV, 4),
        max_frame_bytes=_read_positive_int(_MAX_FRAME_ENV, 64 * 1024),
        fsync=_read_bool(_FSYNC_ENV, True),
        admin_port=_read_port(_ADMIN_PORT_ENV),
        log_level=_read_log_level("INFO"),
    )
