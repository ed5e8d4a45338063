from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9000
DEFAULT_ADMIN_URL = "http://localhost:8080"
DEFAULT_TIMEOUT = 5.0

_HOST_ENV = "TELEMETRY_HOST"
_PORT_ENV = "TELEMETRY_PORT"
_ADMIN_URL_ENV = "TELEMETRY_ADMIN_URL"
_TIMEOUT_ENV = "CLI_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    admin_url: str = DEFAULT_ADMIN_URL
    timeout: float = DEFAULT_TIMEOUT


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_port(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if 0 < parsed <= 65535 else default


def load_config(
    host: Optional[str] = None,
    port: Optional[int] = None,
    admin_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CLIConfig:
    # the server binds 0.0.0.0 by default, which is not a useful target to dial
    env_host = (os.getenv(_HOST_ENV) or "").strip()
    if env_host in {"", "0.0.0.0"}:
        env_host = DEFAULT_HOST
    url = admin_url or os.getenv(_ADMIN_URL_ENV) or DEFAULT_ADMIN_URL
    if port is None:
        port = _read_port(os.getenv(_PORT_ENV), DEFAULT_PORT)
    if timeout is None:
        timeout = _read_float(os.getenv(_TIMEOUT_ENV), DEFAULT_TIMEOUT)
    return CLIConfig(
        host=host or env_host,
        port=port,
        admin_url=url.rstrip("/"),
        timeout=timeout,
    )
