"""Configuration utilities for EPHEMERA.

All runtime knobs are environment variables read through the helpers below,
so a CI job can tune probe budgets or point at a remote Docker host without
touching test code.

| Variable                   | Meaning                                     | Default                 |
|----------------------------|---------------------------------------------|-------------------------|
| EPHEMERA_PROBE_ATTEMPTS    | readiness attempts before giving up         | 30                      |
| EPHEMERA_PROBE_INTERVAL    | seconds between attempts                    | 1.0                     |
| EPHEMERA_PROBE_BACKOFF     | multiplier applied to the interval          | 1.0 (fixed interval)    |
| EPHEMERA_LAUNCH_TIMEOUT    | seconds a container launch may take         | unbounded               |
| EPHEMERA_DOCKER_HOST_IP    | host of persistent containers' ports        | from DOCKER_HOST        |
| EPHEMERA_STATE_DIR         | where persistent file-backed resources live | platformdirs data dir   |
| EPHEMERA_TIME_ANCHOR       | ISO-8601 UTC instant virtual clocks start at| 2024-01-01T00:00:00Z    |
| EPHEMERA_LOG_PATH          | flight recorder file (CLI)                  | platformdirs log dir    |
| EPHEMERA_LOGGER_LEVELS     | NAME=LEVEL overrides (CLI)                  | libraries at WARNING    |
"""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO
from urllib.parse import urlparse

from alembic.config import Config
from platformdirs import user_data_dir

ALEMBIC_URL_KEY = "sqlalchemy.url"  # pragma: no mutate
ALEMBIC_SCRIPT_LOCATION_KEY = "script_location"  # pragma: no mutate

DEFAULT_PROBE_ATTEMPTS = 30
DEFAULT_PROBE_INTERVAL = 1.0
DEFAULT_PROBE_BACKOFF = 1.0
DEFAULT_TIME_ANCHOR = datetime(2024, 1, 1, tzinfo=timezone.utc)
DEFAULT_DOCKER_HOST_IP = "localhost"


class ConfigurationError(Exception):
    """Raised when an EPHEMERA_* environment variable holds an invalid value."""


def _read(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def get_probe_attempts() -> int:
    """Readiness attempts from `EPHEMERA_PROBE_ATTEMPTS` (must be >= 1)."""
    if (raw := _read("EPHEMERA_PROBE_ATTEMPTS")) is None:
        return DEFAULT_PROBE_ATTEMPTS
    try:
        attempts = int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"EPHEMERA_PROBE_ATTEMPTS must be an integer, got {raw!r}"
        ) from e
    if attempts < 1:
        raise ConfigurationError("EPHEMERA_PROBE_ATTEMPTS must be at least 1")
    return attempts


def _positive_float(name: str, default: float, minimum: float) -> float:
    if (raw := _read(name)) is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def get_probe_interval() -> float:
    """Seconds between readiness attempts from `EPHEMERA_PROBE_INTERVAL`."""
    return _positive_float("EPHEMERA_PROBE_INTERVAL", DEFAULT_PROBE_INTERVAL, 0.0)


def get_probe_backoff() -> float:
    """Interval multiplier from `EPHEMERA_PROBE_BACKOFF` (>= 1.0)."""
    return _positive_float("EPHEMERA_PROBE_BACKOFF", DEFAULT_PROBE_BACKOFF, 1.0)


def get_launch_timeout() -> float | None:
    """Seconds a backend launch may take from `EPHEMERA_LAUNCH_TIMEOUT`.

    Unset means unbounded; the first launch of an image may include a long
    pull.
    """
    if _read("EPHEMERA_LAUNCH_TIMEOUT") is None:
        return None
    timeout = _positive_float("EPHEMERA_LAUNCH_TIMEOUT", 0.0, 0.0)
    if timeout <= 0:
        raise ConfigurationError("EPHEMERA_LAUNCH_TIMEOUT must be greater than 0")
    return timeout


def get_docker_host_ip() -> str:
    """Host that published container ports are reachable on.

    Precedence: `EPHEMERA_DOCKER_HOST_IP` > host part of a ``tcp://`` or
    ``ssh://`` `DOCKER_HOST` > ``localhost``.
    """
    if explicit := _read("EPHEMERA_DOCKER_HOST_IP"):
        return explicit
    docker_host = _read("DOCKER_HOST")
    if docker_host and docker_host.startswith(("tcp://", "ssh://")):
        if hostname := urlparse(docker_host).hostname:
            return hostname
    return DEFAULT_DOCKER_HOST_IP


def get_state_dir() -> Path:
    """Directory for persistent file-backed resources (created if missing)."""
    if explicit := _read("EPHEMERA_STATE_DIR"):
        path = Path(explicit)
        path.mkdir(parents=True, exist_ok=True)
        return path
    return Path(user_data_dir("ephemera", appauthor=False, ensure_exists=True))


def get_time_anchor() -> datetime:
    """Anchor instant for virtual clocks from `EPHEMERA_TIME_ANCHOR`.

    Accepts ISO-8601 with an offset or a trailing ``Z``; the value is
    converted to UTC. Naive values are rejected.
    """
    if (raw := _read("EPHEMERA_TIME_ANCHOR")) is None:
        return DEFAULT_TIME_ANCHOR
    try:
        anchor = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise ConfigurationError(
            f"EPHEMERA_TIME_ANCHOR is not an ISO-8601 instant: {raw!r}"
        ) from e
    if anchor.tzinfo is None:
        raise ConfigurationError("EPHEMERA_TIME_ANCHOR must include a UTC offset")
    return anchor.astimezone(timezone.utc)


def build_alembic_config(
    db_url: str | None, script_location: str | Path, stdout: TextIO = sys.stdout
) -> Config:
    """Build an Alembic `Config` for a project's migration scripts.

    Sets only Alembic "main" options:
    - `sqlalchemy.url` → the database URL you pass
    - `script_location` → the migration environment to run

    Args:
        db_url: SQLAlchemy database URL of the provisioned resource. Can be
            `None` only where Alembic won't need to connect.
        script_location: Directory (or ``package:dir`` spec) holding `env.py`
            and `versions/`.
        stdout: Text stream Alembic writes status lines to.

    Returns:
        An `alembic.config.Config`.
    """
    cfg = Config(stdout=stdout)
    if db_url is not None:
        # configparser interpolation: percent-encoded passwords need escaping
        cfg.set_main_option(ALEMBIC_URL_KEY, db_url.replace("%", "%%"))
    cfg.set_main_option(ALEMBIC_SCRIPT_LOCATION_KEY, str(script_location))
    return cfg
