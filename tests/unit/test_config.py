"""Unit tests for environment-driven configuration."""

from datetime import datetime, timezone

import pytest

from ephemera import config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test without EPHEMERA_* or DOCKER_HOST variables."""
    for name in (
        "EPHEMERA_PROBE_ATTEMPTS",
        "EPHEMERA_PROBE_INTERVAL",
        "EPHEMERA_PROBE_BACKOFF",
        "EPHEMERA_LAUNCH_TIMEOUT",
        "EPHEMERA_DOCKER_HOST_IP",
        "EPHEMERA_STATE_DIR",
        "EPHEMERA_TIME_ANCHOR",
        "DOCKER_HOST",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    """Unset variables fall back to the documented defaults."""
    assert config.get_probe_attempts() == 30
    assert config.get_probe_interval() == 1.0
    assert config.get_probe_backoff() == 1.0
    assert config.get_launch_timeout() is None
    assert config.get_docker_host_ip() == "localhost"
    assert config.get_time_anchor() == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_blank_values_count_as_unset(monkeypatch):
    """Whitespace-only values are ignored."""
    monkeypatch.setenv("EPHEMERA_PROBE_ATTEMPTS", "  ")
    assert config.get_probe_attempts() == 30


@pytest.mark.parametrize(
    "name, value, getter",
    [
        ("EPHEMERA_PROBE_ATTEMPTS", "many", config.get_probe_attempts),
        ("EPHEMERA_PROBE_ATTEMPTS", "0", config.get_probe_attempts),
        ("EPHEMERA_PROBE_INTERVAL", "-1", config.get_probe_interval),
        ("EPHEMERA_PROBE_BACKOFF", "0.5", config.get_probe_backoff),
        ("EPHEMERA_LAUNCH_TIMEOUT", "soon", config.get_launch_timeout),
        ("EPHEMERA_LAUNCH_TIMEOUT", "0", config.get_launch_timeout),
        ("EPHEMERA_TIME_ANCHOR", "yesterday", config.get_time_anchor),
        ("EPHEMERA_TIME_ANCHOR", "2024-01-01T00:00:00", config.get_time_anchor),
    ],
)
def test_invalid_values_raise(monkeypatch, name, value, getter):
    """Invalid values are reported with the variable name."""
    monkeypatch.setenv(name, value)
    with pytest.raises(config.ConfigurationError, match=name):
        getter()


def test_docker_host_ip_from_docker_host(monkeypatch):
    """A remote DOCKER_HOST decides where published ports live."""
    monkeypatch.setenv("DOCKER_HOST", "tcp://192.168.99.100:2376")
    assert config.get_docker_host_ip() == "192.168.99.100"
    monkeypatch.setenv("DOCKER_HOST", "unix:///var/run/docker.sock")
    assert config.get_docker_host_ip() == "localhost"
    monkeypatch.setenv("EPHEMERA_DOCKER_HOST_IP", "10.1.1.1")
    assert config.get_docker_host_ip() == "10.1.1.1"


def test_time_anchor_is_converted_to_utc(monkeypatch):
    """Offsets are honoured and normalized."""
    monkeypatch.setenv("EPHEMERA_TIME_ANCHOR", "2024-06-01T02:00:00+02:00")
    assert config.get_time_anchor() == datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_state_dir_is_created(monkeypatch, tmp_path):
    """An explicit state dir is created on demand."""
    target = tmp_path / "a" / "b"
    monkeypatch.setenv("EPHEMERA_STATE_DIR", str(target))
    assert config.get_state_dir() == target
    assert target.is_dir()


def test_build_alembic_config_escapes_percent():
    """Percent-encoded passwords survive configparser interpolation."""
    url = "postgresql+psycopg://u:p%40ss@h:5432/d"
    cfg = config.build_alembic_config(url, "migrations")
    assert cfg.get_main_option("sqlalchemy.url") == url
    assert cfg.get_main_option("script_location") == "migrations"


def test_launch_timeout_from_env(monkeypatch):
    """Launch timeouts are read in seconds."""
    monkeypatch.setenv("EPHEMERA_LAUNCH_TIMEOUT", "120")
    assert config.get_launch_timeout() == 120.0
