"""``doctor``, ``probe`` and ``up`` commands.

Human-oriented notices go to **stderr**; ``up`` prints the provisioned
endpoints (redacted) to **stdout** so they can be piped.
"""

from __future__ import annotations

import threading
from importlib import metadata
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import click
import docker
from sqlalchemy.engine import make_url

from ephemera import config
from ephemera.adapters.health_checks import (
    MongoHealthCheck,
    RedisHealthCheck,
    SqlAlchemyHealthCheck,
    TcpHealthCheck,
)
from ephemera.adapters.redactor import Redactor
from ephemera.domain.errors import OrchestrationError, ReadinessTimeout
from ephemera.interfaces.backend import LaunchedResource
from ephemera.manifest import load_resource_set
from ephemera.orchestration.readiness import ProbeSettings, ReadinessProbe
from ephemera.orchestration.scope import ScopeCoordinator

from .helpers import error, success, warn

if TYPE_CHECKING:
    from ephemera.interfaces.health_check import HealthCheck
    from ephemera.interfaces.redactor import Redactor as RedactorPort

DOCTOR_DISTRIBUTIONS = (
    "sqlalchemy",
    "alembic",
    "docker",
    "testcontainers",
    "redis",
    "pymongo",
    "psycopg",
    "pymssql",
)
DEFAULT_PORTS = {
    "postgresql": 5432,
    "mssql": 1433,
    "redis": 6379,
    "mongodb": 27017,
    "amqp": 5672,
}

DOCKER_UNAVAILABLE_MSG = (
    "The Docker daemon is not reachable.\n"
    "Start Docker (or set DOCKER_HOST) before provisioning container resources."
)


def get_redactor(ctx: click.Context) -> RedactorPort:
    """The redactor configured by the top-level group."""
    obj = ctx.find_object(dict) or {}
    return obj.get("redactor") or Redactor()


def _version(name: str) -> str:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return "not installed"


@click.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check Docker reachability and show the effective configuration."""
    docker_ok = True
    try:
        info = docker.from_env().version()
    except Exception as e:  # pylint: disable=broad-except
        docker_ok = False
        error("Docker daemon unreachable")
        click.echo(f"  {e}", err=True)
    else:
        success(f"Docker daemon reachable (server {info.get('Version', '?')})")

    click.echo("Libraries:")
    for name in DOCTOR_DISTRIBUTIONS:
        click.echo(f"  {name:<15} {_version(name)}")

    try:
        settings = ProbeSettings.from_env()
        click.echo("Configuration:")
        click.echo(
            f"  probe           {settings.attempts} attempts, "
            f"{settings.interval}s interval, backoff x{settings.backoff}"
        )
        launch_timeout = config.get_launch_timeout()
        click.echo(
            "  launch timeout  "
            + (f"{launch_timeout}s" if launch_timeout is not None else "unbounded")
        )
        click.echo(f"  docker host     {config.get_docker_host_ip()}")
        click.echo(f"  state dir       {config.get_state_dir()}")
        click.echo(f"  time anchor     {config.get_time_anchor().isoformat()}")
    except config.ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    if not docker_ok:
        warn("Only the sqlite backend is usable without Docker.")
        ctx.exit(1)


def _check_for_scheme(scheme: str) -> HealthCheck:
    base = scheme.split("+", 1)[0]
    if base in ("postgresql", "postgres", "mssql", "sqlite"):
        return SqlAlchemyHealthCheck()
    if base in ("redis", "rediss"):
        return RedisHealthCheck()
    if base == "mongodb":
        return MongoHealthCheck()
    return TcpHealthCheck()


def endpoint_from_url(url: str) -> LaunchedResource:
    """A `LaunchedResource` for an already running service at `url`."""
    parts = urlsplit(url)
    scheme = parts.scheme.split("+", 1)[0]
    if scheme == "sqlite":
        return LaunchedResource(host="localhost", port=0, connection_url=url)
    if scheme.startswith("postgres") or scheme == "mssql":
        parsed = make_url(url)
        host, port = parsed.host, parsed.port
    else:
        host, port = parts.hostname, parts.port
    if not host:
        raise click.BadParameter(f"URL has no host: {url}", param_hint="URL")
    return LaunchedResource(
        host=host,
        port=port or DEFAULT_PORTS.get(scheme, 0),
        connection_url=url,
    )


@click.command()
@click.argument("url")
@click.option("--attempts", type=click.IntRange(min=1), help="Maximum health checks.")
@click.option(
    "--interval", type=click.FloatRange(min=0), help="Seconds between health checks."
)
@click.option(
    "--backoff", type=click.FloatRange(min=1.0), help="Interval multiplier per attempt."
)
@click.option("--timeout", type=click.FloatRange(min=0), help="Overall deadline in seconds.")
@click.pass_context
def probe(  # pylint: disable=too-many-arguments, too-many-positional-arguments
    ctx: click.Context,
    url: str,
    attempts: int | None,
    interval: float | None,
    backoff: float | None,
    timeout: float | None,
) -> None:
    """Wait until the service at URL accepts requests.

    The health check is chosen from the URL scheme: SELECT 1 for databases,
    PING for redis, ping for mongodb, a TCP connect for anything else.
    """
    redactor = get_redactor(ctx)
    resource = endpoint_from_url(url)
    try:
        defaults = ProbeSettings.from_env()
    except config.ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    settings = ProbeSettings(
        attempts=attempts or defaults.attempts,
        interval=defaults.interval if interval is None else interval,
        backoff=backoff or defaults.backoff,
        timeout=timeout,
    )
    shown = redactor.sanitize_url(url)
    try:
        used = ReadinessProbe(settings).poll(
            _check_for_scheme(urlsplit(url).scheme), resource, name=shown
        )
    except ReadinessTimeout as e:
        raise click.ClickException(redactor.sanitize_url(str(e))) from e
    success(f"{shown} ready after {used} attempt(s)")


@click.command()
@click.argument(
    "manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "--hold/--no-hold",
    default=True,
    show_default=True,
    help="Keep the resources running until interrupted (Ctrl+C).",
)
@click.pass_context
def up(ctx: click.Context, manifest: Path, hold: bool) -> None:
    """Provision the resource set described by MANIFEST (TOML).

    Prints one ``NAME=URL`` line per resource on stdout, with credentials
    masked, then holds the resources until interrupted.
    """
    redactor = get_redactor(ctx)
    try:
        resource_set = load_resource_set(manifest)
    except config.ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    coordinator = ScopeCoordinator(redactor=redactor)
    try:
        handle = coordinator.acquire(resource_set)
    except OrchestrationError as e:
        raise click.ClickException(redactor.sanitize_url(str(e))) from e

    try:
        for name, shown in handle.connections.describe().items():
            click.echo(f"{name}={shown}")
        success(f"Scope {resource_set.name!r} is up")
        if hold:
            click.echo("Press Ctrl+C to stop.", err=True)
            stop = threading.Event()
            try:
                while not stop.wait(1.0):
                    pass
            except KeyboardInterrupt:
                click.echo("", err=True)
    finally:
        coordinator.release(handle)
    success(f"Scope {resource_set.name!r} released")
