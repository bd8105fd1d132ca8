"""Loading resource sets from TOML files.

A manifest describes one scope::

    name = "orders"
    backend = "docker"            # or "sqlite"

    [[resources]]
    name = "db"
    kind = "database"
    image = "postgres:17"
    port = 5432
    lifetime = "session"

    [resources.environment]
    POSTGRES_USER = "test"
    POSTGRES_PASSWORD = "test"

    [resources.schema]
    directory = "sql"             # relative to the manifest
    scripts = ["tables/customers.sql", { path = "tables/orders.sql", rank = 1 }]

    [resources.reset]
    exclude = ["alembic_version"]
    strategy = "delete"

Cache (``kind = "cache"``) and document (``kind = "document"``) resources
take glob patterns in `include` / `exclude`; a bare string is one pattern.

Used by the ``ephemera up`` command and by suites that prefer configuration
over code.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from ephemera.adapters.backends import SqliteFileBackend, TestcontainersBackend
from ephemera.adapters.health_checks import (
    MongoHealthCheck,
    RedisHealthCheck,
    SqlAlchemyHealthCheck,
    TcpHealthCheck,
)
from ephemera.adapters.resetters import (
    MongoStateResetter,
    RedisStateResetter,
    ResetPolicy,
    SqlAlchemyStateResetter,
)
from ephemera.config import ConfigurationError
from ephemera.domain.descriptor import ResourceDescriptor, ResourceKind
from ephemera.interfaces.backend import ContainerBackend
from ephemera.interfaces.health_check import HealthCheck
from ephemera.interfaces.schema_initializer import SchemaInitializer
from ephemera.interfaces.state_resetter import StateResetter
from ephemera.orchestration.schema import (
    AlembicSchemaInitializer,
    SchemaScript,
    SqlScriptInitializer,
)
from ephemera.orchestration.scope import ManagedResource, ResourceSet

BACKENDS: dict[str, type[ContainerBackend]] = {
    "docker": TestcontainersBackend,
    "sqlite": SqliteFileBackend,
}
HEALTH_CHECKS: dict[str, type[HealthCheck]] = {
    "tcp": TcpHealthCheck,
    "sql": SqlAlchemyHealthCheck,
    "redis": RedisHealthCheck,
    "mongo": MongoHealthCheck,
}
DESCRIPTOR_KEYS = (
    "name",
    "kind",
    "image",
    "port",
    "environment",
    "host_port",
    "lifetime",
    "url_template",
)


def _table(raw: dict[str, Any], key: str, where: str) -> dict[str, Any] | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where}: '{key}' must be a table")
    return value


def _schema(raw: dict[str, Any], base: Path, where: str) -> SchemaInitializer | None:
    section = _table(raw, "schema", where)
    if section is None:
        return None
    if "alembic" in section:
        return AlembicSchemaInitializer(base / section["alembic"])
    scripts: list[SchemaScript] = []
    for entry in section.get("scripts", []):
        if isinstance(entry, str):
            scripts.append(SchemaScript(entry))
        elif isinstance(entry, dict) and "path" in entry:
            scripts.append(SchemaScript(entry["path"], int(entry.get("rank", 0))))
        else:
            raise ConfigurationError(
                f"{where}: schema scripts must be paths or {{ path, rank }} tables"
            )
    return SqlScriptInitializer(
        base / section.get("directory", "."),
        scripts,
        ensure_database=bool(section.get("ensure_database", False)),
    )


def _patterns(section: dict[str, Any], key: str, where: str) -> tuple[str, ...] | None:
    value = section.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return tuple(value)
    raise ConfigurationError(
        f"{where}: reset '{key}' must be a string or an array of strings"
    )


def _resetter(raw: dict[str, Any], kind: ResourceKind, where: str) -> StateResetter | None:
    section = _table(raw, "reset", where)
    if section is None:
        return None
    include = _patterns(section, "include", where)
    exclude = _patterns(section, "exclude", where)
    if kind is ResourceKind.CACHE:
        return RedisStateResetter(
            include=("*",) if include is None else include,
            exclude=exclude or (),
        )
    if kind is ResourceKind.DOCUMENT:
        database = section.get("database")
        if database is not None and not isinstance(database, str):
            raise ConfigurationError(f"{where}: reset 'database' must be a string")
        return MongoStateResetter(
            include=("*",) if include is None else include,
            exclude=exclude or (),
            database=database,
        )
    policy_args: dict[str, Any] = {
        key: section[key] for key in ("schema", "restart_identity") if key in section
    }
    if include is not None:
        policy_args["include"] = include
    if exclude is not None:
        policy_args["exclude"] = exclude
    try:
        return SqlAlchemyStateResetter(
            ResetPolicy(**policy_args), strategy=section.get("strategy", "delete")
        )
    except ValueError as e:
        raise ConfigurationError(f"{where}: {e}") from e


def _health_check(raw: dict[str, Any], where: str) -> HealthCheck | None:
    token = raw.get("health_check")
    if token is None:
        return None
    try:
        return HEALTH_CHECKS[str(token).lower()]()
    except KeyError as e:
        raise ConfigurationError(
            f"{where}: unknown health check {token!r} "
            f"(expected one of {', '.join(HEALTH_CHECKS)})"
        ) from e


def _resource(raw: dict[str, Any], base: Path, index: int) -> ManagedResource:
    where = f"resources[{index}]"
    fields = {key: raw[key] for key in DESCRIPTOR_KEYS if key in raw}
    try:
        descriptor = ResourceDescriptor(**fields)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{where}: {e}") from e
    where = f"resource {descriptor.name!r}"
    return ManagedResource(
        descriptor,
        health_check=_health_check(raw, where),
        schema=_schema(raw, base, where),
        resetter=_resetter(raw, descriptor.kind, where),
    )


def parse_resource_set(data: dict[str, Any], base: Path) -> ResourceSet:
    """Build a `ResourceSet` from parsed manifest data.

    Args:
        data: The decoded TOML document.
        base: Directory relative schema paths are resolved against.

    Raises:
        ConfigurationError: for missing or invalid entries.
    """
    name = data.get("name")
    if not name:
        raise ConfigurationError("manifest: 'name' is required")
    raw_resources = data.get("resources", [])
    if not isinstance(raw_resources, list):
        raise ConfigurationError("manifest: 'resources' must be an array of tables")
    backend_token = str(data.get("backend", "docker")).lower()
    if backend_token not in BACKENDS:
        raise ConfigurationError(
            f"manifest: unknown backend {backend_token!r} "
            f"(expected one of {', '.join(BACKENDS)})"
        )
    resources = [_resource(raw, base, i) for i, raw in enumerate(raw_resources)]
    try:
        return ResourceSet(name, tuple(resources), BACKENDS[backend_token]())
    except ValueError as e:
        raise ConfigurationError(f"manifest: {e}") from e


def load_resource_set(path: str | Path) -> ResourceSet:
    """Read a TOML manifest from `path`.

    Raises:
        ConfigurationError: if the file is not valid TOML or not a valid
            manifest.
        OSError: if the file cannot be read.
    """
    path = Path(path)
    with path.open("rb") as fh:
        try:
            data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"{path}: invalid TOML: {e}") from e
    try:
        return parse_resource_set(data, path.parent.resolve())
    except ConfigurationError as e:
        raise ConfigurationError(f"{path}: {e}") from e
