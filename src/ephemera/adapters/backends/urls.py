"""Connection URLs for well-known images.

Official images configure credentials through environment variables; the URL
handed to tests is derived from the same variables so the two never drift.
A descriptor's `url_template` always wins.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import quote

from sqlalchemy.engine import URL

from ephemera.domain.descriptor import ResourceKind

if TYPE_CHECKING:
    from ephemera.domain.descriptor import ResourceDescriptor

POSTGRES_IMAGES = ("postgres", "postgis/postgis", "timescale/timescaledb")
REDIS_IMAGES = ("redis", "valkey/valkey", "redis/redis-stack-server")
RABBITMQ_IMAGES = ("rabbitmq",)
MONGO_IMAGES = ("mongo", "mongodb/mongodb-community-server")
MSSQL_IMAGES = ("mssql/server", "azure-sql-edge")

DEFAULT_PG_USER = "test"  # pragma: no mutate
DEFAULT_PG_PASSWORD = "test"  # pragma: no mutate
DEFAULT_PG_DB = "test"  # pragma: no mutate
DEFAULT_MONGO_USER = "test"  # pragma: no mutate
DEFAULT_MONGO_PASSWORD = "test"  # pragma: no mutate
DEFAULT_MONGO_DB = "test"  # pragma: no mutate
MSSQL_USER = "sa"  # pragma: no mutate
# the image refuses passwords without upper, lower case and digits
DEFAULT_MSSQL_PASSWORD = "Ephemera-Test1"  # pragma: no mutate
DEFAULT_MSSQL_DB = "master"  # pragma: no mutate


def _matches(descriptor: ResourceDescriptor, names: tuple[str, ...]) -> bool:
    image = descriptor.image_name
    # ignore a registry prefix such as docker.io/library/
    return any(image == name or image.endswith(f"/{name}") for name in names)


def is_postgres(descriptor: ResourceDescriptor) -> bool:
    """True if the descriptor runs a PostgreSQL-compatible image."""
    return _matches(descriptor, POSTGRES_IMAGES)


def is_redis(descriptor: ResourceDescriptor) -> bool:
    """True if the descriptor runs a Redis-compatible image."""
    return _matches(descriptor, REDIS_IMAGES)


def is_mongo(descriptor: ResourceDescriptor) -> bool:
    """True if the descriptor runs a MongoDB image."""
    return _matches(descriptor, MONGO_IMAGES)


def is_mssql(descriptor: ResourceDescriptor) -> bool:
    """True if the descriptor runs a SQL Server image."""
    return _matches(descriptor, MSSQL_IMAGES)


def postgres_credentials(descriptor: ResourceDescriptor) -> tuple[str, str, str]:
    """(user, password, database) as the official image reads them."""
    env = descriptor.environment
    user = env.get("POSTGRES_USER", DEFAULT_PG_USER)
    return (
        user,
        env.get("POSTGRES_PASSWORD", DEFAULT_PG_PASSWORD),
        env.get("POSTGRES_DB", user),
    )


def postgres_url(descriptor: ResourceDescriptor, host: str, port: int) -> str:
    """psycopg (v3) SQLAlchemy URL for a PostgreSQL resource."""
    user, password, database = postgres_credentials(descriptor)
    url = URL.create(
        "postgresql+psycopg",
        username=user,
        password=password,
        host=host,
        port=port,
        database=database,
    )
    return url.render_as_string(hide_password=False)


def redis_url(descriptor: ResourceDescriptor, host: str, port: int) -> str:
    """``redis://`` URL, with the password from `REDIS_PASSWORD` if set."""
    password = descriptor.environment.get("REDIS_PASSWORD")
    auth = f":{quote(password, safe='')}@" if password else ""
    return f"redis://{auth}{host}:{port}/0"


def rabbitmq_url(descriptor: ResourceDescriptor, host: str, port: int) -> str:
    """``amqp://`` URL from the RabbitMQ image's default user variables."""
    env = descriptor.environment
    user = quote(env.get("RABBITMQ_DEFAULT_USER", "guest"), safe="")
    password = quote(env.get("RABBITMQ_DEFAULT_PASS", "guest"), safe="")
    return f"amqp://{user}:{password}@{host}:{port}/"


def mongo_credentials(descriptor: ResourceDescriptor) -> tuple[str, str, str]:
    """(user, password, database); the root user is created in ``admin``."""
    env = descriptor.environment
    return (
        env.get("MONGO_INITDB_ROOT_USERNAME", DEFAULT_MONGO_USER),
        env.get("MONGO_INITDB_ROOT_PASSWORD", DEFAULT_MONGO_PASSWORD),
        env.get("MONGO_INITDB_DATABASE", DEFAULT_MONGO_DB),
    )


def mongo_url(descriptor: ResourceDescriptor, host: str, port: int) -> str:
    """``mongodb://`` URL authenticating the root user against ``admin``."""
    user, password, database = mongo_credentials(descriptor)
    return (
        f"mongodb://{quote(user, safe='')}:{quote(password, safe='')}"
        f"@{host}:{port}/{database}?authSource=admin"
    )


def mssql_credentials(descriptor: ResourceDescriptor) -> tuple[str, str, str]:
    """(user, password, database); SQL Server images only know ``sa``."""
    env = descriptor.environment
    password = env.get("MSSQL_SA_PASSWORD", env.get("SA_PASSWORD", DEFAULT_MSSQL_PASSWORD))
    return MSSQL_USER, password, env.get("MSSQL_DATABASE", DEFAULT_MSSQL_DB)


def mssql_url(descriptor: ResourceDescriptor, host: str, port: int) -> str:
    """pymssql SQLAlchemy URL for a SQL Server resource."""
    user, password, database = mssql_credentials(descriptor)
    url = URL.create(
        "mssql+pymssql",
        username=user,
        password=password,
        host=host,
        port=port,
        database=database,
    )
    return url.render_as_string(hide_password=False)


def container_environment(descriptor: ResourceDescriptor) -> dict[str, str]:
    """The descriptor's environment plus what the image cannot start without.

    MongoDB gets the root user the URL authenticates with; SQL Server gets
    the licence acceptance and the ``sa`` password.
    """
    env = dict(descriptor.environment)
    if is_mongo(descriptor):
        user, password, _ = mongo_credentials(descriptor)
        env.setdefault("MONGO_INITDB_ROOT_USERNAME", user)
        env.setdefault("MONGO_INITDB_ROOT_PASSWORD", password)
    elif is_mssql(descriptor):
        _, password, _ = mssql_credentials(descriptor)
        env.setdefault("ACCEPT_EULA", "Y")
        env.setdefault("MSSQL_SA_PASSWORD", password)
    return env


def connection_url(descriptor: ResourceDescriptor, host: str, port: int) -> str:
    """Best connection URL for `descriptor` at `host:port`.

    Precedence: the descriptor's `url_template`, then a URL for a recognised
    image, then ``tcp://host:port``.
    """
    if (rendered := descriptor.render_url(host, port)) is not None:
        return rendered
    if is_postgres(descriptor):
        return postgres_url(descriptor, host, port)
    if is_mssql(descriptor):
        return mssql_url(descriptor, host, port)
    if is_mongo(descriptor) or descriptor.kind is ResourceKind.DOCUMENT:
        return mongo_url(descriptor, host, port)
    if is_redis(descriptor) or descriptor.kind is ResourceKind.CACHE:
        return redis_url(descriptor, host, port)
    if _matches(descriptor, RABBITMQ_IMAGES):
        return rabbitmq_url(descriptor, host, port)
    return f"tcp://{host}:{port}"
