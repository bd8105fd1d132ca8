"""Resource-specific health checks.

Each check performs one short, bounded attempt at an application-level
request and raises whatever the client raised if the resource is not ready.
The readiness probe owns retries and the overall budget.
"""

from __future__ import annotations

import socket
from typing import TYPE_CHECKING

import pymongo
import redis
from sqlalchemy import text

from ephemera.adapters.db.engine import make_engine
from ephemera.domain.descriptor import ResourceKind
from ephemera.interfaces.health_check import HealthCheck

if TYPE_CHECKING:
    from ephemera.domain.descriptor import ResourceDescriptor
    from ephemera.interfaces.backend import LaunchedResource

DEFAULT_CHECK_TIMEOUT = 2.0


class TcpHealthCheck(HealthCheck):
    """Passes once the port accepts a TCP connection."""

    def __init__(self, timeout: float = DEFAULT_CHECK_TIMEOUT) -> None:
        self.timeout = timeout

    def check(self, resource: LaunchedResource) -> None:
        with socket.create_connection((resource.host, resource.port), self.timeout):
            pass


class SqlAlchemyHealthCheck(HealthCheck):
    """Passes once ``SELECT 1`` succeeds through SQLAlchemy.

    A fresh unpooled engine is used per attempt so no half-open connection
    from an earlier attempt is reused.
    """

    def check(self, resource: LaunchedResource) -> None:
        engine = make_engine(resource.connection_url, pooled=False)
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        finally:
            engine.dispose()


class RedisHealthCheck(HealthCheck):
    """Passes once the server answers ``PING``."""

    def __init__(self, timeout: float = DEFAULT_CHECK_TIMEOUT) -> None:
        self.timeout = timeout

    def check(self, resource: LaunchedResource) -> None:
        client = redis.Redis.from_url(
            resource.connection_url,
            socket_connect_timeout=self.timeout,
            socket_timeout=self.timeout,
        )
        try:
            if not client.ping():
                raise redis.ConnectionError("PING was not acknowledged")
        finally:
            client.close()


class MongoHealthCheck(HealthCheck):
    """Passes once the server answers the ``ping`` command."""

    def __init__(self, timeout: float = DEFAULT_CHECK_TIMEOUT) -> None:
        self.timeout = timeout

    def check(self, resource: LaunchedResource) -> None:
        timeout_ms = int(self.timeout * 1000)
        client: pymongo.MongoClient = pymongo.MongoClient(
            resource.connection_url,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
        try:
            client.admin.command("ping")
        finally:
            client.close()


def default_health_check(descriptor: ResourceDescriptor) -> HealthCheck:
    """Pick the health check matching the descriptor's kind.

    database → `SqlAlchemyHealthCheck`, cache → `RedisHealthCheck`,
    document → `MongoHealthCheck`, anything else → `TcpHealthCheck`.
    """
    if descriptor.kind is ResourceKind.DATABASE:
        return SqlAlchemyHealthCheck()
    if descriptor.kind is ResourceKind.CACHE:
        return RedisHealthCheck()
    if descriptor.kind is ResourceKind.DOCUMENT:
        return MongoHealthCheck()
    return TcpHealthCheck()
