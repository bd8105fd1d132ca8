"""Per-scope access to live connection endpoints.

Each scope owns exactly one `ConnectionRegistry`; test code receives it
through its `TestContext` instead of reading process-wide connection
strings. Every accessor waits for the resource to become READY (bounded by a
timeout) and never returns an endpoint that is not accepting requests.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

import pymongo
import redis

from ephemera.adapters.db.engine import make_engine
from ephemera.adapters.redactor import Redactor
from ephemera.domain.errors import ResourceNotReady

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.engine import Engine

    from ephemera.interfaces.backend import LaunchedResource
    from ephemera.interfaces.redactor import Redactor as RedactorPort
    from ephemera.orchestration.lifecycle import ResourceHandle

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Connection endpoints of one scope, available once resources are ready.

    Args:
        handles: Resource handles of the scope, by name.
        default_timeout: Seconds accessors wait for readiness when no timeout
            is passed; ``None`` waits indefinitely.
        redactor: Used for every URL that reaches the logs.
    """

    def __init__(
        self,
        handles: Mapping[str, ResourceHandle],
        *,
        default_timeout: float | None = None,
        redactor: RedactorPort | None = None,
    ) -> None:
        self._handles = dict(handles)
        self._default_timeout = default_timeout
        self._redactor = redactor or Redactor()
        self._lock = threading.Lock()
        self._closed = False
        self._engines: dict[str, Engine] = {}
        self._clients: dict[str, Any] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._handles

    def names(self) -> list[str]:
        """Names of the resources in this scope."""
        return list(self._handles)

    @property
    def closed(self) -> bool:
        """True once the owning scope has been released."""
        with self._lock:
            return self._closed

    def _handle(self, name: str) -> ResourceHandle:
        with self._lock:
            if self._closed:
                raise ResourceNotReady(name, "released")
        try:
            return self._handles[name]
        except KeyError as e:
            raise KeyError(
                f"No resource named {name!r} in this scope "
                f"(known: {', '.join(self._handles) or 'none'})"
            ) from e

    def endpoint(self, name: str, timeout: float | None = None) -> LaunchedResource:
        """Return the endpoint of `name`, waiting until it is READY.

        Args:
            name: Resource name.
            timeout: Seconds to wait; ``0`` fails immediately if not ready.

        Raises:
            ResourceNotReady: if the resource is not ready in time, was
                stopped, or the scope was released.
            ReadinessTimeout | ResourceStartupFailure: the resource's recorded
                failure, if it failed.
            KeyError: for an unknown name.
        """
        handle = self._handle(name)
        wait = self._default_timeout if timeout is None else timeout
        return handle.wait_ready(wait)

    def connection_url(self, name: str, timeout: float | None = None) -> str:
        """Connection URL of `name` (see `endpoint`)."""
        url = self.endpoint(name, timeout).connection_url
        logger.debug("Handing out %s: %s", name, self._redactor.sanitize_url(url))
        return url

    def engine(self, name: str, timeout: float | None = None) -> Engine:
        """Cached SQLAlchemy Engine for a database resource."""
        url = self.connection_url(name, timeout)
        with self._lock:
            if self._closed:
                raise ResourceNotReady(name, "released")
            if name not in self._engines:
                self._engines[name] = make_engine(url)
            return self._engines[name]

    def redis(self, name: str, timeout: float | None = None) -> redis.Redis:
        """Cached Redis client for a cache resource."""
        url = self.connection_url(name, timeout)
        with self._lock:
            if self._closed:
                raise ResourceNotReady(name, "released")
            if name not in self._clients:
                self._clients[name] = redis.Redis.from_url(url)
            return self._clients[name]

    def mongo(self, name: str, timeout: float | None = None) -> pymongo.MongoClient:
        """Cached MongoDB client for a document resource."""
        url = self.connection_url(name, timeout)
        with self._lock:
            if self._closed:
                raise ResourceNotReady(name, "released")
            if name not in self._clients:
                self._clients[name] = pymongo.MongoClient(url)
            return self._clients[name]

    def describe(self) -> dict[str, str]:
        """Redacted URL (or state) per resource, for logs and the CLI."""
        described: dict[str, str] = {}
        for name, handle in self._handles.items():
            launched = handle.launched
            described[name] = (
                self._redactor.sanitize_url(launched.connection_url)
                if launched is not None
                else f"<{handle.state.value}>"
            )
        return described

    def close(self) -> None:
        """Dispose cached engines/clients; further access raises."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            engines, self._engines = self._engines, {}
            clients, self._clients = self._clients, {}
        for engine in engines.values():
            engine.dispose()
        for client in clients.values():
            client.close()
