"""Docker-hosted resources.

Session resources are run through Testcontainers, which removes them when
they are stopped (and, through its reaper, when the test process dies).
Persistent resources are run through the Docker SDK under a deterministic
name so that the next test run reattaches to the same container instead of
paying the startup cost again.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import NotFound
from testcontainers.core.container import DockerContainer
from testcontainers.mongodb import MongoDbContainer
from testcontainers.mssql import SqlServerContainer
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from ephemera import config
from ephemera.adapters.backends import urls
from ephemera.adapters.db.engine import normalize_driver
from ephemera.domain.descriptor import LifetimePolicy
from ephemera.interfaces.backend import ContainerBackend, LaunchedResource

if TYPE_CHECKING:
    from docker import DockerClient
    from docker.models.containers import Container

    from ephemera.domain.descriptor import ResourceDescriptor

logger = logging.getLogger(__name__)

LABEL_RESOURCE = "io.ephemera.resource"  # pragma: no mutate
LABEL_LIFETIME = "io.ephemera.lifetime"  # pragma: no mutate


class TestcontainersBackend(ContainerBackend):
    """Runs resources as Docker containers.

    Args:
        client: Docker SDK client for persistent containers; created from
            the environment on first use.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, client: DockerClient | None = None) -> None:
        self._client = client
        self._lock = threading.Lock()

    @property
    def client(self) -> DockerClient:
        """Docker SDK client (``docker.from_env()`` unless one was given)."""
        with self._lock:
            if self._client is None:
                self._client = docker.from_env()
            return self._client

    def launch(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        if descriptor.lifetime is LifetimePolicy.PERSISTENT:
            return self._launch_persistent(descriptor)
        return self._launch_session(descriptor)

    def terminate(self, resource: LaunchedResource) -> None:
        native = resource.native
        if isinstance(native, DockerContainer):
            native.stop()
            return
        if native is not None:
            native.remove(force=True)
            return
        if resource.container_id is not None:
            self.client.containers.get(resource.container_id).remove(force=True)

    # --- session lifetime -------------------------------------------------

    @staticmethod
    def _session_container(descriptor: ResourceDescriptor) -> DockerContainer:
        env = dict(descriptor.environment)
        if urls.is_postgres(descriptor):
            user, password, database = urls.postgres_credentials(descriptor)
            container: DockerContainer = PostgresContainer(
                image=descriptor.image,
                port=descriptor.port,
                username=user,
                password=password,
                dbname=database,
            )
        elif urls.is_mongo(descriptor):
            user, password, database = urls.mongo_credentials(descriptor)
            container = MongoDbContainer(
                image=descriptor.image,
                port=descriptor.port,
                username=user,
                password=password,
                dbname=database,
            )
        elif urls.is_mssql(descriptor):
            user, password, database = urls.mssql_credentials(descriptor)
            container = SqlServerContainer(
                image=descriptor.image,
                port=descriptor.port,
                username=user,
                password=password,
                dbname=database,
            )
        elif urls.is_redis(descriptor):
            container = RedisContainer(
                image=descriptor.image,
                port=descriptor.port,
                password=env.get("REDIS_PASSWORD"),
            )
        else:
            container = DockerContainer(descriptor.image)
            container.with_exposed_ports(descriptor.port)
        for key, value in env.items():
            container.with_env(key, value)
        if descriptor.host_port is not None:
            container.with_bind_ports(descriptor.port, descriptor.host_port)
        return container

    def _launch_session(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        container = self._session_container(descriptor)
        container.start()
        try:
            host = container.get_container_host_ip()
            port = int(container.get_exposed_port(descriptor.port))
        except Exception:
            container.stop()
            raise
        wrapped = container.get_wrapped_container()
        return LaunchedResource(
            host=host,
            port=port,
            connection_url=normalize_driver(urls.connection_url(descriptor, host, port)),
            container_id=getattr(wrapped, "id", None),
            native=container,
        )

    # --- persistent lifetime ----------------------------------------------

    def _find(self, name: str) -> Container | None:
        try:
            return self.client.containers.get(name)
        except NotFound:
            return None

    def _launch_persistent(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        name = descriptor.container_name
        container = self._find(name)
        if container is None:
            logger.info("Creating persistent container %s", name)
            container = self.client.containers.run(
                descriptor.image,
                name=name,
                detach=True,
                environment=urls.container_environment(descriptor),
                ports={f"{descriptor.port}/tcp": descriptor.host_port},
                labels={
                    LABEL_RESOURCE: descriptor.name,
                    LABEL_LIFETIME: LifetimePolicy.PERSISTENT.value,
                },
                command=_command_for(descriptor),
            )
        else:
            logger.info("Reattaching to persistent container %s", name)
            if container.status != "running":
                container.start()
        container.reload()
        host = config.get_docker_host_ip()
        port = _published_port(container, descriptor.port)
        return LaunchedResource(
            host=host,
            port=port,
            connection_url=normalize_driver(urls.connection_url(descriptor, host, port)),
            container_id=container.id,
            native=container,
        )


def _command_for(descriptor: ResourceDescriptor) -> list[str] | None:
    # the redis image has no environment variable for requirepass
    password = descriptor.environment.get("REDIS_PASSWORD")
    if urls.is_redis(descriptor) and password:
        return ["redis-server", "--requirepass", password]
    return None


def _published_port(container: Any, port: int) -> int:
    bindings = (container.attrs.get("NetworkSettings", {}).get("Ports") or {}).get(
        f"{port}/tcp"
    )
    if not bindings:
        raise RuntimeError(
            f"Container {container.name} does not publish port {port}/tcp"
        )
    return int(bindings[0]["HostPort"])
