"""MongoDB related fixtures for EPHEMERA.

Backed by a temporary MongoDB 7 instance launched with Testcontainers; tests
using them are skipped when Docker is unavailable.
"""

from __future__ import annotations

from collections.abc import Iterator

import pymongo
import pytest
from testcontainers.mongodb import MongoDbContainer

from ephemera.testing.pytest_plugin import docker_available

## adjust pylint to deal with fixtures
# pylint: disable=redefined-outer-name

MONGO_FIXTURES = ("mongo_url", "mongo_client")
MONGO_DATABASE = "ephemera"


def pytest_collection_modifyitems(items):
    """Skip MongoDB tests if Docker is unavailable."""
    if docker_available():
        return
    skip = pytest.mark.skip(reason="Docker/Testcontainers backend not available")
    for item in items:
        fixturenames = getattr(item, "fixturenames", ())
        if any(name in fixturenames for name in MONGO_FIXTURES):
            item.add_marker(skip)


@pytest.fixture(scope="session")
def mongo_url() -> Iterator[str]:
    """Session MongoDB 7 URL pointing at the ``ephemera`` database."""
    with MongoDbContainer(image="mongo:7", username="test", password="test") as container:
        host = container.get_container_host_ip()
        port = container.get_exposed_port(27017)
        yield f"mongodb://test:test@{host}:{port}/{MONGO_DATABASE}?authSource=admin"


@pytest.fixture
def mongo_client(mongo_url: str) -> Iterator[pymongo.MongoClient]:
    """Per-test client; drops the test database afterwards."""
    client: pymongo.MongoClient = pymongo.MongoClient(mongo_url)
    try:
        yield client
    finally:
        client.drop_database(MONGO_DATABASE)
        client.close()
