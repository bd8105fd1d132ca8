"""Unit tests for TOML resource-set manifests."""

from pathlib import Path

import pytest

from ephemera.adapters.backends import SqliteFileBackend, TestcontainersBackend
from ephemera.adapters.health_checks import MongoHealthCheck, TcpHealthCheck
from ephemera.adapters.resetters import (
    MongoStateResetter,
    RedisStateResetter,
    ResetStrategy,
    SqlAlchemyStateResetter,
)
from ephemera.config import ConfigurationError
from ephemera.domain.descriptor import LifetimePolicy, ResourceKind
from ephemera.manifest import load_resource_set, parse_resource_set
from ephemera.orchestration.schema import AlembicSchemaInitializer, SqlScriptInitializer

MANIFEST = """
name = "orders"

[[resources]]
name = "db"
kind = "database"
image = "postgres:17"
port = 5432
lifetime = "persistent"
host_port = 55432

[resources.environment]
POSTGRES_PASSWORD = "secret"

[resources.schema]
directory = "sql"
scripts = ["tables/customers.sql", { path = "tables/orders.sql", rank = 1 }]

[resources.reset]
exclude = ["currencies"]
strategy = "truncate"

[[resources]]
name = "cache"
kind = "cache"
image = "redis:7"
port = 6379
health_check = "tcp"

[resources.reset]
exclude = ["session:*"]
"""


def test_load_full_manifest(tmp_path: Path):
    """Every section of a manifest ends up on the resource set."""
    path = tmp_path / "ephemera.toml"
    path.write_text(MANIFEST, encoding="utf-8")

    resource_set = load_resource_set(path)

    assert resource_set.name == "orders"
    assert isinstance(resource_set.backend, TestcontainersBackend)
    db, cache = resource_set.resources

    assert db.descriptor.lifetime is LifetimePolicy.PERSISTENT
    assert db.descriptor.host_port == 55432
    assert db.descriptor.environment["POSTGRES_PASSWORD"] == "secret"
    assert isinstance(db.schema, SqlScriptInitializer)
    assert db.schema.script_dir == tmp_path.resolve() / "sql"
    assert [s.path for s in db.schema.scripts] == [
        "tables/customers.sql",
        "tables/orders.sql",
    ]
    assert isinstance(db.resetter, SqlAlchemyStateResetter)
    assert db.resetter.strategy is ResetStrategy.TRUNCATE
    assert db.resetter.policy.exclude == ("currencies",)
    assert db.health_check is None

    assert cache.descriptor.kind is ResourceKind.CACHE
    assert isinstance(cache.health_check, TcpHealthCheck)
    assert isinstance(cache.resetter, RedisStateResetter)
    assert cache.resetter.exclude == ("session:*",)


def test_sqlite_backend_and_alembic(tmp_path: Path):
    """The backend token and alembic schemas are honoured."""
    data = {
        "name": "ledger",
        "backend": "SQLite",
        "resources": [
            {
                "name": "db",
                "kind": "database",
                "image": "sqlite:3",
                "port": 1,
                "schema": {"alembic": "migrations"},
            }
        ],
    }
    resource_set = parse_resource_set(data, tmp_path)
    assert isinstance(resource_set.backend, SqliteFileBackend)
    schema = resource_set.resources[0].schema
    assert isinstance(schema, AlembicSchemaInitializer)
    assert schema.script_location == tmp_path / "migrations"


@pytest.mark.parametrize(
    "data, message",
    [
        ({}, "'name' is required"),
        ({"name": "x", "resources": {"db": {}}}, "array of tables"),
        ({"name": "x", "backend": "podman"}, "unknown backend 'podman'"),
        (
            {"name": "x", "resources": [{"name": "db", "kind": "database", "port": 1}]},
            r"resources\[0\]",
        ),
        (
            {"name": "x", "resources": [{"name": "db", "kind": "disk", "image": "a:1", "port": 1}]},
            r"resources\[0\]",
        ),
        (
            {
                "name": "x",
                "resources": [
                    {"name": "db", "kind": "database", "image": "a:1", "port": 1, "health_check": "http"}
                ],
            },
            "unknown health check 'http'",
        ),
        (
            {
                "name": "x",
                "resources": [
                    {"name": "db", "kind": "database", "image": "a:1", "port": 1, "reset": {"strategy": "drop"}}
                ],
            },
            "Unknown reset strategy",
        ),
        (
            {
                "name": "x",
                "resources": [
                    {"name": "c", "kind": "cache", "image": "redis:7", "port": 6379, "reset": {"exclude": 5}}
                ],
            },
            "reset 'exclude' must be a string or an array of strings",
        ),
        (
            {
                "name": "x",
                "resources": [
                    {"name": "db", "kind": "database", "image": "a:1", "port": 1, "reset": {"include": ["a", 1]}}
                ],
            },
            "reset 'include' must be a string or an array of strings",
        ),
        (
            {
                "name": "x",
                "resources": [
                    {"name": "db", "kind": "database", "image": "a:1", "port": 1},
                    {"name": "db", "kind": "database", "image": "a:1", "port": 2},
                ],
            },
            "used twice",
        ),
    ],
)
def test_invalid_manifests(tmp_path: Path, data, message):
    """Invalid manifests raise ConfigurationError naming the culprit."""
    with pytest.raises(ConfigurationError, match=message):
        parse_resource_set(data, tmp_path)


def test_invalid_toml_names_the_file(tmp_path: Path):
    """Syntax errors are reported as configuration errors."""
    path = tmp_path / "broken.toml"
    path.write_text("name = ", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="invalid TOML"):
        load_resource_set(path)


def test_single_string_patterns_stay_whole(tmp_path: Path):
    """A bare string include/exclude is one pattern, not one per character."""
    data = {
        "name": "x",
        "resources": [
            {
                "name": "cache",
                "kind": "cache",
                "image": "redis:7",
                "port": 6379,
                "reset": {"include": "user:*", "exclude": "keep:*"},
            },
            {
                "name": "db",
                "kind": "database",
                "image": "postgres:17",
                "port": 5432,
                "reset": {"include": "orders", "exclude": "currencies"},
            },
        ],
    }
    cache, db = parse_resource_set(data, tmp_path).resources

    assert cache.resetter.include == ("user:*",)
    assert cache.resetter.exclude == ("keep:*",)
    assert db.resetter.policy.include == ("orders",)
    assert db.resetter.policy.exclude == ("currencies",)


def test_cache_reset_defaults_to_every_key(tmp_path: Path):
    """An empty reset table on a cache deletes every key and keeps none."""
    data = {
        "name": "x",
        "resources": [
            {"name": "cache", "kind": "cache", "image": "redis:7", "port": 6379, "reset": {}}
        ],
    }
    (cache,) = parse_resource_set(data, tmp_path).resources
    assert cache.resetter.include == ("*",)
    assert cache.resetter.exclude == ()


def test_document_resources_get_mongo_reset_and_check(tmp_path: Path):
    """Document stores use the MongoDB resetter and the mongo health check."""
    data = {
        "name": "catalog",
        "resources": [
            {
                "name": "store",
                "kind": "document",
                "image": "mongo:7",
                "port": 27017,
                "health_check": "mongo",
                "reset": {"exclude": "currencies", "database": "catalog"},
            }
        ],
    }
    (store,) = parse_resource_set(data, tmp_path).resources
    assert store.descriptor.kind is ResourceKind.DOCUMENT
    assert isinstance(store.health_check, MongoHealthCheck)
    assert isinstance(store.resetter, MongoStateResetter)
    assert store.resetter.include == ("*",)
    assert store.resetter.exclude == ("currencies",)
    assert store.resetter.database == "catalog"


def test_document_reset_database_must_be_a_string(tmp_path: Path):
    """A non-string database name is a configuration error."""
    data = {
        "name": "catalog",
        "resources": [
            {"name": "store", "kind": "document", "image": "mongo:7", "port": 27017, "reset": {"database": 1}}
        ],
    }
    with pytest.raises(ConfigurationError, match="reset 'database' must be a string"):
        parse_resource_set(data, tmp_path)
