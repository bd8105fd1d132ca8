"""Resetting a MongoDB database (Testcontainers, skipped without Docker)."""

from __future__ import annotations

import pytest

from ephemera.adapters.resetters import MongoStateResetter
from ephemera.domain.descriptor import ResourceDescriptor
from ephemera.interfaces.backend import LaunchedResource
from ephemera.orchestration.lifecycle import ResourceHandle
from tests.fixtures.mongo import MONGO_DATABASE

# mypy: disable-error-code=no-untyped-def
## adjust pylint to deal with fixtures
# pylint: disable=redefined-outer-name


@pytest.fixture
def store_handle(mongo_url):
    """READY handle on the session MongoDB."""
    return ResourceHandle.external(
        ResourceDescriptor(name="store", kind="document", image="mongo:7", port=27017),
        LaunchedResource(host="localhost", port=27017, connection_url=mongo_url),
    )


def test_reset_empties_collections_and_keeps_indexes(store_handle, mongo_client):
    """Documents go, collections and their indexes stay."""
    db = mongo_client[MONGO_DATABASE]
    db.carts.create_index("customer", unique=True)
    db.carts.insert_many([{"customer": i} for i in range(5)])
    db.orders.insert_one({"total": 12})
    resetter = MongoStateResetter()
    try:
        resetter.prepare(store_handle)
        resetter.reset(store_handle)
        resetter.reset(store_handle)
    finally:
        resetter.close()
    assert db.carts.count_documents({}) == 0
    assert db.orders.count_documents({}) == 0
    assert "customer_1" in db.carts.index_information()


def test_reset_honours_include_and_exclude(store_handle, mongo_client):
    """Only included collections that are not excluded are emptied."""
    db = mongo_client[MONGO_DATABASE]
    db.cart_items.insert_one({"sku": "A"})
    db.cart_archive.insert_one({"sku": "B"})
    db.currencies.insert_one({"code": "EUR"})
    resetter = MongoStateResetter(include="cart_*", exclude="cart_archive")
    try:
        resetter.reset(store_handle)
    finally:
        resetter.close()
    assert db.cart_items.count_documents({}) == 0
    assert db.cart_archive.count_documents({}) == 1
    assert db.currencies.count_documents({}) == 1


def test_views_are_left_alone(store_handle, mongo_client):
    """A view over a collection is not a reset target."""
    db = mongo_client[MONGO_DATABASE]
    db.orders.insert_one({"total": 12})
    db.command({"create": "big_orders", "viewOn": "orders", "pipeline": []})
    resetter = MongoStateResetter()
    try:
        resetter.reset(store_handle)
    finally:
        resetter.close()
    assert db.orders.count_documents({}) == 0
    assert "big_orders" in db.list_collection_names()
