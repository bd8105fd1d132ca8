"""Emptying MongoDB collections between tests.

Documents are removed with ``delete_many({})`` rather than by dropping the
collection: indexes, validators and capped-collection options created with
the schema survive the reset.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING

import pymongo
from pymongo.errors import PyMongoError

from ephemera.adapters.resetters.policy import as_names
from ephemera.domain.errors import ResetFailure
from ephemera.interfaces.state_resetter import StateResetter

if TYPE_CHECKING:
    from pymongo.database import Database

    from ephemera.orchestration.lifecycle import ResourceHandle

logger = logging.getLogger(__name__)

SYSTEM_PREFIX = "system."


class MongoStateResetter(StateResetter):
    """Deletes the documents of every collection matching `include` except
    those matching `exclude`.

    Views and ``system.*`` collections are never touched. Like the Redis
    reset this is not transactional.

    Args:
        include: Glob patterns of collections to empty (``*`` by default); a
            single string is one pattern.
        exclude: Glob patterns of collections to keep.
        database: Database to reset; defaults to the one named in the
            connection URL.
    """

    def __init__(
        self,
        include: Iterable[str] | str = ("*",),
        exclude: Iterable[str] | str = (),
        *,
        database: str | None = None,
    ) -> None:
        self.include = as_names(include) or ()
        self.exclude = as_names(exclude) or ()
        self.database = database
        self._lock = threading.Lock()
        self._clients: dict[str, pymongo.MongoClient] = {}

    def _client(self, url: str) -> pymongo.MongoClient:
        with self._lock:
            if url not in self._clients:
                self._clients[url] = pymongo.MongoClient(url)
            return self._clients[url]

    def _database(self, url: str) -> Database:
        client = self._client(url)
        if self.database is not None:
            return client[self.database]
        return client.get_default_database()

    def selects(self, name: str) -> bool:
        """True if the reset empties the collection called `name`."""
        if name.startswith(SYSTEM_PREFIX):
            return False
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in self.exclude):
            return False
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.include)

    def prepare(self, handle: ResourceHandle) -> None:
        self._client(handle.resource.connection_url)

    def reset(self, handle: ResourceHandle) -> None:
        deleted = 0
        emptied = 0
        try:
            database = self._database(handle.resource.connection_url)
            names = database.list_collection_names(filter={"type": "collection"})
            for name in sorted(names):
                if not self.selects(name):
                    continue
                deleted += database[name].delete_many({}).deleted_count
                emptied += 1
        except PyMongoError as exc:
            logger.error("Reset of %s failed: %s", handle.name, exc)
            raise ResetFailure(handle.name, str(exc)) from exc
        logger.debug(
            "Reset %s (%d documents in %d collections)", handle.name, deleted, emptied
        )

    def close(self) -> None:
        with self._lock:
            clients, self._clients = self._clients, {}
        for client in clients.values():
            client.close()
