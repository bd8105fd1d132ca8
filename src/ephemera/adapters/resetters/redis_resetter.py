"""Emptying Redis between tests.

Keys are removed with ``SCAN`` + ``DEL`` in batches rather than
``FLUSHDB``: some managed images rename or disable the flush commands, and
excluded patterns must survive.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
from collections.abc import Iterable
from typing import TYPE_CHECKING

import redis

from ephemera.adapters.resetters.policy import as_names
from ephemera.domain.errors import ResetFailure
from ephemera.interfaces.state_resetter import StateResetter

if TYPE_CHECKING:
    from ephemera.orchestration.lifecycle import ResourceHandle

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500


class RedisStateResetter(StateResetter):
    """Deletes every key matching `include` except those matching `exclude`.

    Unlike a SQL reset this is not transactional; a failed reset leaves
    some keys behind and the next reset removes them.

    Args:
        include: Glob patterns of keys to delete (``*`` by default); a single
            string is one pattern.
        exclude: Glob patterns of keys to keep.
        batch_size: Keys per ``SCAN`` page and per ``DEL`` call.
    """

    def __init__(
        self,
        include: Iterable[str] | str = ("*",),
        exclude: Iterable[str] | str = (),
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.include = as_names(include) or ()
        self.exclude = as_names(exclude) or ()
        self.batch_size = batch_size
        self._lock = threading.Lock()
        self._clients: dict[str, redis.Redis] = {}

    def _client(self, url: str) -> redis.Redis:
        with self._lock:
            if url not in self._clients:
                self._clients[url] = redis.Redis.from_url(url, decode_responses=True)
            return self._clients[url]

    def _excluded(self, key: str) -> bool:
        return any(fnmatch.fnmatchcase(key, pattern) for pattern in self.exclude)

    def prepare(self, handle: ResourceHandle) -> None:
        self._client(handle.resource.connection_url)

    def reset(self, handle: ResourceHandle) -> None:
        client = self._client(handle.resource.connection_url)
        deleted = 0
        try:
            seen: set[str] = set()
            batch: list[str] = []
            for pattern in self.include:
                for key in client.scan_iter(match=pattern, count=self.batch_size):
                    if key in seen or self._excluded(key):
                        continue
                    seen.add(key)
                    batch.append(key)
                    if len(batch) >= self.batch_size:
                        deleted += client.delete(*batch)
                        batch = []
            if batch:
                deleted += client.delete(*batch)
        except redis.RedisError as exc:
            logger.error("Reset of %s failed: %s", handle.name, exc)
            raise ResetFailure(handle.name, str(exc)) from exc
        logger.debug("Reset %s (%d keys deleted)", handle.name, deleted)

    def close(self) -> None:
        with self._lock:
            clients, self._clients = self._clients, {}
        for client in clients.values():
            client.close()
