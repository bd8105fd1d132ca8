"""File-backed SQLite databases as resources.

Lets the whole orchestration flow (probe, schema scripts, resets) run
without Docker. Session databases live in a temporary directory that is
removed on termination; persistent ones live in the state directory and
survive across runs.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.engine import URL

from ephemera import config
from ephemera.domain.descriptor import LifetimePolicy
from ephemera.interfaces.backend import ContainerBackend, LaunchedResource

if TYPE_CHECKING:
    from ephemera.domain.descriptor import ResourceDescriptor

logger = logging.getLogger(__name__)

SQLITE_HOST = "localhost"  # pragma: no mutate


def sqlite_url(path: Path) -> str:
    """``sqlite+pysqlite`` URL of a database file."""
    return str(URL.create("sqlite+pysqlite", database=str(path)))


class SqliteFileBackend(ContainerBackend):
    """Provisions one SQLite file per descriptor.

    The descriptor's image and port are ignored; only its name and lifetime
    matter.

    Args:
        directory: Where persistent databases are kept. Defaults to the
            configured state directory.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self._directory = Path(directory) if directory is not None else None

    @property
    def directory(self) -> Path:
        """Directory of persistent database files."""
        if self._directory is None:
            self._directory = config.get_state_dir()
        self._directory.mkdir(parents=True, exist_ok=True)
        return self._directory

    def launch(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        if descriptor.lifetime is LifetimePolicy.PERSISTENT:
            path = self.directory / f"{descriptor.container_name}.db"
            owned_dir = None
        else:
            owned_dir = Path(tempfile.mkdtemp(prefix=f"ephemera-{descriptor.name}-"))
            path = owned_dir / f"{descriptor.name}.db"
        path.touch(exist_ok=True)
        logger.debug("SQLite resource %s at %s", descriptor.name, path)
        return LaunchedResource(
            host=SQLITE_HOST,
            port=0,
            connection_url=sqlite_url(path),
            container_id=str(path),
            native=owned_dir,
        )

    def terminate(self, resource: LaunchedResource) -> None:
        if resource.native is not None:
            shutil.rmtree(resource.native, ignore_errors=True)
        elif resource.container_id is not None:
            Path(resource.container_id).unlink(missing_ok=True)
