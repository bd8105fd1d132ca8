"""Concrete `ContainerBackend` implementations.

- `TestcontainersBackend`: Docker containers (Testcontainers for session
  resources, the Docker SDK for persistent ones).
- `SqliteFileBackend`: file-backed SQLite databases, no Docker needed.
- `InMemoryBackend`: scripted fake for tests of the orchestration layer.
"""

from .memory import InMemoryBackend
from .sqlite import SqliteFileBackend
from .testcontainers_backend import TestcontainersBackend

__all__ = ["InMemoryBackend", "SqliteFileBackend", "TestcontainersBackend"]
