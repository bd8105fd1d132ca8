"""Fixtures for driving the orchestration layer without Docker."""

from __future__ import annotations

import threading
from collections.abc import Iterator

import pytest

from ephemera.adapters.backends import InMemoryBackend
from ephemera.domain.descriptor import ResourceDescriptor, ResourceKind
from ephemera.interfaces.backend import LaunchedResource
from ephemera.orchestration.readiness import ProbeSettings, ReadinessProbe
from ephemera.orchestration.scope import ScopeCoordinator

## adjust pylint to deal with fixtures
# pylint: disable=redefined-outer-name


class FakeTime:
    """Injectable sleep/monotonic pair; sleeping only moves the fake clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def monotonic(self) -> float:
        return self.now


class GatedBackend(InMemoryBackend):
    """In-memory backend whose launches hang until `gate` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()

    def launch(self, descriptor: ResourceDescriptor) -> LaunchedResource:
        self.gate.wait(30.0)
        return super().launch(descriptor)


def memory_descriptor(
    name: str = "db", kind: ResourceKind = ResourceKind.DATABASE
) -> ResourceDescriptor:
    """Descriptor for the in-memory backend."""
    return ResourceDescriptor(name=name, kind=kind, image="memory:1", port=5432)


@pytest.fixture
def fake_time() -> FakeTime:
    """Fake clock for readiness probes."""
    return FakeTime()


@pytest.fixture
def fast_probe(fake_time: FakeTime) -> ReadinessProbe:
    """Probe that never really sleeps (5 attempts, 1s interval on the fake clock)."""
    return ReadinessProbe(
        ProbeSettings(attempts=5, interval=1.0),
        sleep=fake_time.sleep,
        monotonic=fake_time.monotonic,
    )


@pytest.fixture
def memory_backend() -> InMemoryBackend:
    """In-memory backend with launch counting."""
    return InMemoryBackend()


@pytest.fixture
def coordinator(
    memory_backend: InMemoryBackend, fast_probe: ReadinessProbe
) -> Iterator[ScopeCoordinator]:
    """Coordinator over the in-memory backend; drained at teardown."""
    coord = ScopeCoordinator(memory_backend, probe=fast_probe, acquire_timeout=10.0)
    try:
        yield coord
    finally:
        coord.shutdown()
