"""Orchestration of ephemeral test dependencies.

Starts resources, gates on readiness, applies schema, shares scopes between
suites and hands each test a clean `TestContext`. Depends on the ports in
`ephemera.interfaces`; concrete backends, health checks and resetters come
from `ephemera.adapters`.
"""

from .clock import SystemClock, TimeController
from .context import TestContext
from .lifecycle import ContainerLifecycleManager, ResourceHandle
from .readiness import ProbeSettings, ReadinessProbe
from .registry import ConnectionRegistry
from .schema import AlembicSchemaInitializer, SchemaScript, SqlScriptInitializer
from .scope import (
    ManagedResource,
    ResourceSet,
    ScopeCoordinator,
    ScopeHandle,
    ScopeState,
)

__all__ = [
    "AlembicSchemaInitializer",
    "ConnectionRegistry",
    "ContainerLifecycleManager",
    "ManagedResource",
    "ProbeSettings",
    "ReadinessProbe",
    "ResourceHandle",
    "ResourceSet",
    "SchemaScript",
    "ScopeCoordinator",
    "ScopeHandle",
    "ScopeState",
    "SqlScriptInitializer",
    "SystemClock",
    "TestContext",
    "TimeController",
]
