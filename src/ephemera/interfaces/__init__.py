"""Ports of the orchestration layer.

Each module defines an abstract base class; concrete implementations live
under `ephemera.adapters`.
"""

from .backend import ContainerBackend, LaunchedResource
from .clock import Clock
from .health_check import HealthCheck
from .redactor import Redactor, RedactorMode
from .schema_initializer import SchemaInitializer
from .state_resetter import StateResetter

__all__ = [
    "Clock",
    "ContainerBackend",
    "HealthCheck",
    "LaunchedResource",
    "Redactor",
    "RedactorMode",
    "SchemaInitializer",
    "StateResetter",
]
