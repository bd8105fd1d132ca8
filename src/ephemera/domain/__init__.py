"""Domain types for ephemeral test resources."""

from .descriptor import LifetimePolicy, ResourceDescriptor, ResourceKind
from .errors import (
    InvalidLifecycleTransition,
    OrchestrationError,
    ReadinessTimeout,
    ResetFailure,
    ResetPolicyError,
    ResourceNotReady,
    ResourceStartupFailure,
    SchemaInitializationFailure,
    SchemaScriptMissing,
    ScopeAcquireTimeout,
    ScopeReleaseError,
    TimeControllerMisuse,
)
from .lifecycle import LifecycleState

__all__ = [
    "InvalidLifecycleTransition",
    "LifecycleState",
    "LifetimePolicy",
    "OrchestrationError",
    "ReadinessTimeout",
    "ResetFailure",
    "ResetPolicyError",
    "ResourceDescriptor",
    "ResourceKind",
    "ResourceNotReady",
    "ResourceStartupFailure",
    "SchemaInitializationFailure",
    "SchemaScriptMissing",
    "ScopeAcquireTimeout",
    "ScopeReleaseError",
    "TimeControllerMisuse",
]
