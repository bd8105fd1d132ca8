"""Exceptions raised by the orchestration layer.

Infrastructure failures (`ResourceStartupFailure`, `ReadinessTimeout`,
`SchemaScriptMissing`, `SchemaInitializationFailure`) are fatal to a whole
scope. `ResetFailure` is fatal to the current test only.
"""

from __future__ import annotations

from pathlib import Path


class OrchestrationError(Exception):
    """Base class for all orchestration errors."""


class ResourceStartupFailure(OrchestrationError):
    """The backend could not launch a resource.

    Attributes:
        resource (str): Name of the resource.
        reason (str): Short description of the underlying error.
    """

    def __init__(self, resource: str, reason: str):
        super().__init__(f"Resource '{resource}' failed to start: {reason}")
        self.resource = resource
        self.reason = reason


class ReadinessTimeout(OrchestrationError):
    """A resource did not become ready within its retry budget.

    Attributes:
        resource (str): Name of the resource.
        attempts (int): Number of health checks performed.
        elapsed (float): Seconds spent polling.
        last_error (BaseException | None): Last error seen by the health check.
    """

    def __init__(
        self,
        resource: str,
        attempts: int,
        elapsed: float,
        last_error: BaseException | None,
    ):
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "n/a"
        super().__init__(
            f"Resource '{resource}' not ready after {attempts} attempt(s) "
            f"({elapsed:.1f}s); last error: {detail}"
        )
        self.resource = resource
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_error = last_error


class SchemaScriptMissing(OrchestrationError):
    """A schema script named in the ordered script list does not exist.

    Attributes:
        path (Path): The full path that was expected.
    """

    def __init__(self, path: Path):
        super().__init__(f"Schema script file does not exist: {path}")
        self.path = path


class SchemaInitializationFailure(OrchestrationError):
    """Applying schema to a ready resource failed."""

    def __init__(self, resource: str, reason: str):
        super().__init__(f"Schema initialization failed for '{resource}': {reason}")
        self.resource = resource
        self.reason = reason


class ResetFailure(OrchestrationError):
    """Restoring the baseline state failed; the transaction was rolled back."""

    def __init__(self, resource: str, reason: str):
        super().__init__(f"Reset of '{resource}' failed: {reason}")
        self.resource = resource
        self.reason = reason


class ResetPolicyError(OrchestrationError):
    """A reset policy refers to tables that do not exist."""


class TimeControllerMisuse(OrchestrationError):
    """The virtual clock was driven in a way that breaks time ordering."""


class ResourceNotReady(OrchestrationError):
    """A connection was requested for a resource that is not (or no longer) ready."""

    def __init__(self, resource: str, state: str):
        super().__init__(f"Resource '{resource}' is not ready (state: {state})")
        self.resource = resource
        self.state = state


class InvalidLifecycleTransition(OrchestrationError):
    """A resource was asked to move between two incompatible states."""

    def __init__(self, resource: str, current: str, target: str):
        super().__init__(
            f"Resource '{resource}' cannot move from '{current}' to '{target}'"
        )
        self.resource = resource
        self.current = current
        self.target = target


class ScopeReleaseError(OrchestrationError):
    """A scope handle was released more times than it was acquired."""


class ScopeAcquireTimeout(OrchestrationError):
    """Waiting for another acquirer to finish allocating a scope timed out."""

    def __init__(self, scope: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.1f}s waiting for scope '{scope}'")
        self.scope = scope
        self.timeout = timeout
