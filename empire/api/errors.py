"""
Failure taxonomy for bootstrap and request adaptation.

Every class except UnrecoverableStartupFailure is non-fatal: it is caught at
the boundary of the component that raised it and turned into a status flag,
a fallback, or a structured HTTP response.
"""

from typing import Optional


class EmpireServerError(Exception):
    """Base class for all server errors."""


class DependencyUnreachable(EmpireServerError):
    """An external dependency failed its liveness check."""

    def __init__(self, dependency: str, reason: str):
        self.dependency = dependency
        self.reason = reason
        super().__init__(f"{dependency} unreachable: {reason}")


class RouteRegistrationFailure(EmpireServerError):
    """A business route group could not be attached."""

    def __init__(self, group: str, cause: Optional[BaseException] = None):
        self.group = group
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"route group '{group}' failed to register{detail}")


class AuxiliaryServiceFailure(EmpireServerError):
    """A convenience layer (static assets, dev proxy) could not be wired."""

    def __init__(self, capability: str, reason: str):
        self.capability = capability
        self.reason = reason
        super().__init__(f"{capability}: {reason}")


class AdapterInvocationFailure(EmpireServerError):
    """The pipeline failed while handling one invocation."""


class UnrecoverableStartupFailure(EmpireServerError):
    """Fatal: the process cannot serve at all (e.g. the port cannot be bound)."""


class StateTransitionError(EmpireServerError):
    """Illegal move in the server state machine."""
