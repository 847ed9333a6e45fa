"""
Server state threaded through the bootstrap orchestrator and request adapter.

One ServerState exists per process (listener mode) or per cold start
(serverless mode). It is attached to app.state.server_state of the pipeline
it describes; nothing reads it from a module global.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from empire.api.errors import StateTransitionError

if TYPE_CHECKING:
    from empire.api.capabilities import CapabilityResult
    from empire.api.registrar import RouteTable


class ServerPhase(str, Enum):
    STARTING = "starting"
    PROBING_DEPENDENCIES = "probing_dependencies"
    REGISTERING_ROUTES = "registering_routes"
    NORMAL_READY = "normal_ready"
    EMERGENCY_READY = "emergency_ready"
    DEGRADED = "degraded"


# Both ready phases sit on the same step after route registration.
_STEP = {
    ServerPhase.STARTING: 0,
    ServerPhase.PROBING_DEPENDENCIES: 1,
    ServerPhase.REGISTERING_ROUTES: 2,
    ServerPhase.NORMAL_READY: 3,
    ServerPhase.EMERGENCY_READY: 3,
}

TERMINAL_PHASES = frozenset(
    {ServerPhase.NORMAL_READY, ServerPhase.EMERGENCY_READY, ServerPhase.DEGRADED}
)

_MODES = {
    ServerPhase.NORMAL_READY: "normal",
    ServerPhase.EMERGENCY_READY: "emergency-startup",
    ServerPhase.DEGRADED: "fallback",
}


@dataclass
class DependencyStatus:
    """Result of the latest liveness check for one external dependency."""

    name: str
    reachable: bool
    last_checked_at: datetime
    latency_ms: float = 0.0
    error: Optional[str] = None


@dataclass
class ServerState:
    """Startup state machine plus everything the health endpoints report."""

    environment: str = "production"
    phase: ServerPhase = ServerPhase.STARTING
    degraded_reason: Optional[str] = None
    dependencies: Dict[str, DependencyStatus] = field(default_factory=dict)
    route_table: Optional["RouteTable"] = None
    capabilities: List["CapabilityResult"] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)

    def advance(self, phase: ServerPhase) -> None:
        """Move exactly one step forward. Degraded is entered via mark_degraded()."""
        if self.phase is ServerPhase.DEGRADED:
            raise StateTransitionError(f"cannot leave degraded state for {phase.value}")
        if phase is ServerPhase.DEGRADED:
            raise StateTransitionError("use mark_degraded() to enter the degraded state")
        if _STEP[phase] != _STEP[self.phase] + 1:
            raise StateTransitionError(f"illegal transition {self.phase.value} -> {phase.value}")
        self.phase = phase

    def mark_degraded(self, reason: str) -> None:
        """Enter the degraded state from any phase. Traffic is still served."""
        if self.phase is not ServerPhase.DEGRADED:
            self.phase = ServerPhase.DEGRADED
            self.degraded_reason = reason

    @property
    def degraded(self) -> bool:
        return self.phase is ServerPhase.DEGRADED

    @property
    def is_ready(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def mode(self) -> str:
        return _MODES.get(self.phase, "starting")

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time
