"""
Deployment Enums

Core enumeration types for the orchestrator state machine, persisted record
status, probe and stability outcomes, and failure kinds.
"""

from enum import Enum


class DeploymentState(Enum):
    """Orchestrator state machine states."""

    IDLE = "idle"
    REGISTERING = "registering"
    AWAITING_HEALTH = "awaiting_health"
    CUTTING_OVER = "cutting_over"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        DeploymentState.SUCCEEDED,
        DeploymentState.ROLLED_BACK,
        DeploymentState.ROLLBACK_FAILED,
        DeploymentState.FAILED,
    }
)


class RecordStatus(Enum):
    """Status stored on a DeploymentRecord."""

    PENDING = "pending"
    HEALTHY = "healthy"
    CUTOVER = "cutover"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class ProbeOutcome(Enum):
    """Health probe outcomes."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TIMED_OUT = "timed_out"


class StabilityOutcome(Enum):
    """Outcome of waiting for a service to converge."""

    STABLE = "stable"
    TIMED_OUT = "timed_out"


class FailureKind(Enum):
    """Failure kinds, each mapped to a distinct CLI exit code."""

    REGISTRATION = "registration"
    SERVICE_UPDATE = "service_update"
    UNHEALTHY = "unhealthy"
    TIMED_OUT = "timed_out"
    INVALID_SPLIT = "invalid_split"
    DEPLOYMENT_IN_PROGRESS = "deployment_in_progress"
    NO_ROLLBACK_TARGET = "no_rollback_target"
    ROLLBACK_FAILED = "rollback_failed"
    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"
    STATE_STORE = "state_store"
    UNEXPECTED = "unexpected"

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self]


EXIT_CODES = {
    FailureKind.UNEXPECTED: 1,
    FailureKind.CONFIGURATION: 3,
    FailureKind.STATE_STORE: 4,
    FailureKind.REGISTRATION: 10,
    FailureKind.SERVICE_UPDATE: 11,
    FailureKind.UNHEALTHY: 12,
    FailureKind.TIMED_OUT: 13,
    FailureKind.INVALID_SPLIT: 14,
    FailureKind.DEPLOYMENT_IN_PROGRESS: 15,
    FailureKind.NO_ROLLBACK_TARGET: 16,
    FailureKind.ROLLBACK_FAILED: 17,
    FailureKind.CANCELLED: 18,
}
