"""Data models for blue/green deployments."""

import builtins
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .enums import (
    DeploymentState,
    FailureKind,
    ProbeOutcome,
    RecordStatus,
)
from .exceptions import CutoverError, InvalidSplitError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class PortMapping:
    """Container port mapping."""

    container_port: int
    host_port: int | None = None
    protocol: str = "tcp"

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "container_port": self.container_port,
            "host_port": self.host_port,
            "protocol": self.protocol,
        }


@dataclass(frozen=True)
class LogTarget:
    """Where the revision's container logs are shipped."""

    driver: str = "awslogs"
    options: builtins.dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> builtins.dict[str, Any]:
        return {"driver": self.driver, "options": dict(self.options)}


@dataclass(frozen=True)
class Revision:
    """An immutable, registered deployable unit.

    ``revision_id`` is the content address of the spec the revision was
    registered from, so two registrations of identical specs share an id.
    ``backend_ref`` is whatever the cluster backend uses to refer to it
    (a task-definition ARN on ECS).
    """

    revision_id: str
    family: str
    image: str
    cpu: int
    memory: int
    port_mappings: builtins.tuple[PortMapping, ...] = ()
    log_target: LogTarget | None = None
    environment: builtins.dict[str, str] = field(default_factory=dict)
    backend_ref: str | None = None
    registered_at: datetime | None = None

    @property
    def short_id(self) -> str:
        return self.revision_id[:12]

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "revision_id": self.revision_id,
            "family": self.family,
            "image": self.image,
            "cpu": self.cpu,
            "memory": self.memory,
            "port_mappings": [p.to_dict() for p in self.port_mappings],
            "log_target": self.log_target.to_dict() if self.log_target else None,
            "environment": dict(self.environment),
            "backend_ref": self.backend_ref,
            "registered_at": _iso(self.registered_at),
        }

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "Revision":
        log_target = data.get("log_target")
        return cls(
            revision_id=data["revision_id"],
            family=data["family"],
            image=data["image"],
            cpu=int(data["cpu"]),
            memory=int(data["memory"]),
            port_mappings=tuple(PortMapping(**p) for p in data.get("port_mappings", [])),
            log_target=LogTarget(**log_target) if log_target else None,
            environment=dict(data.get("environment") or {}),
            backend_ref=data.get("backend_ref"),
            registered_at=_parse_dt(data.get("registered_at")),
        )


@dataclass(frozen=True)
class ProbeTarget:
    """An endpoint to probe on behalf of a revision."""

    revision_id: str
    url: str


@dataclass
class HealthStatus:
    """Result of probing one target. Never persisted."""

    target: str
    outcome: ProbeOutcome
    checked_at: datetime = field(default_factory=utcnow)
    detail: str = ""
    url: str = ""
    attempts: int = 0

    @property
    def passed(self) -> bool:
        return self.outcome == ProbeOutcome.HEALTHY


@dataclass(frozen=True)
class TrafficSplit:
    """Weights (percent) assigned to at most two revisions of an environment."""

    environment: str
    weights: builtins.dict[str, int]

    def __post_init__(self):
        if not self.weights:
            raise InvalidSplitError(
                f"Traffic split for {self.environment} names no revisions"
            )
        if len(self.weights) > 2:
            raise InvalidSplitError(
                f"Traffic split for {self.environment} names {len(self.weights)} revisions, at most 2 allowed",
                details={"weights": dict(self.weights)},
            )
        for revision_id, weight in self.weights.items():
            if isinstance(weight, bool) or not isinstance(weight, int):
                raise InvalidSplitError(
                    f"Weight for {revision_id} must be an integer, got {weight!r}"
                )
            if weight < 0:
                raise InvalidSplitError(f"Weight for {revision_id} is negative: {weight}")
        total = sum(self.weights.values())
        if total != 100:
            raise InvalidSplitError(
                f"Traffic weights for {self.environment} sum to {total}, expected 100",
                details={"weights": dict(self.weights)},
            )

    @classmethod
    def all_to(cls, environment: str, revision_id: str) -> "TrafficSplit":
        return cls(environment=environment, weights={revision_id: 100})

    def weight_of(self, revision_id: str) -> int:
        return self.weights.get(revision_id, 0)

    @property
    def serving(self) -> str | None:
        """Revision receiving all traffic, if exactly one does."""
        for revision_id, weight in self.weights.items():
            if weight == 100:
                return revision_id
        return None

    def to_dict(self) -> builtins.dict[str, Any]:
        return {"environment": self.environment, "weights": dict(self.weights)}


@dataclass
class DeploymentRecord:
    """Persisted per-environment deployment state."""

    environment: str
    active: Revision | None = None
    previous: Revision | None = None
    status: RecordStatus = RecordStatus.PENDING
    deployed_at: datetime | None = None
    candidate: Revision | None = None
    updated_at: datetime = field(default_factory=utcnow)
    last_outcome: builtins.dict[str, Any] | None = None

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "environment": self.environment,
            "active": self.active.to_dict() if self.active else None,
            "previous": self.previous.to_dict() if self.previous else None,
            "status": self.status.value,
            "deployed_at": _iso(self.deployed_at),
            "candidate": self.candidate.to_dict() if self.candidate else None,
            "updated_at": _iso(self.updated_at),
            "last_outcome": self.last_outcome,
        }

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "DeploymentRecord":
        def revision(key: str) -> Revision | None:
            value = data.get(key)
            return Revision.from_dict(value) if value else None

        return cls(
            environment=data["environment"],
            active=revision("active"),
            previous=revision("previous"),
            status=RecordStatus(data.get("status", RecordStatus.PENDING.value)),
            deployed_at=_parse_dt(data.get("deployed_at")),
            candidate=revision("candidate"),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
            last_outcome=data.get("last_outcome"),
        )


def _error_dict(error: CutoverError | None) -> builtins.dict[str, Any] | None:
    return error.to_dict() if error else None


@dataclass
class RollbackReport:
    """Terminal outcome of restoring a previous revision."""

    environment: str
    target: Revision | None
    state: DeploymentState
    states: builtins.list[DeploymentState] = field(default_factory=list)
    error: CutoverError | None = None
    traffic: TrafficSplit | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == DeploymentState.ROLLED_BACK

    @property
    def serving(self) -> str | None:
        return self.traffic.serving if self.traffic else None

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else FailureKind.ROLLBACK_FAILED.exit_code

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "environment": self.environment,
            "target": self.target.revision_id if self.target else None,
            "state": self.state.value,
            "states": [s.value for s in self.states],
            "error": _error_dict(self.error),
            "traffic": self.traffic.to_dict() if self.traffic else None,
            "serving": self.serving,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


@dataclass
class DeploymentReport:
    """Terminal outcome of one deployment attempt, kept for audit."""

    deployment_id: str
    environment: str
    revision_id: str
    image: str
    state: DeploymentState = DeploymentState.IDLE
    states: builtins.list[DeploymentState] = field(default_factory=list)
    error: CutoverError | None = None
    rollback: RollbackReport | None = None
    serving: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == DeploymentState.SUCCEEDED

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        if self.state == DeploymentState.ROLLBACK_FAILED:
            return FailureKind.ROLLBACK_FAILED.exit_code
        if self.error is not None:
            return self.error.kind.exit_code
        return FailureKind.UNEXPECTED.exit_code

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "environment": self.environment,
            "revision_id": self.revision_id,
            "image": self.image,
            "state": self.state.value,
            "states": [s.value for s in self.states],
            "error": _error_dict(self.error),
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "serving": self.serving,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }
