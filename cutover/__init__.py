"""
cutover - blue/green deployment orchestrator

Registers a new revision next to the one serving traffic, gates it on health
probes, switches traffic atomically and verifies it through the live path.
Any failure after the backend was touched rolls the environment back to the
revision that served before the attempt.

Key Features:
- Explicit deployment state machine with typed failure kinds
- Persisted per-environment deployment records and leases
- ECS cluster adapter and ALB traffic controller (boto3)
- HTTP health probing (httpx)
- Structured logging and Prometheus metrics
- CLI with failure-specific exit codes

Usage:
    import asyncio

    from cutover import load_config
    from cutover.factory import build_orchestrator

    orchestrator = build_orchestrator(load_config("cutover.yaml"))
    report = asyncio.run(
        orchestrator.deploy("staging", {"family": "web", "image": "web:1.4.2"})
    )
"""

__version__ = "0.1.0"

from .config import CutoverConfig, load_config
from .enums import DeploymentState, FailureKind, ProbeOutcome, RecordStatus
from .exceptions import (
    CutoverError,
    DeploymentCancelledError,
    DeploymentInProgressError,
    InvalidSplitError,
    NoRollbackTargetError,
    RegistrationError,
    RollbackFailedError,
    ServiceUpdateError,
    TimedOutError,
    UnhealthyError,
)
from .models import DeploymentRecord, DeploymentReport, Revision, RollbackReport, TrafficSplit
from .orchestrator import DeploymentOrchestrator
from .revisions import RevisionSpec
from .rollback import RollbackCoordinator

__all__ = [
    "CutoverConfig",
    "CutoverError",
    "DeploymentCancelledError",
    "DeploymentInProgressError",
    "DeploymentOrchestrator",
    "DeploymentRecord",
    "DeploymentReport",
    "DeploymentState",
    "FailureKind",
    "InvalidSplitError",
    "NoRollbackTargetError",
    "ProbeOutcome",
    "RecordStatus",
    "RegistrationError",
    "Revision",
    "RevisionSpec",
    "RollbackCoordinator",
    "RollbackFailedError",
    "RollbackReport",
    "ServiceUpdateError",
    "TimedOutError",
    "TrafficSplit",
    "UnhealthyError",
    "load_config",
]
