"""
Cluster adapters.

A ClusterAdapter registers immutable revisions with a container backend and
schedules them in an environment. Adapters never retry; the orchestrator
decides what a failure means.
"""

import builtins
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from ..enums import StabilityOutcome
from ..exceptions import ServiceUpdateError
from ..faults import FailurePlan
from ..logger import get_logger
from ..models import DeploymentRecord, Revision
from ..revisions import RevisionSpec, parse_revision_spec

logger = get_logger(__name__)


class ClusterAdapter(ABC):
    """Abstract container backend."""

    @abstractmethod
    async def current_revision(self, environment: str) -> Revision | None:
        """Revision currently scheduled in the environment, None if nothing runs."""

    @abstractmethod
    async def register_revision(self, spec: RevisionSpec | Mapping[str, Any]) -> Revision:
        """Register a spec and return the immutable Revision.

        Raises RegistrationError for an invalid spec or a backend rejection.
        """

    @abstractmethod
    async def update_service(self, environment: str, revision: Revision) -> None:
        """Start scheduling ``revision`` next to whatever already runs.

        Raises ServiceUpdateError when the backend refuses.
        """

    @abstractmethod
    async def retire_revision(self, environment: str, revision: Revision) -> None:
        """Stop scheduling ``revision`` in the environment. No-op if it is not running."""

    @abstractmethod
    async def wait_stable(self, environment: str, timeout: float) -> StabilityOutcome:
        """Wait until the last scheduled revision converged; TIMED_OUT rather than raising."""

    @abstractmethod
    async def list_revisions(self, environment: str) -> builtins.list[Revision]:
        """Revisions currently scheduled in the environment."""


class InMemoryClusterAdapter(ClusterAdapter):
    """Dictionary-backed cluster used by the simulated backend and tests."""

    def __init__(self):
        self.registered: builtins.dict[str, Revision] = {}
        self.deployed: builtins.dict[str, builtins.dict[str, Revision]] = {}
        self.current: builtins.dict[str, str] = {}
        self.stability: builtins.dict[str, StabilityOutcome] = {}
        self.failures = FailurePlan()
        self.calls: builtins.list[tuple[str, ...]] = []

    def seed(self, environment: str, revision: Revision, current: bool = True) -> None:
        """Mark ``revision`` as registered and running in ``environment``."""
        self.registered[revision.revision_id] = revision
        self.deployed.setdefault(environment, {})[revision.revision_id] = revision
        if current:
            self.current[environment] = revision.revision_id

    def seed_from_record(self, record: DeploymentRecord) -> None:
        """Recreate what a persisted record says is running."""
        for revision in (record.previous, record.candidate):
            if revision is not None:
                self.seed(record.environment, revision, current=False)
        if record.active is not None:
            self.seed(record.environment, record.active)

    def is_deployed(self, environment: str, revision_id: str) -> bool:
        return revision_id in self.deployed.get(environment, {})

    async def current_revision(self, environment: str) -> Revision | None:
        self.calls.append(("current_revision", environment))
        self.failures.check("current_revision", environment)
        revision_id = self.current.get(environment)
        if revision_id is None:
            return None
        return self.deployed[environment][revision_id]

    async def register_revision(self, spec: RevisionSpec | Mapping[str, Any]) -> Revision:
        spec = parse_revision_spec(spec)
        revision_id = spec.revision_id
        self.calls.append(("register_revision", revision_id))
        self.failures.check("register_revision", revision_id=revision_id)

        existing = self.registered.get(revision_id)
        if existing is not None:
            return existing

        revision = spec.to_revision(backend_ref=f"memory://{spec.family}/{revision_id[:12]}")
        self.registered[revision_id] = revision
        logger.debug("Revision registered", revision=revision.short_id, family=spec.family)
        return revision

    async def update_service(self, environment: str, revision: Revision) -> None:
        self.calls.append(("update_service", environment, revision.revision_id))
        self.failures.check("update_service", environment, revision.revision_id)
        if revision.revision_id not in self.registered:
            raise ServiceUpdateError(
                f"Revision {revision.short_id} is not registered",
                details={"environment": environment, "revision_id": revision.revision_id},
            )
        self.deployed.setdefault(environment, {})[revision.revision_id] = revision
        self.current[environment] = revision.revision_id

    async def retire_revision(self, environment: str, revision: Revision) -> None:
        self.calls.append(("retire_revision", environment, revision.revision_id))
        self.failures.check("retire_revision", environment, revision.revision_id)
        self.deployed.get(environment, {}).pop(revision.revision_id, None)
        if self.current.get(environment) == revision.revision_id:
            del self.current[environment]

    async def wait_stable(self, environment: str, timeout: float) -> StabilityOutcome:
        self.calls.append(("wait_stable", environment))
        self.failures.check("wait_stable", environment)
        return self.stability.get(environment, StabilityOutcome.STABLE)

    async def list_revisions(self, environment: str) -> builtins.list[Revision]:
        self.calls.append(("list_revisions", environment))
        return list(self.deployed.get(environment, {}).values())
