"""
Blue/green deployment orchestrator.

One deployment walks IDLE -> REGISTERING -> AWAITING_HEALTH -> CUTTING_OVER
-> VERIFYING -> SUCCEEDED. Once the backend has been touched, any failure
moves it to ROLLING_BACK and the RollbackCoordinator restores the revision
that was serving before the attempt. Failures before that end in FAILED. A
failed first deployment has nothing to restore and ends in ROLLBACK_FAILED.

After the outcome is known, revisions that neither serve traffic nor are the
rollback target are retired from the cluster.
"""

import builtins
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .cluster import ClusterAdapter
from .config import CutoverConfig, EnvironmentConfig
from .enums import DeploymentState, RecordStatus, StabilityOutcome
from .exceptions import (
    CutoverError,
    DeploymentCancelledError,
    NoRollbackTargetError,
    StateStoreError,
    TimedOutError,
)
from .health import HealthProber, probe_target
from .logger import deployment_context, get_logger, new_deployment_id
from .metrics import DeploymentMetrics
from .models import DeploymentRecord, DeploymentReport, Revision, RollbackReport, utcnow
from .revisions import RevisionSpec, parse_revision_spec
from .rollback import RollbackCoordinator, probe_failure
from .state import LeaseRegistry, StateStore, get_lease_registry
from .traffic import TrafficController

logger = get_logger(__name__)


@dataclass
class DeploymentAttempt:
    """Working state of one deployment."""

    report: DeploymentReport
    environment: EnvironmentConfig
    probe_timeout: float
    record: DeploymentRecord | None = None
    prior_previous: Revision | None = None
    prior_status: RecordStatus | None = None
    blue: Revision | None = None
    green: Revision | None = None
    backend_touched: bool = False


class DeploymentOrchestrator:
    """Run blue/green deployments, at most one per environment at a time."""

    def __init__(
        self,
        cluster: ClusterAdapter,
        prober: HealthProber,
        traffic: TrafficController,
        store: StateStore,
        config: CutoverConfig,
        leases: LeaseRegistry | None = None,
        metrics: DeploymentMetrics | None = None,
        rollback: RollbackCoordinator | None = None,
    ):
        self.cluster = cluster
        self.prober = prober
        self.traffic = traffic
        self.store = store
        self.config = config
        self.leases = leases or get_lease_registry()
        self.metrics = metrics
        self.rollback_coordinator = rollback or RollbackCoordinator(
            cluster, prober, traffic, store, config, leases=self.leases, metrics=metrics
        )
        self.deployment_history: deque = deque(maxlen=100)
        self._in_flight: builtins.set[str] = set()
        self._cancelled: builtins.set[str] = set()

    def cancel(self, environment: str) -> bool:
        """Request cancellation of the running deployment of ``environment``.

        Honoured at the next step boundary. Returns False if nothing runs.
        """
        if environment not in self._in_flight:
            return False
        self._cancelled.add(environment)
        logger.warning("Cancellation requested", environment=environment)
        return True

    def history(self, environment: str | None = None) -> builtins.list[DeploymentReport]:
        """Reports of finished deployments, oldest first."""
        return [r for r in self.deployment_history if environment in (None, r.environment)]

    async def rollback(self, environment: str) -> RollbackReport:
        """Restore the recorded previous revision of ``environment``."""
        return await self.rollback_coordinator.rollback(environment)

    async def deploy(
        self,
        environment: str,
        spec: RevisionSpec | Mapping[str, Any],
        probe_timeout: float | None = None,
    ) -> DeploymentReport:
        """Deploy ``spec`` to ``environment`` and return the terminal report.

        Raises ConfigurationError for an unknown environment and
        DeploymentInProgressError when the environment is busy; both before
        anything changes. Every other failure is reported, not raised.
        """
        env_config = self.config.environment(environment)
        deployment_id = new_deployment_id()
        lease = self.leases.acquire(
            environment, holder=f"deployment {deployment_id}", store=self.store
        )
        self._in_flight.add(environment)

        try:
            with deployment_context(environment, deployment_id):
                report = DeploymentReport(
                    deployment_id=deployment_id,
                    environment=environment,
                    revision_id="",
                    image=_image_of(spec),
                )
                attempt = DeploymentAttempt(
                    report=report,
                    environment=env_config,
                    probe_timeout=probe_timeout or self.config.health.timeout,
                )
                await self._run(attempt, spec)
        finally:
            self._in_flight.discard(environment)
            self._cancelled.discard(environment)
            lease.release()

        self.deployment_history.append(report)
        if self.metrics:
            self.metrics.record_deployment(report)
        return report

    async def _run(self, attempt: DeploymentAttempt, spec: RevisionSpec | Mapping[str, Any]) -> None:
        report = attempt.report
        self._transition(report, DeploymentState.IDLE)

        try:
            await self._register(attempt, spec)
            await self._await_health(attempt)
            await self._cut_over(attempt)
            await self._verify(attempt)
            self._succeed(attempt)
        except CutoverError as e:
            error = e
        except Exception as e:
            logger.exception("Unexpected error in deployment step", state=report.state.value)
            error = CutoverError(
                f"Unexpected error during {report.state.value}: {e}",
                details={"exception": type(e).__name__},
            )
        else:
            await self._retire_superseded(attempt)
            return

        await self._handle_failure(attempt, error)

    # Steps

    async def _register(
        self, attempt: DeploymentAttempt, spec: RevisionSpec | Mapping[str, Any]
    ) -> None:
        report = attempt.report
        name = report.environment
        self._transition(report, DeploymentState.REGISTERING)

        spec = parse_revision_spec(spec)
        report.revision_id = spec.revision_id
        report.image = spec.image
        self._checkpoint(name)

        record = self.store.load(name)
        if record is None:
            record = DeploymentRecord(environment=name)
        else:
            attempt.prior_status = record.status
        attempt.record = record
        attempt.prior_previous = record.previous
        attempt.blue = record.active or await self.cluster.current_revision(name)

        # Redeploying the active revision keeps the existing rollback target.
        if attempt.blue is not None and attempt.blue.revision_id != spec.revision_id:
            record.previous = attempt.blue
        record.status = RecordStatus.PENDING
        record.candidate = None
        self.store.save(record)

        attempt.green = await self.cluster.register_revision(spec)
        record.candidate = attempt.green
        self.store.save(record)

    async def _await_health(self, attempt: DeploymentAttempt) -> None:
        report = attempt.report
        name = report.environment
        health = self.config.health
        self._transition(report, DeploymentState.AWAITING_HEALTH)
        self._checkpoint(name)

        attempt.backend_touched = True
        await self.cluster.update_service(name, attempt.green)

        stability = await self.cluster.wait_stable(name, health.stability_timeout)
        if stability == StabilityOutcome.TIMED_OUT:
            raise TimedOutError(
                f"Service did not stabilise within {health.stability_timeout}s",
                details={"environment": name, "revision_id": attempt.green.revision_id},
            )

        status = await self.prober.probe(
            probe_target(attempt.environment.private_health_url, attempt.green, name),
            attempt.probe_timeout,
            health.interval,
        )
        if self.metrics:
            self.metrics.record_probe(name, status)
        if not status.passed:
            raise probe_failure(status, f"Revision {attempt.green.short_id}")

    async def _cut_over(self, attempt: DeploymentAttempt) -> None:
        report = attempt.report
        name = report.environment
        self._transition(report, DeploymentState.CUTTING_OVER)
        self._checkpoint(name)

        split = await self.traffic.set_split(name, {attempt.green.revision_id: 100})
        if self.metrics:
            self.metrics.record_split(split)

        attempt.record.status = RecordStatus.CUTOVER
        self.store.save(attempt.record)

    async def _verify(self, attempt: DeploymentAttempt) -> None:
        report = attempt.report
        name = report.environment
        self._transition(report, DeploymentState.VERIFYING)
        self._checkpoint(name)

        status = await self.prober.probe(
            probe_target(attempt.environment.public_health_url, attempt.green, name),
            attempt.probe_timeout,
            self.config.health.interval,
        )
        if self.metrics:
            self.metrics.record_probe(name, status)
        if not status.passed:
            raise probe_failure(status, f"Revision {attempt.green.short_id} behind the live path")

    def _succeed(self, attempt: DeploymentAttempt) -> None:
        report = attempt.report
        self._checkpoint(report.environment)

        record = attempt.record
        record.active = attempt.green
        record.candidate = None
        record.status = RecordStatus.HEALTHY
        record.deployed_at = utcnow()
        report.completed_at = utcnow()
        record.last_outcome = _outcome(report, DeploymentState.SUCCEEDED)
        self.store.save(record)

        self._transition(report, DeploymentState.SUCCEEDED)
        report.serving = attempt.green.revision_id

    # Failure path

    async def _handle_failure(self, attempt: DeploymentAttempt, error: CutoverError) -> None:
        report = attempt.report
        name = report.environment
        report.error = error
        logger.error(
            "Deployment step failed",
            state=report.state.value,
            kind=error.kind.value,
            error=error.message,
        )

        if not attempt.backend_touched:
            self._transition(report, DeploymentState.FAILED)
            report.serving = await self._serving(name)
            if attempt.record is not None:
                attempt.record.previous = attempt.prior_previous
                attempt.record.status = attempt.prior_status or RecordStatus.FAILED
                attempt.record.candidate = None
            self._finish(attempt)
            return

        self._transition(report, DeploymentState.ROLLING_BACK)
        record = attempt.record

        if attempt.blue is None:
            traffic = await self.rollback_coordinator.observe_split(name)
            report.rollback = RollbackReport(
                environment=name,
                target=None,
                state=DeploymentState.ROLLBACK_FAILED,
                states=[DeploymentState.ROLLING_BACK, DeploymentState.ROLLBACK_FAILED],
                error=NoRollbackTargetError(
                    f"First deployment of '{name}' failed and there is nothing to restore",
                    details={"environment": name},
                ),
                traffic=traffic,
                completed_at=utcnow(),
            )
            report.serving = report.rollback.serving
            self._transition(report, DeploymentState.ROLLBACK_FAILED)
            record.status = RecordStatus.FAILED
            await self._retire_candidate(attempt)
            self._finish(attempt)
            return

        rollback = await self.rollback_coordinator.restore(
            name, attempt.blue, attempt.environment.public_health_url
        )
        report.rollback = rollback
        report.serving = rollback.serving
        self._transition(report, rollback.state)

        if rollback.succeeded:
            record.active = attempt.blue
            record.previous = attempt.prior_previous
            record.candidate = None
            record.status = RecordStatus.ROLLED_BACK
        else:
            # previous still names blue so a manual rollback retries it.
            record.status = RecordStatus.FAILED
        await self._retire_candidate(attempt)
        self._finish(attempt)

    def _finish(self, attempt: DeploymentAttempt) -> None:
        report = attempt.report
        report.completed_at = utcnow()
        if attempt.record is None:
            return
        attempt.record.last_outcome = _outcome(report)
        try:
            self.store.save(attempt.record)
        except StateStoreError as e:
            logger.error(
                "Failed to persist deployment record",
                state=report.state.value,
                error=e.message,
            )

    async def _serving(self, environment: str) -> str | None:
        split = await self.rollback_coordinator.observe_split(environment)
        return split.serving if split else None

    # Retirement

    async def _retire_candidate(self, attempt: DeploymentAttempt) -> None:
        """Retire the failed revision once traffic is known to be elsewhere."""
        report = attempt.report
        green = attempt.green
        if green is None or report.serving is None or report.serving == green.revision_id:
            return
        keep = {r.revision_id for r in (attempt.blue, attempt.record.previous) if r is not None}
        if green.revision_id in keep:
            return
        await self._retire(report.environment, green)

    async def _retire_superseded(self, attempt: DeploymentAttempt) -> None:
        """Retire every revision other than the new active one and its rollback target."""
        name = attempt.report.environment
        keep = {attempt.green.revision_id}
        if attempt.record.previous is not None:
            keep.add(attempt.record.previous.revision_id)
        try:
            revisions = await self.cluster.list_revisions(name)
        except Exception as e:
            logger.warning("Cannot list revisions to retire", error=str(e))
            return
        for revision in revisions:
            if revision.revision_id not in keep:
                await self._retire(name, revision)

    async def _retire(self, environment: str, revision: Revision) -> None:
        try:
            await self.cluster.retire_revision(environment, revision)
        except Exception as e:
            logger.warning(
                "Failed to retire revision",
                environment=environment,
                revision=revision.short_id,
                error=str(e),
            )

    # Helpers

    def _checkpoint(self, environment: str) -> None:
        if environment in self._cancelled:
            raise DeploymentCancelledError(
                f"Deployment to '{environment}' cancelled by operator",
                details={"environment": environment},
            )

    def _transition(self, report: DeploymentReport, state: DeploymentState) -> None:
        report.state = state
        report.states.append(state)
        logger.info(
            "Deployment state changed",
            state=state.value,
            revision=report.revision_id[:12] or None,
            image=report.image or None,
        )


def _image_of(spec: RevisionSpec | Mapping[str, Any]) -> str:
    if isinstance(spec, RevisionSpec):
        return spec.image
    image = spec.get("image") if isinstance(spec, Mapping) else None
    return image if isinstance(image, str) else ""


def _outcome(
    report: DeploymentReport, state: DeploymentState | None = None
) -> builtins.dict[str, Any]:
    return {
        "operation": "deploy",
        "deployment_id": report.deployment_id,
        "revision_id": report.revision_id,
        "state": (state or report.state).value,
        "error": report.error.to_dict() if report.error else None,
        "rollback": report.rollback.state.value if report.rollback else None,
        "completed_at": report.completed_at.isoformat() if report.completed_at else None,
    }
