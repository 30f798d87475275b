"""Rollback coordination for blue/green deployments."""

from collections import deque

from .cluster import ClusterAdapter
from .config import CutoverConfig
from .enums import DeploymentState, ProbeOutcome, RecordStatus, StabilityOutcome
from .exceptions import (
    CutoverError,
    NoRollbackTargetError,
    RollbackFailedError,
    TimedOutError,
    UnhealthyError,
)
from .health import HealthProber, probe_target
from .logger import deployment_context, get_logger
from .metrics import DeploymentMetrics
from .models import HealthStatus, Revision, RollbackReport, TrafficSplit, utcnow
from .state import LeaseRegistry, StateStore, get_lease_registry
from .traffic import TrafficController

logger = get_logger(__name__)


def probe_failure(status: HealthStatus, what: str) -> CutoverError:
    """Error for a probe window that did not pass."""
    details = {"url": status.url, "attempts": status.attempts, "detail": status.detail}
    if status.outcome == ProbeOutcome.UNHEALTHY:
        return UnhealthyError(f"{what} reported unhealthy: {status.detail}", details=details)
    return TimedOutError(f"{what} did not answer healthy in time: {status.detail}", details=details)


class RollbackCoordinator:
    """Restore the previous revision of an environment."""

    def __init__(
        self,
        cluster: ClusterAdapter,
        prober: HealthProber,
        traffic: TrafficController,
        store: StateStore,
        config: CutoverConfig,
        leases: LeaseRegistry | None = None,
        metrics: DeploymentMetrics | None = None,
    ):
        self.cluster = cluster
        self.prober = prober
        self.traffic = traffic
        self.store = store
        self.config = config
        self.leases = leases or get_lease_registry()
        self.metrics = metrics
        self.rollback_history: deque = deque(maxlen=1000)

    async def rollback(self, environment: str) -> RollbackReport:
        """Restore the recorded previous revision of ``environment``.

        Raises NoRollbackTargetError (before any backend call) when there is
        no record or no previous revision, and DeploymentInProgressError when
        another operation holds the environment.
        """
        env_config = self.config.environment(environment)
        with self.leases.acquire(environment, holder="rollback", store=self.store):
            record = self.store.load(environment)
            if record is None or record.previous is None:
                raise NoRollbackTargetError(
                    f"Environment '{environment}' has no previous revision to restore",
                    details={"environment": environment},
                )

            with deployment_context(environment):
                report = await self.restore(environment, record.previous, env_config.public_health_url)

                if report.succeeded:
                    record.active = record.previous
                    record.candidate = None
                    record.status = RecordStatus.ROLLED_BACK
                    record.deployed_at = utcnow()
                else:
                    record.status = RecordStatus.FAILED
                record.last_outcome = {"operation": "rollback", **report.to_dict()}
                self.store.save(record)

        return report

    async def restore(
        self, environment: str, target: Revision, public_url: str | None = None
    ) -> RollbackReport:
        """Move traffic back to ``target`` and re-verify it.

        The caller must hold the environment lease. Never raises for backend
        failures; they end the report in ROLLBACK_FAILED.
        """
        if public_url is None:
            public_url = self.config.environment(environment).public_health_url
        health = self.config.health
        report = RollbackReport(
            environment=environment,
            target=target,
            state=DeploymentState.ROLLING_BACK,
            states=[DeploymentState.ROLLING_BACK],
        )
        logger.info(
            "Rolling back",
            environment=environment,
            revision=target.short_id,
            image=target.image,
        )

        try:
            report.traffic = await self.traffic.set_split(environment, {target.revision_id: 100})
            self._record_split(report.traffic)

            await self.cluster.update_service(environment, target)
            stability = await self.cluster.wait_stable(environment, health.stability_timeout)
            if stability == StabilityOutcome.TIMED_OUT:
                raise TimedOutError(
                    f"Service did not stabilise within {health.stability_timeout}s",
                    details={"environment": environment},
                )

            status = await self.prober.probe(
                probe_target(public_url, target, environment), health.timeout, health.interval
            )
            if self.metrics:
                self.metrics.record_probe(environment, status)
            if not status.passed:
                raise probe_failure(status, f"Restored revision {target.short_id}")

            report.state = DeploymentState.ROLLED_BACK
        except CutoverError as e:
            await self._fail(report, e)
        except Exception as e:
            logger.exception("Unexpected error during rollback", environment=environment)
            await self._fail(report, CutoverError(f"Unexpected error during rollback: {e}"))

        report.states.append(report.state)
        report.completed_at = utcnow()
        self.rollback_history.append(report)
        if self.metrics:
            self.metrics.record_rollback(report)

        log = logger.info if report.succeeded else logger.error
        log(
            "Rollback finished",
            environment=environment,
            revision=target.short_id,
            state=report.state.value,
            serving=report.serving[:12] if report.serving else "unknown",
        )
        return report

    async def _fail(self, report: RollbackReport, cause: CutoverError) -> None:
        report.state = DeploymentState.ROLLBACK_FAILED
        report.traffic = await self.observe_split(report.environment)
        report.error = RollbackFailedError(
            f"Rollback of {report.environment} to {report.target.short_id} failed: {cause.message}",
            details={
                "cause": cause.to_dict(),
                "traffic": report.traffic.to_dict() if report.traffic else "unknown",
            },
        )

    async def observe_split(self, environment: str) -> TrafficSplit | None:
        try:
            return await self.traffic.current_split(environment)
        except Exception as e:
            logger.warning(
                "Cannot observe traffic split",
                environment=environment,
                error=str(e),
            )
            return None

    def _record_split(self, split: TrafficSplit) -> None:
        if self.metrics:
            self.metrics.record_split(split)
