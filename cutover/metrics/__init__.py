"""
Metrics collection for deployments.

This module provides:
- Prometheus counters for deployment and rollback outcomes
- Deployment duration histogram
- Probe attempt counts and traffic weight gauges
- Export to a node-exporter textfile
"""

from pathlib import Path

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile

from ..logger import get_logger
from ..models import DeploymentReport, HealthStatus, RollbackReport, TrafficSplit

logger = get_logger(__name__)


class DeploymentMetrics:
    """Prometheus collectors on a private registry."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.deployments_total = Counter(
            "cutover_deployments_total",
            "Total deployment attempts by terminal state",
            ["environment", "outcome"],
            registry=self.registry,
        )

        self.rollbacks_total = Counter(
            "cutover_rollbacks_total",
            "Total rollbacks by terminal state",
            ["environment", "outcome"],
            registry=self.registry,
        )

        self.deployment_duration_seconds = Histogram(
            "cutover_deployment_duration_seconds",
            "Deployment duration in seconds",
            ["environment"],
            buckets=[10, 30, 60, 120, 300, 600, 1200, 1800],
            registry=self.registry,
        )

        self.probe_attempts_total = Counter(
            "cutover_probe_attempts_total",
            "Health probe attempts by outcome of the probe window",
            ["environment", "outcome"],
            registry=self.registry,
        )

        self.traffic_weight = Gauge(
            "cutover_traffic_weight_percent",
            "Percentage of traffic routed to a revision",
            ["environment", "revision"],
            registry=self.registry,
        )
        self._weighted: dict[str, set[str]] = {}

    def record_deployment(self, report: DeploymentReport) -> None:
        self.deployments_total.labels(
            environment=report.environment, outcome=report.state.value
        ).inc()
        if report.completed_at is not None:
            duration = (report.completed_at - report.started_at).total_seconds()
            self.deployment_duration_seconds.labels(environment=report.environment).observe(
                duration
            )

    def record_rollback(self, report: RollbackReport) -> None:
        self.rollbacks_total.labels(
            environment=report.environment, outcome=report.state.value
        ).inc()

    def record_probe(self, environment: str, status: HealthStatus) -> None:
        self.probe_attempts_total.labels(
            environment=environment, outcome=status.outcome.value
        ).inc(status.attempts)

    def record_split(self, split: TrafficSplit) -> None:
        """Set weight gauges, zeroing revisions that left the split."""
        seen = self._weighted.setdefault(split.environment, set())
        for revision_id in seen - set(split.weights):
            self.traffic_weight.labels(
                environment=split.environment, revision=revision_id[:12]
            ).set(0)
        for revision_id, weight in split.weights.items():
            self.traffic_weight.labels(
                environment=split.environment, revision=revision_id[:12]
            ).set(weight)
            seen.add(revision_id)

    def write_textfile(self, path: str | Path) -> None:
        """Write all collectors in Prometheus text format."""
        write_to_textfile(str(path), self.registry)
        logger.debug("Metrics written", path=str(path))
