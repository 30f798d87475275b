"""
Wiring of backends from configuration.

``simulated`` runs everything in memory, seeded from the persisted records so
successive CLI invocations see a consistent world; ``aws`` talks to ECS and
an Application Load Balancer through boto3.
"""

from dataclasses import dataclass

from .aws import create_session
from .cluster import ClusterAdapter, InMemoryClusterAdapter
from .cluster.ecs import EcsClusterAdapter
from .config import Backend, CutoverConfig
from .exceptions import ConfigurationError
from .health import HealthProber, HttpHealthProber, StaticHealthProber
from .logger import get_logger
from .metrics import DeploymentMetrics
from .orchestrator import DeploymentOrchestrator
from .state import FileStateStore, InMemoryStateStore, StateStore
from .traffic import InMemoryTrafficController, TrafficController
from .traffic.elb import ElbTrafficController

logger = get_logger(__name__)

_REQUIRED_AWS_FIELDS = ("listener_arn", "test_listener_arn", "vpc_id", "subnets")


@dataclass
class Components:
    cluster: ClusterAdapter
    prober: HealthProber
    traffic: TrafficController
    store: StateStore


def build_store(config: CutoverConfig, dry_run: bool = False) -> StateStore:
    """File store under ``state_dir``; dry runs work on an in-memory copy."""
    store = FileStateStore(config.state_dir)
    if not dry_run:
        return store

    scratch = InMemoryStateStore()
    for environment in store.environments():
        record = store.load(environment)
        if record is not None:
            scratch.save(record)
    return scratch


def build_simulated(store: StateStore) -> Components:
    cluster = InMemoryClusterAdapter()
    traffic = InMemoryTrafficController(is_known=cluster.is_deployed)
    for environment in store.environments():
        record = store.load(environment)
        if record is None:
            continue
        cluster.seed_from_record(record)
        if record.active is not None:
            traffic.seed(environment, record.active.revision_id)
    return Components(cluster=cluster, prober=StaticHealthProber(), traffic=traffic, store=store)


def build_aws(config: CutoverConfig, store: StateStore) -> Components:
    for name, env in config.environments.items():
        missing = [field for field in _REQUIRED_AWS_FIELDS if not getattr(env, field)]
        if missing:
            raise ConfigurationError(
                f"Environment '{name}' is missing {', '.join(missing)} for the aws backend",
                details={"environment": name, "missing": missing},
            )

    session = create_session(config.aws)
    return Components(
        cluster=EcsClusterAdapter(
            config.environments,
            session=session,
            poll_interval=config.health.stability_poll_interval,
        ),
        prober=HttpHealthProber(request_timeout=config.health.request_timeout),
        traffic=ElbTrafficController(config.environments, session=session),
        store=store,
    )


def build_components(config: CutoverConfig, dry_run: bool = False) -> Components:
    """Build backends for ``config``; ``dry_run`` forces the simulated backend."""
    store = build_store(config, dry_run=dry_run)
    if dry_run or config.backend == Backend.SIMULATED:
        logger.debug("Using simulated backend", dry_run=dry_run)
        return build_simulated(store)
    return build_aws(config, store)


def build_orchestrator(
    config: CutoverConfig,
    dry_run: bool = False,
    metrics: DeploymentMetrics | None = None,
) -> DeploymentOrchestrator:
    components = build_components(config, dry_run=dry_run)
    return DeploymentOrchestrator(
        cluster=components.cluster,
        prober=components.prober,
        traffic=components.traffic,
        store=components.store,
        config=config,
        metrics=metrics,
    )
