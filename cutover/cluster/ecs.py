"""
Amazon ECS cluster adapter.

Each revision runs as its own Fargate service (``<service>-<short id>``)
behind its own ALB target group. The environment's test listener forwards to
the newest revision so it can be probed before it receives production
traffic; the production listener is driven by ElbTrafficController.
"""

import asyncio
import builtins
import hashlib
import time
from collections.abc import Mapping
from typing import Any, Callable

from ..aws import (
    AWS_ERRORS,
    ENVIRONMENT_TAG,
    REVISION_TAG,
    call,
    error_code,
    forward_action,
    service_name,
    tags_to_dict,
    target_group_name,
)
from ..config import EnvironmentConfig
from ..enums import StabilityOutcome
from ..exceptions import ConfigurationError, RegistrationError, ServiceUpdateError
from ..logger import get_logger
from ..models import LogTarget, PortMapping, Revision
from ..revisions import RevisionSpec, parse_revision_spec
from . import ClusterAdapter

logger = get_logger(__name__)

_DESCRIBE_BATCH = 10


class EcsClusterAdapter(ClusterAdapter):
    """ClusterAdapter over boto3 ``ecs`` and ``elbv2`` clients."""

    def __init__(
        self,
        environments: Mapping[str, EnvironmentConfig],
        session=None,
        ecs_client=None,
        elbv2_client=None,
        poll_interval: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        if ecs_client is None or elbv2_client is None:
            if session is None:
                raise ConfigurationError("EcsClusterAdapter needs a boto3 session or clients")
        self.environments = dict(environments)
        self.ecs = ecs_client or session.client("ecs")
        self.elbv2 = elbv2_client or session.client("elbv2")
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        # Service last scheduled per environment; wait_stable watches only it.
        self._scheduled: builtins.dict[str, str] = {}

    def _environment(self, environment: str) -> EnvironmentConfig:
        try:
            return self.environments[environment]
        except KeyError:
            raise ConfigurationError(f"Unknown environment '{environment}'")

    def _roles_for(self, family: str) -> tuple[str | None, str | None]:
        for env in self.environments.values():
            if env.task_family == family:
                return env.execution_role_arn, env.task_role_arn
        return None, None

    # Registration

    async def register_revision(self, spec: RevisionSpec | Mapping[str, Any]) -> Revision:
        spec = parse_revision_spec(spec)
        revision_id = spec.revision_id

        container: builtins.dict[str, Any] = {
            "name": spec.family,
            "image": spec.image,
            "essential": True,
            "portMappings": [
                {
                    "containerPort": p.container_port,
                    "protocol": p.protocol,
                    **({"hostPort": p.host_port} if p.host_port else {}),
                }
                for p in spec.port_mappings
            ],
            "environment": [
                {"name": key, "value": value} for key, value in sorted(spec.environment.items())
            ],
        }
        if spec.log_target:
            container["logConfiguration"] = {
                "logDriver": spec.log_target.driver,
                "options": dict(spec.log_target.options),
            }

        request: builtins.dict[str, Any] = {
            "family": spec.family,
            "containerDefinitions": [container],
            "cpu": str(spec.cpu),
            "memory": str(spec.memory),
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "tags": [{"key": REVISION_TAG, "value": revision_id}],
        }
        execution_role, task_role = self._roles_for(spec.family)
        if execution_role:
            request["executionRoleArn"] = execution_role
        if task_role:
            request["taskRoleArn"] = task_role

        try:
            response = await call(self.ecs.register_task_definition, **request)
        except AWS_ERRORS as e:
            raise RegistrationError(
                f"ECS rejected task definition for {spec.family}: {e}",
                details={"aws_error": error_code(e), "revision_id": revision_id},
            ) from e

        arn = response["taskDefinition"]["taskDefinitionArn"]
        logger.info(
            "Task definition registered",
            family=spec.family,
            revision=revision_id[:12],
            task_definition=arn,
        )
        return spec.to_revision(backend_ref=arn)

    # Scheduling

    async def update_service(self, environment: str, revision: Revision) -> None:
        env = self._environment(environment)
        if not revision.backend_ref:
            raise ServiceUpdateError(
                f"Revision {revision.short_id} has no task definition",
                details={"environment": environment, "revision_id": revision.revision_id},
            )

        name = service_name(env.service_name, revision.revision_id)
        port = revision.port_mappings[0].container_port if revision.port_mappings else env.container_port

        try:
            target_group_arn = await self._ensure_target_group(env, environment, revision, port)
            if env.test_listener_arn:
                await call(
                    self.elbv2.modify_listener,
                    ListenerArn=env.test_listener_arn,
                    DefaultActions=[forward_action([(target_group_arn, 1)])],
                )

            described = await call(self.ecs.describe_services, cluster=env.cluster, services=[name])
            exists = any(s.get("status") == "ACTIVE" for s in described.get("services", []))

            if exists:
                await call(
                    self.ecs.update_service,
                    cluster=env.cluster,
                    service=name,
                    taskDefinition=revision.backend_ref,
                    desiredCount=env.desired_count,
                )
            else:
                await call(
                    self.ecs.create_service,
                    cluster=env.cluster,
                    serviceName=name,
                    taskDefinition=revision.backend_ref,
                    desiredCount=env.desired_count,
                    launchType="FARGATE",
                    networkConfiguration={
                        "awsvpcConfiguration": {
                            "subnets": list(env.subnets),
                            "securityGroups": list(env.security_groups),
                            "assignPublicIp": "ENABLED" if env.assign_public_ip else "DISABLED",
                        }
                    },
                    loadBalancers=[
                        {
                            "targetGroupArn": target_group_arn,
                            "containerName": revision.family,
                            "containerPort": port,
                        }
                    ],
                    tags=[
                        {"key": REVISION_TAG, "value": revision.revision_id},
                        {"key": ENVIRONMENT_TAG, "value": environment},
                    ],
                    propagateTags="SERVICE",
                )
        except AWS_ERRORS as e:
            raise ServiceUpdateError(
                f"ECS refused to schedule {revision.short_id} in {environment}: {e}",
                details={
                    "aws_error": error_code(e),
                    "environment": environment,
                    "service": name,
                },
            ) from e

        self._scheduled[environment] = name
        logger.info(
            "Service scheduled",
            environment=environment,
            service=name,
            revision=revision.short_id,
            created=not exists,
        )

    async def retire_revision(self, environment: str, revision: Revision) -> None:
        """Scale the revision's service to zero and delete it.

        The target group stays; it is recreated idempotently if the revision
        is ever scheduled again.
        """
        env = self._environment(environment)
        name = service_name(env.service_name, revision.revision_id)

        try:
            described = await call(self.ecs.describe_services, cluster=env.cluster, services=[name])
            if not any(s.get("status") == "ACTIVE" for s in described.get("services", [])):
                return
            await call(self.ecs.update_service, cluster=env.cluster, service=name, desiredCount=0)
            await call(self.ecs.delete_service, cluster=env.cluster, service=name)
        except AWS_ERRORS as e:
            raise ServiceUpdateError(
                f"ECS refused to retire {revision.short_id} in {environment}: {e}",
                details={
                    "aws_error": error_code(e),
                    "environment": environment,
                    "service": name,
                },
            ) from e

        if self._scheduled.get(environment) == name:
            del self._scheduled[environment]
        logger.info(
            "Service retired",
            environment=environment,
            service=name,
            revision=revision.short_id,
        )

    async def _ensure_target_group(
        self, env: EnvironmentConfig, environment: str, revision: Revision, port: int
    ) -> str:
        # CreateTargetGroup returns the existing group when the settings match.
        response = await call(
            self.elbv2.create_target_group,
            Name=target_group_name(env.service_name, revision.revision_id),
            Protocol="HTTP",
            Port=port,
            VpcId=env.vpc_id,
            TargetType="ip",
            HealthCheckPath=env.health_check_path,
            Tags=[
                {"Key": REVISION_TAG, "Value": revision.revision_id},
                {"Key": ENVIRONMENT_TAG, "Value": environment},
            ],
        )
        return response["TargetGroups"][0]["TargetGroupArn"]

    async def wait_stable(self, environment: str, timeout: float) -> StabilityOutcome:
        env = self._environment(environment)
        deadline = self._clock() + timeout

        while True:
            try:
                services = await self._environment_services(env, environment)
            except AWS_ERRORS as e:
                raise ServiceUpdateError(
                    f"Cannot describe services of {environment}: {e}",
                    details={"aws_error": error_code(e), "environment": environment},
                ) from e

            watched = self._watched(services, environment)
            pending = [s["serviceName"] for s in watched if not _converged(s)]
            if watched and not pending:
                logger.info("Services stable", environment=environment, services=len(watched))
                return StabilityOutcome.STABLE

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning(
                    "Services did not stabilise",
                    environment=environment,
                    pending=pending,
                    timeout=timeout,
                )
                return StabilityOutcome.TIMED_OUT

            logger.debug("Waiting for services", environment=environment, pending=pending)
            await self._sleep(min(self.poll_interval, remaining))

    def _watched(
        self, services: builtins.list[builtins.dict[str, Any]], environment: str
    ) -> builtins.list[builtins.dict[str, Any]]:
        """The service scheduled last, or every scaled-up service if none was."""
        scheduled = self._scheduled.get(environment)
        if scheduled is not None:
            return [s for s in services if s.get("serviceName") == scheduled]
        return [s for s in services if s.get("desiredCount", 0) > 0]

    # Inspection

    async def current_revision(self, environment: str) -> Revision | None:
        env = self._environment(environment)
        try:
            services = await self._environment_services(env, environment)
            running = [
                s for s in services if s.get("desiredCount", 0) > 0 and s.get("runningCount", 0) > 0
            ]
            if not running:
                return None
            newest = max(running, key=lambda s: s.get("createdAt") or 0)
            return await self._describe_revision(newest["taskDefinition"])
        except AWS_ERRORS as e:
            raise ServiceUpdateError(
                f"Cannot determine current revision of {environment}: {e}",
                details={"aws_error": error_code(e), "environment": environment},
            ) from e

    async def list_revisions(self, environment: str) -> builtins.list[Revision]:
        env = self._environment(environment)
        try:
            services = await self._environment_services(env, environment)
            return [
                await self._describe_revision(s["taskDefinition"])
                for s in services
                if s.get("desiredCount", 0) > 0
            ]
        except AWS_ERRORS as e:
            raise ServiceUpdateError(
                f"Cannot list revisions of {environment}: {e}",
                details={"aws_error": error_code(e), "environment": environment},
            ) from e

    async def _environment_services(
        self, env: EnvironmentConfig, environment: str
    ) -> builtins.list[builtins.dict[str, Any]]:
        """ACTIVE services belonging to the environment."""
        prefix = f"{env.service_name}-"
        arns: builtins.list[str] = []
        token = None
        while True:
            kwargs = {"cluster": env.cluster}
            if token:
                kwargs["nextToken"] = token
            page = await call(self.ecs.list_services, **kwargs)
            arns.extend(
                arn for arn in page.get("serviceArns", []) if arn.rsplit("/", 1)[-1].startswith(prefix)
            )
            token = page.get("nextToken")
            if not token:
                break

        services = []
        for start in range(0, len(arns), _DESCRIBE_BATCH):
            described = await call(
                self.ecs.describe_services,
                cluster=env.cluster,
                services=arns[start : start + _DESCRIBE_BATCH],
                include=["TAGS"],
            )
            for service in described.get("services", []):
                if service.get("status") != "ACTIVE":
                    continue
                tags = tags_to_dict(service.get("tags"))
                if tags.get(ENVIRONMENT_TAG, environment) != environment:
                    continue
                services.append(service)
        return services

    async def _describe_revision(self, task_definition_arn: str) -> Revision:
        response = await call(
            self.ecs.describe_task_definition,
            taskDefinition=task_definition_arn,
            include=["TAGS"],
        )
        return revision_from_task_definition(response["taskDefinition"], response.get("tags"))


def _converged(service: builtins.dict[str, Any]) -> bool:
    return (
        len(service.get("deployments", [])) == 1
        and service.get("runningCount") == service.get("desiredCount")
    )


def revision_from_task_definition(
    task_definition: builtins.dict[str, Any], tags: builtins.list[builtins.dict[str, str]] | None = None
) -> Revision:
    """Rebuild a Revision from a DescribeTaskDefinition response.

    Task definitions not registered by cutover carry no revision tag; their id
    is derived from the ARN instead.
    """
    arn = task_definition["taskDefinitionArn"]
    revision_id = tags_to_dict(tags).get(REVISION_TAG) or hashlib.sha256(arn.encode()).hexdigest()
    container = task_definition["containerDefinitions"][0]
    log_config = container.get("logConfiguration")

    return Revision(
        revision_id=revision_id,
        family=task_definition["family"],
        image=container["image"],
        cpu=int(task_definition.get("cpu") or container.get("cpu") or 0),
        memory=int(task_definition.get("memory") or container.get("memory") or 0),
        port_mappings=tuple(
            PortMapping(
                container_port=p["containerPort"],
                host_port=p.get("hostPort"),
                protocol=p.get("protocol", "tcp"),
            )
            for p in container.get("portMappings", [])
        ),
        log_target=(
            LogTarget(log_config["logDriver"], dict(log_config.get("options", {})))
            if log_config
            else None
        ),
        environment={e["name"]: e["value"] for e in container.get("environment", [])},
        backend_ref=arn,
        registered_at=task_definition.get("registeredAt"),
    )
