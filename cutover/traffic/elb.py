"""
Application Load Balancer traffic controller.

Weights are applied with a single ModifyListener call carrying a weighted
forward action, so the production listener switches atomically. Revisions map
to the target groups created by EcsClusterAdapter.
"""

import builtins
from collections.abc import Mapping
from typing import Any

from ..aws import AWS_ERRORS, REVISION_TAG, call, error_code, forward_action, tags_to_dict, target_group_name
from ..config import EnvironmentConfig
from ..exceptions import ConfigurationError, InvalidSplitError, TrafficControlError
from ..logger import get_logger
from ..models import TrafficSplit
from . import TrafficController

logger = get_logger(__name__)


def normalise_weights(weights: Mapping[str, int]) -> builtins.dict[str, int]:
    """Scale relative ALB weights to percentages summing to exactly 100."""
    total = sum(weights.values())
    if total <= 0:
        return {}
    percents = {key: weight * 100 // total for key, weight in weights.items()}
    largest = max(weights, key=lambda key: weights[key])
    percents[largest] += 100 - sum(percents.values())
    return percents


class ElbTrafficController(TrafficController):
    """TrafficController over a boto3 ``elbv2`` client."""

    def __init__(
        self,
        environments: Mapping[str, EnvironmentConfig],
        session=None,
        elbv2_client=None,
    ):
        if elbv2_client is None and session is None:
            raise ConfigurationError("ElbTrafficController needs a boto3 session or client")
        self.environments = dict(environments)
        self.elbv2 = elbv2_client or session.client("elbv2")

    def _listener(self, environment: str) -> tuple[EnvironmentConfig, str]:
        env = self.environments.get(environment)
        if env is None:
            raise ConfigurationError(f"Unknown environment '{environment}'")
        if not env.listener_arn:
            raise ConfigurationError(f"Environment '{environment}' has no listener_arn")
        return env, env.listener_arn

    async def _target_group_arn(self, env: EnvironmentConfig, environment: str, revision_id: str) -> str:
        name = target_group_name(env.service_name, revision_id)
        try:
            response = await call(self.elbv2.describe_target_groups, Names=[name])
        except AWS_ERRORS as e:
            if error_code(e) == "TargetGroupNotFound":
                raise InvalidSplitError(
                    f"Revision {revision_id[:12]} has no target group in {environment}",
                    details={"revision_id": revision_id, "target_group": name},
                ) from e
            raise TrafficControlError(
                f"Cannot resolve target group {name}: {e}",
                details={"aws_error": error_code(e)},
            ) from e

        groups = response.get("TargetGroups", [])
        if not groups:
            raise InvalidSplitError(
                f"Revision {revision_id[:12]} has no target group in {environment}",
                details={"revision_id": revision_id, "target_group": name},
            )
        return groups[0]["TargetGroupArn"]

    async def set_split(self, environment: str, weights: Mapping[str, int]) -> TrafficSplit:
        split = TrafficSplit(environment=environment, weights=dict(weights))
        env, listener_arn = self._listener(environment)

        target_groups = [
            (await self._target_group_arn(env, environment, revision_id), weight)
            for revision_id, weight in split.weights.items()
        ]

        try:
            await call(
                self.elbv2.modify_listener,
                ListenerArn=listener_arn,
                DefaultActions=[forward_action(target_groups)],
            )
        except AWS_ERRORS as e:
            raise TrafficControlError(
                f"Load balancer rejected traffic split for {environment}: {e}",
                details={"aws_error": error_code(e), "weights": split.weights},
            ) from e

        logger.info(
            "Traffic split applied",
            environment=environment,
            listener=listener_arn,
            weights={rid[:12]: w for rid, w in split.weights.items()},
        )
        return split

    async def current_split(self, environment: str) -> TrafficSplit | None:
        _, listener_arn = self._listener(environment)
        try:
            response = await call(self.elbv2.describe_listeners, ListenerArns=[listener_arn])
            listeners = response.get("Listeners", [])
            if not listeners:
                return None
            weights = _forward_weights(listeners[0].get("DefaultActions", []))
            if not weights:
                return None
            revisions = await self._revisions_of(list(weights))
        except AWS_ERRORS as e:
            raise TrafficControlError(
                f"Cannot read traffic split of {environment}: {e}",
                details={"aws_error": error_code(e)},
            ) from e

        percents = normalise_weights({revisions[arn]: weight for arn, weight in weights.items()})
        if not percents:
            return None
        try:
            return TrafficSplit(environment=environment, weights=percents)
        except InvalidSplitError as e:
            raise TrafficControlError(
                f"Listener of {environment} forwards to an unmanaged layout: {e.message}",
                details={"weights": percents},
            ) from e

    async def _revisions_of(self, arns: builtins.list[str]) -> builtins.dict[str, str]:
        """Map target group ARNs to revision ids via their tags (ARN if untagged)."""
        response = await call(self.elbv2.describe_tags, ResourceArns=arns)
        revisions = {arn: arn for arn in arns}
        for description in response.get("TagDescriptions", []):
            revision_id = tags_to_dict(description.get("Tags")).get(REVISION_TAG)
            if revision_id:
                revisions[description["ResourceArn"]] = revision_id
        return revisions


def _forward_weights(actions: builtins.list[builtins.dict[str, Any]]) -> builtins.dict[str, int]:
    for action in actions:
        if action.get("Type") != "forward":
            continue
        forward = action.get("ForwardConfig")
        if forward and forward.get("TargetGroups"):
            return {
                group["TargetGroupArn"]: int(group.get("Weight", 1))
                for group in forward["TargetGroups"]
            }
        if action.get("TargetGroupArn"):
            return {action["TargetGroupArn"]: 1}
    return {}
