"""
Shared helpers for the AWS backends (ECS cluster adapter, ALB traffic
controller): sessions, naming, tags and running blocking boto3 calls off the
event loop.
"""

import asyncio
import functools
import re
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import AwsConfig

REVISION_TAG = "cutover.io/revision"
ENVIRONMENT_TAG = "cutover.io/environment"

AWS_ERRORS = (ClientError, BotoCoreError)

_TG_NAME_MAX = 32


def create_session(config: AwsConfig) -> boto3.Session:
    """Create a boto3 session from configuration."""
    return boto3.Session(region_name=config.region, profile_name=config.profile)


async def call(func: Callable[..., Any], /, **kwargs: Any) -> Any:
    """Run a blocking boto3 call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, **kwargs))


def error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "ClientError")
    return type(error).__name__


def service_name(base: str, revision_id: str) -> str:
    """ECS service name carrying one revision."""
    return f"{base}-{revision_id[:12]}"


def target_group_name(base: str, revision_id: str) -> str:
    """ALB target group name for one revision (at most 32 characters)."""
    suffix = revision_id[:12]
    prefix = re.sub(r"[^A-Za-z0-9-]", "-", base)[: _TG_NAME_MAX - len(suffix) - 1].strip("-")
    return f"{prefix}-{suffix}" if prefix else suffix


def forward_action(weights: list[tuple[str, int]]) -> dict[str, Any]:
    """Weighted forward action over (target group ARN, weight) pairs."""
    return {
        "Type": "forward",
        "ForwardConfig": {
            "TargetGroups": [
                {"TargetGroupArn": arn, "Weight": weight} for arn, weight in weights
            ],
            "TargetGroupStickinessConfig": {"Enabled": False},
        },
    }


def tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    """Convert ECS (key/value) or ELB (Key/Value) tag lists to a dict."""
    result = {}
    for tag in tags or []:
        key = tag.get("key", tag.get("Key"))
        value = tag.get("value", tag.get("Value"))
        if key is not None:
            result[key] = value
    return result
