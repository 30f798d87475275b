"""
Traffic controllers.

A TrafficController assigns percentages of live traffic to at most two
revisions of an environment. Cutover is a single set_split moving everything
to the new revision.
"""

import builtins
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Callable

from ..exceptions import InvalidSplitError
from ..faults import FailurePlan
from ..logger import get_logger
from ..models import TrafficSplit

logger = get_logger(__name__)


class TrafficController(ABC):
    """Abstract traffic backend."""

    @abstractmethod
    async def set_split(self, environment: str, weights: Mapping[str, int]) -> TrafficSplit:
        """Apply ``weights`` atomically.

        Raises InvalidSplitError for malformed weights or unknown revisions.
        """

    @abstractmethod
    async def current_split(self, environment: str) -> TrafficSplit | None:
        """Split currently in effect, None if traffic was never routed."""


class InMemoryTrafficController(TrafficController):
    """Dictionary-backed traffic controller used by the simulated backend and tests."""

    def __init__(self, is_known: Callable[[str, str], bool] | None = None):
        self.is_known = is_known
        self.splits: builtins.dict[str, TrafficSplit] = {}
        self.history: builtins.list[TrafficSplit] = []
        self.failures = FailurePlan()
        self.calls: builtins.list[tuple[str, ...]] = []

    def seed(self, environment: str, revision_id: str) -> None:
        self.splits[environment] = TrafficSplit.all_to(environment, revision_id)

    async def set_split(self, environment: str, weights: Mapping[str, int]) -> TrafficSplit:
        self.calls.append(("set_split", environment))
        split = TrafficSplit(environment=environment, weights=dict(weights))

        if self.is_known is not None:
            unknown = [rid for rid in split.weights if not self.is_known(environment, rid)]
            if unknown:
                raise InvalidSplitError(
                    f"Traffic split for {environment} names unknown revisions",
                    details={"unknown": unknown},
                )

        self.failures.check("set_split", environment, split.serving)
        self.splits[environment] = split
        self.history.append(split)
        logger.info("Traffic split applied", environment=environment, weights=split.weights)
        return split

    async def current_split(self, environment: str) -> TrafficSplit | None:
        self.calls.append(("current_split", environment))
        self.failures.check("current_split", environment)
        return self.splits.get(environment)
