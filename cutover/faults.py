"""Failure injection for the in-memory backends."""

import builtins
from dataclasses import dataclass

from .exceptions import CutoverError


@dataclass
class Fault:
    operation: str
    error: CutoverError
    environment: str | None = None
    revision_id: str | None = None
    remaining: int | None = 1

    def matches(self, operation: str, environment: str | None, revision_id: str | None) -> bool:
        if self.operation != operation:
            return False
        if self.environment is not None and self.environment != environment:
            return False
        if self.revision_id is not None and self.revision_id != revision_id:
            return False
        return self.remaining is None or self.remaining > 0


class FailurePlan:
    """Ordered set of errors to raise from named backend operations."""

    def __init__(self):
        self._faults: builtins.list[Fault] = []

    def add(
        self,
        operation: str,
        error: CutoverError,
        *,
        environment: str | None = None,
        revision_id: str | None = None,
        times: int | None = 1,
    ) -> None:
        """Raise ``error`` from ``operation``; ``times=None`` means every call."""
        self._faults.append(Fault(operation, error, environment, revision_id, times))

    def check(
        self, operation: str, environment: str | None = None, revision_id: str | None = None
    ) -> None:
        for fault in self._faults:
            if fault.matches(operation, environment, revision_id):
                if fault.remaining is not None:
                    fault.remaining -= 1
                raise fault.error

    def clear(self) -> None:
        self._faults.clear()
