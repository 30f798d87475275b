"""
Core exceptions for cutover.

This module defines the exception hierarchy used throughout the orchestrator.
Every error carries a FailureKind so callers (and the CLI exit codes) can tell
failure causes apart without parsing messages.
"""

from typing import Any, Dict, Optional

from .enums import FailureKind


class CutoverError(Exception):
    """Base exception for all cutover errors."""

    kind: FailureKind = FailureKind.UNEXPECTED

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.kind.value
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary representation."""
        return {
            "error": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ConfigurationError(CutoverError):
    """Raised when configuration is invalid or missing."""

    kind = FailureKind.CONFIGURATION


class StateStoreError(CutoverError):
    """Raised when deployment records cannot be read or written."""

    kind = FailureKind.STATE_STORE


class RegistrationError(CutoverError):
    """Raised when a revision spec is invalid or the backend rejects it."""

    kind = FailureKind.REGISTRATION


class ServiceUpdateError(CutoverError):
    """Raised when the backend refuses to schedule a revision."""

    kind = FailureKind.SERVICE_UPDATE


class TrafficControlError(ServiceUpdateError):
    """Raised when the traffic backend rejects a valid split."""


class UnhealthyError(CutoverError):
    """Raised when a target answered with explicit failures for the whole window."""

    kind = FailureKind.UNHEALTHY


class TimedOutError(CutoverError):
    """Raised when a blocking step ran out of time without a verdict."""

    kind = FailureKind.TIMED_OUT


class InvalidSplitError(CutoverError):
    """Raised when traffic weights are malformed or name unknown revisions."""

    kind = FailureKind.INVALID_SPLIT


class DeploymentInProgressError(CutoverError):
    """Raised when another operation already holds the environment lease."""

    kind = FailureKind.DEPLOYMENT_IN_PROGRESS


class NoRollbackTargetError(CutoverError):
    """Raised when an environment has no previous revision to restore."""

    kind = FailureKind.NO_ROLLBACK_TARGET


class RollbackFailedError(CutoverError):
    """Raised when restoring the previous revision fails."""

    kind = FailureKind.ROLLBACK_FAILED


class DeploymentCancelledError(CutoverError):
    """Raised at a step boundary once an operator cancelled the deployment."""

    kind = FailureKind.CANCELLED
