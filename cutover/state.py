"""
Persisted deployment state and environment leases.

DeploymentRecords outlive the orchestrator process so that a rollback can be
run after a crash. Leases make sure only one deployment or rollback touches an
environment at a time: the in-process LeaseRegistry rejects concurrent
attempts inside one event loop, and FileStateStore adds a lock file so two
CLI processes cannot race either.
"""

import builtins
import json
import os
import re
import socket
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from .exceptions import DeploymentInProgressError, StateStoreError
from .logger import get_logger
from .models import DeploymentRecord, utcnow

logger = get_logger(__name__)

_ENVIRONMENT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _check_environment_name(environment: str) -> None:
    if not _ENVIRONMENT_NAME.match(environment):
        raise StateStoreError(
            f"Invalid environment name: {environment!r}",
            details={"environment": environment},
        )


class StateStore(ABC):
    """Durable storage of one DeploymentRecord per environment."""

    @abstractmethod
    def load(self, environment: str) -> DeploymentRecord | None:
        """Return the record of an environment, or None if never deployed."""

    @abstractmethod
    def save(self, record: DeploymentRecord) -> None:
        """Persist a record, replacing the previous one atomically."""

    @abstractmethod
    def environments(self) -> builtins.list[str]:
        """Names of all environments with a record."""

    def lock(self, environment: str, holder: str) -> None:
        """Take a cross-process lock on an environment. No-op by default."""

    def unlock(self, environment: str) -> None:
        """Release a lock taken with lock()."""


class InMemoryStateStore(StateStore):
    """Process-local store, used by tests and dry runs."""

    def __init__(self):
        self._records: builtins.dict[str, builtins.dict[str, Any]] = {}

    def load(self, environment: str) -> DeploymentRecord | None:
        data = self._records.get(environment)
        return DeploymentRecord.from_dict(data) if data else None

    def save(self, record: DeploymentRecord) -> None:
        record.updated_at = utcnow()
        # Round-trip through JSON so the in-memory store rejects what the file store would.
        self._records[record.environment] = json.loads(json.dumps(record.to_dict()))

    def environments(self) -> builtins.list[str]:
        return sorted(self._records)


class FileStateStore(StateStore):
    """JSON documents under ``state_dir/records`` and lock files under ``state_dir/locks``."""

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)
        self.records_dir = self.state_dir / "records"
        self.locks_dir = self.state_dir / "locks"

    def _record_path(self, environment: str) -> Path:
        _check_environment_name(environment)
        return self.records_dir / f"{environment}.json"

    def _lock_path(self, environment: str) -> Path:
        _check_environment_name(environment)
        return self.locks_dir / f"{environment}.lock"

    def load(self, environment: str) -> DeploymentRecord | None:
        path = self._record_path(environment)
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise StateStoreError(f"Corrupt deployment record {path}: {e}")
        except OSError as e:
            raise StateStoreError(f"Cannot read deployment record {path}: {e}")

        try:
            return DeploymentRecord.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise StateStoreError(f"Malformed deployment record {path}: {e}")

    def save(self, record: DeploymentRecord) -> None:
        path = self._record_path(record.environment)
        record.updated_at = utcnow()
        tmp_path: Path | None = None
        try:
            self.records_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.records_dir, prefix=f".{record.environment}.", delete=False
            ) as tmp:
                tmp_path = Path(tmp.name)
                json.dump(record.to_dict(), tmp, indent=2, sort_keys=True)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise StateStoreError(f"Cannot write deployment record {path}: {e}")

        logger.debug(
            "Deployment record saved",
            environment=record.environment,
            status=record.status.value,
        )

    def environments(self) -> builtins.list[str]:
        if not self.records_dir.exists():
            return []
        return sorted(p.stem for p in self.records_dir.glob("*.json"))

    def lock(self, environment: str, holder: str) -> None:
        path = self._lock_path(environment)
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(
            {
                "holder": holder,
                "pid": os.getpid(),
                "host": socket.gethostname(),
                "acquired_at": utcnow().isoformat(),
            }
        )

        for _ in range(2):
            try:
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = self._read_lock(path)
                if owner is not None and self._is_stale(owner):
                    logger.warning(
                        "Reclaiming stale environment lock",
                        environment=environment,
                        stale_holder=owner.get("holder"),
                        stale_pid=owner.get("pid"),
                    )
                    path.unlink(missing_ok=True)
                    continue
                raise DeploymentInProgressError(
                    f"Environment '{environment}' is locked by another process",
                    details={"environment": environment, "lock": owner or {}},
                )
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            return

        raise DeploymentInProgressError(
            f"Environment '{environment}' lock could not be acquired",
            details={"environment": environment},
        )

    def unlock(self, environment: str) -> None:
        self._lock_path(environment).unlink(missing_ok=True)

    @staticmethod
    def _read_lock(path: Path) -> builtins.dict[str, Any] | None:
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError):
            return None

    @staticmethod
    def _is_stale(owner: builtins.dict[str, Any]) -> bool:
        if owner.get("host") != socket.gethostname():
            return False
        pid = owner.get("pid")
        if not isinstance(pid, int):
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            return False
        return False


class Lease:
    """Exclusive right to operate on one environment."""

    def __init__(self, registry: "LeaseRegistry", environment: str, holder: str, store: StateStore | None):
        self.registry = registry
        self.environment = environment
        self.holder = holder
        self.store = store
        self.acquired_at: datetime = utcnow()
        self.released = False

    def release(self) -> None:
        if not self.released:
            self.registry.release(self)

    def __enter__(self) -> "Lease":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class LeaseRegistry:
    """Global mapping of environment name to its current lease."""

    def __init__(self):
        self._leases: builtins.dict[str, Lease] = {}
        self._guard = threading.Lock()

    def acquire(self, environment: str, holder: str, store: StateStore | None = None) -> Lease:
        """Take the lease or raise DeploymentInProgressError immediately."""
        with self._guard:
            current = self._leases.get(environment)
            if current is not None:
                raise DeploymentInProgressError(
                    f"Environment '{environment}' is busy with {current.holder}",
                    details={
                        "environment": environment,
                        "holder": current.holder,
                        "acquired_at": current.acquired_at.isoformat(),
                    },
                )
            if store is not None:
                store.lock(environment, holder)
            lease = Lease(self, environment, holder, store)
            self._leases[environment] = lease

        logger.debug("Lease acquired", environment=environment, holder=holder)
        return lease

    def release(self, lease: Lease) -> None:
        with self._guard:
            if self._leases.get(lease.environment) is lease:
                del self._leases[lease.environment]
            lease.released = True
            if lease.store is not None:
                lease.store.unlock(lease.environment)

        logger.debug("Lease released", environment=lease.environment, holder=lease.holder)

    def holder(self, environment: str) -> str | None:
        lease = self._leases.get(environment)
        return lease.holder if lease else None

    def is_held(self, environment: str) -> bool:
        return environment in self._leases


_global_registry: LeaseRegistry | None = None


def get_lease_registry() -> LeaseRegistry:
    """Get the process-wide lease registry."""
    global _global_registry
    if _global_registry is None:
        _global_registry = LeaseRegistry()
    return _global_registry
