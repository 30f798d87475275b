"""
Revision specs.

A RevisionSpec is the validated description of what to deploy. Its
content address (SHA-256 over the canonical JSON form) becomes the
``revision_id`` of the registered Revision, which makes registration of an
identical spec idempotent.
"""

import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import RegistrationError
from .models import LogTarget, PortMapping, Revision, utcnow


class PortMappingSpec(BaseModel):
    """Port mapping in a revision spec."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    container_port: int = Field(..., ge=1, le=65535)
    host_port: int | None = Field(default=None, ge=1, le=65535)
    protocol: Literal["tcp", "udp"] = "tcp"


class LogTargetSpec(BaseModel):
    """Logging target in a revision spec."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    driver: str = Field(default="awslogs", min_length=1)
    options: dict[str, str] = Field(default_factory=dict)


class RevisionSpec(BaseModel):
    """Validated description of one deployable version."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    family: str = Field(..., min_length=1, max_length=255, pattern=r"^[A-Za-z0-9_-]+$")
    image: str = Field(..., min_length=1)
    cpu: int = Field(default=256, gt=0, description="CPU units (1024 = one vCPU)")
    memory: int = Field(default=512, gt=0, description="Memory in MiB")
    port_mappings: list[PortMappingSpec] = Field(default_factory=list)
    log_target: LogTargetSpec | None = None
    environment: dict[str, str] = Field(default_factory=dict)

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        if any(ch.isspace() for ch in v):
            raise ValueError("image reference must not contain whitespace")
        return v

    @property
    def revision_id(self) -> str:
        canonical = json.dumps(
            self.model_dump(mode="json"), sort_keys=True, separators=(",", ":")
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_revision(
        self, backend_ref: str | None = None, registered_at=None
    ) -> Revision:
        """Materialise the registered, immutable Revision for this spec."""
        return Revision(
            revision_id=self.revision_id,
            family=self.family,
            image=self.image,
            cpu=self.cpu,
            memory=self.memory,
            port_mappings=tuple(
                PortMapping(p.container_port, p.host_port, p.protocol)
                for p in self.port_mappings
            ),
            log_target=(
                LogTarget(self.log_target.driver, dict(self.log_target.options))
                if self.log_target
                else None
            ),
            environment=dict(self.environment),
            backend_ref=backend_ref,
            registered_at=registered_at or utcnow(),
        )


def parse_revision_spec(data: "RevisionSpec | Mapping[str, Any]") -> RevisionSpec:
    """Validate raw data into a RevisionSpec, raising RegistrationError."""
    if isinstance(data, RevisionSpec):
        return data
    try:
        return RevisionSpec.model_validate(dict(data))
    except ValidationError as e:
        raise RegistrationError(
            f"Invalid revision spec: {e.error_count()} validation error(s)",
            details={
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]
            },
        ) from e
    except TypeError as e:
        raise RegistrationError(f"Invalid revision spec: {e}") from e


def load_revision_spec(path: str | Path) -> RevisionSpec:
    """Load a revision spec from a YAML or JSON file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise RegistrationError(f"Revision spec file not found: {path}")
    except yaml.YAMLError as e:
        raise RegistrationError(f"Invalid YAML in revision spec {path}: {e}")

    if not isinstance(data, dict):
        raise RegistrationError(f"Revision spec {path} must be a mapping")
    return parse_revision_spec(data)


def spec_from_image(image: str, family: str, **defaults: Any) -> RevisionSpec:
    """Build a spec for ``image`` using configured defaults for the rest."""
    return parse_revision_spec({**defaults, "family": family, "image": image})


def resolve_revision_spec(argument: str, family: str, **defaults: Any) -> RevisionSpec:
    """Interpret a CLI revision argument as a spec file or an image reference."""
    path = Path(argument)
    if path.suffix.lower() in {".yaml", ".yml", ".json"} or path.is_file():
        return load_revision_spec(path)
    return spec_from_image(argument, family, **defaults)
