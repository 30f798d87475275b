"""
Configuration management for cutover.

This module provides a unified configuration system that supports:
- YAML configuration files
- Environment variable overrides (``CUTOVER_`` prefix, ``__`` for nesting)
- Per-environment deployment targets (cluster, service, listeners, probes)
- Defaults for revision specs built from a bare image reference
"""

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


class Backend(str, Enum):
    """Supported backends."""

    SIMULATED = "simulated"
    AWS = "aws"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AwsConfig(BaseModel):
    """AWS session configuration."""

    region: str | None = Field(default=None, description="AWS region")
    profile: str | None = Field(default=None, description="Named AWS profile")


class HealthConfig(BaseModel):
    """Probe and stability timing."""

    timeout: float = Field(default=120.0, gt=0, description="Probe window in seconds")
    interval: float = Field(default=5.0, gt=0, description="Seconds between probes")
    request_timeout: float = Field(
        default=3.0, gt=0, description="Per-request timeout in seconds"
    )
    stability_timeout: float = Field(
        default=600.0, gt=0, description="Max seconds to wait for service convergence"
    )
    stability_poll_interval: float = Field(
        default=15.0, gt=0, description="Seconds between stability polls"
    )


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(default="console", description="Log format (json|console)")
    log_file: str | None = Field(default=None, description="Optional log file")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v


class PortMappingDefault(BaseModel):
    container_port: int = 8080
    protocol: str = "tcp"


class RevisionDefaults(BaseModel):
    """Defaults applied when a revision is given as a bare image reference."""

    cpu: int = Field(default=256, gt=0)
    memory: int = Field(default=512, gt=0)
    port_mappings: list[PortMappingDefault] = Field(
        default_factory=lambda: [PortMappingDefault()]
    )
    log_target: dict[str, Any] | None = None
    environment: dict[str, str] = Field(default_factory=dict)


class EnvironmentConfig(BaseModel):
    """One deployment target (staging, production, ...)."""

    service_name: str = Field(..., description="Logical service name")
    family: str | None = Field(default=None, description="Task family, defaults to service name")
    cluster: str = Field(default="default", description="ECS cluster")
    private_health_url: str = Field(
        ..., description="Probe URL of a not-yet-live revision ({short_id}, {revision_id}, ...)"
    )
    public_health_url: str = Field(..., description="Probe URL through the live traffic path")
    desired_count: int = Field(default=2, ge=1)

    # AWS wiring
    listener_arn: str | None = Field(default=None, description="Production listener")
    test_listener_arn: str | None = Field(default=None, description="Listener for private probes")
    vpc_id: str | None = None
    subnets: list[str] = Field(default_factory=list)
    security_groups: list[str] = Field(default_factory=list)
    assign_public_ip: bool = False
    execution_role_arn: str | None = None
    task_role_arn: str | None = None
    container_port: int = Field(default=8080, ge=1, le=65535)
    health_check_path: str = "/health"

    @property
    def task_family(self) -> str:
        return self.family or self.service_name


class CutoverConfig(BaseSettings):
    """Main orchestrator configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CUTOVER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    backend: Backend = Field(default=Backend.SIMULATED)
    state_dir: Path = Field(default=Path(".cutover"))
    aws: AwsConfig = Field(default_factory=AwsConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    revision_defaults: RevisionDefaults = Field(default_factory=RevisionDefaults)
    environments: dict[str, EnvironmentConfig] = Field(default_factory=dict)

    @classmethod
    def from_yaml(cls, file_path: str | Path) -> "CutoverConfig":
        """Load configuration from YAML file."""
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {file_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML configuration: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}")

    @classmethod
    def from_env(cls) -> "CutoverConfig":
        """Load configuration from environment variables."""
        try:
            return cls()
        except ValidationError as e:
            raise ConfigurationError(f"Environment configuration validation failed: {e}")

    def environment(self, name: str) -> EnvironmentConfig:
        """Return the configuration of a named environment."""
        try:
            return self.environments[name]
        except KeyError:
            known = ", ".join(sorted(self.environments)) or "none"
            raise ConfigurationError(
                f"Unknown environment '{name}' (configured: {known})",
                details={"environment": name},
            )

    def revision_defaults_for_spec(self) -> dict[str, Any]:
        """Revision defaults as keyword arguments for spec_from_image."""
        return self.revision_defaults.model_dump(exclude_none=True)


def load_config(yaml_file: str | Path | None = None) -> CutoverConfig:
    """
    Load configuration.

    Priority order:
    1. YAML file (if provided); environment variables still fill unset fields
    2. Environment variables
    3. Defaults
    """
    if yaml_file is not None:
        return CutoverConfig.from_yaml(yaml_file)
    return CutoverConfig.from_env()
