"""Tests for configuration loading."""

from pathlib import Path

import pytest

from cutover.config import Backend, CutoverConfig, LogLevel, load_config
from cutover.exceptions import ConfigurationError

CONFIG_YAML = """
backend: aws
state_dir: /var/lib/cutover
aws:
  region: eu-west-1
health:
  timeout: 60
  interval: 2
observability:
  log_level: DEBUG
  log_format: json
revision_defaults:
  cpu: 512
  memory: 1024
environments:
  production:
    service_name: web
    cluster: prod
    private_health_url: "http://{short_id}.internal/health"
    public_health_url: "https://example.com/health"
    listener_arn: arn:aws:elasticloadbalancing:listener/app/web/1/2
    test_listener_arn: arn:aws:elasticloadbalancing:listener/app/web/1/3
    vpc_id: vpc-123
    subnets: [subnet-a, subnet-b]
"""


class TestCutoverConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CUTOVER_BACKEND", raising=False)
        config = CutoverConfig()
        assert config.backend == Backend.SIMULATED
        assert config.state_dir == Path(".cutover")
        assert config.health.timeout == 120.0
        assert config.environments == {}

    def test_from_yaml(self, temp_dir):
        path = temp_dir / "cutover.yaml"
        path.write_text(CONFIG_YAML)

        config = load_config(path)

        assert config.backend == Backend.AWS
        assert config.aws.region == "eu-west-1"
        assert config.health.timeout == 60
        assert config.observability.log_level == LogLevel.DEBUG
        production = config.environment("production")
        assert production.task_family == "web"
        assert production.subnets == ["subnet-a", "subnet-b"]
        assert config.revision_defaults_for_spec()["cpu"] == 512

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("CUTOVER_BACKEND", "aws")
        monkeypatch.setenv("CUTOVER_HEALTH__TIMEOUT", "42")

        config = load_config()

        assert config.backend == Backend.AWS
        assert config.health.timeout == 42

    def test_unknown_environment(self, config):
        with pytest.raises(ConfigurationError, match="Unknown environment 'qa'"):
            config.environment("qa")

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(temp_dir / "nope.yaml")

    def test_invalid_values(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("observability:\n  log_format: xml\n")
        with pytest.raises(ConfigurationError, match="validation failed"):
            load_config(path)

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "broken.yaml"
        path.write_text("environments: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)
