"""
Global pytest configuration and fixtures for cutover testing.

Fixtures build the in-memory backends from tests.utils.test_helpers so every
test starts from an isolated world: its own lease registry, state store and
metrics registry.
"""

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from tests.utils.test_helpers import FakeClock, Harness, make_config, make_harness, make_spec


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def config():
    """Configuration with staging and production environments."""
    return make_config()


@pytest.fixture
def harness(config) -> Harness:
    """In-memory cluster, traffic, prober and store wired to an orchestrator."""
    return make_harness(config)


@pytest.fixture
def orchestrator(harness):
    return harness.orchestrator


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def v1_spec() -> dict:
    return make_spec("1.0.0")


@pytest.fixture
def v2_spec() -> dict:
    return make_spec("2.0.0")
