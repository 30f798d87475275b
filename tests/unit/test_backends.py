"""Tests for the in-memory cluster adapter and traffic controller."""

import pytest

from cutover.cluster import InMemoryClusterAdapter
from cutover.enums import RecordStatus, StabilityOutcome
from cutover.exceptions import InvalidSplitError, RegistrationError, ServiceUpdateError
from cutover.models import DeploymentRecord
from cutover.traffic import InMemoryTrafficController
from tests.utils.test_helpers import make_spec, revision_of


class TestInMemoryClusterAdapter:
    @pytest.mark.asyncio
    async def test_register_is_idempotent(self):
        cluster = InMemoryClusterAdapter()

        first = await cluster.register_revision(make_spec("1.0.0"))
        second = await cluster.register_revision(make_spec("1.0.0"))

        assert first is second
        assert first.backend_ref.startswith("memory://web/")

    @pytest.mark.asyncio
    async def test_invalid_spec(self):
        with pytest.raises(RegistrationError):
            await InMemoryClusterAdapter().register_revision({"family": "web"})

    @pytest.mark.asyncio
    async def test_update_service_tracks_current(self):
        cluster = InMemoryClusterAdapter()
        revision = await cluster.register_revision(make_spec())

        assert await cluster.current_revision("staging") is None
        await cluster.update_service("staging", revision)

        assert await cluster.current_revision("staging") == revision
        assert cluster.is_deployed("staging", revision.revision_id)
        assert not cluster.is_deployed("production", revision.revision_id)
        assert await cluster.list_revisions("staging") == [revision]

    @pytest.mark.asyncio
    async def test_update_unregistered_revision(self):
        with pytest.raises(ServiceUpdateError):
            await InMemoryClusterAdapter().update_service("staging", revision_of(make_spec()))

    @pytest.mark.asyncio
    async def test_failure_injection(self):
        cluster = InMemoryClusterAdapter()
        revision = await cluster.register_revision(make_spec())
        cluster.failures.add("update_service", ServiceUpdateError("boom"), times=1)

        with pytest.raises(ServiceUpdateError, match="boom"):
            await cluster.update_service("staging", revision)
        await cluster.update_service("staging", revision)

    @pytest.mark.asyncio
    async def test_failure_injection_by_revision(self):
        cluster = InMemoryClusterAdapter()
        v1 = await cluster.register_revision(make_spec("1.0.0"))
        v2 = await cluster.register_revision(make_spec("2.0.0"))
        cluster.failures.add(
            "update_service", ServiceUpdateError("v2 only"), revision_id=v2.revision_id, times=None
        )

        await cluster.update_service("staging", v1)
        for _ in range(2):
            with pytest.raises(ServiceUpdateError):
                await cluster.update_service("staging", v2)

    @pytest.mark.asyncio
    async def test_stability_outcome(self):
        cluster = InMemoryClusterAdapter()
        assert await cluster.wait_stable("staging", 10) == StabilityOutcome.STABLE
        cluster.stability["staging"] = StabilityOutcome.TIMED_OUT
        assert await cluster.wait_stable("staging", 10) == StabilityOutcome.TIMED_OUT

    @pytest.mark.asyncio
    async def test_retire_revision(self):
        cluster = InMemoryClusterAdapter()
        v1 = await cluster.register_revision(make_spec("1.0.0"))
        v2 = await cluster.register_revision(make_spec("2.0.0"))
        await cluster.update_service("staging", v1)
        await cluster.update_service("staging", v2)

        await cluster.retire_revision("staging", v2)
        await cluster.retire_revision("staging", v2)

        assert not cluster.is_deployed("staging", v2.revision_id)
        assert cluster.is_deployed("staging", v1.revision_id)
        assert await cluster.current_revision("staging") is None
        assert await cluster.list_revisions("staging") == [v1]

    @pytest.mark.asyncio
    async def test_seed_from_record(self):
        blue = revision_of(make_spec("1.0.0"))
        green = revision_of(make_spec("2.0.0"))
        cluster = InMemoryClusterAdapter()

        cluster.seed_from_record(
            DeploymentRecord("staging", active=green, previous=blue, status=RecordStatus.HEALTHY)
        )

        assert await cluster.current_revision("staging") == green
        assert cluster.is_deployed("staging", blue.revision_id)


class TestInMemoryTrafficController:
    @pytest.mark.asyncio
    async def test_set_and_read_split(self):
        traffic = InMemoryTrafficController()
        assert await traffic.current_split("staging") is None

        split = await traffic.set_split("staging", {"blue": 80, "green": 20})

        assert await traffic.current_split("staging") == split
        assert traffic.history == [split]

    @pytest.mark.asyncio
    async def test_invalid_weights_leave_split_untouched(self):
        traffic = InMemoryTrafficController()
        traffic.seed("staging", "blue")

        with pytest.raises(InvalidSplitError):
            await traffic.set_split("staging", {"blue": 60, "green": 60})

        assert (await traffic.current_split("staging")).serving == "blue"

    @pytest.mark.asyncio
    async def test_unknown_revision(self):
        cluster = InMemoryClusterAdapter()
        traffic = InMemoryTrafficController(is_known=cluster.is_deployed)

        with pytest.raises(InvalidSplitError) as exc_info:
            await traffic.set_split("staging", {"ghost": 100})

        assert exc_info.value.details["unknown"] == ["ghost"]
