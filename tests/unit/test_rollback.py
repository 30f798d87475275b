"""Tests for the standalone rollback coordinator."""

import pytest

from cutover.enums import DeploymentState, FailureKind, ProbeOutcome, RecordStatus
from cutover.exceptions import DeploymentInProgressError, NoRollbackTargetError, TrafficControlError
from cutover.models import DeploymentRecord
from tests.utils.test_helpers import make_spec


@pytest.fixture
def coordinator(harness):
    return harness.orchestrator.rollback_coordinator


class TestRollback:
    @pytest.mark.asyncio
    async def test_restores_previous_revision(self, harness, coordinator):
        v2 = harness.seed_active("staging", make_spec("2.0.0"), previous=make_spec("1.0.0"))
        v1 = harness.store.load("staging").previous

        report = await coordinator.rollback("staging")

        assert report.state == DeploymentState.ROLLED_BACK
        assert report.states == [DeploymentState.ROLLING_BACK, DeploymentState.ROLLED_BACK]
        assert report.exit_code == 0
        assert report.serving == v1.revision_id
        assert harness.serving("staging") == v1.revision_id
        assert harness.prober.probed[-1].url == "https://staging.example.com/health"

        record = harness.store.load("staging")
        assert record.active == v1
        assert record.previous == v1
        assert record.status == RecordStatus.ROLLED_BACK
        assert record.last_outcome["operation"] == "rollback"
        assert harness.cluster.is_deployed("staging", v2.revision_id)

    @pytest.mark.asyncio
    async def test_repeated_rollbacks_are_stable(self, harness, coordinator):
        harness.seed_active("staging", make_spec("2.0.0"), previous=make_spec("1.0.0"))
        v1 = harness.store.load("staging").previous

        await coordinator.rollback("staging")
        report = await coordinator.rollback("staging")

        assert report.succeeded
        assert harness.store.load("staging").active == v1
        assert harness.serving("staging") == v1.revision_id

    @pytest.mark.asyncio
    async def test_order_of_operations(self, harness, coordinator):
        harness.seed_active("staging", make_spec("2.0.0"), previous=make_spec("1.0.0"))

        await coordinator.rollback("staging")

        assert harness.traffic.calls == [("set_split", "staging")]
        assert [call[0] for call in harness.cluster.calls] == ["update_service", "wait_stable"]

    @pytest.mark.asyncio
    async def test_no_record(self, harness, coordinator):
        with pytest.raises(NoRollbackTargetError) as exc_info:
            await coordinator.rollback("staging")

        assert exc_info.value.kind.exit_code == 16
        assert harness.cluster.calls == []
        assert harness.traffic.calls == []
        assert not harness.leases.is_held("staging")

    @pytest.mark.asyncio
    async def test_record_without_previous(self, harness, coordinator):
        harness.seed_active("staging", make_spec("1.0.0"))

        with pytest.raises(NoRollbackTargetError):
            await coordinator.rollback("staging")

        assert harness.cluster.calls == []
        assert harness.traffic.calls == []

    @pytest.mark.asyncio
    async def test_unhealthy_previous_revision(self, harness, coordinator):
        harness.seed_active("staging", make_spec("2.0.0"), previous=make_spec("1.0.0"))
        v1 = harness.store.load("staging").previous
        harness.prober.set_outcome(ProbeOutcome.UNHEALTHY, revision_id=v1.revision_id)

        report = await coordinator.rollback("staging")

        assert report.state == DeploymentState.ROLLBACK_FAILED
        assert report.exit_code == 17
        assert report.error.details["cause"]["kind"] == FailureKind.UNHEALTHY.value
        assert report.error.details["traffic"]["weights"] == {v1.revision_id: 100}
        assert harness.store.load("staging").status == RecordStatus.FAILED

    @pytest.mark.asyncio
    async def test_traffic_unknown_when_unobservable(self, harness, coordinator):
        harness.seed_active("staging", make_spec("2.0.0"), previous=make_spec("1.0.0"))
        harness.traffic.failures.add("set_split", TrafficControlError("listener gone"))
        harness.traffic.failures.add("current_split", TrafficControlError("listener gone"))

        report = await coordinator.rollback("staging")

        assert report.state == DeploymentState.ROLLBACK_FAILED
        assert report.traffic is None
        assert report.serving is None
        assert report.error.details["traffic"] == "unknown"

    @pytest.mark.asyncio
    async def test_busy_environment(self, harness, coordinator):
        harness.seed_active("staging", make_spec("2.0.0"), previous=make_spec("1.0.0"))

        with harness.leases.acquire("staging", "someone else"):
            with pytest.raises(DeploymentInProgressError):
                await coordinator.rollback("staging")

        assert harness.traffic.calls == []

    @pytest.mark.asyncio
    async def test_rollback_after_failed_deployment(self, harness):
        """A deployment whose rollback failed can be retried by the coordinator."""
        v1 = harness.seed_active("staging", make_spec("1.0.0"))
        v2_spec = make_spec("2.0.0")
        harness.prober.set_outcome(ProbeOutcome.UNHEALTHY, url_contains="example.com", times=2)

        report = await harness.orchestrator.deploy("staging", v2_spec)
        assert report.state == DeploymentState.ROLLBACK_FAILED

        retry = await harness.orchestrator.rollback("staging")

        assert retry.succeeded
        record = harness.store.load("staging")
        assert record.active == v1
        assert isinstance(record, DeploymentRecord)
