"""Tests for data models: traffic splits, records and reports."""

import json

import pytest

from cutover.enums import DeploymentState, FailureKind, RecordStatus
from cutover.exceptions import InvalidSplitError, UnhealthyError
from cutover.models import DeploymentRecord, DeploymentReport, RollbackReport, TrafficSplit
from tests.utils.test_helpers import make_spec, revision_of


class TestTrafficSplit:
    """Weights must be non-negative integers over at most two revisions summing to 100."""

    def test_all_to_single_revision(self):
        split = TrafficSplit.all_to("staging", "abc")
        assert split.weights == {"abc": 100}
        assert split.serving == "abc"
        assert split.weight_of("other") == 0

    def test_two_revisions(self):
        split = TrafficSplit("staging", {"blue": 90, "green": 10})
        assert split.serving is None
        assert split.weight_of("green") == 10

    @pytest.mark.parametrize(
        "weights",
        [
            {},
            {"a": 50, "b": 40},
            {"a": 101, "b": -1},
            {"a": 34, "b": 33, "c": 33},
            {"a": 50.0, "b": 50},
            {"a": True, "b": 99},
        ],
    )
    def test_rejects_invalid_weights(self, weights):
        with pytest.raises(InvalidSplitError) as exc_info:
            TrafficSplit("staging", weights)
        assert exc_info.value.kind == FailureKind.INVALID_SPLIT


class TestDeploymentRecord:
    def test_json_round_trip(self):
        blue = revision_of(make_spec("1.0.0", environment={"LOG_LEVEL": "info"}))
        green = revision_of(make_spec("2.0.0"))
        record = DeploymentRecord(
            environment="staging",
            active=green,
            previous=blue,
            status=RecordStatus.HEALTHY,
            last_outcome={"operation": "deploy", "state": "succeeded"},
        )

        restored = DeploymentRecord.from_dict(json.loads(json.dumps(record.to_dict())))

        assert restored.active == green
        assert restored.previous == blue
        assert restored.previous.environment == {"LOG_LEVEL": "info"}
        assert restored.status == RecordStatus.HEALTHY
        assert restored.candidate is None
        assert restored.last_outcome == {"operation": "deploy", "state": "succeeded"}


class TestReports:
    def test_success_exits_zero(self):
        report = DeploymentReport("d1", "staging", "abc", "web:1", state=DeploymentState.SUCCEEDED)
        assert report.succeeded
        assert report.exit_code == 0

    def test_rolled_back_exits_with_original_failure(self):
        report = DeploymentReport(
            "d1",
            "staging",
            "abc",
            "web:1",
            state=DeploymentState.ROLLED_BACK,
            error=UnhealthyError("bad"),
        )
        assert report.exit_code == FailureKind.UNHEALTHY.exit_code == 12

    def test_rollback_failed_exit_code(self):
        report = DeploymentReport(
            "d1",
            "staging",
            "abc",
            "web:1",
            state=DeploymentState.ROLLBACK_FAILED,
            error=UnhealthyError("bad"),
        )
        assert report.exit_code == 17

    def test_rollback_report_serving(self):
        report = RollbackReport(
            environment="staging",
            target=revision_of(make_spec()),
            state=DeploymentState.ROLLED_BACK,
            traffic=TrafficSplit.all_to("staging", "abc"),
        )
        assert report.serving == "abc"
        assert report.exit_code == 0
        assert report.to_dict()["serving"] == "abc"

    def test_report_to_dict_is_json_serialisable(self):
        report = DeploymentReport(
            "d1",
            "staging",
            "abc",
            "web:1",
            state=DeploymentState.FAILED,
            states=[DeploymentState.IDLE, DeploymentState.REGISTERING, DeploymentState.FAILED],
            error=UnhealthyError("bad", details={"attempts": 3}),
        )
        data = json.loads(json.dumps(report.to_dict()))
        assert data["states"] == ["idle", "registering", "failed"]
        assert data["error"]["kind"] == "unhealthy"
        assert data["error"]["details"] == {"attempts": 3}
