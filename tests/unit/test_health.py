"""Tests for health probing."""

import httpx
import pytest

from cutover.enums import ProbeOutcome
from cutover.exceptions import ConfigurationError
from cutover.health import HttpHealthProber, StaticHealthProber, interpret_response, render_url
from cutover.models import ProbeTarget
from tests.utils.test_helpers import make_spec, revision_of

URL = "http://green.staging.internal:8080/health"


def prober_for(handler, clock) -> HttpHealthProber:
    return HttpHealthProber(
        request_timeout=1.0,
        transport=httpx.MockTransport(handler),
        clock=clock,
        sleep=clock.sleep,
    )


def sequence(*responses):
    """Handler answering with the given responses in order, repeating the last."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        index = min(len(calls), len(responses) - 1)
        calls.append(request)
        answer = responses[index]
        if isinstance(answer, Exception):
            raise answer
        return answer

    handler.calls = calls
    return handler


class TestInterpretResponse:
    @pytest.mark.parametrize(
        "response, passed",
        [
            (httpx.Response(200, text="ok"), True),
            (httpx.Response(204), True),
            (httpx.Response(200, json={"status": "healthy"}), True),
            (httpx.Response(200, json={"status": "UNHEALTHY"}), False),
            (httpx.Response(200, json={"status": "down"}), False),
            (httpx.Response(200, json={"healthy": False}), False),
            (httpx.Response(200, json=["fail"]), True),
            (httpx.Response(500, json={"status": "healthy"}), False),
            (httpx.Response(404), False),
        ],
    )
    def test_classification(self, response, passed):
        assert interpret_response(response)[0] is passed


class TestHttpHealthProber:
    @pytest.mark.asyncio
    async def test_healthy_on_first_answer(self, fake_clock):
        handler = sequence(httpx.Response(200, json={"status": "healthy"}))

        status = await prober_for(handler, fake_clock).probe(ProbeTarget("green", URL), 5, 1)

        assert status.outcome == ProbeOutcome.HEALTHY
        assert status.passed
        assert status.attempts == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_transient_failure_does_not_short_circuit(self, fake_clock):
        handler = sequence(
            httpx.Response(503),
            httpx.ConnectError("refused"),
            httpx.Response(200),
        )

        status = await prober_for(handler, fake_clock).probe(ProbeTarget("green", URL), 5, 1)

        assert status.outcome == ProbeOutcome.HEALTHY
        assert status.attempts == 3
        assert fake_clock.sleeps == [1, 1]

    @pytest.mark.asyncio
    async def test_unhealthy_when_every_answer_fails(self, fake_clock):
        handler = sequence(httpx.Response(200, json={"status": "unhealthy"}))

        status = await prober_for(handler, fake_clock).probe(ProbeTarget("green", URL), 5, 1)

        assert status.outcome == ProbeOutcome.UNHEALTHY
        assert status.attempts == 6
        assert "status=unhealthy" in status.detail

    @pytest.mark.asyncio
    async def test_timed_out_without_answers(self, fake_clock):
        handler = sequence(httpx.ConnectError("refused"))

        status = await prober_for(handler, fake_clock).probe(ProbeTarget("green", URL), 3, 1)

        assert status.outcome == ProbeOutcome.TIMED_OUT
        assert status.attempts == 4

    @pytest.mark.asyncio
    async def test_mixed_failures_time_out(self, fake_clock):
        handler = sequence(httpx.Response(500), httpx.ReadTimeout("slow"))

        status = await prober_for(handler, fake_clock).probe(ProbeTarget("green", URL), 2, 1)

        assert status.outcome == ProbeOutcome.TIMED_OUT
        assert status.detail == "request timed out"

    @pytest.mark.asyncio
    async def test_sleep_never_overshoots_deadline(self, fake_clock):
        handler = sequence(httpx.Response(503))

        await prober_for(handler, fake_clock).probe(ProbeTarget("green", URL), 2.5, 1)

        assert fake_clock.sleeps == [1, 1, 0.5]


class TestStaticHealthProber:
    @pytest.mark.asyncio
    async def test_returns_fixed_outcome(self):
        prober = StaticHealthProber(ProbeOutcome.UNHEALTHY)
        status = await prober.probe(ProbeTarget("green", URL), 1, 1)
        assert status.outcome == ProbeOutcome.UNHEALTHY
        assert prober.probed == [ProbeTarget("green", URL)]


class TestRenderUrl:
    def test_placeholders(self):
        revision = revision_of(make_spec())
        url = render_url(
            "http://{short_id}.{environment}.internal/{family}?rev={revision_id}",
            revision,
            "staging",
        )
        assert url == (
            f"http://{revision.short_id}.staging.internal/web?rev={revision.revision_id}"
        )

    def test_unknown_placeholder(self):
        with pytest.raises(ConfigurationError):
            render_url("http://{host}/health", revision_of(make_spec()), "staging")
