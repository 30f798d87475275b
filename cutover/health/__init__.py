"""
Health probing for deployment gates.

This module provides:
- HealthProber interface with Healthy / Unhealthy / TimedOut outcomes
- HTTP prober polling an endpoint at a fixed interval until a deadline
- Static prober for simulated runs
- Probe URL rendering from per-environment templates
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx

from ..enums import ProbeOutcome
from ..exceptions import ConfigurationError
from ..logger import get_logger
from ..models import HealthStatus, ProbeTarget, Revision, utcnow

logger = get_logger(__name__)

FAILING_STATUSES = frozenset({"unhealthy", "fail", "failed", "down", "error"})


def render_url(template: str, revision: Revision, environment: str) -> str:
    """Fill ``{revision_id}``, ``{short_id}``, ``{family}`` and ``{environment}``."""
    try:
        return template.format(
            revision_id=revision.revision_id,
            short_id=revision.short_id,
            family=revision.family,
            environment=environment,
        )
    except (KeyError, IndexError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid health URL template {template!r}: {e}",
            details={"template": template},
        )


def probe_target(template: str, revision: Revision, environment: str) -> ProbeTarget:
    return ProbeTarget(revision.revision_id, render_url(template, revision, environment))


def interpret_response(response: httpx.Response) -> tuple[bool, str]:
    """Classify one answer as passing or an explicit failure."""
    detail = f"HTTP {response.status_code}"
    if not response.is_success:
        return False, detail

    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return True, detail

    if isinstance(body, dict):
        status = body.get("status")
        if isinstance(status, str) and status.lower() in FAILING_STATUSES:
            return False, f"{detail} status={status}"
        if body.get("healthy") is False:
            return False, f"{detail} healthy=false"
    return True, detail


class HealthProber(ABC):
    """Abstract health prober."""

    @abstractmethod
    async def probe(self, target: ProbeTarget, timeout: float, interval: float) -> HealthStatus:
        """Poll ``target`` until it passes or ``timeout`` elapses."""


class HttpHealthProber(HealthProber):
    """Probe HTTP(S) endpoints with httpx."""

    def __init__(
        self,
        request_timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
        verify: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.request_timeout = request_timeout
        self.transport = transport
        self.headers = headers or {}
        self.verify = verify
        self._clock = clock
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport,
            timeout=self.request_timeout,
            headers=self.headers,
            verify=self.verify,
            follow_redirects=True,
        )

    async def _check_once(self, client: httpx.AsyncClient, url: str) -> tuple[bool | None, str]:
        """Return (True, ...) on success, (False, ...) on an explicit failure, (None, ...) on no answer."""
        try:
            response = await client.get(url)
        except httpx.TimeoutException:
            return None, "request timed out"
        except httpx.HTTPError as e:
            return None, f"{type(e).__name__}: {e}"
        return interpret_response(response)

    async def probe(self, target: ProbeTarget, timeout: float, interval: float) -> HealthStatus:
        deadline = self._clock() + timeout
        attempts = 0
        explicit_failures = 0
        detail = ""

        async with self._client() as client:
            while True:
                attempts += 1
                verdict, detail = await self._check_once(client, target.url)
                if verdict is True:
                    logger.info(
                        "Health probe passed",
                        revision=target.revision_id[:12],
                        url=target.url,
                        attempts=attempts,
                    )
                    return HealthStatus(
                        target=target.revision_id,
                        outcome=ProbeOutcome.HEALTHY,
                        checked_at=utcnow(),
                        detail=detail,
                        url=target.url,
                        attempts=attempts,
                    )
                if verdict is False:
                    explicit_failures += 1

                logger.debug(
                    "Health probe attempt failed",
                    url=target.url,
                    attempt=attempts,
                    detail=detail,
                )
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                await self._sleep(min(interval, remaining))

        outcome = (
            ProbeOutcome.UNHEALTHY if explicit_failures == attempts else ProbeOutcome.TIMED_OUT
        )
        logger.warning(
            "Health probe failed",
            revision=target.revision_id[:12],
            url=target.url,
            outcome=outcome.value,
            attempts=attempts,
            detail=detail,
        )
        return HealthStatus(
            target=target.revision_id,
            outcome=outcome,
            checked_at=utcnow(),
            detail=detail,
            url=target.url,
            attempts=attempts,
        )


class StaticHealthProber(HealthProber):
    """Answer every probe with a fixed outcome."""

    def __init__(self, outcome: ProbeOutcome = ProbeOutcome.HEALTHY, detail: str = "static"):
        self.outcome = outcome
        self.detail = detail
        self.probed: list[ProbeTarget] = []

    async def probe(self, target: ProbeTarget, timeout: float, interval: float) -> HealthStatus:
        self.probed.append(target)
        return HealthStatus(
            target=target.revision_id,
            outcome=self.outcome,
            detail=self.detail,
            url=target.url,
            attempts=1,
        )
