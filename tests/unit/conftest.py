"""Shared fixtures: a scripted Amplitude API behind httpx.MockTransport."""

import json
from datetime import date

import httpx
import pytest

from usage_engine.config import ProductCredentials
from usage_engine.core.resilience import RetryConfig
from usage_engine.services.usage.cache import UsageCache
from usage_engine.services.usage.engine import UsageEngine
from usage_engine.services.usage.gateway import RequestGateway
from usage_engine.services.usage.limiter import ProjectQueryQueue

BASE_URL = "https://amplitude.test/api/2"
TODAY = date(2026, 2, 15)


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAmplitude:
    """
    Scripted Amplitude Dashboard API.

    - /users: active/new series from ``users``
    - /events/segmentation: grouped responses from ``grouped`` (keyed by
      event), ungrouped counts from ``counts`` (keyed by (event, metric)),
      else ``default_count``
    - ``failures`` maps an event type or path to an HTTP status to return
    - ``raw_bodies`` maps an event type or path to a raw 200 body (not JSON)
    """

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.counts: dict[tuple[str, str], float] = {}
        self.default_count: float = 2
        self.grouped: dict[str, dict] = {}
        self.failures: dict[str, int] = {}
        self.raw_bodies: dict[str, str] = {}
        self.users = {
            "active": {"series": [[5, 7, None]], "xValues": ["2026-02-13", "2026-02-14", "2026-02-15"]},
            "new": {"series": [[1, 0, 2]], "xValues": ["2026-02-13", "2026-02-14", "2026-02-15"]},
        }
        self.event_list = [{"name": f"event_{i}"} for i in range(12)]
        self.user_properties = [{"user_property": "org_name"}, {"user_property": "email"}]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path.removeprefix("/api/2")
        params = request.url.params

        if path in self.failures:
            return httpx.Response(self.failures[path], text="scripted failure")
        if path in self.raw_bodies:
            return httpx.Response(200, text=self.raw_bodies[path])

        if path == "/users":
            return httpx.Response(200, json={"data": self.users[params["m"]]})
        if path == "/events/list":
            return httpx.Response(200, json={"data": self.event_list})
        if path == "/taxonomy/user-property":
            return httpx.Response(200, json={"success": True, "data": self.user_properties})
        if path == "/events/segmentation":
            event = json.loads(params["e"])["event_type"]
            if event in self.failures:
                return httpx.Response(self.failures[event], text="scripted failure")
            if event in self.raw_bodies:
                return httpx.Response(200, text=self.raw_bodies[event])
            if "g" in params:
                return httpx.Response(200, json={"data": self.grouped.get(event, {})})
            count = self.counts.get((event, params["m"]), self.default_count)
            return httpx.Response(
                200,
                json={"data": {"series": [[count]], "seriesLabels": [0], "xValues": ["x"]}},
            )
        return httpx.Response(404, text="unknown endpoint")

    def segmentation_calls(self) -> list[dict]:
        """Decoded ``e`` parameter and metric of each segmentation call."""
        decoded = []
        for request in self.calls:
            if request.url.path.endswith("/events/segmentation"):
                event = json.loads(request.url.params["e"])
                decoded.append({**event, "m": request.url.params["m"]})
        return decoded


@pytest.fixture
def amplitude():
    return FakeAmplitude()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def product():
    return ProductCredentials(
        name="Axe DevTools", project_id="proj-1", api_key="api", secret_key="secret"
    )


@pytest.fixture
def http_client(amplitude):
    return httpx.AsyncClient(transport=httpx.MockTransport(amplitude))


@pytest.fixture
def engine(amplitude, clock, product, http_client):
    gateway = RequestGateway(
        api_key=product.api_key,
        secret_key=product.secret_key,
        base_url=BASE_URL,
        retry=RetryConfig(max_retries=0),
        client=http_client,
    )
    return UsageEngine(
        product=product,
        gateway=gateway,
        cache=UsageCache(default_ttl_minutes=15, clock=clock),
        queue=ProjectQueryQueue(max_concurrent=1),
        today=lambda: TODAY,
    )
