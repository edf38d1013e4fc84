import asyncio
from datetime import datetime, timezone

import pytest

from flux_client import HttpResponse
from flux_config import RunConfig, Scenario
from flux_errors import TransportError
from flux_metrics import RequestOutcome


class FakeClient:
    """
    Stand-in for HttpClient. ``routes`` maps a URL suffix to either an
    HttpResponse or an exception instance to raise.
    """

    def __init__(self, routes=None, delay=0.0):
        self.routes = routes or {}
        self.delay = delay
        self.calls = []
        self.closed = False

    async def execute(self, method, url, headers=None, body=None, multipart=None):
        self.calls.append({
            "method": method,
            "url": url,
            "headers": dict(headers or {}),
            "body": body,
            "multipart": multipart,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        for suffix, result in self.routes.items():
            if url.endswith(suffix):
                if isinstance(result, Exception):
                    raise result
                return result
        return HttpResponse(status=200, body=b"{}")

    async def close(self):
        self.closed = True


class FakeClientFactory:
    """Creates one FakeClient per worker and remembers all of them."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.clients = []

    def __call__(self):
        client = FakeClient(**self.kwargs)
        self.clients.append(client)
        return client

    @property
    def total_calls(self):
        return sum(len(c.calls) for c in self.clients)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def simple_config():
    return RunConfig(target="http://api.test/ping", concurrency=4, duration="1s")


@pytest.fixture
def login_chain():
    return [
        Scenario(
            name="login",
            method="POST",
            url="/login",
            body='{"user": "john"}',
            extract={"token": "$.token", "user": "$.user.name"},
        ),
        Scenario(
            name="profile",
            method="GET",
            url="/profile",
            headers={"Authorization": "Bearer {{ token }}"},
            body='{"name": "{{ user }}"}',
            depends_on="login",
        ),
    ]


def make_outcome(latency_ms, error=None, status_code=200, scenario_name=None):
    now = datetime.now(timezone.utc)
    return RequestOutcome(
        scenario_name=scenario_name,
        latency_ms=latency_ms,
        status_code=0 if error else status_code,
        error=error,
        request_start_timestamp=now,
        request_end_timestamp=now,
    )


def transport_error(message="Connection error: refused"):
    return TransportError(message)
