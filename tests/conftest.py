"""
Shared fixtures for BMC supervisor tests.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

# must be set before bmc.config is imported
_db_dir = Path(tempfile.mkdtemp(prefix="bmc-tests-"))
os.environ.setdefault("BMC_DATABASE_URL", f"sqlite:///{_db_dir / 'bmc.db'}")

import pytest

from bmc.errors import TransportError
from bmc.redfish_client import RedfishClient, RedfishResponse, ServerConfig
from bmc.services.waiter import Waiter
from bmc.sync_pool import EndpointMutexRegistry


class FakeClock:
    """Monotonic clock whose sleep just advances time"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.start = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def elapsed(self) -> float:
        return self.now - self.start


def make_response(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None) -> RedfishResponse:
    raw = b"" if body is None else (body if isinstance(body, bytes) else json.dumps(body).encode())
    return RedfishResponse(status_code=status, headers=dict(headers or {}), body=raw)


class FakeRedfishClient(RedfishClient):
    """
    Route table keyed by (METHOD, path). Each route holds a queue of
    responses (or exceptions); the last one keeps being returned.
    """

    def __init__(self, base_url: str = "https://bmc.test"):
        self.server = ServerConfig(endpoint=base_url, username="admin", password="admin")
        self.base_url = base_url
        self.routes: Dict[tuple, list] = {}
        self.calls: List[tuple] = []
        self.closed = False

    def add(self, method: str, path: str, *responses) -> "FakeRedfishClient":
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    def add_json(self, path: str, body: Any) -> "FakeRedfishClient":
        return self.add("GET", path, make_response(200, body))

    def request(self, method, path, payload=None, headers=None, files=None):
        self.calls.append((method, path, payload if files is None else files, headers))
        queue = self.routes.get((method, path))
        if not queue:
            raise TransportError(f"No route for {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def calls_to(self, method: str, path: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method and c[1] == path]

    def close(self):
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def waiter(clock) -> Waiter:
    return Waiter(sleep=clock.sleep, clock=clock)


@pytest.fixture
def fake_client() -> FakeRedfishClient:
    return FakeRedfishClient()


@pytest.fixture
def registry() -> EndpointMutexRegistry:
    return EndpointMutexRegistry()


@pytest.fixture
def respond():
    """Builder for RedfishResponse objects."""
    return make_response


@pytest.fixture
def server() -> ServerConfig:
    return ServerConfig(endpoint="bmc.test", username="admin", password="secret", ssl_insecure=True)


@pytest.fixture
def make_client():
    """Factory for additional fake clients (e.g. the session after a BMC reset)."""
    return FakeRedfishClient
