"""
Tests for bmc/services/reconnect.py
"""

import pytest

from bmc.errors import OperationCancelled, OperationTimeout, TransportError
from bmc.redfish_client import SERVICE_ROOT
from bmc.services.reconnect import ReconnectSupervisor
from bmc.services.waiter import CancelToken, Waiter


class FlakyConnector:
    """Fails a number of times before handing out a client."""

    def __init__(self, failures, client):
        self.failures = failures
        self.client = client
        self.attempts = 0

    def __call__(self, server):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise TransportError(f"connection to {server.endpoint} refused")
        return self.client


class TestReconnectWithRetry:
    """Tests for ReconnectSupervisor.reconnect_with_retry."""

    def test_connects_after_failures(self, server, fake_client, waiter, clock):
        connector = FlakyConnector(2, fake_client)
        supervisor = ReconnectSupervisor(connector=connector, retry_interval=30, waiter=waiter)
        client, error = supervisor.reconnect_with_retry(server, timeout_seconds=600)
        assert error is None
        assert client is fake_client
        assert connector.attempts == 3
        assert clock.sleeps == [30, 30]

    def test_times_out(self, server, fake_client, waiter, clock):
        connector = FlakyConnector(1000, fake_client)
        supervisor = ReconnectSupervisor(connector=connector, retry_interval=30, waiter=waiter)
        client, error = supervisor.reconnect_with_retry(server, timeout_seconds=600)
        assert client is None
        assert isinstance(error, OperationTimeout)
        assert error.message == "Connection to bmc.test timed out after 600 seconds"
        assert error.diagnostics[0].summary == "Last connection error"
        # attempts at 0, 30, ... 600
        assert connector.attempts == 21

    def test_cancelled(self, server, fake_client, clock):
        token = CancelToken()
        connector = FlakyConnector(1000, fake_client)

        def sleep(seconds):
            clock.sleep(seconds)
            token.cancel()

        supervisor = ReconnectSupervisor(connector=connector, waiter=Waiter(sleep=sleep, clock=clock))
        client, error = supervisor.reconnect_with_retry(server, cancel_token=token)
        assert client is None
        assert isinstance(error, OperationCancelled)
        assert connector.attempts == 1


class TestAwaitReady:
    """Tests for ReconnectSupervisor.await_ready."""

    @pytest.fixture
    def supervisor(self, waiter):
        return ReconnectSupervisor(connector=lambda s: None, warmup_seconds=45, waiter=waiter)

    def test_warmup_then_poll(self, supervisor, fake_client, respond, clock):
        """Errors and non-2xx answers mean not ready yet."""
        fake_client.add(
            "GET", SERVICE_ROOT,
            TransportError("connection refused"),
            respond(503),
            respond(200, {"RedfishVersion": "1.11.0"}),
        )
        error = supervisor.await_ready(fake_client, poll_interval=10, timeout_seconds=600)
        assert error is None
        assert clock.sleeps == [45, 10, 10]
        assert len(fake_client.calls_to("GET", SERVICE_ROOT)) == 3

    def test_ready_immediately_after_warmup(self, supervisor, fake_client, respond, clock):
        fake_client.add("GET", SERVICE_ROOT, respond(200, {}))
        assert supervisor.await_ready(fake_client, poll_interval=10, timeout_seconds=600) is None
        assert clock.sleeps == [45]

    def test_timeout(self, supervisor, fake_client, respond, clock):
        fake_client.add("GET", SERVICE_ROOT, respond(503))
        error = supervisor.await_ready(fake_client, poll_interval=10, timeout_seconds=30)
        assert isinstance(error, OperationTimeout)
        assert error.message == "BMC status check timed out after 30 seconds"
        assert len(fake_client.calls_to("GET", SERVICE_ROOT)) == 4
