"""
Tests for bmc/services/manager_reset.py
"""

import pytest

from bmc.errors import OperationTimeout, TransportError, UnexpectedStatus
from bmc.models import LockCategory
from bmc.redfish_client import SERVICE_ROOT
from bmc.services.manager_reset import ManagerResetter, first_manager
from bmc.services.reconnect import ReconnectSupervisor

MANAGER = "/redfish/v1/Managers/iRMC"
RESET_ACTION = MANAGER + "/Actions/Manager.Reset"


@pytest.fixture
def old_client(fake_client):
    fake_client.add_json("/redfish/v1/Managers", {"Members": [{"@odata.id": MANAGER}]})
    return fake_client


@pytest.fixture
def new_client(make_client):
    return make_client()


def resetter(server, registry, waiter, connector):
    reconnector = ReconnectSupervisor(connector=connector, retry_interval=30, warmup_seconds=45, waiter=waiter)
    return ManagerResetter(server, registry, reconnector=reconnector)


class TestManagerReset:
    """Tests for ManagerResetter.reset."""

    def test_first_manager(self, old_client):
        assert first_manager(old_client) == MANAGER

    def test_reset_reconnect_ready(self, server, registry, waiter, clock, old_client, new_client, respond):
        """The BMC is unreachable once, then comes back after the warm-up."""
        old_client.add("POST", RESET_ACTION, respond(204))
        new_client.add("GET", SERVICE_ROOT, respond(503), respond(200, {}))
        attempts = []

        def connector(cfg):
            attempts.append(cfg.endpoint)
            if len(attempts) == 1:
                raise TransportError("connection refused")
            return new_client

        client, error = resetter(server, registry, waiter, connector).reset(old_client, ready_interval=10)
        assert error is None
        assert client is new_client
        assert old_client.closed is True
        (_, _, payload, _), = old_client.calls_to("POST", RESET_ACTION)
        assert payload == {"ResetType": "GracefulRestart"}
        assert clock.sleeps == [30, 45, 10]
        assert not registry.is_held(server.base_url, LockCategory.RESET)

    def test_reset_rejected(self, server, registry, waiter, old_client, respond):
        old_client.add("POST", RESET_ACTION, respond(400))
        client, error = resetter(server, registry, waiter, lambda cfg: None).reset(old_client)
        assert client is None
        assert isinstance(error, UnexpectedStatus)
        assert old_client.closed is False

    def test_never_ready(self, server, registry, waiter, old_client, new_client, respond):
        old_client.add("POST", RESET_ACTION, respond(204))
        new_client.add("GET", SERVICE_ROOT, respond(503))
        client, error = resetter(server, registry, waiter, lambda cfg: new_client).reset(
            old_client, ready_interval=10, ready_timeout=60
        )
        assert client is None
        assert isinstance(error, OperationTimeout)
        assert error.diagnostics[-1].summary == "Failed to reboot BMC"

    def test_never_ready_closes_new_client(self, server, registry, waiter, old_client, new_client, respond):
        """A reconnected client that never becomes ready should be closed, not leaked"""
        old_client.add("POST", RESET_ACTION, respond(204))
        new_client.add("GET", SERVICE_ROOT, respond(503))
        client, error = resetter(server, registry, waiter, lambda cfg: new_client).reset(
            old_client, ready_interval=10, ready_timeout=60
        )
        assert client is None
        assert error is not None
        assert new_client.closed is True
        assert old_client.closed is True

    def test_never_reconnects(self, server, registry, waiter, old_client, respond):
        old_client.add("POST", RESET_ACTION, respond(204))

        def connector(cfg):
            raise TransportError("no route to host")

        client, error = resetter(server, registry, waiter, connector).reset(old_client, reconnect_timeout=90)
        assert client is None
        assert "timed out after 90 seconds" in error.message
