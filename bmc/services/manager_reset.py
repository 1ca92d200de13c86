"""
Manager (BMC) reset

Triggers a graceful restart of the management controller, then reconnects
and waits until the service root answers again. The reset severs the
connection, so the old client is discarded.
"""

import logging
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import Session

from bmc import config
from bmc.errors import BmcError, UnexpectedStatus
from bmc.models import LockCategory
from bmc.redfish_client import RedfishClient, ServerConfig
from bmc.services.events import record_event
from bmc.services.reconnect import ReconnectSupervisor
from bmc.services.waiter import CancelToken
from bmc.sync_pool import EndpointMutexRegistry

logger = logging.getLogger(__name__)

MANAGERS_COLLECTION = "/redfish/v1/Managers"
RESET_ACCEPTED = {200, 202, 204}


def first_manager(client: RedfishClient) -> str:
    members = client.get_json(MANAGERS_COLLECTION).get("Members", [])
    if not members:
        raise BmcError("Managers collection is empty")
    return members[0]["@odata.id"]


class ManagerResetter:
    """Resets the BMC and supervises its return"""

    def __init__(
        self,
        server: ServerConfig,
        registry: EndpointMutexRegistry,
        reconnector: Optional[ReconnectSupervisor] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.server = server
        self.registry = registry
        self.reconnector = reconnector or ReconnectSupervisor()
        self.session_factory = session_factory
        self.endpoint = server.base_url

    def request_reset(self, client: RedfishClient, reset_type: str = "GracefulRestart") -> None:
        manager = first_manager(client)
        res = client.post(f"{manager}/Actions/Manager.Reset", {"ResetType": reset_type})
        if res.status_code not in RESET_ACCEPTED:
            raise UnexpectedStatus(
                f"Manager reset request finished with HTTP {res.status_code}",
                status_code=res.status_code,
            )
        logger.info(f"Reset ({reset_type}) of {manager} accepted by {self.endpoint}")

    def await_return(
        self,
        reconnect_timeout: float = config.RECONNECT_TIMEOUT,
        ready_interval: float = config.READY_CHECK_INTERVAL,
        ready_timeout: float = config.READY_TIMEOUT,
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[Optional[RedfishClient], Optional[BmcError]]:
        """
        Reconnect to a restarting BMC and wait until it serves requests.

        The returned client belongs to the caller. A client that connects
        but never becomes ready is closed.
        """
        new_client, error = self.reconnector.reconnect_with_retry(
            self.server, reconnect_timeout, cancel_token=cancel_token
        )
        if error is not None:
            return None, error

        error = self.reconnector.await_ready(
            new_client, ready_interval, ready_timeout, cancel_token=cancel_token
        )
        if error is not None:
            error.add_diagnostic(
                "Failed to reboot BMC",
                "The operation may take longer than expected to complete",
            )
            new_client.close()
            return None, error
        return new_client, None

    def reset(
        self,
        client: RedfishClient,
        reset_type: str = "GracefulRestart",
        reconnect_timeout: float = config.RECONNECT_TIMEOUT,
        ready_interval: float = config.READY_CHECK_INTERVAL,
        ready_timeout: float = config.READY_TIMEOUT,
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[Optional[RedfishClient], Optional[BmcError]]:
        """
        Reset the manager and wait until it is reachable again.

        Returns:
            (new client or None, error or None)
        """
        new_client: Optional[RedfishClient] = None
        error: Optional[BmcError] = None

        with self.registry.hold(self.endpoint, LockCategory.RESET):
            try:
                self.request_reset(client, reset_type)
            except BmcError as e:
                error = e

            if error is None:
                client.close()
                new_client, error = self.await_return(
                    reconnect_timeout, ready_interval, ready_timeout, cancel_token=cancel_token
                )

        record_event(self.session_factory, self.endpoint, LockCategory.RESET, "manager_reset", error)
        if error is not None:
            logger.error(f"Reset of {self.endpoint} failed: {error.message}")
            return None, error
        return new_client, None
