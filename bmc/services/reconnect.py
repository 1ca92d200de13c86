"""
Reconnect Supervisor

After a disruptive action (manager reset, firmware flash) the BMC drops
off the network for minutes. This module keeps trying to open a session
and then waits until the service root answers again.
"""

import logging
from typing import Callable, Optional, Tuple

from bmc import config
from bmc.errors import BmcError, OperationTimeout, TransportError
from bmc.redfish_client import SERVICE_ROOT, RedfishClient, ServerConfig
from bmc.services.waiter import CancelToken, WaitBudget, Waiter

logger = logging.getLogger(__name__)

Connector = Callable[[ServerConfig], RedfishClient]


class ReconnectSupervisor:
    """
    Re-establishes connectivity to a BMC.

    Args:
        connector: Builds a connected client, raising BmcError on failure
        retry_interval: Sleep between connection attempts (default 30s)
        warmup_seconds: Fixed wait before readiness polling (default 45s)
        waiter: Waiting primitive (tests inject a fake clock/sleep)
    """

    def __init__(
        self,
        connector: Connector = RedfishClient.connect_to,
        retry_interval: float = config.RECONNECT_RETRY_INTERVAL,
        warmup_seconds: float = config.READY_WARMUP,
        waiter: Optional[Waiter] = None,
    ):
        self.connector = connector
        self.retry_interval = retry_interval
        self.warmup_seconds = warmup_seconds
        self.waiter = waiter or Waiter()

    def reconnect_with_retry(
        self,
        server: ServerConfig,
        timeout_seconds: float = config.RECONNECT_TIMEOUT,
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[Optional[RedfishClient], Optional[BmcError]]:
        """
        Loop connecting to `server` until it succeeds or the budget runs out.

        Returns:
            (client or None, error or None)
        """
        connected: Optional[RedfishClient] = None
        last_error: Optional[BmcError] = None

        def probe() -> bool:
            nonlocal connected, last_error
            try:
                connected = self.connector(server)
            except BmcError as e:
                last_error = e
                logger.warning(
                    f"Failed to connect to {server.endpoint}: {e.message}. "
                    f"Retrying in {self.retry_interval:g} seconds..."
                )
                return False
            logger.info(f"Successfully connected to {server.endpoint}")
            return True

        waiter = self.waiter.with_token(cancel_token)
        ok, error = waiter.poll_until(
            probe,
            WaitBudget.duration(timeout_seconds),
            self.retry_interval,
            description=f"Reconnect to {server.endpoint}",
        )
        if ok:
            return connected, None

        if isinstance(error, OperationTimeout):
            error = OperationTimeout(
                f"Connection to {server.endpoint} timed out after {timeout_seconds:g} seconds",
                timeout_seconds=timeout_seconds,
            )
            if last_error is not None:
                error.add_diagnostic("Last connection error", last_error.message)
        return None, error

    def await_ready(
        self,
        client: RedfishClient,
        poll_interval: float = config.READY_CHECK_INTERVAL,
        timeout_seconds: float = config.READY_TIMEOUT,
        cancel_token: Optional[CancelToken] = None,
    ) -> Optional[BmcError]:
        """
        Wait for the BMC behind `client` to serve requests again.

        Sleeps the warm-up period first, then polls the service root.
        Transport errors and non-2xx answers mean "not ready yet".

        Returns:
            None when ready, otherwise OperationTimeout / OperationCancelled
        """
        waiter = self.waiter.with_token(cancel_token)

        def probe() -> bool:
            logger.info(f"Checking {client.base_url} status via API GET")
            try:
                res = client.get(SERVICE_ROOT)
            except TransportError as e:
                logger.warning(f"GET on {SERVICE_ROOT} reported error: {e.message}")
                return False
            if res.ok:
                return True
            logger.warning(f"Received non-2xx status code: {res.status_code}")
            return False

        ok, error = waiter.poll_until(
            probe,
            WaitBudget.duration(timeout_seconds),
            poll_interval,
            description=f"Readiness check of {client.base_url}",
            initial_delay=self.warmup_seconds,
        )
        if ok:
            logger.info(f"{client.base_url} is ready")
            return None

        if isinstance(error, OperationTimeout):
            return OperationTimeout(
                f"BMC status check timed out after {timeout_seconds:g} seconds",
                timeout_seconds=timeout_seconds,
            )
        return error
