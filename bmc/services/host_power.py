"""
Host power control

Power actions on the managed server return no task. Each action has an
expected end state ("On" or "Off") and the system resource is re-read
until PowerState reports it. Power on / force off of a host already in
the requested state sends nothing. PowerCycle goes through the vendor
action and is confirmed as Off, then On.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from bmc import config
from bmc.errors import BmcError, UnexpectedStatus, ValidationError
from bmc.models import HostPowerAction, LockCategory
from bmc.redfish_client import RedfishClient
from bmc.services.convergence import ConvergencePoller
from bmc.services.events import record_event
from bmc.services.waiter import CancelToken
from bmc.sync_pool import EndpointMutexRegistry

logger = logging.getLogger(__name__)

SYSTEM_ENDPOINT = "/redfish/v1/Systems/0"
POWER_CYCLE_ACTION = SYSTEM_ENDPOINT + "/Actions/Oem/FTSComputerSystem.Reset"
RESET_ACCEPTED = {200, 202, 204}

POWER_ON = "On"
POWER_OFF = "Off"

# actions after which the host is expected to be off
POWERS_OFF = frozenset({
    HostPowerAction.FORCE_OFF,
    HostPowerAction.GRACEFUL_SHUTDOWN,
    HostPowerAction.PUSH_POWER_BUTTON,
})


def expected_power_state(action: HostPowerAction) -> str:
    return POWER_OFF if action in POWERS_OFF else POWER_ON


class HostPowerController:
    """Runs host power actions under the (endpoint, host_power) lock"""

    def __init__(
        self,
        client: RedfishClient,
        registry: EndpointMutexRegistry,
        poller: Optional[ConvergencePoller] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        check_interval: float = config.HOST_POWER_CHECK_INTERVAL,
    ):
        self.client = client
        self.registry = registry
        self.poller = poller or ConvergencePoller()
        self.session_factory = session_factory
        self.check_interval = check_interval

    def read_system(self) -> Dict[str, Any]:
        return self.client.get_json(SYSTEM_ENDPOINT)

    def read_power_state(self) -> str:
        return self.read_system().get("PowerState", "")

    def apply(
        self,
        action: str,
        timeout: int = config.HOST_POWER_TIMEOUT,
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[bool, Optional[str], Optional[BmcError]]:
        """
        Run a power action and wait for the host to settle.

        Args:
            action: HostPowerAction value, e.g. "On", "ForceOff", "PowerCycle"
            timeout: Seconds allowed for each expected state to be reached

        Returns:
            (success: bool, final PowerState or None, error: BmcError or None)
        """
        try:
            power_action = HostPowerAction(action)
        except ValueError:
            allowed = ", ".join(a.value for a in HostPowerAction)
            return False, None, ValidationError(f"Unsupported host power action '{action}', allowed: {allowed}")

        state: Optional[str] = None
        error: Optional[BmcError] = None
        with self.registry.hold(self.client.base_url, LockCategory.HOST_POWER):
            try:
                state, error = self._apply(power_action, timeout, cancel_token)
            except BmcError as e:
                error = e

        if error:
            logger.error(f"Host power action {action} on {self.client.base_url} failed: {error.message}")
        record_event(self.session_factory, self.client.base_url, LockCategory.HOST_POWER,
                     "host_power", error)
        return error is None, state, error

    def _apply(
        self,
        action: HostPowerAction,
        timeout: int,
        cancel_token: Optional[CancelToken],
    ) -> Tuple[Optional[str], Optional[BmcError]]:
        system = self.read_system()
        current = system.get("PowerState", "")

        if action in (HostPowerAction.ON, HostPowerAction.FORCE_ON) and current == POWER_ON:
            logger.info(f"Host on {self.client.base_url} is already powered on")
            return current, None
        if action == HostPowerAction.FORCE_OFF and current == POWER_OFF:
            logger.info(f"Host on {self.client.base_url} is already powered off")
            return current, None

        if action == HostPowerAction.POWER_CYCLE:
            res = self.client.post(POWER_CYCLE_ACTION, {"FTSResetType": "PowerCycle"})
            expected = [POWER_OFF, POWER_ON]
        else:
            reset_type = HostPowerAction.ON.value if action == HostPowerAction.FORCE_ON else action.value
            target = ((system.get("Actions") or {}).get("#ComputerSystem.Reset") or {}).get("target")
            target = target or f"{SYSTEM_ENDPOINT}/Actions/ComputerSystem.Reset"
            res = self.client.post(target, {"ResetType": reset_type})
            expected = [expected_power_state(action)]

        if res.status_code not in RESET_ACCEPTED:
            return None, UnexpectedStatus(
                f"Host power action {action.value} finished with HTTP {res.status_code}",
                status_code=res.status_code,
            )
        logger.info(f"Host power action {action.value} accepted by {self.client.base_url}")

        for state in expected:
            ok, error = self.poller.poll_until_converged(
                {"PowerState": state},
                self.read_system,
                timeout_seconds=timeout,
                interval=self.check_interval,
                grace_seconds=0,
                description=f"Host power state {state}",
                cancel_token=cancel_token,
            )
            if not ok:
                error.add_diagnostic(
                    "Host state has not been changed within given timeout",
                    f"Action {action.value} expected PowerState {state}",
                )
                return None, error
        return expected[-1], None
