"""
BMC firmware update

Flashes new BMC firmware and supervises the restart that activates it:

1. Validate the request (image source, selectors) before touching the BMC
2. PATCH flash/boot selectors on the FWUpdate settings, guarded by ETag
3. Start the update (file upload, TFTP or memory card); the BMC answers
   with a task Location
4. Wait for the task; a failed or overdue task carries its log
5. Restart: when the host is powered on the manager is reset on request,
   when it is off the BMC restarts by itself. Either way the service is
   reconnected and waited for until it answers again

Runs under the (endpoint, firmware) lock; the restart phase also takes the
(endpoint, reset) lock so it never overlaps a manager reset.
"""

import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from bmc import config
from bmc.errors import BmcError, JobFailed, UnexpectedStatus, ValidationError
from bmc.models import BootSelector, FirmwareUpdateType, FlashSelector, LockCategory
from bmc.redfish_client import (
    HTTP_HEADER_ETAG,
    HTTP_HEADER_IF_MATCH,
    HTTP_HEADER_LOCATION,
    RedfishClient,
    ServerConfig,
)
from bmc.services.events import record_event
from bmc.services.host_power import POWER_ON, SYSTEM_ENDPOINT
from bmc.services.manager_reset import ManagerResetter
from bmc.services.task_supervisor import TaskSupervisor
from bmc.services.waiter import CancelToken
from bmc.sync_pool import EndpointMutexRegistry

logger = logging.getLogger(__name__)

FW_UPDATE_SETTINGS = "/redfish/v1/Managers/iRMC/Oem/ts_fujitsu/iRMCConfiguration/FWUpdate"
FW_ACTIONS = "/redfish/v1/Managers/iRMC/Actions/Oem"
FILE_UPDATE_ACTION = f"{FW_ACTIONS}/FTSManager.FWUpdate"
TFTP_UPDATE_ACTION = f"{FW_ACTIONS}/FTSManager.FWTFTPUpdate"
MEMORY_CARD_UPDATE_ACTION = f"{FW_ACTIONS}/FTSManager.FWMemoryCardUpdate"

PATCH_ACCEPTED = {200, 202, 204}
START_ACCEPTED = {200, 202, 204}
UPLOAD_ACCEPTED = {200, 202}


class FirmwareUpdateRequest:
    """Validated parameters of one firmware update"""

    def __init__(
        self,
        update_type: str,
        image_path: str = "",
        tftp_server: str = "",
        tftp_file: str = "",
        flash_selector: str = FlashSelector.AUTO.value,
        boot_selector: str = BootSelector.AUTO.value,
    ):
        self.update_type = _enum_value(FirmwareUpdateType, update_type, "update type")
        self.flash_selector = _enum_value(FlashSelector, flash_selector, "flash selector")
        self.boot_selector = _enum_value(BootSelector, boot_selector, "boot selector")
        self.image_path = image_path
        self.tftp_server = tftp_server
        self.tftp_file = tftp_file

        if self.update_type == FirmwareUpdateType.FILE:
            if not image_path:
                raise ValidationError("Firmware file path is required for File update")
            if os.path.splitext(image_path)[1].lower() != ".bin":
                raise ValidationError(f"Invalid firmware file type '{image_path}', only .bin files are allowed")
            if not os.path.isfile(image_path):
                raise ValidationError(f"Firmware file not found at {image_path}")
        elif self.update_type == FirmwareUpdateType.TFTP:
            if not tftp_server or not tftp_file:
                raise ValidationError("TFTP server address and update file are required for TFTP update")


def _enum_value(enum_cls, value: str, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Unsupported {label} '{value}', allowed: {allowed}")


class FirmwareUpdater:
    """
    Flashes BMC firmware and supervises the restart.

    Args:
        server: Connection details, used to reconnect after the restart
        client: Connected client (closed once the BMC restarts)
        registry: Shared endpoint lock registry
        supervisor: Task waiter (default: one bound to `client`)
        resetter: Manager reset / reconnect helper
        session_factory: Optional SQLAlchemy session factory for event records
    """

    def __init__(
        self,
        server: ServerConfig,
        client: RedfishClient,
        registry: EndpointMutexRegistry,
        supervisor: Optional[TaskSupervisor] = None,
        resetter: Optional[ManagerResetter] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.server = server
        self.client = client
        self.registry = registry
        self.supervisor = supervisor or TaskSupervisor(client)
        self.resetter = resetter or ManagerResetter(server, registry)
        self.session_factory = session_factory
        self.endpoint = client.base_url

    def update(
        self,
        update_type: str,
        image_path: str = "",
        tftp_server: str = "",
        tftp_file: str = "",
        flash_selector: str = FlashSelector.AUTO.value,
        boot_selector: str = BootSelector.AUTO.value,
        update_timeout: int = config.FIRMWARE_UPDATE_TIMEOUT,
        reset_after_update: bool = True,
        reconnect_timeout: float = config.RECONNECT_TIMEOUT,
        ready_interval: float = config.READY_CHECK_INTERVAL,
        ready_timeout: float = config.READY_TIMEOUT,
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[Optional[RedfishClient], Optional[BmcError]]:
        """
        Run a firmware update end to end.

        Returns:
            (client to keep using or None, error or None). After a restart
            the returned client is a new connection and the old one is closed.
        """
        active: Optional[RedfishClient] = None
        error: Optional[BmcError] = None

        with self.registry.hold(self.endpoint, LockCategory.FIRMWARE):
            try:
                # nothing is written when the request is invalid
                request = FirmwareUpdateRequest(
                    update_type,
                    image_path=image_path,
                    tftp_server=tftp_server,
                    tftp_file=tftp_file,
                    flash_selector=flash_selector,
                    boot_selector=boot_selector,
                )
                error = self._flash(request, update_timeout, cancel_token)
                if error is None:
                    active, error = self._restart(
                        reset_after_update, reconnect_timeout, ready_interval, ready_timeout, cancel_token
                    )
            except BmcError as e:
                error = e

        if error:
            logger.error(f"Firmware update on {self.endpoint} failed: {error.message}")
            active = None
        else:
            logger.info(f"Firmware update on {self.endpoint} finished")
        record_event(self.session_factory, self.endpoint, LockCategory.FIRMWARE, "firmware_update", error)
        return active, error

    # ========================================================================
    # FLASHING
    # ========================================================================

    def _flash(
        self,
        request: FirmwareUpdateRequest,
        update_timeout: int,
        cancel_token: Optional[CancelToken],
    ) -> Optional[BmcError]:
        self.patch_settings({
            "iRMCBootSelector": request.boot_selector.value,
            "iRMCFlashSelector": request.flash_selector.value,
        })
        location = self.start_update(request)
        logger.info(f"{request.update_type.value} firmware update on {self.endpoint} tracked by {location}")

        ok, error = self.supervisor.wait_for_job(location, update_timeout, cancel_token=cancel_token)
        if ok:
            return None

        if not isinstance(error, JobFailed):
            # JobFailed already carries the log
            logs, _ = self.supervisor.fetch_job_log(location)
            if logs is not None:
                error.add_diagnostic("Task logs", logs.decode("utf-8", errors="replace"))
        error.add_diagnostic(
            "Firmware update task did not complete successfully",
            f"{request.update_type.value} update tracked by {location}",
        )
        return error

    def patch_settings(self, payload: Dict[str, Any]) -> None:
        current = self.client.get(FW_UPDATE_SETTINGS)
        if current.status_code != 200:
            raise UnexpectedStatus(
                f"Reading {FW_UPDATE_SETTINGS} finished with HTTP {current.status_code}",
                status_code=current.status_code,
            )

        headers = {}
        etag = current.header(HTTP_HEADER_ETAG)
        if etag:
            headers[HTTP_HEADER_IF_MATCH] = etag

        res = self.client.patch(FW_UPDATE_SETTINGS, payload, headers=headers)
        if res.status_code not in PATCH_ACCEPTED:
            raise UnexpectedStatus(
                f"Changing {FW_UPDATE_SETTINGS} finished with HTTP {res.status_code}: "
                f"{res.body.decode('utf-8', errors='replace')}",
                status_code=res.status_code,
            )

    def start_update(self, request: FirmwareUpdateRequest) -> str:
        """Start the update and return the task Location."""
        if request.update_type == FirmwareUpdateType.FILE:
            with open(request.image_path, "rb") as image:
                res = self.client.post_file(
                    FILE_UPDATE_ACTION,
                    {"data": (os.path.basename(request.image_path), image, "application/octet-stream")},
                )
            accepted = UPLOAD_ACCEPTED
            action = FILE_UPDATE_ACTION
        elif request.update_type == FirmwareUpdateType.TFTP:
            self.patch_settings({"ServerName": request.tftp_server, "iRMCFileName": request.tftp_file})
            res = self.client.post(TFTP_UPDATE_ACTION, {})
            accepted = START_ACCEPTED
            action = TFTP_UPDATE_ACTION
        else:
            res = self.client.post(MEMORY_CARD_UPDATE_ACTION, {})
            accepted = START_ACCEPTED
            action = MEMORY_CARD_UPDATE_ACTION

        if res.status_code not in accepted:
            raise UnexpectedStatus(
                f"{request.update_type.value} firmware update request on {action} finished with HTTP {res.status_code}",
                status_code=res.status_code,
            )

        location = res.header(HTTP_HEADER_LOCATION)
        if not location:
            raise BmcError("Task Location missing, Location header not found in response")
        return location

    # ========================================================================
    # RESTART
    # ========================================================================

    def host_powered_on(self) -> bool:
        return self.client.get_json(SYSTEM_ENDPOINT).get("PowerState") == POWER_ON

    def _restart(
        self,
        reset_after_update: bool,
        reconnect_timeout: float,
        ready_interval: float,
        ready_timeout: float,
        cancel_token: Optional[CancelToken],
    ) -> Tuple[Optional[RedfishClient], Optional[BmcError]]:
        powered_on = self.host_powered_on()
        if powered_on and not reset_after_update:
            logger.warning(
                f"Firmware on {self.endpoint} flashed; it becomes active after the next manual BMC reset"
            )
            return self.client, None

        with self.registry.hold(self.endpoint, LockCategory.RESET):
            if powered_on:
                self.resetter.request_reset(self.client)
            self.client.close()
            new_client, error = self.resetter.await_return(
                reconnect_timeout, ready_interval, ready_timeout, cancel_token=cancel_token
            )

        if error is not None:
            error.add_diagnostic("Failed to reset BMC after firmware update")
        return new_client, error
