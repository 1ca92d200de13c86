"""
Storage Volume Operations

Create / update / delete RAID volumes on a storage controller, each run
under the (endpoint, storage_volume) lock:

- create: validate against controller capabilities, POST to the Volumes
  collection, wait for the task, then detect the new volume by diffing
  the collection membership (re-read a few times, since some BMCs list
  the member late)
- update: PATCH name / drive cache mode, then wait for the volume to
  reflect the change (no task is created by the BMC)
- delete: DELETE the volume and wait for the task
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from bmc import config
from bmc.errors import BmcError, OperationTimeout, UnexpectedStatus
from bmc.models import DriveInfo, LockCategory, RaidCapabilities
from bmc.redfish_client import RedfishClient
from bmc.services.capability_guard import DiskGroup, validate_volume_request
from bmc.services.completion import ConvergenceSpec, await_completion, completion_signal
from bmc.services.convergence import ConvergencePoller
from bmc.services.events import record_event
from bmc.services.task_supervisor import TaskSupervisor
from bmc.services.waiter import WaitBudget
from bmc.sync_pool import EndpointMutexRegistry

logger = logging.getLogger(__name__)

SYSTEMS_COLLECTION = "/redfish/v1/Systems"
SYSTEM_ID = "0"
RAID_CAPABILITIES_SUFFIX = "/Oem/ts_fujitsu/RAIDCapabilities"

CREATE_ACCEPTED = {200, 201, 202, 204}
UPDATE_ACCEPTED = {200, 202, 204}
DELETE_ACCEPTED = {200, 202, 204}


def _member_ids(collection: Dict[str, Any]) -> List[str]:
    return [m.get("@odata.id", "") for m in collection.get("Members", []) if m.get("@odata.id")]


def build_volume_payload(
    raid_type: str,
    groups: Sequence[DiskGroup],
    volume_name: str = "",
    optimum_io_size_bytes: Optional[int] = None,
    capacity_bytes: Optional[int] = None,
    init_mode: str = "",
    read_mode: str = "",
    write_mode: str = "",
    drive_cache_mode: str = "",
) -> Dict[str, Any]:
    # Optional settings are left out when not requested; some controllers
    # accept them but report null afterwards
    payload: Dict[str, Any] = {
        "Name": volume_name,
        "RAIDType": raid_type,
        "PhysicalDisks": [group.to_payload() for group in groups],
    }
    if capacity_bytes:
        payload["CapacityBytes"] = capacity_bytes
    if init_mode:
        payload["InitMode"] = init_mode
    if read_mode:
        payload["ReadMode"] = read_mode
    if write_mode:
        payload["WriteMode"] = write_mode
    if drive_cache_mode:
        payload["DriveCacheMode"] = drive_cache_mode
    if optimum_io_size_bytes:
        payload["OptimumIOSizeBytes"] = optimum_io_size_bytes
    return payload


class StorageVolumeManager:
    """
    Manages volume lifecycle on one BMC.
    """

    def __init__(
        self,
        client: RedfishClient,
        registry: EndpointMutexRegistry,
        supervisor: Optional[TaskSupervisor] = None,
        poller: Optional[ConvergencePoller] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        strict_slots: Optional[bool] = None,
    ):
        """
        Initialize volume manager.

        Args:
            client: Connected management client
            registry: Shared endpoint lock registry
            supervisor: Task waiter (default: one bound to `client`)
            poller: Convergence waiter (default settings from config)
            session_factory: Optional SQLAlchemy session factory for event records
            strict_slots: Reject unresolved disk slots instead of warning
        """
        self.client = client
        self.registry = registry
        self.supervisor = supervisor or TaskSupervisor(client)
        self.poller = poller or ConvergencePoller()
        self.session_factory = session_factory
        self.strict_slots = strict_slots
        self.endpoint = client.base_url

    # ========================================================================
    # CONTROLLER DISCOVERY
    # ========================================================================

    def get_system(self) -> Dict[str, Any]:
        systems = self.client.get_json(SYSTEMS_COLLECTION)
        for member in _member_ids(systems):
            if member.rstrip("/").split("/")[-1] == SYSTEM_ID:
                return self.client.get_json(member)
        raise BmcError(f"Requested System resource '{SYSTEM_ID}' has not been found on list")

    def find_storage(self, serial: str) -> Dict[str, Any]:
        """Return the storage resource whose first controller has `serial`."""
        system = self.get_system()
        storage_link = (system.get("Storage") or {}).get("@odata.id")
        if not storage_link:
            raise BmcError("System does not expose a Storage collection")

        for member in _member_ids(self.client.get_json(storage_link)):
            storage = self.client.get_json(member)
            controllers = storage.get("StorageControllers") or []
            if controllers and controllers[0].get("SerialNumber") == serial:
                return storage

        raise BmcError(f"Storage controller with serial '{serial}' has not been found on list")

    def read_drives(self, storage: Dict[str, Any]) -> List[DriveInfo]:
        drives = []
        for link in storage.get("Drives") or []:
            drive_id = link.get("@odata.id")
            if drive_id:
                drives.append(DriveInfo.from_redfish(self.client.get_json(drive_id)))
        return drives

    def read_capabilities(self, storage: Dict[str, Any]) -> RaidCapabilities:
        endpoint = storage["@odata.id"].rstrip("/") + RAID_CAPABILITIES_SUFFIX
        try:
            return RaidCapabilities.model_validate(self.client.get_json(endpoint))
        except PydanticValidationError as e:
            raise BmcError(f"RAIDCapabilities resource could not be parsed: {e}")

    def list_volume_ids(self, storage: Dict[str, Any]) -> List[str]:
        return _member_ids(self.client.get_json(self.volumes_collection(storage)))

    @staticmethod
    def volumes_collection(storage: Dict[str, Any]) -> str:
        volumes = (storage.get("Volumes") or {}).get("@odata.id")
        return volumes or storage["@odata.id"].rstrip("/") + "/Volumes"

    # ========================================================================
    # VOLUME CREATION
    # ========================================================================

    def create_volume(
        self,
        storage_controller_serial: str,
        raid_type: str,
        physical_drives: Sequence[Any],
        optimum_io_size_bytes: int,
        volume_name: str = "",
        capacity_bytes: Optional[int] = None,
        init_mode: str = "",
        read_mode: str = "",
        write_mode: str = "",
        drive_cache_mode: str = "",
        job_timeout: int = config.VOLUME_JOB_TIMEOUT,
    ) -> Tuple[bool, Optional[str], Optional[BmcError]]:
        """
        Create a volume on the controller identified by serial number.

        Steps:
        1. Locate controller, read drives and RAID capabilities
        2. Validate request (nothing is written on failure)
        3. POST volume payload
        4. Wait for task (or accept synchronous completion)
        5. Re-read the Volumes collection until a new member appears

        Returns:
            (success: bool, volume_id: str or None, error: BmcError or None)
        """
        volume_id: Optional[str] = None
        error: Optional[BmcError] = None

        with self.registry.hold(self.endpoint, LockCategory.STORAGE_VOLUME):
            try:
                storage = self.find_storage(storage_controller_serial)
                inventory = self.read_drives(storage)
                capabilities = self.read_capabilities(storage)

                groups, error = validate_volume_request(
                    raid_type,
                    optimum_io_size_bytes,
                    physical_drives,
                    inventory,
                    capabilities.raid_levels,
                    controller_name=storage.get("Name", ""),
                    capacity_bytes=capacity_bytes,
                    strict=self.strict_slots,
                )
                if error is None:
                    volume_id, error = self._submit_volume(
                        storage,
                        build_volume_payload(
                            raid_type,
                            groups,
                            volume_name=volume_name,
                            optimum_io_size_bytes=optimum_io_size_bytes,
                            capacity_bytes=capacity_bytes,
                            init_mode=init_mode,
                            read_mode=read_mode,
                            write_mode=write_mode,
                            drive_cache_mode=drive_cache_mode,
                        ),
                        job_timeout,
                    )
            except BmcError as e:
                error = e

        if error:
            logger.error(f"Volume creation on {self.endpoint} failed: {error.message}")
        else:
            logger.info(f"Volume {volume_id} created on {self.endpoint}")
        record_event(self.session_factory, self.endpoint, LockCategory.STORAGE_VOLUME, "volume_create", error)
        return error is None, volume_id, error

    def _submit_volume(
        self,
        storage: Dict[str, Any],
        payload: Dict[str, Any],
        job_timeout: int,
    ) -> Tuple[Optional[str], Optional[BmcError]]:
        collection = self.volumes_collection(storage)
        ids_before = self.list_volume_ids(storage)

        logger.info(f"Volume create request details: endpoint={collection} payload={payload}")
        res = self.client.post(collection, payload)
        if res.status_code not in CREATE_ACCEPTED:
            return None, UnexpectedStatus(
                f"POST request on volume collection finished with HTTP {res.status_code}",
                status_code=res.status_code,
            )

        ok, error = await_completion(completion_signal(res), self.supervisor, self.poller, job_timeout)
        if not ok:
            return None, error

        # the collection may list the new member only a moment after the job ends
        new_ids: List[str] = []

        def appeared() -> bool:
            ids_after = self.list_volume_ids(storage)
            new_ids[:] = [vid for vid in ids_after if vid not in ids_before]
            logger.debug(f"Volumes before={ids_before} after={ids_after} new={new_ids}")
            return bool(new_ids)

        found, error = self.poller.waiter.poll_until(
            appeared,
            WaitBudget.attempts(config.VOLUME_APPEAR_ATTEMPTS),
            self.poller.interval,
            description=f"New volume in {collection}",
        )
        if isinstance(error, OperationTimeout):
            missing = BmcError("Volume creation finished but no new volume appeared in the collection")
            missing.add_diagnostic("Volume lookup", error.message)
            return None, missing
        if not found:
            return None, error
        return new_ids[0], None

    # ========================================================================
    # VOLUME UPDATE / DELETE
    # ========================================================================

    def update_volume(
        self,
        volume_id: str,
        volume_name: Optional[str] = None,
        drive_cache_mode: Optional[str] = None,
        timeout: int = config.VOLUME_UPDATE_TIMEOUT,
    ) -> Tuple[bool, Optional[BmcError]]:
        """
        Change volume name and/or drive cache mode.

        Returns:
            (success: bool, error: BmcError or None)
        """
        oem: Dict[str, str] = {}
        if drive_cache_mode is not None:
            oem["DriveCacheMode"] = drive_cache_mode
        if volume_name is not None:
            oem["Name"] = volume_name
        payload = {"Oem": {"ts_fujitsu": oem}}

        error: Optional[BmcError] = None
        with self.registry.hold(self.endpoint, LockCategory.STORAGE_VOLUME):
            try:
                logger.info(f"Volume change requested with payload {payload}")
                res = self.client.patch(volume_id, payload)
                if res.status_code not in UPDATE_ACCEPTED:
                    error = UnexpectedStatus(
                        f"Request to change volume parameters finished with HTTP {res.status_code}",
                        status_code=res.status_code,
                    )
                else:
                    spec = ConvergenceSpec(
                        desired={"Name": volume_name, "Oem.ts_fujitsu.DriveCacheMode": drive_cache_mode},
                        read_current=lambda: self.client.get_json(volume_id),
                        timeout_seconds=timeout,
                        description=f"Volume {volume_id} update",
                    )
                    _, error = await_completion(
                        completion_signal(res), self.supervisor, self.poller, timeout, convergence=spec
                    )
            except BmcError as e:
                error = e

        record_event(self.session_factory, self.endpoint, LockCategory.STORAGE_VOLUME, "volume_update", error)
        return error is None, error

    def delete_volume(
        self,
        volume_id: str,
        timeout: int = config.VOLUME_JOB_TIMEOUT,
    ) -> Tuple[bool, Optional[BmcError]]:
        error: Optional[BmcError] = None
        with self.registry.hold(self.endpoint, LockCategory.STORAGE_VOLUME):
            try:
                res = self.client.delete(volume_id)
                if res.status_code not in DELETE_ACCEPTED:
                    error = UnexpectedStatus(
                        f"DELETE request on volume finished with HTTP {res.status_code}",
                        status_code=res.status_code,
                    )
                else:
                    _, error = await_completion(completion_signal(res), self.supervisor, self.poller, timeout)
            except BmcError as e:
                error = e

        record_event(self.session_factory, self.endpoint, LockCategory.STORAGE_VOLUME, "volume_delete", error)
        return error is None, error

    def get_volume(self, volume_id: str) -> Tuple[Optional[Dict[str, Any]], Optional[BmcError]]:
        """Read a volume; a 404 means it no longer exists."""
        try:
            return self.client.get_json(volume_id), None
        except BmcError as e:
            return None, e
