"""
Manager attributes

PATCHes BMC configuration attributes guarded by the resource ETag. The BMC
either starts a task (202 + Location), whose log is then scanned for error
messages, or applies the change silently, in which case the attributes
resource is re-read until it reflects the requested values.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from bmc.errors import BmcError, UnexpectedStatus
from bmc.models import LockCategory
from bmc.redfish_client import HTTP_HEADER_ETAG, HTTP_HEADER_IF_MATCH, RedfishClient
from bmc.services.completion import ConvergenceSpec, Tracked, await_completion, completion_signal
from bmc.services.convergence import ConvergencePoller
from bmc.services.events import record_event
from bmc.services.task_supervisor import TaskSupervisor
from bmc.sync_pool import EndpointMutexRegistry

logger = logging.getLogger(__name__)

ATTRIBUTES_ENDPOINT = "/redfish/v1/Managers/iRMC/Oem/ts_fujitsu/iRMCConfiguration/Attributes"
PATCH_ACCEPTED = {200, 202, 204}
DEFAULT_TIMEOUT = 120


class AttributesManager:

    def __init__(
        self,
        client: RedfishClient,
        registry: EndpointMutexRegistry,
        supervisor: Optional[TaskSupervisor] = None,
        poller: Optional[ConvergencePoller] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        endpoint: str = ATTRIBUTES_ENDPOINT,
    ):
        self.client = client
        self.registry = registry
        self.supervisor = supervisor or TaskSupervisor(client)
        self.poller = poller or ConvergencePoller()
        self.session_factory = session_factory
        self.attributes_endpoint = endpoint

    def read_attributes(self) -> Dict[str, Any]:
        return self.client.get_json(self.attributes_endpoint).get("Attributes", {})

    def apply(
        self,
        attributes: Dict[str, Any],
        timeout: int = DEFAULT_TIMEOUT,
    ) -> Tuple[bool, Optional[BmcError]]:
        """
        Apply attribute values and wait until they take effect.

        Returns:
            (success: bool, error: BmcError or None)
        """
        error: Optional[BmcError] = None
        with self.registry.hold(self.client.base_url, LockCategory.ATTRIBUTES):
            try:
                error = self._apply(attributes, timeout)
            except BmcError as e:
                error = e

        record_event(self.session_factory, self.client.base_url, LockCategory.ATTRIBUTES,
                     "attributes_apply", error)
        return error is None, error

    def _apply(self, attributes: Dict[str, Any], timeout: int) -> Optional[BmcError]:
        current = self.client.get(self.attributes_endpoint)
        if current.status_code != 200:
            return UnexpectedStatus(
                f"Reading {self.attributes_endpoint} finished with HTTP {current.status_code}",
                status_code=current.status_code,
            )

        headers = {}
        etag = current.header(HTTP_HEADER_ETAG)
        if etag:
            headers[HTTP_HEADER_IF_MATCH] = etag

        res = self.client.patch(self.attributes_endpoint, {"Attributes": attributes}, headers=headers)
        if res.status_code not in PATCH_ACCEPTED:
            return UnexpectedStatus(
                f"Changing {self.attributes_endpoint} finished with HTTP {res.status_code}",
                status_code=res.status_code,
            )

        signal = completion_signal(res)
        spec = ConvergenceSpec(
            desired=dict(attributes),
            read_current=self.read_attributes,
            timeout_seconds=timeout,
            description="Attributes change",
        )
        ok, error = await_completion(signal, self.supervisor, self.poller, timeout, convergence=spec)
        if not ok:
            return error

        # a task can finish as Completed and still report failed settings in its log
        if isinstance(signal, Tracked):
            findings = self.supervisor.verify_job_log(signal.location)
            if findings:
                failure = BmcError("Task for patching attributes reported error(s)", diagnostics=findings)
                logger.error(f"Attributes change on {self.client.base_url}: {len(findings)} error message(s) in task log")
                return failure
        return None
