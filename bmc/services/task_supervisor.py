"""
Task Supervisor

Polls a Redfish task (trackable background job) until it reaches a
terminal state or the caller's wall-clock budget runs out, and fetches the
task log for failure diagnostics.

Terminal states: Completed, Exception, Cancelled, Killed, Interrupted,
Suspended. Only Completed counts as success. A lookup failure ends the
wait immediately; it is never retried.
"""

import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from bmc.errors import BmcError, Diagnostic, JobFailed, TransportError
from bmc.models import TaskLog, TaskResource, TaskState, TrackedJob
from bmc.redfish_client import RedfishClient
from bmc.services.waiter import CancelToken, WaitBudget, Waiter
from bmc import config

logger = logging.getLogger(__name__)

TASK_LOG_SUFFIX = "/Oem/ts_fujitsu/Logs"


class TaskSupervisor:
    """Waits for tracked jobs on one BMC"""

    def __init__(
        self,
        client: RedfishClient,
        poll_interval: float = config.TASK_POLL_INTERVAL,
        waiter: Optional[Waiter] = None,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.waiter = waiter or Waiter()

    def get_job(self, location: str) -> TrackedJob:
        """Read current task state; every failure surfaces as BmcError."""
        try:
            data = self.client.get_json(location)
            task = TaskResource.model_validate(data)
        except PydanticValidationError as e:
            raise TransportError(f"Error during task {location} retrieval: {e}")
        except BmcError as e:
            e.message = f"Error during task {location} retrieval: {e.message}"
            raise
        return TrackedJob(location=location, state=task.task_state)

    def wait_for_job(
        self,
        location: str,
        timeout_seconds: float,
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[bool, Optional[BmcError]]:
        """
        Poll the task at `location` until it finishes.

        Args:
            location: Task URI (Location header of the accepted request)
            timeout_seconds: Wall-clock budget from this call
            cancel_token: Optional external stop signal

        Returns:
            (ok: bool, error: BmcError or None). A failed task yields
            JobFailed carrying its state and, when available, the task log.
        """
        last_state: Optional[TaskState] = None
        final: Optional[TrackedJob] = None

        def probe() -> bool:
            nonlocal last_state, final
            job = self.get_job(location)
            if job.state != last_state:
                logger.info(f"Task {location} state: {job.state.value}")
                last_state = job.state
            if job.terminal:
                final = job
                return True
            return False

        waiter = self.waiter.with_token(cancel_token)
        finished, error = waiter.poll_until(
            probe,
            WaitBudget.duration(timeout_seconds),
            self.poll_interval,
            description=f"Task {location}",
        )
        if not finished:
            logger.warning(f"Waiting for task {location} failed: {error.message}")
            return False, error

        job = final
        if job.succeeded:
            return True, None

        failure = JobFailed(f"Task finished with TaskState {job.state.value}", state=job.state.value)
        logs, diagnostics = self.fetch_job_log(location)
        if logs is None:
            failure.diagnostics.extend(diagnostics)
        else:
            failure.job_log = logs.decode("utf-8", errors="replace")
            failure.add_diagnostic("Task logs", failure.job_log)
        logger.error(f"Task {location} failed with state {job.state.value}")
        return False, failure

    def fetch_job_log(self, location: str) -> Tuple[Optional[bytes], List[Diagnostic]]:
        """
        GET the task log sub-resource.

        Returns:
            (raw body or None, diagnostics). A missing log is a soft failure.
        """
        endpoint = location.rstrip("/") + TASK_LOG_SUFFIX
        try:
            res = self.client.get(endpoint)
        except TransportError as e:
            return None, [Diagnostic("Error while reading task log endpoint", e.message)]

        if res.status_code != 200:
            return None, [Diagnostic("Error while reading task logs", f"Endpoint returned HTTP {res.status_code}")]

        return res.body, []

    def verify_job_log(self, location: str) -> List[Diagnostic]:
        """Fetch the task log and report every message mentioning an error."""
        logs, diagnostics = self.fetch_job_log(location)
        if logs is None:
            return diagnostics
        return scan_job_log(logs)


def scan_job_log(raw: bytes) -> List[Diagnostic]:
    try:
        task_log = TaskLog.model_validate_json(raw)
    except PydanticValidationError as e:
        return [Diagnostic("Task logs could not be parsed", str(e))]

    return [
        Diagnostic("Task log contains error message(s)", entry.message)
        for entry in task_log.messages
        if "Error" in entry.message
    ]
