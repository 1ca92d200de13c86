"""
Completion signal of a submitted change.

Decided once from the submit response: a 202 carrying a Location header
is Tracked (a task to poll), anything else is Untracked (the resource has
to be re-read until it converges).
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from bmc.errors import BmcError
from bmc.redfish_client import HTTP_HEADER_LOCATION, RedfishResponse
from bmc.services.convergence import ConvergencePoller
from bmc.services.task_supervisor import TaskSupervisor
from bmc.services.waiter import CancelToken


@dataclass(frozen=True)
class Tracked:
    location: str


@dataclass(frozen=True)
class Untracked:
    pass


CompletionSignal = Union[Tracked, Untracked]


def completion_signal(response: RedfishResponse) -> CompletionSignal:
    location = response.header(HTTP_HEADER_LOCATION)
    if response.status_code == 202 and location:
        return Tracked(location=location)
    return Untracked()


@dataclass
class ConvergenceSpec:
    """What to re-read, and what it should look like, for an Untracked change"""
    desired: Dict[str, Any]
    read_current: Callable[[], Mapping[str, Any]]
    timeout_seconds: Optional[float] = None
    max_attempts: Optional[int] = None
    interval: Optional[float] = None
    grace_seconds: Optional[float] = None
    description: str = "Resource convergence"


def await_completion(
    signal: CompletionSignal,
    supervisor: TaskSupervisor,
    poller: ConvergencePoller,
    job_timeout: float,
    convergence: Optional[ConvergenceSpec] = None,
    cancel_token: Optional[CancelToken] = None,
) -> Tuple[bool, Optional[BmcError]]:
    """
    Dispatch to the waiter matching the signal.

    An Untracked change without a ConvergenceSpec is treated as complete:
    the synchronous response was all there is to wait for.
    """
    if isinstance(signal, Tracked):
        return supervisor.wait_for_job(signal.location, job_timeout, cancel_token=cancel_token)

    if convergence is None:
        return True, None

    timeout = convergence.timeout_seconds
    if timeout is None and convergence.max_attempts is None:
        timeout = job_timeout

    return poller.poll_until_converged(
        convergence.desired,
        convergence.read_current,
        timeout_seconds=timeout,
        max_attempts=convergence.max_attempts,
        interval=convergence.interval,
        grace_seconds=convergence.grace_seconds,
        description=convergence.description,
        cancel_token=cancel_token,
    )
