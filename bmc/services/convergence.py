"""
Convergence Poller

Used when a write returns no trackable job: the resource is re-read until
every field the caller specified holds the desired value on the same read.

Fields absent from the desired map (or set to None) are not compared.
Field names may be dotted paths into nested objects, e.g.
"Oem.ts_fujitsu.DriveCacheMode".
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from bmc import config
from bmc.errors import BmcError
from bmc.models import ChangeRequest
from bmc.services.waiter import CancelToken, WaitBudget, Waiter

logger = logging.getLogger(__name__)

_MISSING = object()


def lookup_field(resource: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path; returns a sentinel when any hop is missing."""
    if path in resource:
        return resource[path]

    current: Any = resource
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def values_match(live: Any, desired: Any) -> bool:
    """Exact typed equality: True never equals 1, "1" never equals 1."""
    if type(live) is not type(desired):
        return False
    return live == desired


def mismatched_fields(resource: Mapping[str, Any], desired: Dict[str, Any]) -> List[str]:
    mismatched = []
    for name, wanted in desired.items():
        if wanted is None:
            continue
        live = lookup_field(resource, name)
        if live is _MISSING or not values_match(live, wanted):
            mismatched.append(name)
    return mismatched


class ConvergencePoller:
    """
    Re-reads a resource until it reflects the desired values.

    Args:
        grace_seconds: Sleep before the first read, so a just-accepted write
            has a chance to become visible
        interval: Sleep between reads
        waiter: Waiting primitive (tests inject a fake clock/sleep)
    """

    def __init__(
        self,
        grace_seconds: float = config.CONVERGENCE_GRACE,
        interval: float = config.CONVERGENCE_INTERVAL,
        waiter: Optional[Waiter] = None,
    ):
        self.grace_seconds = grace_seconds
        self.interval = interval
        self.waiter = waiter or Waiter()

    def poll_until_converged(
        self,
        desired: Dict[str, Any],
        read_current: Callable[[], Mapping[str, Any]],
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        grace_seconds: Optional[float] = None,
        description: str = "Resource convergence",
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[bool, Optional[BmcError]]:
        """
        Poll `read_current` until every specified field matches.

        Exactly one of `timeout_seconds` (wall-clock deadline computed once
        when polling starts) or `max_attempts` (fixed number of reads) must
        be given. A failing read ends the wait with that error.

        Returns:
            (ok: bool, error: BmcError or None)
        """
        budget = WaitBudget(max_duration=timeout_seconds, max_attempts=max_attempts)
        specified = {name: value for name, value in desired.items() if value is not None}
        pause = self.interval if interval is None else interval
        grace = self.grace_seconds if grace_seconds is None else grace_seconds

        def probe() -> bool:
            current = read_current()
            mismatched = mismatched_fields(current, specified)
            if not mismatched:
                logger.info(f"{description}: all planned values have been applied")
                return True
            for name in mismatched:
                live = lookup_field(current, name)
                logger.info(
                    f"{description}: '{name}' has not yet reached planned value "
                    f"(plan={specified[name]!r}, reported={None if live is _MISSING else live!r})"
                )
            return False

        waiter = self.waiter.with_token(cancel_token)
        return waiter.poll_until(
            probe,
            budget,
            pause,
            description=description,
            initial_delay=grace,
        )

    def poll_change(
        self,
        request: ChangeRequest,
        read_current: Callable[[], Mapping[str, Any]],
        cancel_token: Optional[CancelToken] = None,
    ) -> Tuple[bool, Optional[BmcError]]:
        return self.poll_until_converged(
            request.specified_fields(),
            read_current,
            timeout_seconds=request.timeout_seconds,
            description=f"Change on {request.target}",
            cancel_token=cancel_token,
        )
