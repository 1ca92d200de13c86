"""
Waiting primitive shared by every poll loop.

A poll loop is bounded by a WaitBudget, which is either a wall-clock
duration (measured from the moment the loop starts) or a fixed number of
attempts. Sleeps are blocking; when a CancelToken is supplied they become
interruptible and a cancelled token stops the loop with OperationCancelled.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from bmc.errors import BmcError, OperationCancelled, OperationTimeout

logger = logging.getLogger(__name__)


class CancelToken:
    """Externally settable stop signal for poll loops"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        return self._event.wait(seconds)


@dataclass(frozen=True)
class WaitBudget:
    """Either max_duration (seconds) or max_attempts, never both"""
    max_duration: Optional[float] = None
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if (self.max_duration is None) == (self.max_attempts is None):
            raise ValueError("WaitBudget needs exactly one of max_duration or max_attempts")
        if self.max_duration is not None and self.max_duration < 0:
            raise ValueError("max_duration must not be negative")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def duration(cls, seconds: float) -> "WaitBudget":
        return cls(max_duration=seconds)

    @classmethod
    def attempts(cls, count: int) -> "WaitBudget":
        return cls(max_attempts=count)

    def exhausted(self, elapsed: float, attempts: int) -> bool:
        if self.max_duration is not None:
            return elapsed > self.max_duration
        return attempts >= self.max_attempts

    def describe(self) -> str:
        if self.max_duration is not None:
            return f"timeout of {self.max_duration:g} s"
        return f"limit of {self.max_attempts} attempts"


class Waiter:
    """
    Runs probe functions until they report done or the budget runs out.

    Args:
        sleep: Blocking sleep function (tests inject a fake one). Defaults
            to time.sleep, or to the cancel token's interruptible wait.
        clock: Monotonic clock in seconds
        cancel_token: Optional stop signal checked around every sleep
    """

    def __init__(
        self,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        cancel_token: Optional[CancelToken] = None,
    ):
        self._sleep = sleep
        self.clock = clock
        self.cancel_token = cancel_token

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def pause(self, seconds: float) -> bool:
        """Sleep; returns True when the loop should stop because of cancellation."""
        if seconds > 0:
            if self._sleep is not None:
                self._sleep(seconds)
            elif self.cancel_token is not None:
                self.cancel_token.wait(seconds)
            else:
                time.sleep(seconds)
        return self.cancelled

    def with_token(self, cancel_token: Optional[CancelToken]) -> "Waiter":
        if cancel_token is None:
            return self
        return Waiter(sleep=self._sleep, clock=self.clock, cancel_token=cancel_token)

    def poll_until(
        self,
        probe: Callable[[], bool],
        budget: WaitBudget,
        interval: float,
        description: str = "Operation",
        initial_delay: float = 0,
    ) -> Tuple[bool, Optional[BmcError]]:
        """
        Call `probe` until it returns True.

        A BmcError raised by the probe ends the loop and is returned as-is.
        The duration budget is counted from the first probe (after
        `initial_delay`), and no probe is issued once it has expired.

        Returns:
            (ok: bool, error: BmcError or None)
        """
        if initial_delay and self.pause(initial_delay):
            return False, OperationCancelled(f"{description} cancelled")

        start = self.clock()
        attempts = 0
        while True:
            if self.cancelled:
                return False, OperationCancelled(f"{description} cancelled after {attempts} attempts")

            attempts += 1
            try:
                done = probe()
            except BmcError as e:
                return False, e

            if done:
                logger.debug(f"{description} finished after {attempts} attempts")
                return True, None

            if budget.exhausted(self.clock() - start, attempts):
                break

            if self.pause(interval):
                return False, OperationCancelled(f"{description} cancelled after {attempts} attempts")

            if budget.exhausted(self.clock() - start, attempts):
                break

        return False, OperationTimeout(
            f"{description} has not finished within given {budget.describe()}",
            timeout_seconds=budget.max_duration,
        )
