"""
Provides the policies deciding how often a job's remote status is polled and when
monitoring is given up.

A monitor asks its [`MonitorPolicy`][hpcjobs.execution.policies.MonitorPolicy] for a
decision before every poll. The decision is either to
[`Wait`][hpcjobs.execution.policies.Wait] a number of milliseconds, or to
[`Stop`][hpcjobs.execution.policies.Stop] monitoring for a given reason.
"""

import dataclasses
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Optional, Union

from hpcjobs.config import DEFAULT_MONITOR_STEPS, RuntimeConfig


class ReasonCode(Enum):
    """Reasons a monitor policy gives up on a job."""

    TIME_EXPIRED = "TIME_EXPIRED"
    """The job has been monitored for longer than permitted. Has the value
    'TIME_EXPIRED'."""

    TOO_MANY_FAILURES = "TOO_MANY_FAILURES"
    """Too many consecutive polls of the job failed. Has the value
    'TOO_MANY_FAILURES'."""


@dataclasses.dataclass(frozen=True)
class Wait:
    """Wait before polling the remote job again."""

    millis: int


@dataclasses.dataclass(frozen=True)
class Stop:
    """Stop monitoring the job."""

    reason: Optional[ReasonCode]


PolicyDecision = Union[Wait, Stop]


class MonitorPolicy(ABC):
    """Abstract base class for monitor policies.

    A policy object belongs to a single monitoring session and may keep state between
    calls.
    """

    @abstractmethod
    def millis_to_wait(self, last_attempt_failed: bool) -> Optional[int]:
        """The number of milliseconds to wait before the next poll, or ``None`` if
        monitoring should be given up."""

        raise NotImplementedError

    @property
    @abstractmethod
    def reason_code(self) -> Optional[ReasonCode]:
        """The reason monitoring was given up, or ``None`` if it hasn't been."""

        raise NotImplementedError

    @abstractmethod
    def keep_connection(self) -> bool:
        """Whether to keep the connection to the remote system open between polls."""

        raise NotImplementedError

    @abstractmethod
    def retry_for_initial_queuing(self) -> bool:
        """Whether to poll again, without counting a failure, when the remote job can't
        be found because it may not have registered yet."""

        raise NotImplementedError

    def decide(self, last_attempt_failed: bool) -> PolicyDecision:
        """Decide whether to wait for the next poll or stop monitoring."""

        millis = self.millis_to_wait(last_attempt_failed)
        if millis is None:
            return Stop(self.reason_code)

        return Wait(millis)


class StepwiseMonitorPolicy(MonitorPolicy):
    """
    A policy that polls in steps of increasing intervals.

    Each step is a pair ``(tries, wait_seconds)``: the first `tries` polls wait
    `wait_seconds` each, after which the next step applies. The last step repeats until
    monitoring is given up. After a failed poll the wait instead grows exponentially,
    with a small random jitter, up to `max_failure_wait_seconds`.

    Parameters
    ----------
    steps : Sequence[tuple[int, int]], optional
        (Default: hpcjobs.config.DEFAULT_MONITOR_STEPS) The polling schedule.
    max_elapsed_seconds : float, optional
        (Default: 604800) The time after which monitoring is given up.
    max_consecutive_failures : int, optional
        (Default: 10) The number of consecutive failed polls after which monitoring is
        given up. Zero means there is no limit.
    max_failure_wait_seconds : float, optional
        (Default: 300) The longest wait after a failed poll.
    initial_queuing_retries : int, optional
        (Default: 3) How many times to poll again without counting a failure when the
        remote job can't be found.
    keep_connection_threshold_seconds : float, optional
        (Default: 15) The connection is kept open when the next scheduled wait is no
        longer than this.
    clock : Callable[[], float], optional
        (Default: time.monotonic) The clock measuring elapsed time, in seconds.
    jitter : bool, optional
        (Default: True) Whether to add random jitter to waits after failed polls.
    """

    def __init__(
        self,
        steps: Sequence[tuple[int, int]] = DEFAULT_MONITOR_STEPS,
        max_elapsed_seconds: float = 7 * 24 * 60 * 60,
        max_consecutive_failures: int = 10,
        max_failure_wait_seconds: float = 300,
        initial_queuing_retries: int = 3,
        keep_connection_threshold_seconds: float = 15,
        clock: Callable[[], float] = time.monotonic,
        jitter: bool = True,
    ):
        if not steps:
            raise ValueError("Expected 'steps' to contain at least one step.")

        self._steps = tuple(tuple(step) for step in steps)
        self._max_elapsed_seconds = max_elapsed_seconds
        self._max_consecutive_failures = max_consecutive_failures
        self._max_failure_wait_seconds = max_failure_wait_seconds
        self._initial_queuing_retries = initial_queuing_retries
        self._keep_connection_threshold_seconds = keep_connection_threshold_seconds
        self._clock = clock
        self._jitter = jitter

        self._start = None
        self._step_index = 0
        self._tries_in_step = 0
        self._consecutive_failures = 0
        self._queuing_retries_used = 0
        self._reason_code = None

    @classmethod
    def from_config(cls, config: RuntimeConfig, **kwargs) -> "StepwiseMonitorPolicy":
        """Create a policy from the monitor settings of a runtime configuration."""

        return cls(
            steps=config.monitor_steps,
            max_elapsed_seconds=config.max_elapsed_seconds,
            max_consecutive_failures=config.max_consecutive_failures,
            max_failure_wait_seconds=config.max_failure_wait_seconds,
            initial_queuing_retries=config.initial_queuing_retries,
            keep_connection_threshold_seconds=config.keep_connection_threshold_seconds,
            **kwargs,
        )

    @property
    def reason_code(self) -> Optional[ReasonCode]:
        return self._reason_code

    @property
    def consecutive_failures(self) -> int:
        """(Read-only) The number of consecutive failed polls reported."""
        return self._consecutive_failures

    def _current_wait_seconds(self) -> float:
        return self._steps[self._step_index][1]

    def _advance(self) -> float:
        wait_seconds = self._current_wait_seconds()
        self._tries_in_step += 1
        tries = self._steps[self._step_index][0]
        if self._tries_in_step >= tries and self._step_index < len(self._steps) - 1:
            self._step_index += 1
            self._tries_in_step = 0

        return wait_seconds

    def _failure_wait_seconds(self) -> float:
        base = max(self._current_wait_seconds(), 1)
        delay = min(
            base * (2 ** (self._consecutive_failures - 1)), self._max_failure_wait_seconds
        )  # Exponential backoff
        if self._jitter:
            delay += random.uniform(0, 0.1 * delay)

        return delay

    def millis_to_wait(self, last_attempt_failed: bool) -> Optional[int]:
        now = self._clock()
        if self._start is None:
            self._start = now

        if now - self._start >= self._max_elapsed_seconds:
            self._reason_code = ReasonCode.TIME_EXPIRED
            return None

        if not last_attempt_failed:
            self._consecutive_failures = 0
            return int(self._advance() * 1000)

        self._consecutive_failures += 1
        if 0 < self._max_consecutive_failures <= self._consecutive_failures:
            self._reason_code = ReasonCode.TOO_MANY_FAILURES
            return None

        return int(self._failure_wait_seconds() * 1000)

    def keep_connection(self) -> bool:
        return self._current_wait_seconds() <= self._keep_connection_threshold_seconds

    def retry_for_initial_queuing(self) -> bool:
        if self._queuing_retries_used < self._initial_queuing_retries:
            self._queuing_retries_used += 1
            return True

        return False
