"""Contains fakes used to support unit tests
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Optional, Union

from hpcjobs.execution.context import ExecutionContext
from hpcjobs.execution.policies import MonitorPolicy, ReasonCode
from hpcjobs.execution.probes import RemoteStatus, RemoteStatusProbe
from hpcjobs.execution.remote import CommandResult


class FakeConnection:
    """A stand-in for a ``RemoteConnection`` that replays scripted command results.

    Each item of `results` is returned (or raised, if an exception) by successive calls
    to ``run``. Once exhausted, the last item is repeated. The commands run are recorded
    in order.

    Parameters
    ----------
    results : Sequence[Union[CommandResult, Exception]], optional
        The results of successive commands. Defaults to a single successful command with
        no output.
    """

    def __init__(self, results: Sequence[Union[CommandResult, Exception]] = ()):
        self._results = list(results) or [CommandResult(0, "")]
        self.commands = []
        self.opens = 0
        self.closes = 0
        self.is_open = False

    @property
    def target(self) -> str:
        return "user@fake-host"

    def open(self) -> None:
        if not self.is_open:
            self.opens += 1
            self.is_open = True

    def close(self) -> None:
        if self.is_open:
            self.closes += 1
        self.is_open = False

    def reopen(self) -> None:
        self.close()
        self.open()

    def run(self, command: str) -> CommandResult:
        self.open()
        self.commands.append(command)
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, Exception):
            raise result

        return result


class FakeProbe(RemoteStatusProbe):
    """A probe that replays a scripted sequence of remote statuses.

    Each item of `statuses` is returned (or raised, if an exception) by successive
    calls to ``query_remote_job``. Once exhausted, the last item is repeated.

    Parameters
    ----------
    context : ExecutionContext
        The execution context of the job being probed.
    statuses : Sequence[Union[RemoteStatus, Exception]]
        The statuses to report.
    exit_code : str, optional
        (Default: '0') The exit code to report.
    inactive_status : RemoteStatus, optional
        (Default: None) If not ``None``, the status returned by every inactive query,
        without consuming `statuses`.
    """

    def __init__(
        self,
        context: ExecutionContext,
        statuses: Sequence[Union[RemoteStatus, Exception]],
        exit_code: str = "0",
        inactive_status: Optional[RemoteStatus] = None,
    ):
        super().__init__(context)
        self._statuses = list(statuses)
        self._exit_code = exit_code
        self._inactive_status = inactive_status
        self.queries = []
        self.clean_ups = 0
        self.cancels = 0

    def query_remote_job(self, active: bool) -> RemoteStatus:
        self.queries.append(active)
        if not active and self._inactive_status is not None:
            return self._inactive_status

        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        if isinstance(status, Exception):
            raise status

        return status

    def clean_up_remote_job(self) -> None:
        self.clean_ups += 1

    def cancel_remote_job(self) -> None:
        self.cancels += 1


class ScriptedPolicy(MonitorPolicy):
    """A monitor policy that never waits and gives up after a number of consecutive
    failures.

    Parameters
    ----------
    max_failures : int, optional
        (Default: None) The number of consecutive failed polls after which the policy
        gives up. ``None`` means the policy never gives up.
    queuing_retries : int, optional
        (Default: 0) How many times to retry an initial-queuing race.
    keep : bool, optional
        (Default: True) The value returned by ``keep_connection``.
    """

    def __init__(
        self, max_failures: Optional[int] = None, queuing_retries: int = 0, keep: bool = True
    ):
        self._max_failures = max_failures
        self._queuing_retries = queuing_retries
        self._keep = keep
        self._reason_code = None
        self.failures = 0
        self.calls = []

    @property
    def reason_code(self) -> Optional[ReasonCode]:
        return self._reason_code

    def millis_to_wait(self, last_attempt_failed: bool) -> Optional[int]:
        self.calls.append(last_attempt_failed)
        self.failures = self.failures + 1 if last_attempt_failed else 0
        if self._max_failures is not None and self.failures >= self._max_failures:
            self._reason_code = ReasonCode.TOO_MANY_FAILURES
            return None

        return 0

    def keep_connection(self) -> bool:
        return self._keep

    def retry_for_initial_queuing(self) -> bool:
        if self._queuing_retries > 0:
            self._queuing_retries -= 1
            return True

        return False


class FakeClock:
    """A clock whose time only moves when advanced."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
