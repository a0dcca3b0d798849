"""
Provides the state machine that follows a job's execution on a remote system.

A [`JobMonitor`][hpcjobs.execution.monitors.JobMonitor] is started in one of the two
phases a remote job can be waited on in: ``QUEUED`` or ``RUNNING``. It then polls the
job's status through a [`RemoteStatusProbe`][hpcjobs.execution.probes.RemoteStatusProbe],
pacing itself according to a [`MonitorPolicy`][hpcjobs.execution.policies.MonitorPolicy],
until one of the following happens:

* A job waited on in the queue starts running (``MonitorExit.ADVANCED``). The caller
  then monitors the job again, starting in the ``RUNNING`` phase.
* The job completes (``MonitorExit.FINISHED`` or ``MonitorExit.FAILED``), in which case
  its outcome is recorded.
* The policy gives up on the job (``MonitorExit.EARLY_TERMINATION``), in which case a
  [`MonitoringTimeoutError`][hpcjobs.errors.MonitoringTimeoutError] is raised.
* Any other exception aborts monitoring (``MonitorExit.ABORTED``).

Whatever the way monitoring ends, a job whose session failed with an unrecoverable error
is always left with an outcome, so that archiving is never attempted against a remote
job whose state is unknown. A session that fails with a recoverable error leaves the
outcome unset, so that a new session may resume monitoring the job later.
"""

from enum import Enum
from typing import Optional

from loguru import logger

from hpcjobs.errors import (
    AsyncCommandReceived,
    InternalMonitorError,
    MonitoringTimeoutError,
    is_recoverable,
)
from hpcjobs.execution.commands import CommandType
from hpcjobs.execution.context import ExecutionContext
from hpcjobs.execution.jobs import MONITORED_PHASES, JobCondition, JobPhase, RemoteOutcome
from hpcjobs.execution.policies import MonitorPolicy, Stop
from hpcjobs.execution.probes import UNKNOWN_STATUSES, RemoteStatus, RemoteStatusProbe
from hpcjobs.utilities.messages import get_msg


class MonitorExit(Enum):
    """The ways a monitoring session can end."""

    ADVANCED = "ADVANCED"
    """A queued job started running. Has the value 'ADVANCED'."""

    FINISHED = "FINISHED"
    """The job completed successfully. Has the value 'FINISHED'."""

    FAILED = "FAILED"
    """The job completed unsuccessfully. Has the value 'FAILED'."""

    EARLY_TERMINATION = "EARLY_TERMINATION"
    """The monitor policy gave up on the job. Has the value 'EARLY_TERMINATION'."""

    ABORTED = "ABORTED"
    """Monitoring was ended by an exception. Has the value 'ABORTED'."""


# The remote status that means a job is still in the phase it was monitored from.
_UNCHANGED_STATUS = {
    JobPhase.QUEUED: RemoteStatus.QUEUED,
    JobPhase.RUNNING: RemoteStatus.ACTIVE,
}


class JobMonitor:
    """
    Polls the status of a job on a remote system until it leaves the phase it is being
    monitored in.

    A monitor is used for a single monitoring session of a single job.

    Parameters
    ----------
    context : ExecutionContext
        The execution context of the job being monitored.
    probe : RemoteStatusProbe
        The probe used to query the job's remote status.
    policy : MonitorPolicy
        The policy deciding how long to wait between polls and when to give up.

    Attributes
    ----------
    exit : MonitorExit, optional
        (Read-only) How the monitoring session ended, or ``None`` if it hasn't.
    polls : int
        (Read-only) The number of times the job's remote status was queried.
    """

    def __init__(
        self, context: ExecutionContext, probe: RemoteStatusProbe, policy: MonitorPolicy
    ):
        self._context = context
        self._probe = probe
        self._policy = policy
        self._exit: Optional[MonitorExit] = None
        self._polls = 0

    @property
    def exit(self) -> Optional[MonitorExit]:
        """(Read-only) How the monitoring session ended, or ``None`` if it hasn't."""
        return self._exit

    @property
    def polls(self) -> int:
        """(Read-only) The number of times the job's remote status was queried."""
        return self._polls

    def monitor_queued_job(self) -> MonitorExit:
        """Monitor a job waiting in the remote system's queue."""

        return self.monitor(JobPhase.QUEUED)

    def monitor_running_job(self) -> MonitorExit:
        """Monitor a job running on the remote system."""

        return self.monitor(JobPhase.RUNNING)

    def monitor(self, initial_phase: JobPhase) -> MonitorExit:
        """
        Monitor the job until it leaves `initial_phase`.

        Parameters
        ----------
        initial_phase : JobPhase
            The phase the job is monitored from. Must be ``JobPhase.QUEUED`` or
            ``JobPhase.RUNNING``.

        Returns
        -------
        MonitorExit
            ``MonitorExit.ADVANCED`` if a queued job started running, or
            ``MonitorExit.FINISHED`` / ``MonitorExit.FAILED`` if the job completed.

        Raises
        ------
        InternalMonitorError
            If `initial_phase` is not a phase a job can be monitored in.
        MonitoringTimeoutError
            If the monitor policy gave up on the job.
        AsyncCommandReceived
            If a command ended monitoring of the job.
        """

        job = self._context.job
        if initial_phase not in MONITORED_PHASES:
            phase = getattr(initial_phase, "value", initial_phase)
            self._context.store.set_condition(job, JobCondition.JOB_INTERNAL_ERROR)
            raise InternalMonitorError.from_key("MONITOR_INVALID_PHASE", job.id, phase)

        logger.debug(f"Monitoring job {job.id} from phase {initial_phase.value}.")
        exception = None
        try:
            self._exit = self._poll_until_changed(initial_phase)
            return self._exit
        except BaseException as e:
            exception = e
            if self._exit is None:
                self._exit = MonitorExit.ABORTED
            raise
        finally:
            self._commit_outcome(exception)
            if _stopped(exception):
                logger.debug(f"Stopped monitoring job {job.id}; leaving the remote job.")
            elif exception is not None or initial_phase is JobPhase.RUNNING:
                self._clean_up()

    def _poll_until_changed(self, initial_phase: JobPhase) -> MonitorExit:
        store = self._context.store
        job = self._context.job
        last_attempt_failed = False
        while True:
            decision = self._policy.decide(last_attempt_failed)
            if isinstance(decision, Stop):
                self._terminate_early(decision)

            self._context.check_for_command(self._probe)
            if self._context.wait(decision.millis / 1000):
                logger.debug(f"Wait between polls of job {job.id} interrupted.")
            self._context.check_for_command(self._probe)

            status = self._query()
            if not self._policy.keep_connection():
                self._context.close_connection()

            if status in UNKNOWN_STATUSES:
                if self._policy.retry_for_initial_queuing():
                    logger.debug(
                        f"Job {job.id} not yet visible on the remote system; polling "
                        "again."
                    )
                    continue

                store.record_poll_attempt(job, success=False)
                last_attempt_failed = True
                continue

            store.record_poll_attempt(job, success=True)
            if status is _UNCHANGED_STATUS[initial_phase] or status is RemoteStatus.QUEUED:
                last_attempt_failed = False
                continue

            if status is RemoteStatus.ACTIVE:
                logger.info(f"Job {job.id} started running on the remote system.")
                return MonitorExit.ADVANCED

            return self._record_completion(status)

    def _query(self) -> RemoteStatus:
        self._polls += 1
        status = self._probe.query_remote_job(active=True)
        if status in UNKNOWN_STATUSES:
            status = self._probe.query_remote_job(active=False)

        self._context.last_remote_status = status
        return status

    def _terminate_early(self, decision: Stop) -> None:
        job = self._context.job
        reason = getattr(decision.reason, "value", None)
        message = get_msg("MONITOR_EARLY_TERMINATION", job.id, reason)
        self._exit = MonitorExit.EARLY_TERMINATION

        # The job might still be running, so its outputs must not be archived.
        self._context.store.set_outcome(job, RemoteOutcome.FAILED_SKIP_ARCHIVE)
        self._context.final_message = message
        self._context.store.set_condition(job, JobCondition.JOB_EXECUTION_MONITORING_TIMEOUT)
        raise MonitoringTimeoutError(
            message, reason=decision.reason, msg_key="MONITOR_EARLY_TERMINATION"
        )

    def _record_completion(self, status: RemoteStatus) -> MonitorExit:
        job = self._context.job
        exit_code = self._probe.get_exit_code()
        if status is RemoteStatus.DONE:
            outcome, condition = RemoteOutcome.FINISHED, JobCondition.NORMAL_COMPLETION
        elif job.archive_on_app_error:
            outcome, condition = RemoteOutcome.FAILED, JobCondition.JOB_REMOTE_OUTCOME_ERROR
        else:
            outcome = RemoteOutcome.FAILED_SKIP_ARCHIVE
            condition = JobCondition.JOB_REMOTE_OUTCOME_ERROR

        self._context.store.set_outcome(job, outcome, exit_code)
        self._context.store.set_condition(job, condition)
        logger.info(
            f"Job {job.id} completed on the remote system with exit code {exit_code}: "
            f"outcome {outcome.value}."
        )
        return MonitorExit.FINISHED if status is RemoteStatus.DONE else MonitorExit.FAILED

    def _commit_outcome(self, exception: Optional[BaseException]) -> None:
        job = self._context.job
        store = self._context.store
        try:
            if (
                exception is not None
                and not isinstance(exception, AsyncCommandReceived)
                and not is_recoverable(exception)
                and store.get_outcome(job) is None
            ):
                logger.warning(
                    f"Monitoring of job {job.id} failed with an unrecoverable error; "
                    f"setting outcome {RemoteOutcome.FAILED_SKIP_ARCHIVE.value}."
                )
                store.set_outcome(job, RemoteOutcome.FAILED_SKIP_ARCHIVE)
                if job.condition is None:
                    store.set_condition(job, JobCondition.JOB_EXECUTION_MONITORING_ERROR)

            if store.get_outcome(job) is not None:
                self._context.close_connection()
        except Exception as e:
            logger.opt(exception=e).error(
                f"Could not commit the outcome of monitoring job {job.id}."
            )

    def _clean_up(self) -> None:
        try:
            self._probe.clean_up_remote_job()
        except Exception as e:
            logger.opt(exception=e).error(
                f"Could not clean up remote job {self._context.job.remote_job_id} for "
                f"job {self._context.job.id}."
            )


def _stopped(exception: Optional[BaseException]) -> bool:
    command = getattr(exception, "command", None)
    return (
        isinstance(exception, AsyncCommandReceived)
        and getattr(command, "type", None) is CommandType.STOP
    )
