import random
from collections.abc import Callable
from threading import Event, Lock, Thread
from typing import Optional, Union

from loguru import logger

from hpcjobs.config import RuntimeConfig
from hpcjobs.errors import AsyncCommandReceived, UnknownJobError, is_recoverable
from hpcjobs.execution.commands import CommandType, JobCommand, QueueCommandChannel
from hpcjobs.execution.context import ExecutionContext
from hpcjobs.execution.jobs import Job, JobCondition, JobId, JobPhase, RemoteOutcome
from hpcjobs.execution.monitors import JobMonitor, MonitorExit
from hpcjobs.execution.policies import MonitorPolicy, StepwiseMonitorPolicy
from hpcjobs.execution.probes import RemoteStatusProbe
from hpcjobs.execution.remote import RemoteConnection
from hpcjobs.execution.store import JobStore

ProbeFactory = Callable[[ExecutionContext], RemoteStatusProbe]


class MonitorManager:
    """
    Monitors many jobs concurrently, each in its own thread.

    Each job is monitored until it completes or fails. A queued job is first monitored
    until it starts running, then moved to the ``RUNNING`` phase and monitored again. A
    monitoring session that fails with a recoverable error, such as loss of
    connectivity to the remote system, is resumed after an exponentially increasing
    delay, up to the number of times given by the configuration's
    ``max_recovery_attempts``. A session ending in any other error moves the job to
    the ``FAILED`` phase, with the error as its last message.

    Parameters
    ----------
    store : JobStore
        The store recording the progress of the jobs. It is shared by all the threads.
    connection_factory : Callable[[Job], RemoteConnection]
        Creates the connection to the system a job runs on. Each job gets its own
        connection.
    config : RuntimeConfig, optional
        (Default: None) The runtime configuration. Defaults to ``RuntimeConfig()``.
    policy_factory : Callable[[], MonitorPolicy], optional
        (Default: None) Creates the policy for each monitoring session. Defaults to a
        ``StepwiseMonitorPolicy`` built from `config`.

    Examples
    --------
    >>> manager = MonitorManager(store, lambda job: RemoteConnection("user", "hpc"))
    >>> manager.monitor(job, SlurmProbe)
    >>> manager.cancel(job.id)
    >>> manager.shutdown()
    """

    def __init__(
        self,
        store: JobStore,
        connection_factory: Callable[[Job], RemoteConnection],
        config: Optional[RuntimeConfig] = None,
        policy_factory: Optional[Callable[[], MonitorPolicy]] = None,
    ):
        self._store = store
        self._connection_factory = connection_factory
        self._config = RuntimeConfig() if config is None else config
        self._policy_factory = (
            policy_factory
            if policy_factory is not None
            else lambda: StepwiseMonitorPolicy.from_config(self._config)
        )
        self._sessions: dict[JobId, tuple[Thread, ExecutionContext]] = {}
        self._lock = Lock()
        self._shutdown_event = Event()

    @property
    def store(self) -> JobStore:
        """(Read-only) The store recording the progress of the jobs."""
        return self._store

    def monitor(self, job: Job, probe_factory: ProbeFactory) -> Thread:
        """
        Start monitoring a job in a new thread.

        Parameters
        ----------
        job : Job
            The job to monitor. It should be in the ``QUEUED`` or ``RUNNING`` phase.
        probe_factory : Callable[[ExecutionContext], RemoteStatusProbe]
            Creates the probe that queries the job's remote status, e.g. a subclass of
            ``RemoteStatusProbe``.

        Returns
        -------
        threading.Thread
            The thread monitoring the job.

        Raises
        ------
        RuntimeError
            If the job is already being monitored or the manager has been shut down.
        """

        if self._shutdown_event.is_set():
            raise RuntimeError("Cannot monitor jobs after the manager has shut down.")

        with self._lock:
            session = self._sessions.get(job.id)
            if session is not None and session[0].is_alive():
                raise RuntimeError(f"Job {job.id} is already being monitored.")

            context = ExecutionContext(
                job, self._store, self._connection_factory(job), QueueCommandChannel()
            )
            thread = Thread(
                target=self._run_session,
                args=(context, probe_factory),
                name=f"monitor-{job.id}",
                daemon=True,
            )
            self._sessions[job.id] = (thread, context)

        thread.start()
        return thread

    def send(self, job_id: Union[JobId, str], command_type: CommandType) -> JobCommand:
        """Send a command to a monitored job, interrupting its wait between polls.

        Raises
        ------
        UnknownJobError
            If the job is not being monitored.
        """

        job_id = JobId(job_id)
        with self._lock:
            session = self._sessions.get(job_id)

        if session is None or not session[0].is_alive():
            raise UnknownJobError(
                f"Could not send {command_type.value} command to job {job_id}: the job "
                "is not being monitored."
            )

        _, context = session
        command = JobCommand(command_type)
        context.commands.send(command)
        context.interrupt_wait()
        return command

    def cancel(self, job_id: Union[JobId, str]) -> JobCommand:
        """Cancel a monitored job."""

        return self.send(job_id, CommandType.CANCEL)

    def pause(self, job_id: Union[JobId, str]) -> JobCommand:
        """Pause a monitored job."""

        return self.send(job_id, CommandType.PAUSE)

    def request_status(self, job_id: Union[JobId, str]) -> JobCommand:
        """Ask a monitored job to log its status."""

        return self.send(job_id, CommandType.STATUS)

    def is_monitoring(self, job_id: Union[JobId, str]) -> bool:
        """Whether a job is currently being monitored."""

        with self._lock:
            session = self._sessions.get(JobId(job_id))

        return session is not None and session[0].is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for all monitoring threads to finish."""

        with self._lock:
            threads = [thread for thread, _ in self._sessions.values()]

        for thread in threads:
            thread.join(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop monitoring all jobs and wait for the monitoring threads to finish.

        Monitoring of live jobs is stopped without changing their phase or touching
        the remote jobs, so that a new manager can monitor them again later.
        """

        self._shutdown_event.set()
        with self._lock:
            sessions = list(self._sessions.values())

        for thread, context in sessions:
            if thread.is_alive():
                context.commands.send(JobCommand(CommandType.STOP, sender_id="shutdown"))
                context.interrupt_wait()

        for thread, _ in sessions:
            thread.join(timeout)

    def _run_session(self, context: ExecutionContext, probe_factory: ProbeFactory) -> None:
        job = context.job
        attempts = 0
        try:
            while True:
                try:
                    self._monitor_to_completion(context, probe_factory)
                    return
                except AsyncCommandReceived as e:
                    logger.info(f"Monitoring of job {job.id} ended: {e}")
                    return
                except Exception as e:
                    if (
                        is_recoverable(e)
                        and attempts < self._config.max_recovery_attempts
                        and not self._shutdown_event.is_set()
                    ):
                        attempts += 1
                        delay = self._recovery_delay(attempts)
                        logger.warning(
                            f"Monitoring of job {job.id} failed with a recoverable error "
                            f"({e}); resuming in {delay:.2f}s (attempt {attempts} of "
                            f"{self._config.max_recovery_attempts})."
                        )
                        context.close_connection()
                        if self._shutdown_event.wait(delay):
                            return
                        continue

                    self._fail(context, e)
                    return
        finally:
            context.close_connection()

    def _recovery_delay(self, attempt: int) -> float:
        delay = min(
            self._config.recovery_initial_delay * (2 ** (attempt - 1)),
            self._config.recovery_max_delay,
        )  # Exponential backoff
        return delay + random.uniform(0, 0.1 * delay)

    def _monitor_to_completion(
        self, context: ExecutionContext, probe_factory: ProbeFactory
    ) -> None:
        job = context.job
        monitor = JobMonitor(context, probe_factory(context), self._policy_factory())
        exit_ = monitor.monitor(job.phase)
        if exit_ is MonitorExit.ADVANCED:
            self._store.set_phase(job, JobPhase.RUNNING, "Job started running.")
            monitor = JobMonitor(context, probe_factory(context), self._policy_factory())
            exit_ = monitor.monitor_running_job()

        if exit_ is MonitorExit.FINISHED:
            self._store.set_phase(
                job, JobPhase.FINISHED, JobCondition.NORMAL_COMPLETION.description
            )
        else:
            self._store.set_phase(
                job,
                JobPhase.FAILED,
                f"{JobCondition.JOB_REMOTE_OUTCOME_ERROR.description} (exit code "
                f"{job.exit_code}).",
            )

    def _fail(self, context: ExecutionContext, exc: Exception) -> None:
        job = context.job
        logger.opt(exception=exc).error(f"Monitoring of job {job.id} failed.")
        try:
            if is_recoverable(exc):
                # No further session will resume the job.
                self._store.set_outcome(job, RemoteOutcome.FAILED_SKIP_ARCHIVE)
                self._store.set_condition(job, JobCondition.JOB_REMOTE_ACCESS_ERROR)
            elif job.condition is None:
                self._store.set_condition(job, JobCondition.JOB_EXECUTION_MONITORING_ERROR)

            self._store.set_phase(job, JobPhase.FAILED, context.final_message or str(exc))
        except Exception as e:
            logger.opt(exception=e).error(f"Could not record the failure of job {job.id}.")
