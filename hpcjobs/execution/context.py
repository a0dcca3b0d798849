import threading
from typing import Optional

from loguru import logger

from hpcjobs.errors import ChannelError
from hpcjobs.execution.commands import CommandChannel, QueueCommandChannel, handle_command
from hpcjobs.execution.jobs import Job
from hpcjobs.execution.remote import CommandResult, RemoteConnection
from hpcjobs.execution.store import JobStore


class ExecutionContext:
    """
    The resources used while monitoring a single job.

    A context owns the connection to the system the job runs on for the duration of a
    monitoring session, together with the channel through which commands reach the job.
    It is never shared between jobs.

    Parameters
    ----------
    job : Job
        The job being monitored.
    store : JobStore
        The store recording the job's progress.
    connection : RemoteConnection
        The connection to the system the job runs on.
    commands : CommandChannel, optional
        (Default: None) The channel delivering commands to the job. A new
        ``QueueCommandChannel`` is created if not provided.

    Attributes
    ----------
    last_remote_status : RemoteStatus, optional
        The remote status most recently reported for the job.
    final_message : str, optional
        A message describing why monitoring ended, if it ended early.
    """

    def __init__(
        self,
        job: Job,
        store: JobStore,
        connection: RemoteConnection,
        commands: Optional[CommandChannel] = None,
    ):
        self._job = job
        self._store = store
        self._connection = connection
        self._commands = QueueCommandChannel() if commands is None else commands
        self.last_remote_status = None
        self.final_message: Optional[str] = None
        self._wake = threading.Event()

    @property
    def job(self) -> Job:
        """(Read-only) The job being monitored."""
        return self._job

    @property
    def store(self) -> JobStore:
        """(Read-only) The store recording the job's progress."""
        return self._store

    @property
    def connection(self) -> RemoteConnection:
        """(Read-only) The connection to the system the job runs on."""
        return self._connection

    @property
    def commands(self) -> CommandChannel:
        """(Read-only) The channel delivering commands to the job."""
        return self._commands

    def run_monitor_command(self, command: str) -> CommandResult:
        """
        Run a monitoring command on the remote system.

        If the command channel fails, the connection is closed and reopened and the
        command is run one more time.

        Parameters
        ----------
        command : str
            The shell command to run.

        Returns
        -------
        CommandResult
            The exit code and output of the command.

        Raises
        ------
        ChannelError
            If the command channel fails again after reconnecting.
        RemoteConnectionError
            If the connection cannot be reopened.
        """

        try:
            return self._connection.run(command)
        except ChannelError as e:
            logger.warning(
                f"{e} Reconnecting to {self._connection.target} to retry for job "
                f"{self._job.id}."
            )

        self._connection.reopen()
        return self._connection.run(command)

    def wait(self, seconds: float) -> bool:
        """Wait for up to `seconds`, returning ``True`` if the wait was interrupted by
        a call to ``interrupt_wait``."""

        interrupted = self._wake.wait(seconds)
        self._wake.clear()
        return interrupted

    def interrupt_wait(self) -> None:
        """Cut short the current, or next, wait between polls."""

        self._wake.set()

    def close_connection(self) -> None:
        """Close the connection to the remote system, if open."""

        self._connection.close()

    def check_for_command(self, probe) -> None:
        """Act on the next pending command for the job, if there is one.

        Raises
        ------
        AsyncCommandReceived
            If the command ended monitoring of the job.
        """

        command = self._commands.poll()
        if command is not None:
            handle_command(command, self, probe)
