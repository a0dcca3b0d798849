"""
Provides the channel through which commands are delivered to jobs being monitored.

Commands arrive out-of-band, from users or administrators, while a job's monitor is
polling the remote system. The monitor checks its channel immediately before and after
each wait between polls, so a command takes effect within about one poll interval. A
status request is logged and monitoring continues. Pause and cancel requests move the
job to a new phase, and a stop request leaves the phase unchanged so that the job can be
monitored again later. All three end monitoring by raising
[`AsyncCommandReceived`][hpcjobs.errors.AsyncCommandReceived].
"""

import dataclasses
import queue
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from loguru import logger

from hpcjobs.errors import AsyncCommandReceived
from hpcjobs.execution.jobs import TERMINAL_PHASES, JobCondition, JobPhase
from hpcjobs.utilities.messages import get_msg


class CommandType(Enum):
    """The kinds of command that can be sent to a monitored job."""

    STATUS = "STATUS"
    """Report the job's status. Has the value 'STATUS'."""

    PAUSE = "PAUSE"
    """Pause the job. Has the value 'PAUSE'."""

    CANCEL = "CANCEL"
    """Cancel the job. Has the value 'CANCEL'."""

    STOP = "STOP"
    """Stop monitoring the job, leaving its phase unchanged. Has the value 'STOP'."""


_COMMAND_PHASES = {
    CommandType.PAUSE: JobPhase.PAUSED,
    CommandType.CANCEL: JobPhase.CANCELLED,
}


@dataclasses.dataclass(frozen=True)
class JobCommand:
    """A command sent to a monitored job."""

    type: CommandType
    sender_id: Optional[str] = None
    correlation_id: Optional[str] = None


class CommandChannel(ABC):
    """Abstract base class for channels delivering commands to one monitored job."""

    @abstractmethod
    def poll(self) -> Optional[JobCommand]:
        """Return the next pending command without blocking, or ``None`` if there is
        none."""

        raise NotImplementedError


class QueueCommandChannel(CommandChannel):
    """A command channel backed by a thread-safe queue."""

    def __init__(self):
        self._queue = queue.Queue()

    def send(self, command: JobCommand) -> None:
        """Deliver a command to the job."""

        self._queue.put(command)

    def poll(self) -> Optional[JobCommand]:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None


def handle_command(command: JobCommand, context, probe) -> None:
    """
    Act on a command received while monitoring a job.

    Parameters
    ----------
    command : JobCommand
        The command received.
    context : ExecutionContext
        The execution context of the monitored job.
    probe : RemoteStatusProbe
        The probe monitoring the job, used to cancel the remote job.

    Raises
    ------
    AsyncCommandReceived
        If the command ends monitoring of the job. This is raised for pause, cancel
        and stop commands even if the job's new phase could not be recorded.
    """

    job = context.job
    if command.type is CommandType.STATUS:
        logger.info(
            get_msg(
                "MONITOR_STATUS_REQUEST",
                job.id,
                job.phase.value,
                getattr(context.last_remote_status, "value", None),
            )
        )
        return

    message = get_msg("MONITOR_ASYNC_COMMAND", job.id, command.type.value)
    new_phase = _COMMAND_PHASES.get(command.type)
    if new_phase is not None:
        try:
            context.store.set_phase(job, new_phase, message)
            if command.type is CommandType.CANCEL:
                context.store.set_condition(job, JobCondition.CANCELLED_BY_USER)
        except Exception as e:
            logger.opt(exception=e).error(
                f"Could not move job {job.id} to phase {new_phase.value} for "
                f"{command.type.value} command."
            )

    if new_phase in TERMINAL_PHASES:
        try:
            probe.cancel_remote_job()
        except Exception as e:
            logger.warning(
                get_msg("MONITOR_CANCEL_FAILED", job.remote_job_id, job.id, str(e))
            )

    raise AsyncCommandReceived(message, command=command, msg_key="MONITOR_ASYNC_COMMAND")
