"""
Provides the probes that query the status of jobs on remote systems.

A [`RemoteStatusProbe`][hpcjobs.execution.probes.RemoteStatusProbe] knows how to ask a
particular kind of remote runtime, such as a native process, a Docker container, a
Singularity instance or a Slurm batch job, how a job is progressing. Probes report a
[`RemoteStatus`][hpcjobs.execution.probes.RemoteStatus] and never raise for an
ordinary command failure: a failed or unparseable command is reported as
``RemoteStatus.NULL`` and blank output as ``RemoteStatus.EMPTY``, leaving it to the
monitor policy whether to try again. The exception is a command channel that still
fails after reconnecting, which is raised so that the monitoring session can be
resumed later.

Probes run their commands through their job's
[`ExecutionContext`][hpcjobs.execution.context.ExecutionContext].
"""

import re
import shlex
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from loguru import logger

from hpcjobs.errors import ChannelError, RemoteConnectionError
from hpcjobs.execution.context import ExecutionContext
from hpcjobs.execution.remote import CommandResult

SUCCESS_EXIT_CODE = "0"
"""The exit code of a successful application."""

EXIT_CODE_FILE = "hpcjobs.exitcode"
"""The file in a job's working directory the application's exit code is written to."""


class RemoteStatus(Enum):
    """The status of a job as reported by the remote system."""

    NULL = "NULL"
    """The status could not be determined. Has the value 'NULL'."""

    EMPTY = "EMPTY"
    """The remote system reported nothing about the job. Has the value 'EMPTY'."""

    QUEUED = "QUEUED"
    """The job is waiting to run. Has the value 'QUEUED'."""

    ACTIVE = "ACTIVE"
    """The job is running. Has the value 'ACTIVE'."""

    DONE = "DONE"
    """The job completed successfully. Has the value 'DONE'."""

    FAILED = "FAILED"
    """The job completed unsuccessfully. Has the value 'FAILED'."""


UNKNOWN_STATUSES = frozenset({RemoteStatus.NULL, RemoteStatus.EMPTY})
"""Statuses reported when nothing useful could be learned about a job."""

COMPLETED_STATUSES = frozenset({RemoteStatus.DONE, RemoteStatus.FAILED})
"""Statuses reported once a job has finished running."""


class RemoteStatusProbe(ABC):
    """
    Abstract base class for probes of a job's status on a remote system.

    Parameters
    ----------
    context : ExecutionContext
        The execution context of the job being probed.
    """

    def __init__(self, context: ExecutionContext):
        self._context = context
        self._exit_code: Optional[str] = None

    @property
    def context(self) -> ExecutionContext:
        """(Read-only) The execution context of the job being probed."""
        return self._context

    @abstractmethod
    def query_remote_job(self, active: bool) -> RemoteStatus:
        """
        Query the status of the job on the remote system.

        Parameters
        ----------
        active : bool
            Whether to query the remote system's view of running jobs (``True``) or its
            accounting records of finished jobs (``False``). Probes without a distinct
            inactive query return ``RemoteStatus.NULL`` when `active` is ``False``.

        Returns
        -------
        RemoteStatus
            The status of the job.

        Raises
        ------
        ChannelError
            If the command channel fails again after reconnecting.
        RemoteConnectionError
            If the connection to the remote system cannot be made.
        """

        raise NotImplementedError

    def get_exit_code(self) -> str:
        """The application's exit code, once the job has completed. Defaults to
        ``'0'`` if no exit code was found."""

        return SUCCESS_EXIT_CODE if self._exit_code is None else self._exit_code

    def clean_up_remote_job(self) -> None:
        """Release any resources the job still holds on the remote system."""

    def cancel_remote_job(self) -> None:
        """Make a best effort to stop the job on the remote system."""

    def _run(self, command: str) -> Optional[CommandResult]:
        """Run a command for the job, returning ``None`` if it could not be run.

        Channel and connection failures propagate so the monitor can classify them.
        """

        try:
            return self._context.run_monitor_command(command)
        except (ChannelError, RemoteConnectionError):
            raise
        except Exception as e:
            logger.opt(exception=e).error(
                f"Monitoring command {command!r} for job {self._context.job.id} failed."
            )
            return None

    def _run_quietly(self, command: str) -> None:
        result = self._run(command)
        if result is not None and result.rc != 0:
            logger.warning(
                f"Command {command!r} for job {self._context.job.id} exited with code "
                f"{result.rc}: {result.stderr}"
            )

    def _record_exit_code(self, exit_code: str) -> RemoteStatus:
        self._exit_code = exit_code
        if exit_code == SUCCESS_EXIT_CODE:
            return RemoteStatus.DONE

        return RemoteStatus.FAILED

    def _read_exit_code_file(self) -> RemoteStatus:
        """Read the exit code the application wrote to its working directory."""

        exec_dir = self._context.job.exec_dir
        if exec_dir is None:
            logger.warning(
                f"Job {self._context.job.id} has no working directory to read its exit "
                "code from."
            )
            return RemoteStatus.NULL

        path = f"{exec_dir.rstrip('/')}/{EXIT_CODE_FILE}"
        result = self._run(f"cat {shlex.quote(path)}")
        if result is None or result.rc != 0:
            return RemoteStatus.NULL

        if not result.stdout:
            return RemoteStatus.EMPTY

        exit_code = result.stdout.split()[0]
        try:
            int(exit_code)
        except ValueError:
            logger.warning(
                f"Job {self._context.job.id} wrote a non-integer exit code "
                f"{exit_code!r}; treating the job as failed."
            )
            self._exit_code = exit_code
            return RemoteStatus.FAILED

        return self._record_exit_code(exit_code)


class ProcessProbe(RemoteStatusProbe):
    """Probes a job running as a native process, identified by its process ID."""

    def query_remote_job(self, active: bool) -> RemoteStatus:
        if not active:
            return RemoteStatus.NULL

        pid = self._context.job.remote_job_id
        result = self._run(f"ps -o pid,ppid,stat,euser,cmd -p {shlex.quote(str(pid))}")
        if result is None:
            return RemoteStatus.NULL

        # ps exits non-zero, printing only its header, when the process has gone.
        lines = result.stdout.splitlines()[1:]
        if any(line.split() and line.split()[0] == pid for line in lines):
            return RemoteStatus.ACTIVE

        if result.rc != 0 and not result.stdout:
            return RemoteStatus.NULL

        return self._read_exit_code_file()

    def cancel_remote_job(self) -> None:
        pid = shlex.quote(str(self._context.job.remote_job_id))
        self._run_quietly(f"pkill -9 -P {pid}; kill -9 {pid}")


class DockerProbe(RemoteStatusProbe):
    """Probes a job running in a Docker container, identified by the container's
    name."""

    _EXITED_PATTERN = re.compile(r"Exited \((-?\d+)\)")

    def query_remote_job(self, active: bool) -> RemoteStatus:
        if not active:
            return RemoteStatus.NULL

        name_filter = shlex.quote(f"name={self._context.job.remote_job_id}")
        result = self._run(
            f'docker ps -a --no-trunc -f {name_filter} --format "{{{{.Status}}}}"'
        )
        if result is None or result.rc != 0:
            return RemoteStatus.NULL

        if not result.stdout:
            return RemoteStatus.EMPTY

        status = result.stdout.splitlines()[0]
        if status.startswith("Up "):
            return RemoteStatus.ACTIVE

        match = self._EXITED_PATTERN.match(status)
        if match:
            return self._record_exit_code(match.group(1))

        if status.startswith("Created"):
            return RemoteStatus.QUEUED

        logger.warning(
            f"Unrecognised Docker status {status!r} for job {self._context.job.id}."
        )
        return RemoteStatus.NULL

    def clean_up_remote_job(self) -> None:
        self._run_quietly(f"docker rm -f {shlex.quote(self._context.job.remote_job_id)}")

    def cancel_remote_job(self) -> None:
        self.clean_up_remote_job()


class SingularityStartProbe(RemoteStatusProbe):
    """Probes a job running in a Singularity instance.

    The job's remote ID has the form ``'<instance name>:<pid>'``, giving the name of
    the instance together with the process ID of the instance's main process.
    """

    def _instance_and_pid(self) -> tuple[str, str]:
        name, _, pid = self._context.job.remote_job_id.rpartition(":")
        return name, pid

    def query_remote_job(self, active: bool) -> RemoteStatus:
        if not active:
            return RemoteStatus.NULL

        _, pid = self._instance_and_pid()
        result = self._run("ps --no-headers --sort=pid -eo pid,ppid,stat,euser,cmd")
        if result is None or result.rc != 0:
            return RemoteStatus.NULL

        if not result.stdout:
            return RemoteStatus.EMPTY

        for line in result.stdout.splitlines():
            fields = line.split()
            if fields and fields[0] == pid:
                return RemoteStatus.ACTIVE

        return self._read_exit_code_file()

    def clean_up_remote_job(self) -> None:
        name, _ = self._instance_and_pid()
        if name:
            self._run_quietly(f"singularity instance stop {shlex.quote(name)}")

    def cancel_remote_job(self) -> None:
        self.clean_up_remote_job()


class SlurmProbe(RemoteStatusProbe):
    """Probes a Slurm batch job, identified by its Slurm job ID."""

    _STATUS_BY_STATE = {
        "PENDING": RemoteStatus.QUEUED,
        "CONFIGURING": RemoteStatus.QUEUED,
        "REQUEUED": RemoteStatus.QUEUED,
        "REQUEUE_HOLD": RemoteStatus.QUEUED,
        "REQUEUE_FED": RemoteStatus.QUEUED,
        "RESV_DEL_HOLD": RemoteStatus.QUEUED,
        "RUNNING": RemoteStatus.ACTIVE,
        "COMPLETING": RemoteStatus.ACTIVE,
        "RESIZING": RemoteStatus.ACTIVE,
        "SIGNALING": RemoteStatus.ACTIVE,
        "STAGE_OUT": RemoteStatus.ACTIVE,
        "SUSPENDED": RemoteStatus.ACTIVE,
        "STOPPED": RemoteStatus.ACTIVE,
        "COMPLETED": RemoteStatus.DONE,
        "BOOT_FAIL": RemoteStatus.FAILED,
        "CANCELLED": RemoteStatus.FAILED,
        "DEADLINE": RemoteStatus.FAILED,
        "FAILED": RemoteStatus.FAILED,
        "NODE_FAIL": RemoteStatus.FAILED,
        "OUT_OF_MEMORY": RemoteStatus.FAILED,
        "PREEMPTED": RemoteStatus.FAILED,
        "REVOKED": RemoteStatus.FAILED,
        "SPECIAL_EXIT": RemoteStatus.FAILED,
        "TIMEOUT": RemoteStatus.FAILED,
    }

    def _parse_state(self, state: str) -> RemoteStatus:
        # sacct reports e.g. 'CANCELLED by 1234' or 'COMPLETED+'.
        state = state.split()[0].rstrip("+")
        status = self._STATUS_BY_STATE.get(state)
        if status is None:
            logger.warning(
                f"Unrecognised Slurm state {state!r} for job {self._context.job.id}."
            )
            return RemoteStatus.NULL

        return status

    def query_remote_job(self, active: bool) -> RemoteStatus:
        slurm_id = shlex.quote(str(self._context.job.remote_job_id))
        if active:
            result = self._run(f"squeue -h -j {slurm_id} -o %T")
        else:
            result = self._run(f"sacct -j {slurm_id} -X -n -o State,ExitCode")

        if result is None or result.rc != 0:
            return RemoteStatus.NULL

        if not result.stdout:
            return RemoteStatus.EMPTY

        fields = result.stdout.splitlines()[0].split()
        status = self._parse_state(fields[0])
        if not active and status in COMPLETED_STATUSES and len(fields) > 1:
            # ExitCode has the form '<exit code>:<signal>'.
            self._exit_code = fields[-1].split(":")[0]

        return status

    def cancel_remote_job(self) -> None:
        self._run_quietly(f"scancel {shlex.quote(str(self._context.job.remote_job_id))}")
