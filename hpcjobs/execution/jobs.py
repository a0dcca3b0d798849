from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Union


class JobPhase(Enum):
    """The phases of a job's life cycle."""

    PENDING = "PENDING"
    """The job has been accepted but processing has not started. Has the value
    'PENDING'."""

    PROCESSING_INPUTS = "PROCESSING_INPUTS"
    """The job's inputs are being resolved. Has the value 'PROCESSING_INPUTS'."""

    STAGING_INPUTS = "STAGING_INPUTS"
    """Input files are being transferred to the execution system. Has the value
    'STAGING_INPUTS'."""

    STAGING_JOB = "STAGING_JOB"
    """The application is being prepared on the execution system. Has the value
    'STAGING_JOB'."""

    SUBMITTING_JOB = "SUBMITTING_JOB"
    """The job is being launched on the execution system. Has the value
    'SUBMITTING_JOB'."""

    QUEUED = "QUEUED"
    """The job is waiting to run on the execution system. Has the value 'QUEUED'."""

    RUNNING = "RUNNING"
    """The job is running on the execution system. Has the value 'RUNNING'."""

    ARCHIVING = "ARCHIVING"
    """The job's outputs are being archived. Has the value 'ARCHIVING'."""

    BLOCKED = "BLOCKED"
    """The job is waiting for an external condition to clear. Has the value 'BLOCKED'."""

    PAUSED = "PAUSED"
    """The job has been paused by a user. Has the value 'PAUSED'."""

    FINISHED = "FINISHED"
    """The job ran to completion. Has the value 'FINISHED'."""

    CANCELLED = "CANCELLED"
    """The job was cancelled by a user. Has the value 'CANCELLED'."""

    FAILED = "FAILED"
    """The job failed. Has the value 'FAILED'."""


TERMINAL_PHASES = frozenset({JobPhase.FINISHED, JobPhase.CANCELLED, JobPhase.FAILED})
"""Phases from which a job never moves on."""

MONITORED_PHASES = frozenset({JobPhase.QUEUED, JobPhase.RUNNING})
"""Phases in which a job's remote execution is monitored."""


class RemoteOutcome(Enum):
    """The outcome of a job's execution on the remote system."""

    FINISHED = "FINISHED"
    """The application completed successfully. Has the value 'FINISHED'."""

    FAILED = "FAILED"
    """The application failed but its outputs should still be archived. Has the value
    'FAILED'."""

    FAILED_SKIP_ARCHIVE = "FAILED_SKIP_ARCHIVE"
    """The application failed, or its state could not be determined, and no attempt
    should be made to archive its outputs. Has the value 'FAILED_SKIP_ARCHIVE'."""


class JobCondition(Enum):
    """Codes explaining why a job reached its final phase."""

    NORMAL_COMPLETION = "Job completed normally"
    CANCELLED_BY_USER = "Job cancelled by user"
    JOB_EXECUTION_MONITORING_ERROR = "Error while monitoring the job's execution"
    JOB_EXECUTION_MONITORING_TIMEOUT = "Monitoring of the job's execution timed out"
    JOB_INTERNAL_ERROR = "Internal error while processing the job"
    JOB_REMOTE_ACCESS_ERROR = "Unable to access the remote execution system"
    JOB_REMOTE_OUTCOME_ERROR = "The application exited with an error"

    @property
    def description(self) -> str:
        """(Read-only) A human readable description of the condition."""
        return self.value


class JobId:
    """A unique identifier for a job.

    A job ID consists of letters, digits, hyphens and underscores, e.g. a UUID. A string
    representation of the ID can be obtained using the ``str`` function.

    Parameters
    ----------
    job_id : Union[str, JobId]
        A non-empty string of letters, digits, hyphens and underscores, or another
        instance of ``JobId``.
    """

    def __init__(self, job_id: Union[str, JobId]):
        self._job_id = self._parse(job_id)

    @staticmethod
    def _parse(job_id) -> str:
        job_id_str = str(job_id)
        if re.fullmatch("[A-Za-z0-9_-]+", job_id_str):
            return job_id_str
        else:
            raise ValueError(
                "Expected 'job_id' to define a string consisting only of letters, digits, "
                f"hyphens and underscores, but received '{str(job_id)}' instead."
            )

    def __str__(self) -> str:
        return self._job_id

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({repr(self._job_id)})"

    def __eq__(self, other) -> bool:
        return isinstance(other, self.__class__) and self._job_id == str(other)

    def __hash__(self):
        return hash(self._job_id)


class Job:
    """A job executing, or about to execute, on a remote system.

    The identity of a job and the details of where it runs are fixed when the job is
    created. Its phase, condition, last message and remote outcome change as the job
    progresses and are updated through a [`JobStore`][hpcjobs.execution.store.JobStore].

    Parameters
    ----------
    id_ : Union[JobId, str]
        The ID of the job.
    remote_job_id : str, optional
        (Default: None) The ID of the job on the remote system, e.g. a process ID, a
        container name or a Slurm job ID.
    exec_dir : str, optional
        (Default: None) The job's working directory on the remote system.
    archive_on_app_error : bool, optional
        (Default: True) Whether outputs are archived when the application fails.
    phase : JobPhase, optional
        (Default: JobPhase.QUEUED) The job's current phase.

    Attributes
    ----------
    id : JobId
        (Read-only) The ID of the job.
    remote_job_id : str, optional
        (Read-only) The ID of the job on the remote system.
    exec_dir : str, optional
        (Read-only) The job's working directory on the remote system.
    archive_on_app_error : bool
        (Read-only) Whether outputs are archived when the application fails.
    phase : JobPhase
        The job's current phase.
    condition : JobCondition, optional
        Why the job reached its final phase.
    last_message : str, optional
        The most recent human readable status message.
    remote_outcome : RemoteOutcome, optional
        The outcome of the job's remote execution, once known.
    exit_code : str, optional
        The application's exit code, once known.
    """

    def __init__(
        self,
        id_: Union[JobId, str],
        remote_job_id: Optional[str] = None,
        exec_dir: Optional[str] = None,
        archive_on_app_error: bool = True,
        phase: JobPhase = JobPhase.QUEUED,
    ) -> None:
        self._id = self._parse_id(id_)
        self._remote_job_id = self._validate_optional_str("remote_job_id", remote_job_id)
        self._exec_dir = self._validate_optional_str("exec_dir", exec_dir)
        self._archive_on_app_error = self._validate_bool(
            "archive_on_app_error", archive_on_app_error
        )
        self.phase = self._validate_phase(phase)
        self.condition: Optional[JobCondition] = None
        self.last_message: Optional[str] = None
        self.remote_outcome: Optional[RemoteOutcome] = None
        self.exit_code: Optional[str] = None

    @staticmethod
    def _parse_id(id_) -> JobId:
        try:
            return JobId(id_)
        except ValueError:
            raise ValueError(
                f"Expected 'id_' to define a valid {JobId}, but received '{str(id_)}' "
                "instead."
            )

    @staticmethod
    def _validate_optional_str(name: str, value) -> Optional[str]:
        if value is not None and not isinstance(value, str):
            raise TypeError(
                f"Expected '{name}' to be of type {str} or None but received "
                f"{type(value)} instead."
            )
        return value

    @staticmethod
    def _validate_bool(name: str, value) -> bool:
        if not isinstance(value, bool):
            raise TypeError(
                f"Expected '{name}' to be of type {bool} but received {type(value)} "
                "instead."
            )
        return value

    @staticmethod
    def _validate_phase(phase) -> JobPhase:
        if not isinstance(phase, JobPhase):
            raise TypeError(
                f"Expected 'phase' to be of type {JobPhase} but received {type(phase)} "
                "instead."
            )
        return phase

    @property
    def id(self) -> JobId:
        """(Read-only) The ID of the job."""
        return self._id

    @property
    def remote_job_id(self) -> Optional[str]:
        """(Read-only) The ID of the job on the remote system."""
        return self._remote_job_id

    @property
    def exec_dir(self) -> Optional[str]:
        """(Read-only) The job's working directory on the remote system."""
        return self._exec_dir

    @property
    def archive_on_app_error(self) -> bool:
        """(Read-only) Whether outputs are archived when the application fails."""
        return self._archive_on_app_error

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(id_={repr(self.id)}, "
            f"remote_job_id={repr(self.remote_job_id)}, exec_dir={repr(self.exec_dir)}, "
            f"archive_on_app_error={self.archive_on_app_error}, phase={self.phase})"
        )

    def __eq__(self, other) -> bool:
        return isinstance(other, self.__class__) and self.id == other.id

    def __hash__(self):
        return hash(self.id)
