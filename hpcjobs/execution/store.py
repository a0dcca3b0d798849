"""
Provides the persistence collaborator used while monitoring jobs.

A [`JobStore`][hpcjobs.execution.store.JobStore] records the progress of each job:
successful and failed poll attempts, phase transitions, the job's condition and the
outcome of its remote execution. The outcome of a job can only be set once: the first
writer wins, and later writers are ignored or, for strict stores, cause an
[`OutcomeAlreadySetError`][hpcjobs.errors.OutcomeAlreadySetError].

Stores may be shared between the threads monitoring different jobs, so implementations
must make each operation atomic.
"""

import json
import os
import pathlib
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Optional

from loguru import logger

from hpcjobs.errors import OutcomeAlreadySetError
from hpcjobs.execution.jobs import Job, JobCondition, JobPhase, RemoteOutcome
from hpcjobs.types import FilePath

BOOKKEEPING_FIELDS = (
    "remote_checks_success",
    "remote_checks_failed",
    "remote_last_check",
    "remote_started",
    "remote_ended",
)
"""The monitoring bookkeeping fields kept for each job."""


class JobStore(ABC):
    """Abstract base class for stores of job progress."""

    @abstractmethod
    def record_poll_attempt(self, job: Job, success: bool) -> None:
        """Increment the count of successful or failed polls of the remote job."""

        raise NotImplementedError

    @abstractmethod
    def set_outcome(
        self, job: Job, outcome: RemoteOutcome, exit_code: Optional[str] = None
    ) -> bool:
        """Set the outcome of the job's remote execution, if not already set.

        Returns ``True`` if the outcome was recorded and ``False`` if the job already
        had an outcome.
        """

        raise NotImplementedError

    @abstractmethod
    def get_outcome(self, job: Job) -> Optional[RemoteOutcome]:
        """Get the outcome of the job's remote execution, or ``None`` if not yet set."""

        raise NotImplementedError

    @abstractmethod
    def set_phase(self, job: Job, phase: JobPhase, message: Optional[str] = None) -> None:
        """Move the job to a new phase, recording a human readable reason."""

        raise NotImplementedError

    @abstractmethod
    def set_condition(self, job: Job, condition: JobCondition) -> None:
        """Record why the job is reaching its final phase."""

        raise NotImplementedError

    @abstractmethod
    def read_bookkeeping(self, job: Job) -> dict[str, Any]:
        """Read the job's monitoring bookkeeping fields."""

        raise NotImplementedError

    @abstractmethod
    def write_bookkeeping(self, job: Job, **fields) -> None:
        """Write some of the job's monitoring bookkeeping fields in one transaction."""

        raise NotImplementedError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_record() -> dict[str, Any]:
    return {
        "phase": None,
        "last_message": None,
        "condition": None,
        "remote_outcome": None,
        "exit_code": None,
        "remote_checks_success": 0,
        "remote_checks_failed": 0,
        "remote_last_check": None,
        "remote_started": None,
        "remote_ended": None,
    }


class InMemoryJobStore(JobStore):
    """A job store that keeps records in memory.

    Parameters
    ----------
    strict : bool, optional
        (Default: False) If ``True``, setting the outcome of a job that already has one
        raises an ``OutcomeAlreadySetError`` rather than being ignored.
    """

    def __init__(self, strict: bool = False):
        self._strict = strict
        self._records: dict[str, dict[str, Any]] = {}
        self._lock = Lock()

    @property
    def strict(self) -> bool:
        """(Read-only) Whether a second assignment of an outcome is an error."""
        return self._strict

    def _record(self, job: Job) -> dict[str, Any]:
        key = str(job.id)
        if key not in self._records:
            self._records[key] = _new_record()
            self._records[key]["phase"] = job.phase.value

        return self._records[key]

    def _changed(self) -> None:
        """Hook run, with the lock held, after every change to the records."""

    def record_poll_attempt(self, job: Job, success: bool) -> None:
        with self._lock:
            record = self._record(job)
            field = "remote_checks_success" if success else "remote_checks_failed"
            record[field] += 1
            record["remote_last_check"] = _now()
            self._changed()

    def set_outcome(
        self, job: Job, outcome: RemoteOutcome, exit_code: Optional[str] = None
    ) -> bool:
        with self._lock:
            record = self._record(job)
            if record["remote_outcome"] is not None:
                if self._strict:
                    raise OutcomeAlreadySetError.from_key(
                        "MONITOR_OUTCOME_ALREADY_SET",
                        job.id,
                        record["remote_outcome"],
                        outcome.value,
                    )
                logger.debug(
                    f"Ignoring outcome {outcome.value} for job {job.id}: outcome "
                    f"{record['remote_outcome']} already set."
                )
                return False

            record["remote_outcome"] = outcome.value
            record["exit_code"] = exit_code
            record["remote_ended"] = _now()
            self._changed()

        job.remote_outcome = outcome
        job.exit_code = exit_code
        return True

    def get_outcome(self, job: Job) -> Optional[RemoteOutcome]:
        with self._lock:
            outcome = self._record(job)["remote_outcome"]

        return None if outcome is None else RemoteOutcome(outcome)

    def set_phase(self, job: Job, phase: JobPhase, message: Optional[str] = None) -> None:
        with self._lock:
            record = self._record(job)
            record["phase"] = phase.value
            record["last_message"] = message
            if phase is JobPhase.RUNNING and record["remote_started"] is None:
                record["remote_started"] = _now()
            self._changed()

        job.phase = phase
        job.last_message = message
        logger.info(f"Job {job.id} moved to phase {phase.value}: {message}")

    def set_condition(self, job: Job, condition: JobCondition) -> None:
        with self._lock:
            self._record(job)["condition"] = condition.name
            self._changed()

        job.condition = condition

    def get_phase(self, job: Job) -> JobPhase:
        """Get the job's most recently recorded phase."""

        with self._lock:
            return JobPhase(self._record(job)["phase"])

    def read_bookkeeping(self, job: Job) -> dict[str, Any]:
        with self._lock:
            record = self._record(job)
            return {field: record[field] for field in BOOKKEEPING_FIELDS}

    def write_bookkeeping(self, job: Job, **fields) -> None:
        unknown = set(fields) - set(BOOKKEEPING_FIELDS)
        if unknown:
            raise ValueError(
                f"Expected bookkeeping fields from {list(BOOKKEEPING_FIELDS)} but received "
                f"{sorted(unknown)} instead."
            )

        with self._lock:
            self._record(job).update(fields)
            self._changed()


class JsonFileJobStore(InMemoryJobStore):
    """A job store that persists its records to a JSON file.

    The file is rewritten atomically after every change, so a worker restarted after a
    crash resumes with the poll counts and outcomes recorded before the crash.

    Parameters
    ----------
    path : hpcjobs.types.FilePath
        The JSON file to persist records to. It is created if it does not exist.
    strict : bool, optional
        (Default: False) If ``True``, setting the outcome of a job that already has one
        raises an ``OutcomeAlreadySetError`` rather than being ignored.
    """

    def __init__(self, path: FilePath, strict: bool = False):
        super().__init__(strict=strict)
        self._path = pathlib.Path(path)
        if self._path.exists():
            with open(self._path, mode="r", encoding="utf-8") as store_file:
                self._records = json.load(store_file)

    @property
    def path(self) -> pathlib.Path:
        """(Read-only) The file records are persisted to."""
        return self._path

    def _changed(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, mode="w", encoding="utf-8") as tmp_file:
                json.dump(self._records, tmp_file, indent=4)
            os.replace(tmp_path, self._path)
        except BaseException:
            os.unlink(tmp_path)
            raise
