"""
Provides the runtime configuration of hpcjobs.

A single [`RuntimeConfig`][hpcjobs.config.RuntimeConfig] is constructed when a process
starts, typically from a JSON file and/or ``HPCJOBS_*`` environment variables, and is
then passed explicitly to the resolvers, monitor policies and monitor manager that need
it.
"""

import dataclasses
import json
import os
from collections.abc import Mapping
from typing import Any, Optional

from hpcjobs.resolution.slurm import PROFILE_OPTION
from hpcjobs.types import FilePath
from hpcjobs.utilities.string_validation import (
    DEFAULT_DANGEROUS_TEXT,
    DEFAULT_RESERVED_ENV_PREFIX,
)

ENV_VAR_PREFIX = "HPCJOBS_"

DEFAULT_MONITOR_STEPS = ((10, 5), (20, 15), (30, 60), (1, 300))
"""The default polling schedule as ``(tries, wait_seconds)`` pairs. The last step repeats
until monitoring is given up."""


@dataclasses.dataclass(frozen=True)
class RuntimeConfig:
    """Process-wide settings for resolving and monitoring jobs.

    Attributes
    ----------
    reserved_env_prefix : str
        Environment variable names beginning with this prefix are reserved for use by
        the system and cannot be defined by users.
    dangerous_text : tuple[str, ...]
        Substrings that may not appear in argument names or values. Control
        characters other than tab are always rejected.
    scheduler_profile_option : str
        The scheduler option used to select a scheduler profile.
    monitor_steps : tuple[tuple[int, int], ...]
        The polling schedule used by the default monitor policy, as
        ``(tries, wait_seconds)`` pairs.
    max_elapsed_seconds : int
        The time after which monitoring of a job is given up.
    max_consecutive_failures : int
        The number of consecutive failed polls after which monitoring is given up.
    max_failure_wait_seconds : int
        The longest wait between polls following failed polls.
    initial_queuing_retries : int
        How many times a job not yet visible on the remote system is polled again
        without counting a failure.
    keep_connection_threshold_seconds : int
        The connection to the remote system is kept open between polls when the next
        wait is no longer than this.
    max_recovery_attempts : int
        How many times a monitoring session ended by a recoverable error is resumed.
    recovery_initial_delay : float
        The delay, in seconds, before resuming the first failed session.
    recovery_max_delay : float
        The longest delay, in seconds, before resuming a failed session.
    log_level : str
        The minimum level of log messages.
    log_file : str, optional
        A file that log messages are additionally written to.
    """

    reserved_env_prefix: str = DEFAULT_RESERVED_ENV_PREFIX
    dangerous_text: tuple[str, ...] = DEFAULT_DANGEROUS_TEXT
    scheduler_profile_option: str = PROFILE_OPTION
    monitor_steps: tuple[tuple[int, int], ...] = DEFAULT_MONITOR_STEPS
    max_elapsed_seconds: int = 7 * 24 * 60 * 60
    max_consecutive_failures: int = 10
    max_failure_wait_seconds: int = 300
    initial_queuing_retries: int = 3
    keep_connection_threshold_seconds: int = 15
    max_recovery_attempts: int = 5
    recovery_initial_delay: float = 1.0
    recovery_max_delay: float = 32.0
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        for name in (
            "max_elapsed_seconds",
            "max_consecutive_failures",
            "max_failure_wait_seconds",
            "initial_queuing_retries",
            "keep_connection_threshold_seconds",
            "max_recovery_attempts",
        ):
            self._validate_non_negative_int(name, getattr(self, name))

        for name in ("recovery_initial_delay", "recovery_max_delay"):
            self._validate_non_negative_number(name, getattr(self, name))

        self._validate_monitor_steps(self.monitor_steps)
        if not isinstance(self.reserved_env_prefix, str):
            raise TypeError(
                f"Expected 'reserved_env_prefix' to be of type {str} but received "
                f"{type(self.reserved_env_prefix)} instead."
            )

    @staticmethod
    def _validate_non_negative_int(name: str, value: Any) -> None:
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(
                f"Expected '{name}' to be of type {int} but received {type(value)} instead."
            )
        if value < 0:
            raise ValueError(
                f"Expected '{name}' to be a non-negative integer but received {value} "
                "instead."
            )

    @staticmethod
    def _validate_non_negative_number(name: str, value: Any) -> None:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise TypeError(
                f"Expected '{name}' to be a real number but received {type(value)} "
                "instead."
            )
        if value < 0:
            raise ValueError(
                f"Expected '{name}' to be non-negative but received {value} instead."
            )

    @staticmethod
    def _validate_monitor_steps(steps: Any) -> None:
        if not steps:
            raise ValueError("Expected 'monitor_steps' to contain at least one step.")

        for step in steps:
            if (
                len(step) != 2
                or not all(isinstance(x, int) and not isinstance(x, bool) for x in step)
                or step[0] < 1
                or step[1] < 0
            ):
                raise ValueError(
                    "Expected each of 'monitor_steps' to be a pair (tries, wait_seconds) "
                    f"of integers with tries >= 1 and wait_seconds >= 0 but received "
                    f"{step} instead."
                )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuntimeConfig":
        """Create a configuration from a mapping of field names to values.

        Fields missing from `data` take their default values.

        Raises
        ------
        ValueError
            If `data` contains a key that isn't a configuration field.
        """

        field_names = {field.name for field in dataclasses.fields(cls)}
        unknown = set(data) - field_names
        if unknown:
            raise ValueError(
                f"Unknown configuration settings {sorted(unknown)}; expected settings "
                f"from {sorted(field_names)}."
            )

        return cls(**cls._coerce(data))

    @staticmethod
    def _coerce(data: Mapping[str, Any]) -> dict[str, Any]:
        kwargs = dict(data)
        if "dangerous_text" in kwargs:
            kwargs["dangerous_text"] = tuple(kwargs["dangerous_text"])
        if "monitor_steps" in kwargs:
            kwargs["monitor_steps"] = tuple(tuple(step) for step in kwargs["monitor_steps"])

        return kwargs

    @classmethod
    def from_file(cls, path: FilePath) -> "RuntimeConfig":
        """Load a configuration from a JSON file containing a single object."""

        with open(path, mode="r", encoding="utf-8") as config_file:
            data = json.load(config_file)

        if not isinstance(data, dict):
            raise ValueError(
                f"Expected the configuration file {path} to contain a JSON object."
            )

        return cls.from_dict(data)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["RuntimeConfig"] = None,
    ) -> "RuntimeConfig":
        """Override the settings of a configuration from environment variables.

        Each setting can be overridden by an environment variable named after it, in
        upper case and prefixed with ``HPCJOBS_``, e.g. ``HPCJOBS_LOG_LEVEL``. The
        settings `dangerous_text` and `monitor_steps` are read as JSON arrays.

        Parameters
        ----------
        environ : Mapping[str, str], optional
            (Default: None) The environment to read from. Defaults to ``os.environ``.
        base : RuntimeConfig, optional
            (Default: None) The configuration to override. Defaults to the default
            configuration.
        """

        environ = os.environ if environ is None else environ
        base = cls() if base is None else base

        overrides = {}
        for field in dataclasses.fields(cls):
            env_name = ENV_VAR_PREFIX + field.name.upper()
            if env_name in environ:
                overrides[field.name] = cls._parse_env_value(
                    field.name, environ[env_name], getattr(base, field.name)
                )

        return dataclasses.replace(base, **cls._coerce(overrides))

    @staticmethod
    def _parse_env_value(name: str, text: str, current: Any) -> Any:
        if name in ("dangerous_text", "monitor_steps"):
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                raise ValueError(
                    f"Expected environment setting for '{name}' to be a JSON array but "
                    f"received '{text}' instead."
                )

        if name == "log_file":
            return text or None

        if isinstance(current, bool) or isinstance(current, str) or current is None:
            return text

        converter = int if isinstance(current, int) else float
        try:
            return converter(text)
        except ValueError:
            raise ValueError(
                f"Expected environment setting for '{name}' to be of type {converter} "
                f"but received '{text}' instead."
            )
