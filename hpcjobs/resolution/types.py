"""
Provides the data types that the resolution engine works with.

Arguments (application arguments, container arguments and scheduler options) are
described by [`ArgSpec`][hpcjobs.resolution.types.ArgSpec] objects and environment
variables by [`EnvVar`][hpcjobs.resolution.types.EnvVar] objects. Both can originate
in a system definition, an application definition or a job request. Definition-layer
entries carry an [`InputMode`][hpcjobs.resolution.types.InputMode] governing whether
they are included silently, on demand, or are immutable.

An environment variable without a concrete value holds the singleton
[`UNSET`][hpcjobs.resolution.types.UNSET], which is distinct from the empty string.
"""

import dataclasses
from enum import Enum
from typing import Any, Optional, Union

from hpcjobs.types import JsonDict


class InputMode(Enum):
    """The ways in which a definition-layer argument or environment variable may be
    included in a job."""

    REQUIRED = "REQUIRED"
    """The entry is always included and a value must be supplied by a higher layer if
    the defining layer gives none. Has the value 'REQUIRED'."""

    FIXED = "FIXED"
    """The entry is always included and its value and notes cannot be changed by higher
    layers. Has the value 'FIXED'."""

    INCLUDE_BY_DEFAULT = "INCLUDE_BY_DEFAULT"
    """The entry is included unless a higher layer explicitly excludes it. Has the
    value 'INCLUDE_BY_DEFAULT'."""

    INCLUDE_ON_DEMAND = "INCLUDE_ON_DEMAND"
    """The entry is only included if a higher layer refers to it without excluding it.
    Has the value 'INCLUDE_ON_DEMAND'."""


class ArgKind(Enum):
    """The kinds of argument list that are resolved for a job."""

    APP_ARGS = "application"
    """Arguments passed to the application. Has the value 'application'."""

    CONTAINER_ARGS = "container"
    """Arguments passed to the container runtime. Has the value 'container'."""

    SCHEDULER_OPTIONS = "scheduler"
    """Options passed to the batch scheduler. Has the value 'scheduler'."""


class Unset:
    """The type of [`UNSET`][hpcjobs.resolution.types.UNSET], the value of environment
    variables for which no concrete value has yet been supplied.

    There is only one instance of this class.
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)

        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNSET = Unset()
"""Marks an environment variable as having no concrete value."""

EnvValue = Union[str, Unset]
"""The value of an environment variable: either a concrete string or ``UNSET``."""

Notes = Union[str, dict, None]
"""Free-form notes attached to an entry: JSON object text, a dict or ``None``."""


def is_unset(value: Any) -> bool:
    """Whether `value` is the unset marker (or ``None``, which is treated the same)."""

    return value is None or isinstance(value, Unset)


def _parse_input_mode(value: Any) -> Optional[InputMode]:
    if value is None or isinstance(value, InputMode):
        return value

    try:
        return InputMode(value)
    except ValueError:
        raise ValueError(
            f"Expected 'inputMode' to be one of {[mode.value for mode in InputMode]} "
            f"but received {value!r} instead."
        ) from None


def _check_optional_type(name: str, value: Any, expected: type) -> Any:
    if value is not None and not isinstance(value, expected):
        raise TypeError(
            f"Expected '{name}' to be of type {expected} or None but received "
            f"{type(value)} instead."
        )

    return value


@dataclasses.dataclass
class ArgSpec:
    """A single command line argument, or scheduler option, of a job.

    Attributes
    ----------
    name : str, optional
        The name of the argument. Request arguments without a name are anonymous and
        never merged with another argument.
    arg : str, optional
        The argument text itself, e.g. ``'--verbose'`` or ``'input.dat'``.
    description : str, optional
        A human readable description.
    input_mode : InputMode, optional
        How a definition-layer argument may be included. Request arguments have no
        input mode.
    include : bool, optional
        Whether the argument should be included. ``None`` means no preference was
        expressed.
    notes : str or dict, optional
        Free-form notes, which must describe a JSON object.
    """

    name: Optional[str] = None
    arg: Optional[str] = None
    description: Optional[str] = None
    input_mode: Optional[InputMode] = None
    include: Optional[bool] = None
    notes: Notes = None

    def to_dict(self) -> JsonDict:
        """Convert to a JSON-serialisable dict using the wire field names."""

        return {
            "name": self.name,
            "arg": self.arg,
            "description": self.description,
            "inputMode": None if self.input_mode is None else self.input_mode.value,
            "include": self.include,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: JsonDict) -> "ArgSpec":
        """Create an argument from a dict with the wire field names."""

        if not isinstance(data, dict):
            raise TypeError(
                f"Expected an argument to be described by a {dict} but received "
                f"{type(data)} instead."
            )

        return cls(
            name=_check_optional_type("name", data.get("name"), str),
            arg=_check_optional_type("arg", data.get("arg"), str),
            description=_check_optional_type("description", data.get("description"), str),
            input_mode=_parse_input_mode(data.get("inputMode")),
            include=_check_optional_type("include", data.get("include"), bool),
            notes=_check_optional_type("notes", data.get("notes"), (str, dict)),
        )


@dataclasses.dataclass
class EnvVar:
    """A single environment variable of a job.

    Attributes
    ----------
    key : str
        The name of the variable.
    value : str or Unset
        The value of the variable, or ``UNSET`` if no concrete value has been given.
    description : str, optional
        A human readable description.
    input_mode : InputMode, optional
        How a definition-layer variable may be included. Request variables have no
        input mode.
    include : bool, optional
        Whether the variable should be included. ``None`` means no preference was
        expressed.
    notes : str or dict, optional
        Free-form notes, which must describe a JSON object.
    """

    key: str
    value: EnvValue = UNSET
    description: Optional[str] = None
    input_mode: Optional[InputMode] = None
    include: Optional[bool] = None
    notes: Notes = None

    def to_dict(self) -> JsonDict:
        """Convert to a JSON-serialisable dict using the wire field names.

        An unset value is written as ``None``.
        """

        return {
            "key": self.key,
            "value": None if is_unset(self.value) else self.value,
            "description": self.description,
            "inputMode": None if self.input_mode is None else self.input_mode.value,
            "include": self.include,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: JsonDict) -> "EnvVar":
        """Create an environment variable from a dict with the wire field names.

        A missing or ``None`` value is read as ``UNSET``.
        """

        if not isinstance(data, dict):
            raise TypeError(
                f"Expected an environment variable to be described by a {dict} but "
                f"received {type(data)} instead."
            )

        value = _check_optional_type("value", data.get("value"), str)
        return cls(
            key=data.get("key"),
            value=UNSET if value is None else value,
            description=_check_optional_type("description", data.get("description"), str),
            input_mode=_parse_input_mode(data.get("inputMode")),
            include=_check_optional_type("include", data.get("include"), bool),
            notes=_check_optional_type("notes", data.get("notes"), (str, dict)),
        )


@dataclasses.dataclass
class ArchiveFilter:
    """Selects which files in a job's output directory are archived.

    Attributes
    ----------
    includes : list[str]
        Glob or regex patterns of files to archive.
    excludes : list[str]
        Glob or regex patterns of files not to archive.
    include_launch_files : bool, optional
        Whether the scripts used to launch the job are archived.
    """

    includes: list[str] = dataclasses.field(default_factory=list)
    excludes: list[str] = dataclasses.field(default_factory=list)
    include_launch_files: Optional[bool] = None

    def to_dict(self) -> JsonDict:
        return {
            "includes": list(self.includes),
            "excludes": list(self.excludes),
            "includeLaunchFiles": self.include_launch_files,
        }

    @classmethod
    def from_dict(cls, data: Optional[JsonDict]) -> "ArchiveFilter":
        if data is None:
            return cls()

        return cls(
            includes=list(data.get("includes") or []),
            excludes=list(data.get("excludes") or []),
            include_launch_files=_check_optional_type(
                "includeLaunchFiles", data.get("includeLaunchFiles"), bool
            ),
        )
