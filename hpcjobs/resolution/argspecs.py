"""
Resolves the command line arguments of a job.

The arguments defined in an application and the arguments given in a job request are
merged into a single ordered list by
[`merge_arg_spec_list`][hpcjobs.resolution.argspecs.merge_arg_spec_list]. The same
procedure is used for application arguments, container arguments and scheduler
options.

Whether an application argument appears in the result depends on its input mode and
on whether the request refers to it:

| Input mode           | Not in request | `include` unset | `include=True` | `include=False` |
|----------------------|----------------|-----------------|----------------|-----------------|
| `REQUIRED`, `FIXED`  | included       | included        | included       | included        |
| `INCLUDE_BY_DEFAULT` | included       | included        | included       | excluded        |
| `INCLUDE_ON_DEMAND`  | excluded       | included        | included       | excluded        |

An excluded application argument is left out of the merge, but the request argument
that excludes it is not: a request argument that refers to nothing in the merged list
is kept with its include flag, and so needs a value like any other request argument.

The result lists application arguments first, in the order they were defined, followed
by the remaining request arguments in the order they were given.
"""

import dataclasses
from collections.abc import Sequence
from typing import Optional

from loguru import logger

from hpcjobs.config import RuntimeConfig
from hpcjobs.errors import DuplicateNameError, FixedArgOverrideError, MissingValueError
from hpcjobs.resolution.types import ArgKind, ArgSpec, InputMode
from hpcjobs.utilities.string_validation import (
    append_description,
    canonicalize_notes,
    check_dangerous_text,
    is_blank,
    notes_equivalent,
)

APP_LAYER = "application definition"
REQUEST_LAYER = "job request"
SYNTHETIC_PROFILE_NAME = "synthetic_hpcjobs_profile"


@dataclasses.dataclass
class ScratchEntry:
    """An argument in the working list of a merge, together with the input mode of the
    application argument it originated from. Arguments originating in the request have
    no origin mode."""

    spec: ArgSpec
    origin_mode: Optional[InputMode] = None

    @property
    def from_request(self) -> bool:
        return self.origin_mode is None


def merge_arg_spec_list(
    request_list: list[ArgSpec],
    app_list: Optional[Sequence[ArgSpec]],
    arg_kind: ArgKind,
    config: Optional[RuntimeConfig] = None,
) -> None:
    """
    Merge the arguments defined by an application into the arguments of a job request.

    The contents of `request_list` are replaced by the resolved arguments; `app_list`
    is not modified.

    Parameters
    ----------
    request_list : list[ArgSpec]
        The arguments given in the job request. Updated in place with the result.
    app_list : Sequence[ArgSpec], optional
        The arguments defined by the application. Application arguments without an
        input mode are treated as ``INCLUDE_ON_DEMAND``.
    arg_kind : ArgKind
        The kind of argument being merged, used in error messages.
    config : RuntimeConfig, optional
        (Default: None) The runtime configuration, supplying the text not permitted
        in argument names and values. Defaults to the default configuration.

    Raises
    ------
    DuplicateNameError
        If two application arguments, or two named request arguments, share a name.
    FixedArgOverrideError
        If a request argument changes the value or notes of a FIXED application
        argument.
    MissingValueError
        If a resolved argument has no value and did not originate from an
        ``INCLUDE_BY_DEFAULT`` application argument.
    DangerousCharacterError
        If the name or value of a resolved argument contains disallowed text.
    InvalidNotesError
        If the notes of a resolved argument are not a JSON object.
    """

    config = RuntimeConfig() if config is None else config
    app_list = list(app_list) if app_list else []
    if not request_list and not app_list:
        return

    detect_duplicate_names(app_list, APP_LAYER, arg_kind)
    detect_duplicate_names(request_list, REQUEST_LAYER, arg_kind)

    working = select_app_args(app_list, request_list)
    working = merge_request_args(working, request_list, arg_kind)
    resolved = scrub(working, arg_kind, config)

    logger.debug(
        f"Resolved {len(resolved)} {arg_kind.value} argument(s) from "
        f"{len(app_list)} application and {len(request_list)} request argument(s)."
    )
    request_list[:] = resolved


def detect_duplicate_names(specs: Sequence[ArgSpec], layer: str, arg_kind: ArgKind) -> None:
    """Raise a ``DuplicateNameError`` if two named arguments in `specs` share a name.

    Arguments with blank names are anonymous and never duplicates.
    """

    names = set()
    for spec in specs:
        if is_blank(spec.name):
            continue

        if spec.name in names:
            raise DuplicateNameError.from_key(
                "DUPLICATE_NAMED_ARG", arg_kind.value, spec.name, layer
            )
        names.add(spec.name)


def _find_request_arg(
    name: Optional[str], request_list: Sequence[ArgSpec]
) -> Optional[ArgSpec]:
    if is_blank(name):
        return None

    return next((spec for spec in request_list if spec.name == name), None)


def include_by_default(name: Optional[str], request_list: Sequence[ArgSpec]) -> bool:
    """Whether an ``INCLUDE_BY_DEFAULT`` argument is kept: only an explicit
    ``include=False`` in the request removes it."""

    request_arg = _find_request_arg(name, request_list)
    return request_arg is None or request_arg.include is not False


def include_on_demand(name: Optional[str], request_list: Sequence[ArgSpec]) -> bool:
    """Whether an ``INCLUDE_ON_DEMAND`` argument is kept: the request must refer to it
    without setting ``include=False``."""

    request_arg = _find_request_arg(name, request_list)
    return request_arg is not None and request_arg.include is not False


def _convert_app_arg(app_arg: ArgSpec) -> ArgSpec:
    return ArgSpec(
        name=app_arg.name,
        arg=app_arg.arg,
        description=app_arg.description,
        notes=app_arg.notes,
    )


def select_app_args(
    app_list: Sequence[ArgSpec], request_list: Sequence[ArgSpec]
) -> list[ScratchEntry]:
    """Build the initial working list from the application arguments that qualify for
    inclusion, in their original order."""

    selected = []
    for app_arg in app_list:
        mode = app_arg.input_mode or InputMode.INCLUDE_ON_DEMAND
        if mode in (InputMode.REQUIRED, InputMode.FIXED):
            keep = True
        elif mode is InputMode.INCLUDE_BY_DEFAULT:
            keep = include_by_default(app_arg.name, request_list)
        else:
            keep = include_on_demand(app_arg.name, request_list)

        if keep:
            selected.append(ScratchEntry(_convert_app_arg(app_arg), mode))

    return selected


def _index_of_named_arg(working: Sequence[ScratchEntry], name: str) -> int:
    for index, entry in enumerate(working):
        if not is_blank(entry.spec.name) and entry.spec.name == name:
            return index

    return -1


def merge_request_args(
    working: Sequence[ScratchEntry], request_list: Sequence[ArgSpec], arg_kind: ArgKind
) -> list[ScratchEntry]:
    """Merge the request arguments into the working list.

    Request arguments naming an argument in the working list are merged into it,
    keeping its position. All other request arguments are appended in order, keeping
    their include flag.
    """

    merged = list(working)
    for request_arg in request_list:
        index = (
            -1
            if is_blank(request_arg.name)
            else _index_of_named_arg(merged, request_arg.name)
        )
        if index < 0:
            merged.append(ScratchEntry(dataclasses.replace(request_arg, input_mode=None)))
            continue

        entry = merged[index]
        detect_fixed_arg_override(request_arg, entry, arg_kind)
        merged[index] = ScratchEntry(merge_into(request_arg, entry.spec), entry.origin_mode)

    return merged


def merge_into(override: ArgSpec, target: ArgSpec) -> ArgSpec:
    """Return the result of merging a request argument into an application argument.

    The override's include flag always wins. A non-blank value and non-null notes in
    the override replace those of the target. A non-blank override description is
    appended to the target's description after a blank line.
    """

    return dataclasses.replace(
        target,
        include=override.include,
        arg=target.arg if is_blank(override.arg) else override.arg,
        notes=target.notes if override.notes is None else override.notes,
        description=append_description(target.description, override.description),
    )


def detect_fixed_arg_override(
    request_arg: ArgSpec, entry: ScratchEntry, arg_kind: ArgKind
) -> None:
    """Raise a ``FixedArgOverrideError`` if `request_arg` would materially change a FIXED
    application argument.

    Only the description of a FIXED argument may change: the value must be identical
    and the notes equivalent, with missing, blank and empty-object notes considered
    the same.
    """

    if entry.origin_mode is not InputMode.FIXED:
        return

    app_arg = entry.spec
    if (
        request_arg.arg is not None
        and request_arg.arg == app_arg.arg
        and notes_equivalent(request_arg.notes, app_arg.notes)
    ):
        return

    raise FixedArgOverrideError.from_key(
        "FIXED_ARG_OVERRIDE", request_arg.name, REQUEST_LAYER, APP_LAYER, arg_kind.value
    )


def scrub(
    working: Sequence[ScratchEntry], arg_kind: ArgKind, config: RuntimeConfig
) -> list[ArgSpec]:
    """Validate the working list and return the resolved arguments.

    Arguments without a value are dropped if they originated from an
    ``INCLUDE_BY_DEFAULT`` application argument; otherwise a missing value is an
    error. Names and values are checked for dangerous text and notes are converted to
    canonical JSON text.
    """

    description = f"{arg_kind.value} argument"
    resolved = []
    for entry in working:
        spec = entry.spec
        if is_blank(spec.arg):
            if entry.origin_mode is InputMode.INCLUDE_BY_DEFAULT:
                logger.debug(f"Dropping {description} '{spec.name}' as it has no value.")
                continue

            raise MissingValueError.from_key(
                "MISSING_ARG", arg_kind.value, spec.name or "<anonymous>"
            )

        check_dangerous_text(spec.name, f"{description} name", spec.name, config.dangerous_text)
        check_dangerous_text(spec.arg, description, spec.name, config.dangerous_text)
        resolved.append(
            dataclasses.replace(
                spec, notes=canonicalize_notes(spec.notes, description, spec.name)
            )
        )

    return resolved


def merge_scheduler_profile(
    scheduler_options: list[ArgSpec],
    profile: Optional[str],
    config: Optional[RuntimeConfig] = None,
) -> None:
    """Add the scheduler profile of the execution system to resolved scheduler options.

    Nothing is added if `profile` is blank or if the options already select a
    profile, since a profile given by the application or request takes precedence over
    the one set by the execution system.

    Parameters
    ----------
    scheduler_options : list[ArgSpec]
        The resolved scheduler options. Updated in place.
    profile : str, optional
        The scheduler profile named in the execution system definition.
    config : RuntimeConfig, optional
        (Default: None) The runtime configuration, supplying the name of the profile
        option. Defaults to the default configuration.
    """

    if is_blank(profile):
        return

    config = RuntimeConfig() if config is None else config
    key = config.scheduler_profile_option + " "
    if any((option.arg or "").startswith(key) for option in scheduler_options):
        return

    scheduler_options.append(
        ArgSpec(
            name=SYNTHETIC_PROFILE_NAME,
            arg=key + profile,
            description="The scheduler profile set in the execution system.",
            include=True,
        )
    )
