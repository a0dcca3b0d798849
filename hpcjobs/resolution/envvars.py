"""
Resolves the environment variables of a job.

Environment variables may be defined in three layers: the execution system (lowest
precedence), the application and the job request (highest precedence).
[`merge_env_variables`][hpcjobs.resolution.envvars.merge_env_variables] merges them into
a single list without duplicate keys.

There is one exception to the precedence of layers: a system variable with input mode
``REQUIRED`` promotes an application variable of the same key with an ``INCLUDE_*``
mode to ``REQUIRED``, so that a system can insist on a variable that an application only
offers conditionally.
"""

import dataclasses
from collections.abc import Sequence
from typing import Optional

from loguru import logger

from hpcjobs.config import RuntimeConfig
from hpcjobs.errors import (
    DuplicateNameError,
    FixedEnvVarOverrideError,
    InvalidFixedValueError,
    InvalidRequiredValueError,
    MissingValueError,
)
from hpcjobs.resolution.types import UNSET, EnvVar, InputMode, is_unset
from hpcjobs.utilities.string_validation import (
    append_description,
    canonicalize_notes,
    convert_control_characters,
    notes_equivalent,
    validate_env_var_name,
)

REQUEST_LAYER = "job request"
APP_LAYER = "application definition"
SYSTEM_LAYER = "system definition"

_MANDATORY_MODES = (InputMode.FIXED, InputMode.REQUIRED)
_OPTIONAL_MODES = (InputMode.INCLUDE_BY_DEFAULT, InputMode.INCLUDE_ON_DEMAND)


def merge_env_variables(
    request_vars: list[EnvVar],
    app_vars: Optional[Sequence[EnvVar]] = None,
    system_vars: Optional[Sequence[EnvVar]] = None,
    config: Optional[RuntimeConfig] = None,
) -> None:
    """
    Merge the environment variables of the system, application and job request layers.

    The contents of `request_vars` are replaced by the resolved variables, which list
    the request's variables first followed by any remaining application and system
    variables. `app_vars` and `system_vars` are not modified.

    Parameters
    ----------
    request_vars : list[EnvVar]
        The variables given in the job request. Updated in place with the result.
    app_vars : Sequence[EnvVar], optional
        (Default: None) The variables defined by the application.
    system_vars : Sequence[EnvVar], optional
        (Default: None) The variables defined by the execution system.
    config : RuntimeConfig, optional
        (Default: None) The runtime configuration, supplying the reserved name prefix.
        Defaults to the default configuration.

    Raises
    ------
    ReservedNameError, InvalidNameError, DuplicateNameError
        If a layer contains an invalid or duplicated variable name.
    InvalidFixedValueError, InvalidRequiredValueError
        If a definition layer gives a FIXED variable no value, or a REQUIRED variable a
        value.
    FixedEnvVarOverrideError
        If a higher layer changes the value or notes of a FIXED variable.
    MissingValueError
        If a resolved variable has no value.
    DangerousCharacterError
        If a resolved value contains disallowed control characters.
    """

    config = RuntimeConfig() if config is None else config
    validate_layer_names(request_vars, REQUEST_LAYER, config)
    requested = [
        dataclasses.replace(var, include=True if var.include is None else var.include)
        for var in request_vars
    ]

    if not app_vars and not system_vars:
        request_vars[:] = finalize(requested)
        return

    combined = merge_sys_into_app(app_vars, system_vars, config)
    survivors = filter_by_inclusion(combined, requested)
    resolved = merge_request_vars(requested, survivors)

    logger.debug(
        f"Resolved {len(resolved)} environment variable(s) from {len(request_vars)} "
        f"request and {len(combined)} application/system variable(s)."
    )
    request_vars[:] = finalize(resolved)


def validate_layer_names(
    env_vars: Sequence[EnvVar], layer: str, config: RuntimeConfig
) -> None:
    """Check the names of the variables in one layer are valid and distinct."""

    keys = set()
    for var in env_vars:
        validate_env_var_name(var.key, layer, config.reserved_env_prefix)
        if var.key in keys:
            raise DuplicateNameError.from_key("DUPLICATE_ENV_VAR", var.key, layer)
        keys.add(var.key)


def validate_definition_values(env_vars: Sequence[EnvVar], layer: str) -> None:
    """Check that FIXED variables have values and REQUIRED variables don't."""

    for var in env_vars:
        if var.input_mode is InputMode.FIXED and is_unset(var.value):
            raise InvalidFixedValueError.from_key("INVALID_FIXED_VALUE", var.key, layer)

        if var.input_mode is InputMode.REQUIRED and not is_unset(var.value):
            raise InvalidRequiredValueError.from_key("INVALID_REQUIRED_VALUE", var.key, layer)


def _mode(var: EnvVar) -> InputMode:
    return var.input_mode or InputMode.INCLUDE_BY_DEFAULT


def _changes_fixed(override: EnvVar, fixed: EnvVar) -> bool:
    return not (
        not is_unset(override.value)
        and override.value == fixed.value
        and notes_equivalent(override.notes, fixed.notes)
    )


def merge_sys_into_app(
    app_vars: Optional[Sequence[EnvVar]],
    system_vars: Optional[Sequence[EnvVar]],
    config: RuntimeConfig,
) -> list[EnvVar]:
    """
    Merge the system layer into the application layer, returning a new list.

    Each application variable is checked against a FIXED system variable of the same
    key, promoted to REQUIRED where the system requires it, and has the system's
    description prepended. System variables with keys not defined by the application
    are appended. Every entry of the result has an input mode.

    Parameters
    ----------
    app_vars : Sequence[EnvVar], optional
        The variables defined by the application.
    system_vars : Sequence[EnvVar], optional
        The variables defined by the execution system.
    config : RuntimeConfig
        The runtime configuration, supplying the reserved name prefix.

    Returns
    -------
    list[EnvVar]
        The merged variables, without duplicate keys.
    """

    app_vars = list(app_vars or [])
    system_vars = list(system_vars or [])
    validate_layer_names(app_vars, APP_LAYER, config)
    validate_layer_names(system_vars, SYSTEM_LAYER, config)
    validate_definition_values(system_vars, SYSTEM_LAYER)
    validate_definition_values(app_vars, APP_LAYER)

    system_by_key = {var.key: var for var in system_vars}
    merged = []
    for app_var in app_vars:
        entry = dataclasses.replace(app_var, input_mode=_mode(app_var))
        system_var = system_by_key.get(app_var.key)
        if system_var is not None:
            entry = _merge_system_var(entry, system_var)

        merged.append(entry)

    app_keys = {var.key for var in app_vars}
    merged.extend(
        dataclasses.replace(var, input_mode=_mode(var))
        for var in system_vars
        if var.key not in app_keys
    )

    return merged


def _merge_system_var(app_var: EnvVar, system_var: EnvVar) -> EnvVar:
    system_mode = _mode(system_var)
    if system_mode is InputMode.FIXED:
        if _changes_fixed(app_var, system_var):
            raise FixedEnvVarOverrideError.from_key(
                "FIXED_ENV_VAR_OVERRIDE", app_var.key, APP_LAYER, SYSTEM_LAYER
            )

        # Stays immutable for the request layer.
        mode, value = InputMode.FIXED, app_var.value
    elif system_mode is InputMode.REQUIRED and app_var.input_mode in _OPTIONAL_MODES:
        logger.debug(f"Promoting environment variable '{app_var.key}' to REQUIRED.")
        mode, value = InputMode.REQUIRED, UNSET
    else:
        mode = app_var.input_mode
        fill = is_unset(app_var.value) and mode is not InputMode.REQUIRED
        value = system_var.value if fill else app_var.value

    return dataclasses.replace(
        app_var,
        input_mode=mode,
        value=value,
        notes=system_var.notes if app_var.notes is None else app_var.notes,
        description=append_description(system_var.description, app_var.description),
    )


def _find_var(key: str, env_vars: Sequence[EnvVar]) -> Optional[EnvVar]:
    return next((var for var in env_vars if var.key == key), None)


def filter_by_inclusion(
    combined: Sequence[EnvVar], requested: Sequence[EnvVar]
) -> list[EnvVar]:
    """Select the application/system variables that qualify for inclusion.

    FIXED and REQUIRED variables are always kept. An ``INCLUDE_BY_DEFAULT`` variable is
    dropped if the request excludes it, or if the request does not refer to it and it
    has no value. An ``INCLUDE_ON_DEMAND`` variable is kept only if the request refers
    to it without excluding it.
    """

    survivors = []
    for var in combined:
        mode = _mode(var)
        reference = _find_var(var.key, requested)
        if mode in _MANDATORY_MODES:
            keep = True
        elif mode is InputMode.INCLUDE_BY_DEFAULT:
            if reference is None:
                keep = not is_unset(var.value)
                if not keep:
                    logger.debug(
                        f"Dropping unreferenced environment variable '{var.key}' as it "
                        "has no value."
                    )
            else:
                keep = reference.include is not False
        else:
            keep = reference is not None and reference.include is not False

        if keep:
            survivors.append(var)

    return survivors


def merge_request_vars(
    requested: Sequence[EnvVar], survivors: Sequence[EnvVar]
) -> list[EnvVar]:
    """Merge the surviving definition-layer variables into the request variables.

    A request variable takes the value of a same-key survivor only if it has none of
    its own, and likewise for notes. Survivors not referred to by the request are
    appended.
    """

    remaining = {var.key: var for var in survivors}
    resolved = []
    for request_var in requested:
        survivor = remaining.pop(request_var.key, None)
        if survivor is None:
            resolved.append(request_var)
            continue

        mode = _mode(survivor)
        if mode is InputMode.FIXED and _overrides_fixed(request_var, survivor):
            raise FixedEnvVarOverrideError.from_key(
                "FIXED_ENV_VAR_OVERRIDE", request_var.key, REQUEST_LAYER, APP_LAYER
            )

        resolved.append(
            dataclasses.replace(
                request_var,
                value=survivor.value if is_unset(request_var.value) else request_var.value,
                notes=survivor.notes if request_var.notes is None else request_var.notes,
                description=append_description(survivor.description, request_var.description),
                include=True if mode in _MANDATORY_MODES else request_var.include,
                input_mode=None,
            )
        )

    resolved.extend(
        dataclasses.replace(var, include=True, input_mode=None)
        for var in survivors
        if var.key in remaining
    )

    return resolved


def _overrides_fixed(request_var: EnvVar, fixed: EnvVar) -> bool:
    value_changed = not is_unset(request_var.value) and request_var.value != fixed.value
    notes_changed = request_var.notes is not None and not notes_equivalent(
        request_var.notes, fixed.notes
    )
    return value_changed or notes_changed


def finalize(env_vars: Sequence[EnvVar]) -> list[EnvVar]:
    """Validate and normalise resolved variables.

    Variables excluded by the request are dropped. Every remaining variable must have a
    concrete value. Line endings in values are normalised and notes are converted to
    canonical JSON text.

    Raises
    ------
    MissingValueError
        If a variable has no concrete value.
    DangerousCharacterError
        If a value contains control characters other than tab and newline.
    """

    finalized = []
    for var in env_vars:
        if var.include is False:
            continue

        if is_unset(var.value):
            raise MissingValueError.from_key("MISSING_ENV_VALUE", var.key)

        finalized.append(
            dataclasses.replace(
                var,
                value=convert_control_characters(var.value, var.key),
                notes=canonicalize_notes(var.notes, "environment variable", var.key),
            )
        )

    return finalized
