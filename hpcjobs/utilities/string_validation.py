import json
import re
from collections.abc import Iterable
from typing import Any, Optional, Union

from hpcjobs.errors import (
    DangerousCharacterError,
    InvalidNameError,
    InvalidNotesError,
    ReservedNameError,
)

ENV_VAR_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
DEFAULT_RESERVED_ENV_PREFIX = "_HPCJOBS"
DEFAULT_DANGEROUS_TEXT = (";", "&", "|", "`", "$(", "<", ">")
EMPTY_NOTES = "{}"

_CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")


def is_blank(text: Optional[str]) -> bool:
    """Whether `text` is ``None``, empty or made up only of whitespace."""

    return text is None or not text.strip()


def find_control_character(text: str, allowed: Iterable[str] = ()) -> Optional[str]:
    """Find the first control character in `text` that isn't in `allowed`.

    Returns ``None`` if there is no such character.
    """

    allowed = set(allowed)
    for match in _CONTROL_CHARACTERS.finditer(text):
        if match.group() not in allowed:
            return match.group()

    return None


def find_dangerous_text(text: str, dangerous: Iterable[str]) -> Optional[str]:
    """Find the first control character, or the first item of `dangerous`, occurring
    in `text`.

    Horizontal tabs are permitted. Returns ``None`` if nothing dangerous is found.
    """

    control_char = find_control_character(text, allowed=("\t",))
    if control_char is not None:
        return control_char

    for item in dangerous:
        if item and item in text:
            return item

    return None


def check_dangerous_text(
    text: Optional[str], description: str, name: str, dangerous: Iterable[str]
) -> None:
    """Raise a ``DangerousCharacterError`` if `text` contains dangerous text.

    Parameters
    ----------
    text : str, optional
        The text to check. ``None`` is always permitted.
    description : str
        A description of what `text` is, for use in the error message.
    name : str
        The name of the entry that `text` belongs to, for use in the error message.
    dangerous : Iterable[str]
        Substrings that are not permitted to occur in `text`.
    """

    if text is None:
        return

    found = find_dangerous_text(text, dangerous)
    if found is not None:
        raise DangerousCharacterError.from_key("DANGEROUS_CHAR", description, name, found)


def convert_control_characters(text: str, name: str) -> str:
    """Normalise line endings in an environment variable value.

    Carriage return line endings are converted to newlines. Any control character
    other than a tab or newline remaining after conversion causes a
    ``DangerousCharacterError`` to be raised.
    """

    converted = text.replace("\r\n", "\n").replace("\r", "\n")
    control_char = find_control_character(converted, allowed=("\t", "\n"))
    if control_char is not None:
        raise DangerousCharacterError.from_key(
            "DANGEROUS_CHAR", "environment variable", name, control_char
        )

    return converted


def validate_env_var_name(name: Any, layer: str, reserved_prefix: str) -> str:
    """
    Validates the name of an environment variable.

    Parameters
    ----------
    name : Any
        The name to be validated.
    layer : str
        The definition layer the variable comes from, e.g. ``'job request'``, for use
        in error messages.
    reserved_prefix : str
        A prefix which names are not permitted to begin with.

    Returns
    -------
    str
        The validated name.

    Raises
    ------
    ReservedNameError
        If the name begins with the reserved prefix.
    InvalidNameError
        If the name is not a string or is not a valid shell identifier.
    """

    if not isinstance(name, str):
        raise InvalidNameError.from_key(
            "INVALID_ENV_VAR_NAME", name, layer, ENV_VAR_NAME_PATTERN.pattern
        )

    if reserved_prefix and name.startswith(reserved_prefix):
        raise ReservedNameError.from_key("RESERVED_ENV_VAR", name, layer, reserved_prefix)

    if not ENV_VAR_NAME_PATTERN.match(name):
        raise InvalidNameError.from_key(
            "INVALID_ENV_VAR_NAME", name, layer, ENV_VAR_NAME_PATTERN.pattern
        )

    return name


def canonicalize_notes(
    notes: Union[str, dict, None], description: str, name: Optional[str]
) -> Optional[str]:
    """Convert notes to canonical JSON text.

    Notes may be given either as JSON text or as a dict. They must describe a JSON
    object; blank text is treated as the empty object. ``None`` is returned unchanged.

    Raises
    ------
    InvalidNotesError
        If the notes are not a JSON object.
    """

    if notes is None:
        return None

    if isinstance(notes, str):
        if is_blank(notes):
            return EMPTY_NOTES
        try:
            notes_obj = json.loads(notes)
        except json.JSONDecodeError:
            raise InvalidNotesError.from_key("INVALID_NOTES", description, name, notes) from None
    else:
        notes_obj = notes

    if not isinstance(notes_obj, dict):
        raise InvalidNotesError.from_key("INVALID_NOTES", description, name, notes)

    return json.dumps(notes_obj, sort_keys=True)


def normalize_notes(notes: Union[str, dict, None]) -> str:
    """Normalise notes for comparison.

    ``None``, blank text, ``'{}'`` and the empty dict all normalise to ``'{}'``. Notes
    that are not valid JSON are returned stripped of surrounding whitespace.
    """

    if notes is None:
        return EMPTY_NOTES

    if isinstance(notes, str):
        if is_blank(notes):
            return EMPTY_NOTES
        try:
            notes = json.loads(notes)
        except json.JSONDecodeError:
            return notes.strip()

    return json.dumps(notes, sort_keys=True)


def notes_equivalent(notes1: Union[str, dict, None], notes2: Union[str, dict, None]) -> bool:
    """Whether two sets of notes are the same after normalisation."""

    return normalize_notes(notes1) == normalize_notes(notes2)


def append_description(original: Optional[str], addition: Optional[str]) -> Optional[str]:
    """Append a description to another, separating them with a blank line.

    A blank `addition` leaves `original` unchanged, and a blank `original` is replaced
    by `addition`.
    """

    if is_blank(addition):
        return original

    if is_blank(original):
        return addition

    return f"{original}\n\n{addition}"
