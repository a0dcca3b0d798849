"""
Provides type definitions shared across the hpcjobs package.


Type Definitions
------------------------------------------------------------------------------------
[`FilePath`][hpcjobs.types.FilePath]
Represents a file path, defined as a union of `str` and `PathLike` to support both
string-based and OS-native path objects.

[`JsonDict`][hpcjobs.types.JsonDict]
Represents a deserialised JSON object.

"""

from os import PathLike
from typing import Any, Union

FilePath = Union[str, PathLike]
"""A type to represent filepaths."""

JsonDict = dict[str, Any]
"""A type to represent deserialised JSON objects."""
