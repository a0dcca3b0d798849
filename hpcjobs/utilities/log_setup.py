import os
import sys
from typing import Optional

from loguru import logger

from hpcjobs.types import FilePath

LOG_LEVEL_ENV_VAR = "HPCJOBS_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | {level: <8} | "
    "{name}:{function} - <level>{message}</level>"
)


def setup_logging(
    level: Optional[str] = None, log_file: Optional[FilePath] = None
) -> str:
    """Configure the loguru logger used throughout hpcjobs.

    Any previously configured sinks are removed. Messages are written to standard
    error and, if `log_file` is given, also appended to that file.

    Parameters
    ----------
    level : str, optional
        (Default: None) The minimum level of messages to log. If ``None``, the level
        is read from the ``HPCJOBS_LOG_LEVEL`` environment variable, falling back to
        ``'INFO'``.
    log_file : hpcjobs.types.FilePath, optional
        (Default: None) A file to additionally write log messages to.

    Returns
    -------
    str
        The level that logging was configured with.
    """

    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV_VAR, DEFAULT_LOG_LEVEL)

    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)
    if log_file is not None:
        logger.add(str(log_file), format=LOG_FORMAT, level=level, enqueue=True)

    return level
