"""
Provides the stable catalog of user-facing messages issued by hpcjobs.

Each message is identified by a key that never changes between releases, so that
callers (and people reading job histories) can rely on the key even if the wording
of the message is later refined. Messages are rendered with
[`get_msg`][hpcjobs.utilities.messages.get_msg], substituting positional arguments
into the template.
"""

MESSAGES = {
    # Resolution of arguments
    "DUPLICATE_NAMED_ARG": (
        "Duplicate named argument: {0} argument '{1}' is defined more than once in the "
        "{2}."
    ),
    "FIXED_ARG_OVERRIDE": (
        "Fixed argument override: the {1} cannot change the value or notes of {3} "
        "argument '{0}', which is FIXED in the {2}."
    ),
    "MISSING_ARG": (
        "Missing argument value: {0} argument '{1}' requires a value but none was "
        "provided."
    ),
    "DANGEROUS_CHAR": "Dangerous character: {0} '{1}' contains the disallowed text {2!r}.",
    "INVALID_NOTES": (
        "Invalid notes: the notes of {0} '{1}' must be a JSON object but received {2!r} "
        "instead."
    ),
    # Resolution of environment variables
    "DUPLICATE_ENV_VAR": (
        "Duplicate environment variable: '{0}' is defined more than once in the {1}."
    ),
    "RESERVED_ENV_VAR": (
        "Reserved environment variable: '{0}' in the {1} begins with the reserved "
        "prefix '{2}'."
    ),
    "INVALID_ENV_VAR_NAME": (
        "Invalid environment variable name: '{0}' in the {1} does not match the pattern "
        "{2}."
    ),
    "FIXED_ENV_VAR_OVERRIDE": (
        "Fixed environment variable override: the {1} cannot change the value or notes "
        "of '{0}', which is FIXED in the {2}."
    ),
    "INVALID_FIXED_VALUE": "Invalid fixed value: '{0}' in the {1} is FIXED but has no value.",
    "INVALID_REQUIRED_VALUE": (
        "Invalid required value: '{0}' in the {1} is REQUIRED and so must not be given a "
        "value."
    ),
    "MISSING_ENV_VALUE": (
        "Missing environment variable value: '{0}' requires a value but none was "
        "provided."
    ),
    # Scheduler options
    "SCHEDULER_OPTION_PARSE": "Scheduler option parse error: could not parse {0!r}.",
    "SCHEDULER_OPTION_SUBSUMED": (
        "Subsumed scheduler option: '{0}' is controlled by the job's '{1}' setting and "
        "cannot be given as a scheduler option."
    ),
    "SCHEDULER_OPTION_UNSUPPORTED": (
        "Unsupported scheduler option: '{0}' is not supported for {1} jobs."
    ),
    "SCHEDULER_OPTION_MISSING_VALUE": (
        "Scheduler option parse error: '{0}' requires a value."
    ),
    # Monitoring
    "MONITOR_EARLY_TERMINATION": (
        "Monitoring timed out: monitoring of job {0} ended early with reason {1}."
    ),
    "MONITOR_INVALID_PHASE": (
        "Internal monitor error: job {0} cannot be monitored from phase {1}."
    ),
    "MONITOR_CHANNEL_ERROR": "Channel error: running {0!r} on {1} failed: {2}",
    "MONITOR_CONNECTION_ERROR": "Remote connection error: could not connect to {0}: {1}",
    "MONITOR_OUTCOME_ALREADY_SET": (
        "Outcome already set: job {0} already has outcome {1} and cannot be given "
        "outcome {2}."
    ),
    "MONITOR_ASYNC_COMMAND": "Async command received: job {0} received a {1} command.",
    "MONITOR_STATUS_REQUEST": (
        "Status request for job {0}: phase {1}, remote status last seen {2}."
    ),
    "MONITOR_CANCEL_FAILED": (
        "Best effort cancellation of remote job {0} for job {1} failed: {2}"
    ),
}
"""The message templates, keyed by their stable message IDs."""


def get_msg(key: str, *args) -> str:
    """Render the message with ID `key`, substituting `args` into its template.

    An unknown key does not raise an error: instead a fallback message naming the key
    and arguments is returned, so that error reporting never itself fails.

    Parameters
    ----------
    key : str
        The ID of the message in the catalog.
    *args
        Positional values to substitute into the message template.

    Returns
    -------
    str
        The rendered message.

    Examples
    --------
    >>> get_msg("MISSING_ENV_VALUE", "FOO")
    "Missing environment variable value: 'FOO' requires a value but none was provided."
    """

    try:
        return MESSAGES[key].format(*args)
    except (KeyError, IndexError):
        return f"Message {key} could not be rendered with arguments {args!r}."
