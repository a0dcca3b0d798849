"""
Provides the exceptions raised by hpcjobs, together with their classification as
recoverable or fatal.

Every hpcjobs exception carries an explicit [`Severity`][hpcjobs.errors.Severity]
and the ID of the catalog message it was created from. Callers decide whether a
failed monitoring session may be resumed by calling
[`classify`][hpcjobs.errors.classify] on the exception, rather than by inspecting
the chain of exception causes.
"""

import socket
from enum import Enum
from typing import Optional

from paramiko.ssh_exception import SSHException

from hpcjobs.utilities.messages import get_msg


class Severity(Enum):
    """Classifies errors according to whether the failed work may be resumed."""

    RECOVERABLE = "Recoverable"
    """A transient failure, such as loss of connectivity to a remote system. Work may
    be resumed later in a new session. Has the value 'Recoverable'."""

    FATAL = "Fatal"
    """A failure that cannot be fixed by trying again. Has the value 'Fatal'."""


class HpcJobsError(Exception):
    """Base class for exceptions raised by hpcjobs.

    Parameters
    ----------
    msg : str
        The error message.
    msg_key : str, optional
        (Default: None) The ID of the catalog message `msg` was rendered from.

    Attributes
    ----------
    severity : Severity
        Whether the error is recoverable or fatal.
    msg_key : str, optional
        The ID of the catalog message the error was created from.
    """

    severity = Severity.FATAL

    def __init__(self, msg: str, msg_key: Optional[str] = None):
        super().__init__(msg)
        self.msg_key = msg_key

    @classmethod
    def from_key(cls, key: str, *args) -> "HpcJobsError":
        """Create an error with the catalog message identified by `key`."""

        return cls(get_msg(key, *args), msg_key=key)


class ResolutionError(HpcJobsError):
    """Raised when a job's arguments or environment cannot be resolved.

    These errors always arise from a bad submission and are detected before any remote
    work begins."""


class DuplicateNameError(ResolutionError):
    """Raised when a definition layer contains two entries with the same name."""


class FixedArgOverrideError(ResolutionError):
    """Raised when a request tries to change the value of a FIXED argument."""


class FixedEnvVarOverrideError(ResolutionError):
    """Raised when a layer tries to change the value of a FIXED environment variable."""


class MissingValueError(ResolutionError):
    """Raised when a resolved argument or environment variable has no value."""


class DangerousCharacterError(ResolutionError):
    """Raised when a name or value contains control or shell-hazard characters."""


class ReservedNameError(ResolutionError):
    """Raised when an environment variable uses the reserved name prefix."""


class InvalidNameError(ResolutionError):
    """Raised when an environment variable's name is not a valid shell identifier."""


class InvalidFixedValueError(ResolutionError):
    """Raised when a FIXED entry does not have a concrete value."""


class InvalidRequiredValueError(ResolutionError):
    """Raised when a REQUIRED definition entry is given a value."""


class InvalidNotesError(ResolutionError):
    """Raised when the notes of an entry are not a JSON object."""


class OptionParseError(ResolutionError):
    """Raised when a scheduler option cannot be parsed."""


class SubsumedOptionError(ResolutionError):
    """Raised when a scheduler option duplicates a setting made elsewhere on the job."""


class UnsupportedOptionError(ResolutionError):
    """Raised when a scheduler option is not supported."""


class MonitoringError(HpcJobsError):
    """Base class for errors arising while monitoring a remote job."""


class MonitoringTimeoutError(MonitoringError):
    """Raised when the monitor policy gives up on a job.

    Parameters
    ----------
    msg : str
        The error message.
    reason : Enum, optional
        (Default: None) The reason code given by the policy.
    msg_key : str, optional
        (Default: None) The ID of the catalog message `msg` was rendered from.
    """

    def __init__(self, msg: str, reason: Optional[Enum] = None, msg_key: Optional[str] = None):
        super().__init__(msg, msg_key=msg_key)
        self.reason = reason


class InternalMonitorError(MonitoringError):
    """Raised when the monitor is used incorrectly or reaches an inconsistent state."""


class RemoteConnectionError(MonitoringError):
    """Raised when a connection to a remote system cannot be made."""

    severity = Severity.RECOVERABLE


class ChannelError(MonitoringError):
    """Raised when a command channel to a remote system fails."""

    severity = Severity.RECOVERABLE


class OutcomeAlreadySetError(MonitoringError):
    """Raised by strict job stores when a job's outcome is assigned a second time."""


class UnknownJobError(HpcJobsError):
    """Raised when a command is sent to a job that is not being monitored."""


class AsyncCommandReceived(HpcJobsError):
    """Signals that monitoring was ended by an externally delivered command.

    This is not a failure: it is raised to unwind the monitoring loop once the command
    handler has acted on a pause, cancel or stop command.

    Parameters
    ----------
    msg : str
        The error message.
    command : JobCommand, optional
        (Default: None) The command that was received.
    msg_key : str, optional
        (Default: None) The ID of the catalog message `msg` was rendered from.
    """

    def __init__(self, msg: str, command=None, msg_key: Optional[str] = None):
        super().__init__(msg, msg_key=msg_key)
        self.command = command


_RECOVERABLE_EXCEPTION_TYPES = (
    SSHException,
    socket.timeout,
    ConnectionError,
    EOFError,
)


def classify(exc: BaseException) -> Severity:
    """Classify an exception as recoverable or fatal.

    Exceptions raised by hpcjobs report their own severity. Of the remaining
    exceptions, transport-level failures from paramiko and the socket layer are
    recoverable and everything else is fatal.

    Parameters
    ----------
    exc : BaseException
        The exception to classify.

    Returns
    -------
    Severity
        The severity of the exception.
    """

    if isinstance(exc, HpcJobsError):
        return exc.severity

    if isinstance(exc, _RECOVERABLE_EXCEPTION_TYPES):
        return Severity.RECOVERABLE

    return Severity.FATAL


def is_recoverable(exc: BaseException) -> bool:
    """Whether `exc` is classified as recoverable."""

    return classify(exc) is Severity.RECOVERABLE
