import socket
from typing import NamedTuple, Optional

from fabric import Config, Connection
from loguru import logger
from paramiko.ssh_exception import (
    AuthenticationException,
    ChannelException,
    NoValidConnectionsError,
    SSHException,
)

from hpcjobs.errors import ChannelError, RemoteConnectionError
from hpcjobs.types import FilePath


class CommandResult(NamedTuple):
    """The result of running a command on a remote system."""

    rc: int
    """The exit code of the command."""

    stdout: str
    """Standard output of the command, stripped of surrounding whitespace."""

    stderr: str = ""
    """Standard error of the command, stripped of surrounding whitespace."""


class RemoteConnection:
    """
    An SSH connection to the system a job executes on.

    The connection can authenticate using either a key file, an SSH config path, an SSH
    agent or a password. It is opened when first used, and may be closed and reopened
    any number of times. Each connection belongs to the monitoring session of a single
    job and is never shared.

    Parameters
    ----------
    user : str
        The username to authenticate with the SSH server.
    host : str
        The hostname or IP address of the SSH server.
    key_filename : hpcjobs.types.FilePath, optional
        (Default: None) The path to an SSH private key file to authenticate with the
        SSH server.
    ssh_config_path : hpcjobs.types.FilePath, optional
        (Default: None) The path to an SSH configuration file.
    use_ssh_agent : bool, optional
        (Default: False) If ``True``, use a running SSH agent for authentication, without
        searching for key files. If no method is given, paramiko's defaults apply.
    password : str, optional
        (Default: None) A password to authenticate with the SSH server.
    connect_timeout : int, optional
        (Default: None) The number of seconds to wait for the connection to be made.

    Raises
    ------
    ValueError
        If more than one method of authentication is provided.
    """

    def __init__(
        self,
        user: str,
        host: str,
        key_filename: Optional[FilePath] = None,
        ssh_config_path: Optional[FilePath] = None,
        use_ssh_agent: bool = False,
        password: Optional[str] = None,
        connect_timeout: Optional[int] = None,
    ):
        if (
            sum(
                [
                    key_filename is not None,
                    ssh_config_path is not None,
                    use_ssh_agent,
                    password is not None,
                ]
            )
            > 1
        ):
            raise ValueError(
                "Only one method of authentication should be provided. Please specify "
                "either 'key_filename', 'ssh_config_path', 'password' or set "
                "'use_ssh_agent' to True."
            )

        self._user = user
        self._host = host
        self._key_filename = key_filename
        self._ssh_config_path = ssh_config_path
        self._use_ssh_agent = use_ssh_agent
        self._password = password
        self._connect_timeout = connect_timeout
        self._conn = None

    @property
    def target(self) -> str:
        """(Read-only) The user and host connected to, as ``'user@host'``."""
        return f"{self._user}@{self._host}"

    @property
    def uses_ssh_agent(self) -> bool:
        """(Read-only) Whether an SSH agent is used for authentication."""
        return self._use_ssh_agent

    @property
    def is_open(self) -> bool:
        """(Read-only) Whether an SSH session is currently held."""
        return self._conn is not None

    def _make_connection(self) -> Connection:
        connect_kwargs = {}
        if self._key_filename is not None:
            connect_kwargs["key_filename"] = str(self._key_filename)
        elif self._password is not None:
            connect_kwargs["password"] = self._password
        elif self._use_ssh_agent:
            connect_kwargs.update(allow_agent=True, look_for_keys=False)

        if self._ssh_config_path is not None:
            ssh_config = Config(overrides={"ssh_config_path": str(self._ssh_config_path)})
            return Connection(
                self._host, config=ssh_config, connect_timeout=self._connect_timeout
            )

        if connect_kwargs:
            return Connection(
                self.target,
                connect_kwargs=connect_kwargs,
                connect_timeout=self._connect_timeout,
            )

        return Connection(self.target, connect_timeout=self._connect_timeout)

    def open(self) -> None:
        """Open the SSH session if it isn't already open.

        Raises
        ------
        RemoteConnectionError
            If the connection cannot be made or authentication fails.
        """

        if self._conn is not None:
            return

        conn = self._make_connection()
        try:
            conn.open()
        except (AuthenticationException, NoValidConnectionsError, SSHException, OSError) as e:
            conn.close()
            raise RemoteConnectionError.from_key(
                "MONITOR_CONNECTION_ERROR", self.target, str(e)
            ) from e

        logger.debug(f"Connection to {self.target} established.")
        self._conn = conn

    def close(self) -> None:
        """Close the SSH session, if open."""

        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug(f"Connection to {self.target} closed.")

    def reopen(self) -> None:
        """Close the SSH session and open a new one."""

        self.close()
        self.open()

    def run(self, command: str) -> CommandResult:
        """
        Run a command on the remote system.

        A non-zero exit code is reported in the result rather than raised.

        Parameters
        ----------
        command : str
            The shell command to run.

        Returns
        -------
        CommandResult
            The exit code and output of the command.

        Raises
        ------
        RemoteConnectionError
            If the connection cannot be opened.
        ChannelError
            If the command channel fails while running the command.
        """

        self.open()
        try:
            result = self._conn.run(command, hide=True, warn=True)
        except (ChannelException, SSHException, EOFError, socket.error) as e:
            raise ChannelError.from_key(
                "MONITOR_CHANNEL_ERROR", command, self.target, str(e)
            ) from e

        if result.exited != 0:
            logger.debug(
                f"Command {command!r} on {self.target} exited with code {result.exited}: "
                f"{result.stderr.strip()}"
            )

        return CommandResult(result.exited, result.stdout.strip(), result.stderr.strip())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.target!r})"

