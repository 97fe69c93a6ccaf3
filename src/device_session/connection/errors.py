"""Errors raised by pooled connections and command execution.

Transport failures are not wrapped: asyncssh and OS errors propagate as they
were raised. The classes here cover the outcomes the session layer itself
decides on.
"""


class SessionError(Exception):
    """Base class for errors raised by the session layer."""


class ReconnectRequired(SessionError):
    """The device refused a new channel on a live session.

    The connection has already been evicted from the pool. Callers should
    fetch a fresh connection with ``ConnectionPool.get_or_create`` and retry.
    """

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Channel refused by {device}, reconnect required")


class ProtocolError(SessionError):
    """The channel message stream ended without the required signals."""


class ExitStatusError(SessionError):
    """The remote command finished with a non-zero exit status."""

    def __init__(self, status: int, output: bytes, command: str | None = None):
        self.status = status
        self.output = output
        self.command = command
        super().__init__(f"Command exited with non-zero return code {status}")
