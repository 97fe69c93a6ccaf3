"""Completion tracking for a single command channel."""

import logging

from device_session.connection.base import ChannelMessage
from device_session.connection.base import Close
from device_session.connection.base import Data
from device_session.connection.base import Eof
from device_session.connection.base import ExitStatus
from device_session.connection.base import ExtendedData
from device_session.connection.base import STDERR_STREAM
from device_session.connection.errors import ExitStatusError


logger = logging.getLogger("device-session")


class CommandStream:
    """Tracks exit status, EOF and stderr for one running command.

    A command is finished once both its exit status and EOF have been seen.
    The two may arrive in either order.
    """

    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        self.exit_status: int | None = None
        self.eof = False
        self.stderr = bytearray()

    @property
    def finished(self) -> bool:
        return self.eof and self.exit_status is not None

    @property
    def exit_code(self) -> int:
        """Exit status, with a missing status counted as success."""
        return self.exit_status if self.exit_status is not None else 0

    def consume(self, message: ChannelMessage) -> bytes | None:
        """Record a channel message.

        Returns:
            The payload of a stdout message, otherwise None.
        """
        if isinstance(message, Data):
            logger.debug(f"{self.channel_id}: data | size={len(message.data)}")
            return message.data

        if isinstance(message, ExtendedData):
            logger.debug(f"{self.channel_id}: extended data | stream={message.stream} | size={len(message.data)}")
            if message.stream == STDERR_STREAM:
                self.stderr += message.data
        elif isinstance(message, ExitStatus):
            logger.debug(f"{self.channel_id}: exit status | status={message.status}")
            self.exit_status = message.status
        elif isinstance(message, Eof):
            logger.debug(f"{self.channel_id}: eof")
            self.eof = True
        elif isinstance(message, Close):
            logger.debug(f"{self.channel_id}: close")

        return None

    def check(self, command: str | None = None) -> None:
        """Raise ExitStatusError if the command exited with a non-zero status."""
        if self.exit_code != 0:
            raise ExitStatusError(self.exit_code, bytes(self.stderr), command=command)
