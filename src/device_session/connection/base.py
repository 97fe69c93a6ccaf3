"""Protocol definitions for the transport underneath the session layer.

The pool and connections only rely on these interfaces: a session handle that
can open channels, and a channel that carries one command's I/O as a stream of
tagged messages. The asyncssh backend implements them for real devices and the
test suite implements them in memory.
"""

from dataclasses import dataclass
from typing import Protocol
from typing import runtime_checkable


STDERR_STREAM = 1


@dataclass(frozen=True, slots=True)
class Data:
    data: bytes


@dataclass(frozen=True, slots=True)
class ExtendedData:
    """Data on an extended stream. Stream 1 is the command's stderr."""

    data: bytes
    stream: int


@dataclass(frozen=True, slots=True)
class ExitStatus:
    status: int


@dataclass(frozen=True, slots=True)
class Eof:
    pass


@dataclass(frozen=True, slots=True)
class Close:
    pass


ChannelMessage = Data | ExtendedData | ExitStatus | Eof | Close


@runtime_checkable
class Channel(Protocol):
    """A single command channel multiplexed over a session."""

    @property
    def id(self) -> str: ...

    async def exec(self, command: str) -> None:
        """Send the exec request. The command is passed through verbatim."""
        ...

    async def write(self, data: bytes) -> None: ...

    async def signal_end_of_input(self) -> None: ...

    async def close(self) -> None: ...

    async def wait(self) -> ChannelMessage | None:
        """Wait for the next message.

        Returns:
            The next message, or None once the stream has ended.
        """
        ...


@runtime_checkable
class SessionHandle(Protocol):
    """An authenticated session to one device."""

    async def open_channel(self) -> Channel:
        """Open a new channel.

        Raises:
            asyncssh.ChannelOpenError: The device refused this channel.
            asyncssh.Error: Any other transport failure.
        """
        ...

    def is_closed(self) -> bool: ...

    async def close(self) -> None: ...
