"""A pooled session to one device and buffered command execution over it."""

import asyncio
import logging
import time
import typing as t
import uuid
import weakref

from contextlib import asynccontextmanager

import asyncssh

from device_session.audit import Event
from device_session.audit import log_connection_lifecycle
from device_session.audit import log_ssh_command
from device_session.connection.base import Channel
from device_session.connection.base import SessionHandle
from device_session.connection.errors import ProtocolError
from device_session.connection.errors import ReconnectRequired
from device_session.connection.proc import Proc
from device_session.connection.stream import CommandStream
from device_session.models import Device


if t.TYPE_CHECKING:
    from device_session.connection.pool import ConnectionPool


logger = logging.getLogger("device-session")


class Connection:
    """
    Owns the session to one device.

    Channel opening is serialized through a per-session lock. The connection
    keeps only a weak reference to its pool, used to evict itself when the
    session can no longer be trusted for new channels.

    Operations in flight hold a lease on the connection. An evicted
    connection closes its session once the last lease is released, so a
    command that was already running when the eviction happened can finish.
    """

    def __init__(self, device: Device, session: SessionHandle, pool: "ConnectionPool | None" = None):
        self.id = str(uuid.uuid4())
        self.device = device
        self._session = session
        self._session_lock = asyncio.Lock()
        self._pool_ref = weakref.ref(pool) if pool is not None else None
        self._leases = 0
        self._retired = False
        self._closed = False

        log_connection_lifecycle(Event.CONNECTION_CREATED, self.id, device.name)

    def __repr__(self) -> str:
        return f"<Connection {self.id} device={self.device.name}>"

    @property
    def retired(self) -> bool:
        return self._retired

    @property
    def leases(self) -> int:
        return self._leases

    def is_closed(self) -> bool:
        return self._closed or self._session.is_closed()

    def retire(self) -> None:
        """Mark the connection as no longer pooled."""
        self._retired = True

    def remove_from_pool(self, reason: str | None = None) -> None:
        """Evict this connection from its pool, if the pool still exists."""
        self.retire()
        pool = self._pool_ref() if self._pool_ref is not None else None
        if pool is not None:
            pool.evict(self.device.name, self, reason=reason)

    def acquire(self) -> None:
        self._leases += 1

    async def release(self) -> None:
        """Release a lease, closing the session if this was the last one on a retired connection."""
        self._leases -= 1
        if self._retired and self._leases == 0:
            await self.discard()

    async def discard(self) -> None:
        """Close the session, logging instead of raising if the close itself fails."""
        try:
            await self.close()
        except (asyncssh.Error, OSError) as e:
            logger.warning(f"Error closing connection to {self.device.name}: {e}")

    async def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        try:
            await self._session.close()
        finally:
            log_connection_lifecycle(Event.CONNECTION_DROPPED, self.id, self.device.name)

    def session_lost(self, command: str, error: Exception) -> None:
        """Record a session that died under a running command and evict it."""
        logger.error(
            f"Error executing command on {self.device.name}: {error}",
            extra={"event": Event.REMOTE_EXEC_ERROR, "command": command, "device": self.device.name},
        )
        self.remove_from_pool(reason=str(error))

    @asynccontextmanager
    async def channel_request(self):
        """
        Serialize a channel request and classify its failures.

        A refused channel evicts the connection and raises ReconnectRequired.
        Any other transport error evicts the connection and propagates as is.
        """
        async with self._session_lock:
            try:
                yield
            except asyncssh.ChannelOpenError as e:
                logger.warning(
                    f"{Event.CHANNEL_REFUSED}: {self.device.name} | reason: {e.reason}",
                    extra={"event": Event.CHANNEL_REFUSED, "device": self.device.name, "connection": self.id},
                )
                self.remove_from_pool(reason=f"channel refused: {e.reason}")
                raise ReconnectRequired(self.device.name) from e
            except (asyncssh.Error, OSError) as e:
                self.remove_from_pool(reason=str(e))
                raise

    async def open_command_channel(self) -> Channel:
        async with self.channel_request():
            return await self._session.open_channel()

    async def exec(self, command: str, stdin: bytes | None = None) -> bytes:
        """
        Run a command to completion and return its stdout.

        The command string is sent verbatim; quoting is up to the caller.

        Args:
            command: Command line to execute on the device.
            stdin: Optional input, written before EOF is signalled.

        Returns:
            Everything the command wrote to stdout.

        Raises:
            ReconnectRequired: The device refused the channel.
            ExitStatusError: The command exited with a non-zero status.
            ProtocolError: The channel ended before exit status and EOF.
        """
        self.acquire()
        try:
            return await self._exec(command, stdin)
        finally:
            await self.release()

    async def _exec(self, command: str, stdin: bytes | None) -> bytes:
        channel = await self.open_command_channel()
        logger.debug(f"{channel.id}: exec | device={self.device.name} | command={command}")

        stream = CommandStream(channel.id)
        stdout = bytearray()
        start_time = time.time()

        try:
            async with self.channel_request():
                await channel.exec(command)

            if stdin is not None:
                await channel.write(stdin)
                await channel.signal_end_of_input()

            while not stream.finished:
                message = await channel.wait()
                if message is None:
                    raise ProtocolError("malformed end of stream")

                data = stream.consume(message)
                if data is not None:
                    stdout += data

        except asyncssh.DisconnectError as e:
            self.session_lost(command, e)
            raise
        finally:
            await channel.close()

        log_ssh_command(
            command,
            self.device.name,
            exit_code=stream.exit_code,
            duration=time.time() - start_time,
            channel=channel.id,
        )
        stream.check(command)

        return bytes(stdout)

    async def open(self, command: str) -> Proc:
        """
        Open a channel for a command without starting it.

        The channel is opened here so that refusals surface before
        :meth:`Proc.run` is called.
        """
        self.acquire()
        try:
            channel = await self.open_command_channel()
        except BaseException:
            await self.release()
            raise

        return Proc(self, command, channel)
