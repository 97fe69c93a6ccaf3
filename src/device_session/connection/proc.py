"""Streaming, interruptible command execution."""

import asyncio
import logging
import time
import typing as t

from collections.abc import Callable
from enum import StrEnum

import asyncssh

from device_session.audit import Event
from device_session.audit import log_ssh_command
from device_session.connection.base import Channel
from device_session.connection.errors import ProtocolError
from device_session.connection.stream import CommandStream


if t.TYPE_CHECKING:
    from device_session.connection.connection import Connection


logger = logging.getLogger("device-session")

Sink = Callable[[int, bytes], None]


class ProcOutcome(StrEnum):
    completed = "completed"
    interrupted = "interrupted"


class ChannelSlot:
    """Holds a channel until it is taken, exactly once, by its single next owner."""

    def __init__(self, channel: Channel | None = None):
        self._channel = channel
        self._lock = asyncio.Lock()

    async def peek(self) -> Channel | None:
        async with self._lock:
            return self._channel

    async def take(self) -> Channel | None:
        """Remove the channel from the slot and return it, or None if already taken."""
        async with self._lock:
            channel, self._channel = self._channel, None
            return channel


class Proc:
    """
    A command whose channel is open but which has not been started yet.

    :meth:`run` starts the command and streams its stdout to a sink.
    :meth:`interrupt` may be called at any time, from another task, to take
    the channel away from :meth:`run` and close it.
    """

    def __init__(self, connection: "Connection", command: str, channel: Channel):
        self.command = command
        self._connection = connection
        self._slot = ChannelSlot(channel)
        self._started = False

    async def __aenter__(self) -> "Proc":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.interrupt()

    async def run(self, sink: Sink) -> ProcOutcome:
        """
        Start the command and push each stdout chunk to ``sink(index, data)``.

        Indices start at 0 and increase by one per chunk. Stderr is kept for
        the error raised on a non-zero exit and never reaches the sink.

        Returns:
            ProcOutcome.completed when the command finished with status zero
            (or no status), ProcOutcome.interrupted when :meth:`interrupt`
            took the channel before the command finished. No exit status is
            checked for an interrupted command.

        Raises:
            ReconnectRequired: The device refused the channel.
            ExitStatusError: The command finished with a non-zero status.
            ProtocolError: The channel ended before exit status and EOF.
            RuntimeError: The proc was already run.
        """
        if self._started:
            raise RuntimeError(f"Proc already ran: {self.command}")
        self._started = True

        channel = await self._slot.peek()
        if channel is None:
            return ProcOutcome.interrupted

        stream = CommandStream(channel.id)
        start_time = time.time()
        logger.debug(f"{channel.id}: run | device={self._connection.device.name} | command={self.command}")

        try:
            async with self._connection.channel_request():
                await channel.exec(self.command)
            outcome = await self._pump(stream, sink)
        except asyncssh.DisconnectError as e:
            self._connection.session_lost(self.command, e)
            raise
        finally:
            await self._release_channel()

        if outcome is ProcOutcome.interrupted:
            logger.info(
                f"{Event.CHANNEL_INTERRUPTED}: {self.command} | device={self._connection.device.name}",
                extra={"event": Event.CHANNEL_INTERRUPTED, "channel": stream.channel_id},
            )
            return outcome

        log_ssh_command(
            self.command,
            self._connection.device.name,
            exit_code=stream.exit_code,
            duration=time.time() - start_time,
            channel=stream.channel_id,
        )
        stream.check(self.command)

        return outcome

    async def _pump(self, stream: CommandStream, sink: Sink) -> ProcOutcome:
        index = 0
        while not stream.finished:
            channel = await self._slot.peek()
            if channel is None:
                return ProcOutcome.interrupted

            message = await channel.wait()

            # Anything received after the channel was taken belongs to the interrupt
            if await self._slot.peek() is None:
                return ProcOutcome.interrupted

            if message is None:
                raise ProtocolError("malformed end of stream")

            data = stream.consume(message)
            if data is not None:
                sink(index, data)
                index += 1

        return ProcOutcome.completed

    async def _release_channel(self) -> bool:
        channel = await self._slot.take()
        if channel is None:
            return False

        try:
            await channel.close()
        finally:
            await self._connection.release()

        return True

    async def interrupt(self) -> None:
        """Take the channel and close it. Does nothing once the channel is gone."""
        if await self._release_channel():
            logger.debug(f"Interrupted: {self.command} | device={self._connection.device.name}")
