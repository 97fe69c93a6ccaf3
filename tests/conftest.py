"""Shared pytest fixtures for device-session tests.

Testing Strategy
----------------
Pool, connection and proc tests run against an in-memory transport instead of
a real SSH server:

- ``FakeChannel`` replays a scripted sequence of channel messages. A script
  entry that is an exception is raised from ``wait()`` instead of returned.
  With ``hold_open=True`` the stream never ends on its own, which models a
  long-running command such as ``tail -f``; more messages can be pushed later.
- ``FakeTransport`` hands out ``FakeSession`` objects and queues of scripted
  channels and channel-open failures, shared by every session it creates.

The asyncssh backend itself is tested separately with mocked asyncssh objects.
"""

import asyncio
import itertools

import asyncssh
import pytest

from device_session.connection.pool import ConnectionPool
from device_session.models import Device


class FakeChannel:
    _ids = itertools.count()

    def __init__(self, messages=(), hold_open=False, exec_error=None):
        self.id = f"fake-{next(self._ids)}"
        self.commands = []
        self.written = bytearray()
        self.eof_sent = False
        self.close_count = 0
        self._exec_error = exec_error
        self._ended = False
        self._queue = asyncio.Queue()
        self.push(*messages)
        if not hold_open:
            self._queue.put_nowait(None)

    def push(self, *messages):
        for message in messages:
            self._queue.put_nowait(message)

    async def exec(self, command):
        if self._exec_error is not None:
            raise self._exec_error
        self.commands.append(command)

    async def write(self, data):
        self.written += data

    async def signal_end_of_input(self):
        self.eof_sent = True

    async def close(self):
        self.close_count += 1
        self._queue.put_nowait(None)

    async def wait(self):
        if self._ended:
            return None

        message = await self._queue.get()
        if message is None:
            self._ended = True
        elif isinstance(message, BaseException):
            raise message

        return message


class FakeSession:
    def __init__(self, transport):
        self._transport = transport
        self.opened = []
        self.closed = False

    async def open_channel(self):
        if self._transport.open_errors:
            raise self._transport.open_errors.pop(0)

        channel = self._transport.channels.pop(0) if self._transport.channels else FakeChannel()
        self.opened.append(channel)
        return channel

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self):
        self.sessions = []
        self.channels = []
        self.open_errors = []
        self.connected_devices = []

    def script(self, *messages, hold_open=False, exec_error=None) -> FakeChannel:
        channel = FakeChannel(messages, hold_open=hold_open, exec_error=exec_error)
        self.channels.append(channel)
        return channel

    def refuse_next_channel(self):
        self.open_errors.append(asyncssh.ChannelOpenError(4, "Resource shortage"))

    async def connect(self, device):
        # Yield once so concurrent connects to the same device interleave
        await asyncio.sleep(0)
        self.connected_devices.append(device.name)
        session = FakeSession(self)
        self.sessions.append(session)
        return session


@pytest.fixture(autouse=True)
def reset_connection_pool():
    """Drop the process-wide pool so tests never share connections."""
    import device_session.connection.pool as pool_module

    pool_module._connection_pool = None
    yield
    pool_module._connection_pool = None


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def pool(transport):
    return ConnectionPool(transport.connect)


@pytest.fixture
def device():
    return Device(name="router1", host="192.0.2.1", username="admin")


@pytest.fixture
def other_device():
    return Device(name="switch2", host="192.0.2.2", username="admin")


@pytest.fixture
async def connection(pool, device):
    return await pool.get_or_create(device)
