"""Session transport backed by the asyncssh library.

asyncssh sends the channel open request and the exec request together, so
:class:`AsyncSSHChannel` performs the actual SSH channel open when
:meth:`AsyncSSHChannel.exec` is called. Connections guard that call with the
same failure classification as channel opening.
"""

import asyncio
import logging
import uuid

from pathlib import Path

import asyncssh

from device_session.audit import Event
from device_session.audit import log_ssh_connect
from device_session.audit import sanitize_parameters
from device_session.audit import Status
from device_session.config import CONFIG
from device_session.connection.base import ChannelMessage
from device_session.connection.base import Close
from device_session.connection.base import Data
from device_session.connection.base import Eof
from device_session.connection.base import ExitStatus
from device_session.connection.base import ExtendedData
from device_session.models import Device


logger = logging.getLogger("device-session")


def discover_ssh_key() -> str | None:
    """
    Find a private key for devices that do not carry their own.

    Checks in order:
    1. DEVICE_SESSION_SSH_KEY_PATH environment variable
    2. ~/.ssh/id_ed25519, ~/.ssh/id_ecdsa, ~/.ssh/id_rsa, if key search is enabled
    """
    configured = CONFIG.ssh_key_path
    if configured:
        if configured.is_file():
            logger.debug(f"Using SSH key from configuration: {configured}")
            return str(configured)

        logger.warning(f"SSH key specified in DEVICE_SESSION_SSH_KEY_PATH not found: {configured}")
        return None

    if not CONFIG.search_for_ssh_key:
        return None

    ssh_dir = Path.home() / ".ssh"
    for name in ("id_ed25519", "id_ecdsa", "id_rsa"):
        key_path = ssh_dir / name
        if key_path.is_file():
            logger.debug(f"Using SSH key: {key_path}")
            return str(key_path)

    logger.warning(f"No SSH private key found in {ssh_dir}")
    return None


class _ChannelSession(asyncssh.SSHClientSession):
    """Turns asyncssh session callbacks into channel messages."""

    def __init__(self, messages: "asyncio.Queue[ChannelMessage | None]"):
        self._messages = messages
        self._chan: asyncssh.SSHClientChannel | None = None

    def connection_made(self, chan: asyncssh.SSHClientChannel) -> None:
        self._chan = chan

    def data_received(self, data: bytes, datatype: int | None) -> None:
        if datatype is None:
            self._messages.put_nowait(Data(data))
        else:
            self._messages.put_nowait(ExtendedData(data, datatype))

    def eof_received(self) -> bool:
        self._messages.put_nowait(Eof())
        # Stay half open until the exit status arrives
        return True

    def connection_lost(self, exc: Exception | None) -> None:
        # asyncssh reports -1 for a command killed by a signal
        status = self._chan.get_exit_status() if self._chan is not None else None
        if status is not None:
            self._messages.put_nowait(ExitStatus(status))

        self._messages.put_nowait(Close())
        self._messages.put_nowait(None)


class AsyncSSHChannel:
    """A command channel on an asyncssh connection."""

    def __init__(self, connection: asyncssh.SSHClientConnection):
        self._connection = connection
        self._id = uuid.uuid4().hex[:12]
        self._messages: asyncio.Queue[ChannelMessage | None] = asyncio.Queue()
        self._chan: asyncssh.SSHClientChannel | None = None
        self._closed = False
        self._ended = False

    @property
    def id(self) -> str:
        return self._id

    def _require_channel(self) -> asyncssh.SSHClientChannel:
        if self._chan is None:
            raise RuntimeError(f"{self._id}: exec() must be called before using the channel")
        return self._chan

    async def exec(self, command: str) -> None:
        if self._closed:
            return

        chan, _ = await self._connection.create_session(
            lambda: _ChannelSession(self._messages),
            command,
            encoding=None,
        )
        self._chan = chan

        # Closed while the open request was in flight
        if self._closed:
            chan.close()

    async def write(self, data: bytes) -> None:
        self._require_channel().write(data)

    async def signal_end_of_input(self) -> None:
        self._require_channel().write_eof()

    async def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        if self._chan is None:
            self._messages.put_nowait(None)
            return

        self._chan.close()
        await self._chan.wait_closed()

    async def wait(self) -> ChannelMessage | None:
        if self._ended:
            return None

        message = await self._messages.get()
        if message is None:
            self._ended = True

        return message


class AsyncSSHSession:
    """An authenticated asyncssh connection to one device."""

    def __init__(self, connection: asyncssh.SSHClientConnection):
        self._connection = connection

    async def open_channel(self) -> AsyncSSHChannel:
        if self._connection.is_closed():
            raise asyncssh.ConnectionLost("SSH session is closed")

        return AsyncSSHChannel(self._connection)

    def is_closed(self) -> bool:
        return self._connection.is_closed()

    async def close(self) -> None:
        self._connection.close()
        await self._connection.wait_closed()


async def connect_device(device: Device) -> AsyncSSHSession:
    """
    Establish an authenticated session to a device.

    The device's own private key and passphrase take precedence over the
    configured fallbacks.

    Raises:
        ConnectionError: If authentication or the connection itself fails.
    """
    ssh_key = str(device.private_key) if device.private_key else discover_ssh_key()
    logger.debug(f"{Event.SSH_CONNECTING}: {device.name} | address={device.address} | key={ssh_key or 'none'}")

    if CONFIG.verify_host_keys:
        known_hosts = str(CONFIG.effective_known_hosts_path)
    else:
        logger.warning("SSH host key verification disabled - vulnerable to MITM attacks")
        known_hosts = None

    connect_kwargs = {
        "host": device.host,
        "port": device.port,
        "known_hosts": known_hosts,
    }

    if device.username:
        connect_kwargs["username"] = device.username

    if device.password:
        connect_kwargs["password"] = device.password.get_secret_value()

    if ssh_key:
        connect_kwargs["client_keys"] = [ssh_key]

    passphrase = device.passphrase or CONFIG.key_passphrase
    if passphrase:
        connect_kwargs["passphrase"] = passphrase.get_secret_value()

    if CONFIG.ssh_connect_timeout:
        connect_kwargs["connect_timeout"] = CONFIG.ssh_connect_timeout

    if CONFIG.keepalive_interval:
        connect_kwargs["keepalive_interval"] = CONFIG.keepalive_interval

    logger.debug(f"SSH_CONNECT_OPTIONS: {device.name} | {sanitize_parameters(connect_kwargs)}")

    try:
        conn = await asyncssh.connect(**connect_kwargs)
    except asyncssh.PermissionDenied as e:
        log_ssh_connect(
            device.host,
            username=device.username,
            status=Status.failed,
            device=device.name,
            error=f"Permission denied: {e}",
        )
        raise ConnectionError(f"Authentication failed for {device.name} ({device.address})") from e
    except (asyncssh.Error, OSError) as e:
        log_ssh_connect(device.host, username=device.username, status=Status.failed, device=device.name, error=str(e))
        raise ConnectionError(f"Failed to connect to {device.name} ({device.address}): {e}") from e

    log_ssh_connect(device.host, username=device.username, status=Status.success, device=device.name, key_path=ssh_key)

    return AsyncSSHSession(conn)
