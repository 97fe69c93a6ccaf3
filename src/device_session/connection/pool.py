"""Process-wide pool of device connections.

The pool maps device names to live Connections. Its lock only ever guards
dictionary operations; sessions are established and closed outside of it.
"""

import logging
import threading

from collections.abc import Awaitable
from collections.abc import Callable

from device_session.audit import Event
from device_session.audit import log_connection_lifecycle
from device_session.connection.asyncssh_backend import connect_device
from device_session.connection.base import SessionHandle
from device_session.connection.connection import Connection
from device_session.models import Device


logger = logging.getLogger("device-session")

Connector = Callable[[Device], Awaitable[SessionHandle]]


class ConnectionPool:
    """
    Keeps at most one Connection per device name.

    Connections are created on a miss and removed when they report a failed
    session, either through :meth:`Connection.remove_from_pool` or because
    their session was found closed on lookup.
    """

    def __init__(self, connector: Connector | None = None):
        self._connector = connector or connect_device
        self._connections: dict[str, Connection] = {}
        self._lock = threading.Lock()

    def __contains__(self, device_name: str) -> bool:
        with self._lock:
            return device_name in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def get(self, device_name: str) -> Connection | None:
        with self._lock:
            return self._connections.get(device_name)

    async def get_or_create(self, device: Device) -> Connection:
        """
        Get the pooled connection for a device, establishing a session on a miss.

        Raises:
            ConnectionError: If the session could not be established.
        """
        conn = self.get(device.name)
        if conn is not None:
            if not conn.is_closed():
                logger.debug(f"SSH_REUSE: {device.name} | connection={conn.id}")
                return conn

            logger.debug(f"SSH_POOL: remove_closed_connection | connection={conn.id}")
            evicted = self.evict(device.name, conn, reason="session closed")
            if evicted is not None and evicted.leases == 0:
                await evicted.discard()

        session = await self._connector(device)
        candidate = Connection(device, session, self)

        with self._lock:
            existing = self._connections.get(device.name)
            if existing is None:
                self._connections[device.name] = candidate
            pool_size = len(self._connections)

        if existing is not None:
            # Another task connected to the same device while this one was waiting
            logger.debug(f"SSH_POOL: discard_duplicate | device={device.name} | connection={candidate.id}")
            candidate.retire()
            await candidate.discard()
            return existing

        logger.debug(f"SSH_POOL: add_connection | connections={pool_size}")
        return candidate

    def evict(
        self,
        device_name: str,
        connection: Connection | None = None,
        reason: str | None = None,
    ) -> Connection | None:
        """
        Remove a device's connection from the pool.

        When ``connection`` is given, the entry is only removed if it is that
        exact connection, so a late eviction never removes a newer one.

        The evicted connection is retired; its session closes when its last
        in-flight operation finishes. A connection evicted while idle is
        returned so the caller can close it.

        Returns:
            The removed connection, or None if nothing was removed.
        """
        with self._lock:
            current = self._connections.get(device_name)
            if current is None or (connection is not None and current is not connection):
                return None
            del self._connections[device_name]

        current.retire()
        log_connection_lifecycle(Event.CONNECTION_EVICTED, current.id, device_name, reason=reason)
        return current

    async def close_all(self) -> None:
        """Close every pooled connection."""
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()

        logger.info(f"Closing {len(connections)} SSH connections")

        for conn in connections:
            conn.retire()
            await conn.discard()

        logger.debug(f"SSH_POOL: cleared | closed_connections={len(connections)}")


_connection_pool: ConnectionPool | None = None


def get_connection_pool() -> ConnectionPool:
    """Return the process-wide connection pool, creating it on first use."""
    global _connection_pool

    if _connection_pool is None:
        _connection_pool = ConnectionPool()

    return _connection_pool
