import asyncio
import gc
import logging

import asyncssh
import pytest

from device_session.connection.base import Data
from device_session.connection.base import Eof
from device_session.connection.base import ExitStatus
from device_session.connection.errors import ReconnectRequired
from device_session.connection.pool import ConnectionPool
from device_session.connection.pool import get_connection_pool


async def test_get_or_create_reuses_connection(pool, transport, device):
    """Test that a second lookup returns the pooled connection without reconnecting."""
    conn1 = await pool.get_or_create(device)
    conn2 = await pool.get_or_create(device)

    assert conn1 is conn2
    assert transport.connected_devices == ["router1"]
    assert len(pool) == 1


async def test_get_or_create_different_devices(pool, transport, device, other_device):
    conn1 = await pool.get_or_create(device)
    conn2 = await pool.get_or_create(other_device)

    assert conn1 is not conn2
    assert transport.connected_devices == ["router1", "switch2"]
    assert "router1" in pool
    assert "switch2" in pool


async def test_get_or_create_replaces_closed_session(pool, transport, device):
    """Test that a connection whose session died is discarded on lookup."""
    conn1 = await pool.get_or_create(device)
    transport.sessions[0].closed = True

    conn2 = await pool.get_or_create(device)

    assert conn2 is not conn1
    assert conn1.retired
    assert pool.get("router1") is conn2
    assert len(transport.sessions) == 2


async def test_closed_session_dropped_on_lookup_is_closed(caplog, pool, transport, device):
    conn1 = await pool.get_or_create(device)
    transport.sessions[0].closed = True

    with caplog.at_level(logging.INFO):
        await pool.get_or_create(device)

    messages = [record.getMessage() for record in caplog.records]

    assert conn1.is_closed()
    assert f"CONNECTION_DROPPED: {conn1.id} | device=router1" in messages


async def test_concurrent_get_or_create_keeps_one_connection(pool, transport, device):
    """Test that racing lookups for one device never pool two connections."""
    conn1, conn2 = await asyncio.gather(pool.get_or_create(device), pool.get_or_create(device))

    assert conn1 is conn2
    assert len(pool) == 1
    assert len(transport.sessions) == 2
    assert [session.closed for session in transport.sessions].count(True) == 1


async def test_evict_is_idempotent(pool, device):
    conn = await pool.get_or_create(device)

    assert pool.evict("router1") is conn
    assert pool.evict("router1") is None
    assert pool.evict("unknown") is None
    assert "router1" not in pool
    assert conn.retired


async def test_evict_ignores_stale_connection(pool, transport, device):
    """Test that evicting an old connection never removes its replacement."""
    old = await pool.get_or_create(device)
    pool.evict("router1", old)
    new = await pool.get_or_create(device)

    assert pool.evict("router1", old) is None
    assert pool.get("router1") is new

    old.remove_from_pool()

    assert pool.get("router1") is new
    assert not new.retired


async def test_channel_refused_requires_reconnect(pool, transport, device):
    """A refused channel evicts the device and the retry builds a brand-new session."""
    conn = await pool.get_or_create(device)
    transport.refuse_next_channel()

    with pytest.raises(ReconnectRequired) as exc_info:
        await conn.exec("uptime")

    assert "router1" not in pool
    assert exc_info.value.device == "router1"
    assert isinstance(exc_info.value.__cause__, asyncssh.ChannelOpenError)
    assert transport.sessions[0].closed

    transport.script(Data(b"up 3 days"), ExitStatus(0), Eof())
    retried = await pool.get_or_create(device)

    assert retried is not conn
    assert retried.id != conn.id
    assert len(transport.sessions) == 2
    assert await retried.exec("uptime") == b"up 3 days"


async def test_connection_does_not_keep_pool_alive(transport, device):
    """Test that a connection only holds a weak reference to its pool."""
    pool = ConnectionPool(transport.connect)
    conn = await pool.get_or_create(device)

    del pool
    gc.collect()

    assert conn._pool_ref() is None

    conn.remove_from_pool(reason="pool is gone")

    assert conn.retired


async def test_close_all(pool, transport, device, other_device):
    await pool.get_or_create(device)
    await pool.get_or_create(other_device)

    await pool.close_all()

    assert len(pool) == 0
    assert all(session.closed for session in transport.sessions)


async def test_close_all_continues_after_close_error(mocker, pool, transport, device, other_device):
    await pool.get_or_create(device)
    await pool.get_or_create(other_device)
    mocker.patch.object(transport.sessions[0], "close", side_effect=OSError("Broken pipe"))

    await pool.close_all()

    assert len(pool) == 0
    assert transport.sessions[1].closed


def test_get_connection_pool_is_process_wide():
    assert get_connection_pool() is get_connection_pool()
