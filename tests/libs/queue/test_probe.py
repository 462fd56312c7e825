"""
Tests for the queue backend reachability probe.

Tests verify:
- A listening port is reported reachable
- A closed port is reported unreachable
- A hanging handshake is bounded by the timeout
- A malformed address is reported unreachable instead of raising
"""

import asyncio
import socket

import pytest

from libs.queue.probe import is_reachable


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_listening_port_is_reachable():
    async def handle(reader, writer):
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        assert await is_reachable("127.0.0.1", port, timeout=1.0) is True
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_closed_port_is_unreachable():
    assert await is_reachable("127.0.0.1", _free_port(), timeout=1.0) is False


@pytest.mark.asyncio
async def test_hanging_handshake_times_out(monkeypatch):
    async def hang(host, port):
        await asyncio.sleep(10)

    monkeypatch.setattr(asyncio, "open_connection", hang)

    assert await is_reachable("10.255.255.1", 6379, timeout=0.01) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("port", [70000, -1])
async def test_out_of_range_port_is_unreachable(port):
    assert await is_reachable("127.0.0.1", port, timeout=1.0) is False
