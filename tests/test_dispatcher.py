import asyncio
import random

from udpxfer.server import FileServer
from udpxfer.transfer.protocol import (
    ControlErr, ControlOk, DownloadRequest, ErrorReason, parse_control_response,
)
from udpxfer.transfer.transport import open_endpoint

QUIET = 0.2


class FixedRandom(random.Random):
    """Always proposes the same port."""

    def __init__(self, port):
        super().__init__()
        self.port = port

    def randrange(self, start, stop=None, step=1):
        return self.port


async def ask(client, server, payload, timeout=2.0):
    client.send(payload, server.address)
    received = await client.receive(timeout=timeout)
    if received is None:
        return None
    return parse_control_response(received[0])


def run_with_server(config, scenario, setup=None):
    """Start a server, run `scenario(server, client)`, stop everything."""
    async def main():
        server = FileServer(config)
        if setup:
            setup(server)
        await server.start()
        client = await open_endpoint('127.0.0.1', 0)
        try:
            return await scenario(server, client)
        finally:
            client.close()
            await server.stop()

    return asyncio.run(main())


def test_ok_carries_size_and_data_port(config):
    async def scenario(server, client):
        response = await ask(client, server, DownloadRequest("data.bin").to_bytes())
        return response, server.dispatcher.active_sessions

    response, active = run_with_server(config, scenario)
    assert isinstance(response, ControlOk)
    assert response.filename == "data.bin"
    assert response.size == 2500
    assert 50000 <= response.port < 51000
    assert active == 1


def test_missing_file_is_not_found(config):
    async def scenario(server, client):
        missing = await ask(client, server, b"DOWNLOAD nope.txt")
        outside = await ask(client, server, b"DOWNLOAD ../secret.txt")
        directory = await ask(client, server, b"DOWNLOAD sub")
        return missing, outside, directory, server.get_stats()

    missing, outside, directory, stats = run_with_server(config, scenario)
    assert missing == ControlErr("nope.txt", ErrorReason.NOT_FOUND)
    assert outside == ControlErr("../secret.txt", ErrorReason.NOT_FOUND)
    assert directory == ControlErr("sub", ErrorReason.NOT_FOUND)
    assert stats['downloads_refused'] == 3
    assert stats['active_sessions'] == 0


def test_unknown_datagrams_are_dropped(config):
    async def scenario(server, client):
        silent = [
            await ask(client, server, payload, QUIET)
            for payload in (b"HELLO", b"DOWNLOAD", b"FILE data.bin CLOSE", b"\x00\x01")
        ]
        answered = await ask(client, server, b"DOWNLOAD small.txt")
        return silent, answered, server.get_stats()

    silent, answered, stats = run_with_server(config, scenario)
    assert silent == [None, None, None, None]
    assert isinstance(answered, ControlOk)
    assert stats['dropped'] == 4


def test_session_cap_refuses_with_no_port(config):
    config.max_sessions = 1

    async def scenario(server, client):
        first = await ask(client, server, b"DOWNLOAD data.bin")
        second = await ask(client, server, b"DOWNLOAD small.txt")
        return first, second

    first, second = run_with_server(config, scenario)
    assert isinstance(first, ControlOk)
    assert second == ControlErr("small.txt", ErrorReason.NO_PORT_AVAILABLE)


def test_exhausted_allocator_refuses_with_no_port(config):
    def setup(server):
        server.allocator.attempts = 3
        server.allocator._probe = lambda port: False

    async def scenario(server, client):
        return await ask(client, server, b"DOWNLOAD data.bin")

    response = run_with_server(config, scenario, setup)
    assert response == ControlErr("data.bin", ErrorReason.NO_PORT_AVAILABLE)


def test_concurrent_sessions_never_share_a_port(config):
    def setup(server):
        port = server.allocator.allocate()
        server.allocator.rng = FixedRandom(port)

    async def scenario(server, client):
        other = await open_endpoint('127.0.0.1', 0)
        try:
            first = await ask(client, server, b"DOWNLOAD data.bin")
            second = await ask(other, server, b"DOWNLOAD data.bin")
        finally:
            other.close()
        return first, second, server.allocator.rng.port

    first, second, port = run_with_server(config, scenario, setup)
    assert first == ControlOk("data.bin", 2500, port)
    assert second == ControlErr("data.bin", ErrorReason.NO_PORT_AVAILABLE)


def test_probe_bind_race_reports_no_port(config):
    """The probed port is taken before the session binds it."""
    def setup(server):
        server.allocator._probe = lambda port: True

    async def scenario(server, client):
        squatter = await open_endpoint('127.0.0.1', 0)
        server.allocator.rng = FixedRandom(squatter.local_address[1])
        try:
            return await ask(client, server, b"DOWNLOAD data.bin"), server.get_stats()
        finally:
            squatter.close()

    response, stats = run_with_server(config, scenario, setup)
    assert response == ControlErr("data.bin", ErrorReason.NO_PORT_AVAILABLE)
    assert stats['active_sessions'] == 0


def test_repeated_download_reuses_fresh_session(config):
    async def scenario(server, client):
        first = await ask(client, server, b"DOWNLOAD data.bin")
        repeat = await ask(client, server, b"DOWNLOAD data.bin")
        return first, repeat, server.dispatcher.active_sessions

    first, repeat, active = run_with_server(config, scenario)
    assert first == repeat
    assert active == 1


def test_listener_is_not_blocked_by_sessions(config):
    async def scenario(server, client):
        responses = [
            await ask(client, server, DownloadRequest(name).to_bytes())
            for name in ("data.bin", "small.txt", "sub/nested.bin")
        ]
        return responses, server.dispatcher.active_sessions

    responses, active = run_with_server(config, scenario)
    assert all(isinstance(r, ControlOk) for r in responses)
    assert len({r.port for r in responses}) == 3
    assert active == 3


def test_stop_cancels_live_sessions(config):
    async def main():
        server = FileServer(config)
        await server.start()
        client = await open_endpoint('127.0.0.1', 0)
        try:
            await ask(client, server, b"DOWNLOAD data.bin")
        finally:
            client.close()
        await server.stop()
        return server

    server = asyncio.run(main())
    assert not server.is_running
    assert server.dispatcher.active_sessions == 0
