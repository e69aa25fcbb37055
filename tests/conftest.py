from __future__ import annotations

import socket
import time
from typing import Callable

import pytest

from enet_session import ClientSession, ServerSession
from enet_session.transports.loopback import LoopbackEngine, LoopbackNetwork


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def network() -> LoopbackNetwork:
    return LoopbackNetwork()


@pytest.fixture
def free_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def make_server(network, free_port):
    created = []

    def _make(**options) -> ServerSession:
        options.setdefault("port", free_port)
        server = ServerSession.create(engine=LoopbackEngine(network), **options)
        created.append(server)
        return server

    yield _make
    for server in created:
        server.close()


@pytest.fixture
def make_client(network, free_port):
    created = []

    def _make(**options) -> ClientSession:
        options.setdefault("port", free_port)
        client = ClientSession(engine=LoopbackEngine(network), **options)
        created.append(client)
        return client

    yield _make
    for client in created:
        client.close()


@pytest.fixture
def served(make_server, make_client):
    """A running server with one connected client."""
    server = make_server()
    server.start()
    client = make_client()
    client.connect(timeout_ms=1000)
    assert wait_until(lambda: len(server.connected_peers()) == 1)
    return server, client
