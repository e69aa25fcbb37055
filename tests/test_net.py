from __future__ import annotations

import socket

from enet_session import probe_port


def test_free_port_probes_true(free_port):
    assert probe_port("127.0.0.1", free_port)
    # the probe released the port again
    assert probe_port("127.0.0.1", free_port)


def test_bound_port_probes_false():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    try:
        assert not probe_port("127.0.0.1", sock.getsockname()[1])
    finally:
        sock.close()


def test_invalid_inputs_probe_false():
    assert not probe_port("127.0.0.1", 70000)
    assert not probe_port("not-an-address.invalid", 1234)
