from __future__ import annotations

import threading

import pytest

from enet_session import (
    ConnectEvent,
    DisconnectEvent,
    HostCreateFailed,
    HostSession,
    NotConnected,
    PacketFlag,
    ReceiveEvent,
    SendFailed,
    SessionConfig,
    UnknownEvent,
    UnknownEventType,
)
from enet_session.transport import EngineEvent, EngineEventType
from enet_session.transports.loopback import LoopbackEngine

from .conftest import wait_until

ADDR = ("127.0.0.1", 6100)


@pytest.fixture
def hosts(network):
    """A bound server host and an unbound client host, driven by hand."""
    made = []

    def _make(is_server, bind=None, peer_count=4, **cfg):
        host = HostSession(SessionConfig(**cfg), LoopbackEngine(network), is_server=is_server)
        host.create_host(bind, peer_count=peer_count)
        made.append(host)
        return host

    yield _make
    for host in made:
        host.close()


def collect_errors(host):
    errors = []
    host.on("error", errors.append)
    return errors


def handshake(server, client):
    handle = client.connect_peer(*ADDR)
    assert isinstance(client.service(0), ConnectEvent)
    ev = server.service(0)
    assert isinstance(ev, ConnectEvent)
    return handle, ev.peer


def test_service_without_host_returns_none(network):
    host = HostSession(SessionConfig(), LoopbackEngine(network), is_server=False)
    assert host.service(10) is None


def test_connect_state_machine(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle = client.connect_peer(*ADDR)
    record = client.peer_info(handle)
    assert record is not None and not record.connected
    assert (record.address, record.port) == ADDR
    assert client.connected_peers() == []

    assert client.service(0) == ConnectEvent(handle)
    assert client.peer_info(handle).connected
    srv_ev = server.service(0)
    assert server.connected_peers() == [srv_ev.peer]


def test_create_host_applies_options(hosts):
    host = hosts(True, ADDR, checksum=False, new_packet_mode=True)
    engine = host.engine
    assert engine.compression and not engine.checksum and engine.new_packet_mode
    assert engine.bound_address == ADDR


def test_new_packet_mode_untouched_when_disabled(hosts):
    assert not hosts(True, ADDR).engine.new_packet_mode


def test_bind_conflict_raises_host_create_failed(hosts, network):
    hosts(True, ADDR)
    other = HostSession(SessionConfig(), LoopbackEngine(network), is_server=True)
    errors = collect_errors(other)
    try:
        with pytest.raises(HostCreateFailed):
            other.create_host(ADDR, peer_count=4)
        assert not other.host_created
        assert isinstance(errors[0], HostCreateFailed)
    finally:
        other.close()


def test_connect_peer_without_host(network):
    host = HostSession(SessionConfig(), LoopbackEngine(network), is_server=False)
    errors = collect_errors(host)
    with pytest.raises(NotConnected):
        host.connect_peer(*ADDR)
    assert isinstance(errors[0], NotConnected)


def test_connect_beyond_capacity_is_refused(hosts):
    hosts(True, ADDR)
    client = hosts(False, peer_count=1)
    client.connect_peer(*ADDR)
    with pytest.raises(NotConnected):
        client.connect_peer(*ADDR)


def test_reliable_sends_arrive_in_order_per_channel(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    for i in range(5):
        assert client.send(handle, 1, f"msg-{i}") >= 0
    received = [server.service(0) for _ in range(5)]
    assert all(isinstance(ev, ReceiveEvent) and ev.channel == 1 for ev in received)
    assert [ev.text() for ev in received] == [f"msg-{i}" for i in range(5)]


def test_send_flags(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    client.send(handle, 0, b"a")
    client.send(handle, 0, b"b", reliable=False)
    client.send_raw(handle, 0, b"c", PacketFlag.UNSEQUENCED | PacketFlag.NO_ALLOCATE)
    flags = [entry[3] for entry in client.engine.sent]
    assert flags == [PacketFlag.RELIABLE, PacketFlag.NONE, PacketFlag.UNSEQUENCED]


def test_send_failures_are_reported_not_raised(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    errors = collect_errors(client)
    assert client.send(handle, 9, b"bad channel") < 0
    assert client.send(handle, 0, 12345) == -1
    assert [type(e) for e in errors] == [SendFailed, SendFailed]


@pytest.mark.parametrize("method", ["disconnect", "disconnect_now", "disconnect_later"])
def test_send_after_disconnect_fails(hosts, method):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, srv_peer = handshake(server, client)
    errors = collect_errors(client)

    assert getattr(client, method)(handle) is True
    assert handle not in client.peers
    assert client.send(handle, 0, b"late") < 0
    assert isinstance(errors[-1], NotConnected)
    assert getattr(client, method)(handle) is False

    assert server.service(0) == DisconnectEvent(srv_peer, 0)
    assert server.connected_peers() == []


def test_late_events_for_removed_peer_are_dropped(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    client.disconnect(handle)
    # the engine still reports its own side of the graceful disconnect
    assert client.service(0) is None
    assert client.dropped_events == 1

    client.engine.inject(EngineEvent(EngineEventType.RECEIVE, peer=999, data=b"x"))
    assert client.service(0) is None
    assert client.dropped_events == 2


def test_unknown_engine_event_is_reported(hosts):
    host = hosts(True, ADDR)
    errors = collect_errors(host)
    host.engine.inject(EngineEvent(EngineEventType.UNKNOWN, raw_type=42))
    assert host.service(0) == UnknownEvent(42)
    assert isinstance(errors[0], UnknownEventType)


def test_remote_disconnect_removes_peer(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, srv_peer = handshake(server, client)
    server.disconnect(srv_peer, data=7)
    assert client.service(0) == DisconnectEvent(handle, 7)
    assert handle not in client.peers


def test_destroy_is_idempotent_and_forgets_peers(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    errors = collect_errors(client)
    client.destroy()
    client.destroy()
    assert not client.host_created
    assert len(client.peers) == 0
    assert client.send(handle, 0, b"x") == -1
    assert isinstance(errors[-1], NotConnected)
    assert client.service(0) is None


def test_send_object(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    client.send_object(handle, 0, {"op": "hello", "n": 1}, codec="msgpack")
    assert server.service(0).decode("msgpack") == {"op": "hello", "n": 1}


def test_second_listen_waits_for_running_loop(hosts):
    host = hosts(True, ADDR)
    first = threading.Thread(target=host.listen, daemon=True)
    first.start()
    assert wait_until(lambda: host.running)

    second = threading.Thread(target=host.listen, daemon=True)
    second.start()
    second.join(0.1)
    assert second.is_alive()

    host.stop()
    first.join(1.0)
    second.join(1.0)
    assert not first.is_alive() and not second.is_alive()
    assert not host.running


def test_send_raw_keeps_unknown_bits_and_drops_no_allocate(hosts):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    assert client.send_raw(handle, 0, b"x", 0x40 | PacketFlag.RELIABLE | PacketFlag.NO_ALLOCATE) >= 0
    assert client.engine.sent[-1][3] == 0x41


@pytest.mark.parametrize("flags", ["reliable", None, 1.5j])
def test_send_raw_bad_flags_reported(hosts, flags):
    server, client = hosts(True, ADDR), hosts(False, peer_count=1)
    handle, _ = handshake(server, client)
    errors = collect_errors(client)
    assert client.send_raw(handle, 0, b"x", flags) == -1
    assert [type(e) for e in errors] == [SendFailed]
    assert len(client.engine.sent) == 0


def test_abandoned_connect_ignores_late_handshake(hosts):
    hosts(True, ADDR)
    client = hosts(False, peer_count=1)
    handle = client.connect_peer(*ADDR)
    engine_peer = client.peers.resolve(handle)
    seen = []
    client.on("connect", seen.append)

    assert client.abandon(handle)
    assert client.abandon(handle) is False
    # the loopback engine had already queued the handshake
    assert client.service(0) is None
    assert seen == []
    assert len(client.peers) == 0
    assert client.dropped_events == 1

    # a later handshake for a reused engine slot is delivered again
    client.engine.inject(EngineEvent(EngineEventType.CONNECT, peer=engine_peer))
    assert isinstance(client.service(0), ConnectEvent)
    assert len(seen) == 1
