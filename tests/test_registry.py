from __future__ import annotations

import pytest

from enet_session import InvalidPeerHandle, NotConnected, PeerHandle, PeerRegistry


def test_register_and_resolve():
    reg = PeerRegistry()
    h = reg.register("peer-a", connected=True, address="10.0.0.1", port=4000)
    assert reg.resolve(h) == "peer-a"
    assert reg.get(h).address == "10.0.0.1"
    assert h in reg
    assert len(reg) == 1


def test_register_known_peer_updates_record():
    reg = PeerRegistry()
    h1 = reg.register("p", connected=False, address="1.2.3.4", port=1)
    h2 = reg.register("p", connected=True)
    assert h1 == h2
    rec = reg.get(h1)
    assert rec.connected and rec.address == "1.2.3.4"
    # a provisional registration never downgrades a live connection
    reg.register("p", connected=False)
    assert reg.get(h1).connected


def test_removed_handle_is_stale_even_after_slot_reuse():
    reg = PeerRegistry()
    old = reg.register("a", connected=True)
    assert reg.remove(old) == "a"
    new = reg.register("b", connected=True)
    assert new.slot == old.slot
    assert new != old
    assert old not in reg
    assert reg.get(old) is None
    with pytest.raises(InvalidPeerHandle):
        reg.resolve(old)
    assert reg.resolve(new) == "b"


def test_stale_handle_is_a_not_connected_error():
    reg = PeerRegistry()
    with pytest.raises(NotConnected):
        reg.resolve(PeerHandle(5, 0))


def test_remove_twice_returns_none():
    reg = PeerRegistry()
    h = reg.register("a", connected=True)
    reg.remove(h)
    assert reg.remove(h) is None


def test_connected_in_registration_order():
    reg = PeerRegistry()
    a = reg.register("a", connected=True)
    b = reg.register("b", connected=False)
    c = reg.register("c", connected=True)
    assert reg.connected() == [a, c]
    reg.register("b", connected=True)
    assert reg.connected() == [a, b, c]
    assert list(reg) == [a, b, c]


def test_clear_invalidates_everything():
    reg = PeerRegistry()
    handles = [reg.register(i, connected=True) for i in range(3)]
    reg.clear()
    assert len(reg) == 0
    assert all(h not in reg for h in handles)
    assert reg.handle_for(0) is None


def test_contains_rejects_non_handles():
    reg = PeerRegistry()
    reg.register("a", connected=True)
    assert "a" not in reg
    assert (0, 0) not in reg
