from __future__ import annotations
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Tuple

from ..transport import BindAddress, EngineEvent, EngineEventType, TransportEngine

log = logging.getLogger(__name__)


class LoopbackNetwork:
    """
    Process-local wire for LoopbackEngine hosts. Bound hosts are looked up
    by (address, port); all engines on one network share a single lock.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._hosts: Dict[Tuple[str, int], "LoopbackEngine"] = {}
        self._ephemeral = itertools.count(49152)

    def bind(self, engine: "LoopbackEngine", address: str, port: int) -> Optional[Tuple[str, int]]:
        with self.lock:
            if port == 0:
                port = next(self._ephemeral)
                while (address, port) in self._hosts:
                    port = next(self._ephemeral)
            key = (address, int(port))
            if key in self._hosts:
                return None
            self._hosts[key] = engine
            return key

    def unbind(self, key: Tuple[str, int]) -> None:
        with self.lock:
            self._hosts.pop(key, None)

    def lookup(self, address: str, port: int) -> Optional["LoopbackEngine"]:
        with self.lock:
            return self._hosts.get((address, int(port)))


default_network = LoopbackNetwork()


@dataclass
class _LoopPeer:
    id: int
    address: str
    port: int
    remote: Optional["_LoopPeer"] = None
    engine: Optional["LoopbackEngine"] = None
    connected: bool = False


class LoopbackEngine(TransportEngine):
    """
    In-process TransportEngine. Delivery is lossless and immediate, so every
    channel is FIFO whatever the flags; peer capacity, channel limits and the
    three disconnect flavours behave like ENet's. Connecting to an address
    nobody is bound on never completes.
    """

    def __init__(self, network: Optional[LoopbackNetwork] = None, *, client_address: str = "127.0.0.1"):
        self.network = network or default_network
        self.client_address = client_address
        self._cond = threading.Condition(self.network.lock)
        self._events: Deque[EngineEvent] = deque()
        self._peers: Dict[int, _LoopPeer] = {}
        self._ids = itertools.count(1)
        self._bound: Optional[Tuple[str, int]] = None
        self._host = False
        self._peer_count = 0
        self._channel_limit = 0
        self.init_calls = 0
        self.deinit_calls = 0
        self.compression = False
        self.checksum = False
        self.new_packet_mode = False
        self.sent: Deque[Tuple[int, int, bytes, int]] = deque(maxlen=1024)   # (peer, channel, data, flags)

    @property
    def bound_address(self) -> Optional[Tuple[str, int]]:
        return self._bound

    # ---- lifecycle ----
    def init(self) -> bool:
        self.init_calls += 1
        return True

    def deinit(self) -> None:
        self.deinit_calls += 1

    def create_host(self, bind: Optional[BindAddress], *, peer_count: int, channel_limit: int,
                    incoming_bandwidth: int = 0, outgoing_bandwidth: int = 0) -> bool:
        with self._cond:
            if self._host:
                return True
            if bind is not None:
                key = self.network.bind(self, bind[0], bind[1])
                if key is None:
                    return False
                self._bound = key
            else:
                self._bound = self.network.bind(self, self.client_address, 0)
            self._host = True
            self._peer_count = int(peer_count)
            self._channel_limit = int(channel_limit)
            return True

    def destroy_host(self) -> None:
        with self._cond:
            if not self._host:
                return
            for peer in list(self._peers.values()):
                self._sever(peer, data=0, notify_local=False)
            self._peers.clear()
            self._events.clear()
            if self._bound is not None:
                self.network.unbind(self._bound)
                self._bound = None
            self._host = False
            self._cond.notify_all()

    def flush(self) -> None:
        pass

    def set_compression(self, enabled: bool) -> None:
        self.compression = bool(enabled)

    def set_checksum(self, enabled: bool) -> None:
        self.checksum = bool(enabled)

    def set_new_packet_mode(self, enabled: bool, is_server: bool) -> None:
        self.new_packet_mode = bool(enabled)

    # ---- events ----
    def host_service(self, timeout_ms: int) -> Optional[EngineEvent]:
        with self._cond:
            if not self._host:
                return None
            if not self._events:
                self._cond.wait_for(lambda: self._events or not self._host, timeout_ms / 1000.0)
            if not self._events:
                return None
            return self._events.popleft()

    def inject(self, event: EngineEvent) -> None:
        """Queue an arbitrary engine event on this host (test hook)."""
        self._push(event)

    def _push(self, event: EngineEvent) -> None:
        with self._cond:
            self._events.append(event)
            self._cond.notify_all()

    # ---- peers ----
    def connect(self, address: str, port: int, channel_limit: int, data: int = 0) -> Optional[int]:
        with self._cond:
            if not self._host or len(self._peers) >= self._peer_count:
                return None
            local = self._new_peer(address, int(port))
            remote_engine = self.network.lookup(address, port)
            if remote_engine is None or remote_engine is self:
                return local.id
            remote = remote_engine._accept(self, local)
            if remote is not None:
                local.connected = True
                self._push(EngineEvent(EngineEventType.CONNECT, local.id, address=address, port=int(port)))
            return local.id

    def _accept(self, origin: "LoopbackEngine", origin_peer: _LoopPeer) -> Optional[_LoopPeer]:
        if not self._host or len(self._peers) >= self._peer_count:
            return None
        addr, port = origin._bound
        peer = self._new_peer(addr, port)
        peer.remote, peer.engine, peer.connected = origin_peer, origin, True
        origin_peer.remote, origin_peer.engine = peer, self
        self._push(EngineEvent(EngineEventType.CONNECT, peer.id, address=addr, port=port))
        return peer

    def _new_peer(self, address: str, port: int) -> _LoopPeer:
        peer = _LoopPeer(next(self._ids), address, port)
        self._peers[peer.id] = peer
        return peer

    def peer_send(self, peer: int, channel: int, data: bytes, flags: int) -> int:
        with self._cond:
            local = self._peers.get(peer)
            if local is None or not local.connected or local.remote is None:
                return -1
            if not 0 <= channel < self._channel_limit:
                return -1
            self.sent.append((peer, channel, bytes(data), int(flags)))
            local.engine._push(EngineEvent(EngineEventType.RECEIVE, local.remote.id,
                                           channel=channel, data=bytes(data)))
            return 0

    def peer_disconnect(self, peer: int, data: int = 0) -> None:
        with self._cond:
            local = self._peers.pop(peer, None)
            if local is not None:
                self._sever(local, data, notify_local=True)

    def peer_disconnect_now(self, peer: int, data: int = 0) -> None:
        with self._cond:
            local = self._peers.pop(peer, None)
            if local is not None:
                self._sever(local, data, notify_local=False)

    def peer_disconnect_later(self, peer: int, data: int = 0) -> None:
        # everything already sent is in the remote queue ahead of the disconnect
        self.peer_disconnect(peer, data)

    def _sever(self, local: _LoopPeer, data: int, *, notify_local: bool) -> None:
        remote, remote_engine = local.remote, local.engine
        was_connected = local.connected
        local.connected, local.remote = False, None
        if remote is not None and remote_engine is not None:
            remote_engine._peers.pop(remote.id, None)
            remote.connected, remote.remote = False, None
            remote_engine._push(EngineEvent(EngineEventType.DISCONNECT, remote.id, code=int(data)))
        if notify_local and was_connected:
            self._push(EngineEvent(EngineEventType.DISCONNECT, local.id, code=int(data)))
