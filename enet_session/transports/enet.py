from __future__ import annotations
import logging
from typing import Dict, Optional

try:
    import enet
except ImportError as e:
    raise RuntimeError("pyenet bindings are required for the 'enet' engine "
                       "(pip install 'enet-session[enet]'). Error: %r" % (e,))

from ..transport import BindAddress, EngineEvent, EngineEventType, TransportEngine

log = logging.getLogger(__name__)


def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("ascii", "replace")
    return str(value)


class EnetEngine(TransportEngine):
    """
    TransportEngine over the pyenet bindings.

    Mapping:
    - engine peer key -> peer.incomingPeerID (slot index in the host's peer
      array). The session layer adds generations on top, so slot reuse by
      ENet after a disconnect cannot alias an old handle.
    - pyenet runs enet_initialize() at import and deinitializes at exit, so
      init()/deinit() only track state.
    - pyenet has no hook for the CRC32 checksum or the alternate packet
      framing; enabling either is logged and otherwise ignored.
    """

    def __init__(self):
        self._host: Optional["enet.Host"] = None
        self._peers: Dict[int, "enet.Peer"] = {}
        self._initialized = False
        self.compression = False
        self.checksum = False
        self.new_packet_mode = False

    # ---- lifecycle ----
    def init(self) -> bool:
        self._initialized = True
        return True

    def deinit(self) -> None:
        self._initialized = False

    def create_host(self, bind: Optional[BindAddress], *, peer_count: int, channel_limit: int,
                    incoming_bandwidth: int = 0, outgoing_bandwidth: int = 0) -> bool:
        if self._host is not None:
            return True
        address = None
        if bind is not None:
            host, port = bind
            address = enet.Address(host.encode("ascii"), int(port))
        try:
            self._host = enet.Host(address, int(peer_count), int(channel_limit),
                                   int(incoming_bandwidth), int(outgoing_bandwidth))
        except (MemoryError, OSError) as e:
            log.warning("enet_host_create failed: %s", e)
            return False
        return True

    def destroy_host(self) -> None:
        # pyenet destroys the native host when the wrapper is collected
        self._peers.clear()
        self._host = None

    def flush(self) -> None:
        if self._host is not None:
            self._host.flush()

    # ---- options ----
    def set_compression(self, enabled: bool) -> None:
        if enabled and self._host is not None:
            self._host.compress_with_range_coder()
        elif self.compression:
            log.warning("pyenet cannot turn range-coder compression off once enabled")
            return
        self.compression = bool(enabled)

    def set_checksum(self, enabled: bool) -> None:
        if enabled:
            log.info("pyenet exposes no checksum hook; packets are sent without CRC32")
        self.checksum = False

    def set_new_packet_mode(self, enabled: bool, is_server: bool) -> None:
        if enabled:
            log.warning("new packet mode is not supported by pyenet (server=%s); ignored", is_server)
        self.new_packet_mode = False

    # ---- events ----
    def host_service(self, timeout_ms: int) -> Optional[EngineEvent]:
        if self._host is None:
            return None
        event = self._host.service(int(timeout_ms))
        etype = event.type
        if etype == enet.EVENT_TYPE_NONE:
            return None

        peer = event.peer
        key = peer.incomingPeerID
        if etype == enet.EVENT_TYPE_CONNECT:
            self._peers[key] = peer
            addr = peer.address
            return EngineEvent(EngineEventType.CONNECT, key,
                               address=_text(addr.host), port=int(addr.port))
        if etype == enet.EVENT_TYPE_DISCONNECT:
            self._peers.pop(key, None)
            return EngineEvent(EngineEventType.DISCONNECT, key, code=int(event.data))
        if etype == enet.EVENT_TYPE_RECEIVE:
            return EngineEvent(EngineEventType.RECEIVE, key,
                               channel=int(event.channelID), data=bytes(event.packet.data))
        return EngineEvent(EngineEventType.UNKNOWN, raw_type=etype)

    # ---- peers ----
    def connect(self, address: str, port: int, channel_limit: int, data: int = 0) -> Optional[int]:
        if self._host is None:
            return None
        peer = self._host.connect(enet.Address(address.encode("ascii"), int(port)),
                                  int(channel_limit), int(data))
        if peer is None:
            return None
        key = peer.incomingPeerID
        self._peers[key] = peer
        return key

    def peer_send(self, peer: int, channel: int, data: bytes, flags: int) -> int:
        target = self._peers.get(peer)
        if target is None:
            return -1
        return int(target.send(int(channel), enet.Packet(data, int(flags))))

    def peer_disconnect(self, peer: int, data: int = 0) -> None:
        target = self._peers.get(peer)
        if target is not None:
            target.disconnect(int(data))

    def peer_disconnect_now(self, peer: int, data: int = 0) -> None:
        target = self._peers.pop(peer, None)
        if target is not None:
            target.disconnect_now(int(data))

    def peer_disconnect_later(self, peer: int, data: int = 0) -> None:
        target = self._peers.get(peer)
        if target is not None:
            target.disconnect_later(int(data))
