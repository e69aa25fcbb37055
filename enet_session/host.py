from __future__ import annotations
import logging
import threading
from typing import Any, Callable, List, Optional, Set, Union

from .codecs import Codec, Codecs
from .config import SessionConfig
from .errors import (
    HostCreateFailed,
    InitFailed,
    InvalidPeerHandle,
    NotConnected,
    SendFailed,
    SessionError,
    UnknownEventType,
)
from .events import (
    ConnectEvent,
    DisconnectEvent,
    Event,
    EventBus,
    EventKind,
    ReceiveEvent,
    Subscriber,
    UnknownEvent,
)
from .poller import DEFAULT_MAX_POLL_INTERVAL_MS, DEFAULT_POLL_INTERVAL_MS, AdaptivePoller
from .registry import PeerHandle, PeerRecord, PeerRegistry
from .transport import (
    BindAddress,
    EngineEvent,
    EngineEventType,
    EnginePeer,
    PacketFlag,
    TransportEngine,
    engine_state,
)

log = logging.getLogger(__name__)

Payload = Union[bytes, bytearray, memoryview, str]


def _to_bytes(payload: Payload) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    raise TypeError(f"payload must be bytes-like or str, not {type(payload).__name__}")


class HostSession:
    """
    Shared core of server and client sessions: one engine host, one peer
    registry, one event bus and the poll loop that connects them.

    Transport-boundary failures are published on the bus as `error` and
    reported at the call site (negative status, False, or a raised
    SessionError for host creation and connect).
    """

    def __init__(self, config: SessionConfig, engine: TransportEngine, *,
                 is_server: bool, bus: Optional[EventBus] = None):
        self.config = config
        self.engine = engine
        self.is_server = is_server
        self.bus = bus or EventBus()
        self.peers = PeerRegistry()
        self.initialized = False
        self.host_created = False
        self.dropped_events = 0     # late events for peers already removed locally
        self._service_lock = threading.RLock()
        self._abandoned: Set[EnginePeer] = set()    # given-up connects the engine may still report
        self._poller = AdaptivePoller(
            self.service,
            on_error=self.report,
            name=f"{self._role}-poller",
        )

    # ---- events ----
    def on(self, kind: Union[EventKind, str], callback: Subscriber) -> "HostSession":
        self.bus.on(kind, callback)
        return self

    def off(self, kind: Union[EventKind, str], callback: Subscriber) -> "HostSession":
        self.bus.off(kind, callback)
        return self

    def once(self, kind: Union[EventKind, str], callback: Subscriber,
             predicate: Optional[Callable[[Any], bool]] = None) -> Subscriber:
        return self.bus.once(kind, callback, predicate)

    def report(self, error: Exception) -> None:
        """Publish an error on the bus (and the log)."""
        log.warning("%s: %s", type(error).__name__, error)
        self.bus.publish(EventKind.ERROR, error)

    # ---- lifecycle ----
    def initialize(self) -> bool:
        if self.initialized:
            return True
        try:
            ok = engine_state.acquire(self.engine)
        except Exception as e:
            self.report(InitFailed(f"Failed to initialize transport engine: {e}"))
            return False
        if not ok:
            self.report(InitFailed("Failed to initialize transport engine"))
            return False
        self.initialized = True
        return True

    def deinitialize(self) -> None:
        if not self.initialized:
            return
        self.initialized = False
        try:
            engine_state.release(self.engine)
        except Exception as e:
            self.report(SessionError(f"Engine teardown failed: {e}"))

    def create_host(self, bind: Optional[BindAddress], *, peer_count: int) -> None:
        """
        Create the engine host (bound for servers, unbound for clients) and
        apply checksum / compression / new-packet-mode. Raises HostCreateFailed.
        """
        if self.host_created:
            return
        if not self.initialize():
            raise InitFailed("Transport engine is not initialized")
        cfg = self.config
        try:
            ok = self.engine.create_host(
                bind,
                peer_count=peer_count,
                channel_limit=cfg.channel_limit,
                incoming_bandwidth=cfg.incoming_bandwidth,
                outgoing_bandwidth=cfg.outgoing_bandwidth,
            )
        except Exception as e:
            err = HostCreateFailed(f"Failed to create {self._role} host: {e}")
            self.report(err)
            raise err from e
        if not ok:
            err = HostCreateFailed(f"Failed to create {self._role} host")
            self.report(err)
            raise err

        try:
            self.engine.set_checksum(cfg.checksum)
            self.engine.set_compression(cfg.compression)
            if cfg.new_packet_mode:
                self.engine.set_new_packet_mode(True, self.is_server)
        except Exception as e:
            self.engine.destroy_host()
            err = HostCreateFailed(f"Failed to configure {self._role} host: {e}")
            self.report(err)
            raise err from e

        self.host_created = True
        if bind is not None:
            log.info("%s host bound on %s:%s (peers=%d)", self._role, bind[0], bind[1], peer_count)
        else:
            log.info("%s host created (peers=%d)", self._role, peer_count)

    def destroy(self) -> None:
        """Stop the loop, tear down the host, forget every peer. Safe to repeat."""
        self.stop(wait=True, timeout=1.0)
        if self.host_created:
            self.host_created = False
            try:
                self.engine.destroy_host()
            except Exception as e:
                self.report(SessionError(f"Failed to destroy host: {e}"))
        self.peers.clear()
        self._abandoned.clear()

    def close(self) -> None:
        self.destroy()
        self.deinitialize()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def _role(self) -> str:
        return "server" if self.is_server else "client"

    # ---- polling ----
    def service(self, timeout_ms: int = 0) -> Optional[Event]:
        """
        Poll the engine once, for at most timeout_ms. The event (if any) is
        applied to the registry, published, and returned.
        """
        if not self.host_created:
            return None
        with self._service_lock:
            raw = self.engine.host_service(int(timeout_ms))
            if raw is None:
                return None
            return self._dispatch(raw)

    def _dispatch(self, raw: EngineEvent) -> Optional[Event]:
        if raw.type == EngineEventType.CONNECT:
            if raw.peer in self._abandoned:
                self._abandoned.discard(raw.peer)
                self._reset_engine_peer(raw.peer)
                return self._drop(raw)
            handle = self.peers.register(raw.peer, connected=True, address=raw.address, port=raw.port)
            event = ConnectEvent(handle)
            self.bus.publish(EventKind.CONNECT, event)
            return event

        if raw.type == EngineEventType.DISCONNECT:
            handle = self.peers.handle_for(raw.peer)
            if handle is None:
                self._abandoned.discard(raw.peer)
                return self._drop(raw)
            self.peers.remove(handle)
            event = DisconnectEvent(handle, raw.code)
            self.bus.publish(EventKind.DISCONNECT, event)
            return event

        if raw.type == EngineEventType.RECEIVE:
            handle = self.peers.handle_for(raw.peer)
            if handle is None:
                return self._drop(raw)
            event = ReceiveEvent(handle, raw.channel, bytes(raw.data))
            self.bus.publish(EventKind.RECEIVE, event)
            return event

        self.report(UnknownEventType(f"Unknown event type: {raw.raw_type!r}"))
        return UnknownEvent(raw.raw_type)

    def _drop(self, raw: EngineEvent) -> None:
        self.dropped_events += 1
        log.debug("dropped %s event for unregistered peer %r", raw.type, raw.peer)
        return None

    def listen(self, poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
               max_poll_interval_ms: int = DEFAULT_MAX_POLL_INTERVAL_MS, *,
               on_start: Optional[Callable[[], None]] = None) -> None:
        """
        Run the poll loop in this thread until stop(). If this session's loop
        is already running (here or on a background thread), block until it ends.
        """
        self._poller.run(poll_interval_ms, max_poll_interval_ms, on_start)

    def start(self, poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
              max_poll_interval_ms: int = DEFAULT_MAX_POLL_INTERVAL_MS, *,
              on_start: Optional[Callable[[], None]] = None) -> Optional[threading.Thread]:
        """Run the poll loop on a background thread. No-op while a loop is running."""
        return self._poller.start(poll_interval_ms, max_poll_interval_ms, on_start)

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        self._poller.stop()
        if wait:
            self._poller.join(timeout)

    @property
    def running(self) -> bool:
        return self._poller.running

    @property
    def poller(self) -> AdaptivePoller:
        return self._poller

    # ---- peers ----
    def connect_peer(self, address: str, port: int, data: int = 0) -> PeerHandle:
        """
        Ask the engine to connect and register a provisional (unconnected)
        record. The handshake completes later with a Connect event.
        """
        if not self.host_created:
            err = NotConnected(f"Cannot connect to {address}:{port}: no host")
            self.report(err)
            raise err
        try:
            peer = self.engine.connect(address, port, self.config.channel_limit, int(data))
        except Exception as e:
            err = NotConnected(f"Failed to connect to {address}:{port}: {e}")
            self.report(err)
            raise err from e
        if peer is None:
            err = NotConnected(f"Engine refused connection to {address}:{port}")
            self.report(err)
            raise err
        with self._service_lock:
            # the engine reused a slot we gave up on earlier
            self._abandoned.discard(peer)
            return self.peers.register(peer, connected=False, address=address, port=port)

    def abandon(self, peer: PeerHandle) -> bool:
        """
        Give up on a connect still in flight: drop the record, reset the
        engine peer, and ignore a Connect the engine reports for it later.
        """
        with self._service_lock:
            target = self.peers.remove(peer)
            if target is None:
                return False
            self._abandoned.add(target)
        return self._reset_engine_peer(target)

    def _reset_engine_peer(self, target: EnginePeer) -> bool:
        try:
            self.engine.peer_disconnect_now(target, 0)
        except Exception as e:
            self.report(SessionError(f"Reset of engine peer {target!r} failed: {e}"))
            return False
        return True

    def peer_info(self, peer: PeerHandle) -> Optional[PeerRecord]:
        return self.peers.get(peer)

    def connected_peers(self) -> List[PeerHandle]:
        return self.peers.connected()

    def _target(self, peer: PeerHandle) -> Optional[EnginePeer]:
        if not self.host_created:
            self.report(NotConnected("Host is not created"))
            return None
        try:
            return self.peers.resolve(peer)
        except InvalidPeerHandle as e:
            self.report(e)
            return None

    # ---- sending ----
    def send(self, peer: PeerHandle, channel: int, payload: Payload, reliable: bool = True) -> int:
        flags = PacketFlag.RELIABLE if reliable else PacketFlag.NONE
        return self._send(peer, channel, payload, flags)

    def send_raw(self, peer: PeerHandle, channel: int, data: Payload,
                 flags: int = PacketFlag.RELIABLE) -> int:
        """Send with caller-chosen flags. NO_ALLOCATE is always cleared; other bits pass through."""
        return self._send(peer, channel, data, flags)

    def send_object(self, peer: PeerHandle, channel: int, obj: Any,
                    codec: Union[str, Codec] = "json", reliable: bool = True) -> int:
        try:
            codec_obj = Codecs.get(codec) if isinstance(codec, str) else codec
            data = codec_obj.dumps(obj)
        except Exception as e:
            self.report(SendFailed(f"Could not encode payload: {e}"))
            return -1
        return self.send(peer, channel, data, reliable)

    def _send(self, peer: PeerHandle, channel: int, payload: Payload, flags: int) -> int:
        try:
            data = _to_bytes(payload)
            # the engine always gets its own copy of the data
            bits = int(flags) & ~int(PacketFlag.NO_ALLOCATE)
        except (TypeError, ValueError) as e:
            self.report(SendFailed(str(e)))
            return -1
        target = self._target(peer)
        if target is None:
            return -1
        try:
            status = self.engine.peer_send(target, int(channel), data, bits)
        except Exception as e:
            self.report(SendFailed(f"Send to {peer!r} on channel {channel} failed: {e}"))
            return -1
        if status < 0:
            self.report(SendFailed(f"Engine rejected packet for {peer!r} on channel {channel} (status {status})"))
        return status

    def flush(self) -> None:
        if not self.host_created:
            return
        try:
            self.engine.flush()
        except Exception as e:
            self.report(SessionError(f"Flush failed: {e}"))

    # ---- disconnecting ----
    def disconnect(self, peer: PeerHandle, data: int = 0) -> bool:
        """Graceful: the engine waits for the peer to acknowledge."""
        return self._disconnect(peer, data, self.engine.peer_disconnect, "disconnect")

    def disconnect_now(self, peer: PeerHandle, data: int = 0) -> bool:
        """Immediate: the peer is dropped without acknowledgement."""
        return self._disconnect(peer, data, self.engine.peer_disconnect_now, "disconnect_now")

    def disconnect_later(self, peer: PeerHandle, data: int = 0) -> bool:
        """Deferred: disconnect once everything queued to the peer is sent."""
        return self._disconnect(peer, data, self.engine.peer_disconnect_later, "disconnect_later")

    def _disconnect(self, peer: PeerHandle, data: int,
                    primitive: Callable[[EnginePeer, int], None], label: str) -> bool:
        target = self._target(peer)
        if target is None:
            return False
        # the record goes now; the engine's teardown may still be in flight
        self.peers.remove(peer)
        try:
            primitive(target, int(data))
        except Exception as e:
            self.report(SessionError(f"{label} of {peer!r} failed: {e}"))
            return False
        return True
