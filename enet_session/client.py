from __future__ import annotations
import logging
import queue
from typing import Any, Callable, Optional, Union

from .codecs import Codec
from .config import SessionConfig, resolve_config
from .errors import ConnectTimeout, NotConnected
from .events import ConnectEvent, DisconnectEvent, Event, EventKind, Subscriber
from .factory import make_engine
from .host import HostSession, Payload
from .poller import DEFAULT_MAX_POLL_INTERVAL_MS, DEFAULT_POLL_INTERVAL_MS
from .registry import PeerHandle
from .transport import PacketFlag, TransportEngine

log = logging.getLogger(__name__)


class ClientSession:
    """
    Unbound single-peer host talking to one server at config.address:port.
    send / send_raw / send_object / disconnect* target `server_peer`.
    """

    def __init__(self, config: Optional[SessionConfig] = None, *,
                 engine: Union[str, TransportEngine] = "enet", **options: Any):
        self.config = resolve_config(config, options)
        self.host = HostSession(self.config, make_engine(engine), is_server=False)
        self.server_peer: Optional[PeerHandle] = None
        self.host.bus.on(EventKind.DISCONNECT, self._on_disconnect)
        self.host.initialize()
        try:
            self.create_client()
        except Exception:
            self.host.deinitialize()
            raise

    def create_client(self) -> None:
        """Create the unbound host (capacity 1). Raises HostCreateFailed."""
        self.host.create_host(None, peer_count=1)

    # ---- connecting ----
    def connect(self, timeout_ms: int = 0, *,
                poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
                max_poll_interval_ms: int = DEFAULT_MAX_POLL_INTERVAL_MS) -> PeerHandle:
        """
        Connect to the configured server.

        timeout_ms == 0: serve in this thread; returns once the loop is stopped.
        timeout_ms > 0: serve on a background thread and return as soon as the
        handshake completes, or raise ConnectTimeout when the time runs out.
        """
        self.create_client()
        cfg = self.config
        handle = self.host.connect_peer(cfg.address, cfg.port)
        self.server_peer = handle

        if timeout_ms <= 0:
            self.host.listen(poll_interval_ms, max_poll_interval_ms)
            return handle

        connected: "queue.Queue[ConnectEvent]" = queue.Queue(maxsize=1)
        waiter = self.host.once(EventKind.CONNECT, connected.put_nowait,
                                predicate=lambda ev: ev.peer == handle)
        started_here = not self.host.running
        if started_here:
            self.host.start(poll_interval_ms, max_poll_interval_ms)
        try:
            record = self.host.peer_info(handle)
            if record is None or not record.connected:
                connected.get(timeout=timeout_ms / 1000.0)
        except queue.Empty:
            self._abandon(handle, stop_loop=started_here)
            err = ConnectTimeout(f"Connect to {cfg.address}:{cfg.port} timed out after {timeout_ms} ms")
            self.host.report(err)
            raise err from None
        finally:
            self.host.off(EventKind.CONNECT, waiter)
        log.info("connected to %s:%s", cfg.address, cfg.port)
        return handle

    def _abandon(self, handle: PeerHandle, *, stop_loop: bool) -> None:
        # drop the half-open attempt so a late handshake cannot resurrect it
        if self.server_peer == handle:
            self.server_peer = None
        self.host.abandon(handle)
        if stop_loop:
            self.host.stop(wait=True, timeout=1.0)

    def _on_disconnect(self, event: DisconnectEvent) -> None:
        if event.peer == self.server_peer:
            log.info("server closed the connection (code %d)", event.code)
            self.server_peer = None

    @property
    def connected(self) -> bool:
        peer = self.server_peer
        if peer is None:
            return False
        record = self.host.peer_info(peer)
        return record is not None and record.connected

    def _require_server(self) -> Optional[PeerHandle]:
        peer = self.server_peer
        if peer is None:
            self.host.report(NotConnected("Not connected to server"))
        return peer

    # ---- sending ----
    def send(self, channel: int, payload: Payload, reliable: bool = True) -> int:
        peer = self._require_server()
        if peer is None:
            return -1
        return self.host.send(peer, channel, payload, reliable)

    def send_raw(self, channel: int, data: Payload, flags: int = PacketFlag.RELIABLE) -> int:
        peer = self._require_server()
        if peer is None:
            return -1
        return self.host.send_raw(peer, channel, data, flags)

    def send_object(self, channel: int, obj: Any, codec: Union[str, Codec] = "json",
                    reliable: bool = True) -> int:
        peer = self._require_server()
        if peer is None:
            return -1
        return self.host.send_object(peer, channel, obj, codec, reliable)

    def flush(self) -> None:
        self.host.flush()

    # ---- disconnecting ----
    def disconnect(self, data: int = 0) -> bool:
        peer = self._require_server()
        if peer is None:
            return False
        self.server_peer = None
        return self.host.disconnect(peer, data)

    def disconnect_now(self, data: int = 0) -> bool:
        peer = self._require_server()
        if peer is None:
            return False
        self.server_peer = None
        return self.host.disconnect_now(peer, data)

    def disconnect_later(self, data: int = 0) -> bool:
        peer = self._require_server()
        if peer is None:
            return False
        self.server_peer = None
        return self.host.disconnect_later(peer, data)

    # ---- loop ----
    def service(self, timeout_ms: int = 0) -> Optional[Event]:
        return self.host.service(timeout_ms)

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        self.host.stop(wait, timeout)

    @property
    def running(self) -> bool:
        return self.host.running

    # ---- events ----
    def on(self, kind: Union[EventKind, str], callback: Subscriber) -> "ClientSession":
        self.host.on(kind, callback)
        return self

    def off(self, kind: Union[EventKind, str], callback: Subscriber) -> "ClientSession":
        self.host.off(kind, callback)
        return self

    def once(self, kind: Union[EventKind, str], callback: Subscriber,
             predicate: Optional[Callable[[Any], bool]] = None) -> Subscriber:
        return self.host.once(kind, callback, predicate)

    # ---- teardown ----
    def destroy(self) -> None:
        self.server_peer = None
        self.host.destroy()

    def deinitialize(self) -> None:
        self.host.deinitialize()

    def close(self) -> None:
        self.destroy()
        self.host.deinitialize()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
