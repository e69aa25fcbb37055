from __future__ import annotations
import logging
import threading
from typing import Any, Callable, List, Optional, Union

from .codecs import Codec
from .config import SessionConfig, resolve_config
from .errors import PortInUse
from .events import Event, EventKind, Subscriber
from .factory import make_engine
from .host import HostSession, Payload
from .net import probe_port
from .poller import DEFAULT_MAX_POLL_INTERVAL_MS, DEFAULT_POLL_INTERVAL_MS
from .registry import PeerHandle, PeerRecord
from .transport import PacketFlag, TransportEngine

log = logging.getLogger(__name__)


class ServerSession:
    """
    Bound host accepting up to `max_peers` peers.

        server = ServerSession.create(address="0.0.0.0", port=17091, engine="enet")
        server.on("receive", lambda ev: server.send(ev.peer, ev.channel, ev.payload))
        server.listen()
    """

    def __init__(self, config: Optional[SessionConfig] = None, *,
                 engine: Union[str, TransportEngine] = "enet", **options: Any):
        self.config = resolve_config(config, options)
        self.host = HostSession(self.config, make_engine(engine), is_server=True)
        self.host.initialize()

    @classmethod
    def create(cls, config: Optional[SessionConfig] = None, *,
               engine: Union[str, TransportEngine] = "enet", **options: Any) -> "ServerSession":
        """Construct and bind. On failure nothing is left running and the error propagates."""
        server = cls(config, engine=engine, **options)
        try:
            server.create_server()
        except Exception:
            server.close()
            raise
        return server

    # ---- startup ----
    def create_server(self) -> bool:
        """Probe the port, then create the bound host. Raises PortInUse / HostCreateFailed."""
        if self.host.host_created:
            return True
        cfg = self.config
        if not probe_port(cfg.address, cfg.port):
            err = PortInUse(cfg.address, cfg.port)
            self.host.report(err)
            raise err
        self.host.create_host((cfg.address, cfg.port), peer_count=cfg.max_peers)
        return True

    def listen(self, poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
               max_poll_interval_ms: int = DEFAULT_MAX_POLL_INTERVAL_MS) -> None:
        """Bind if needed, then serve in this thread until stop()."""
        self.create_server()
        self.host.listen(poll_interval_ms, max_poll_interval_ms, on_start=self._announce_ready)

    def start(self, poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
              max_poll_interval_ms: int = DEFAULT_MAX_POLL_INTERVAL_MS) -> Optional[threading.Thread]:
        """Bind if needed, then serve on a background thread. No-op while already serving."""
        self.create_server()
        return self.host.start(poll_interval_ms, max_poll_interval_ms, on_start=self._announce_ready)

    def _announce_ready(self) -> None:
        log.info("server ready on %s:%s", self.config.address, self.config.port)
        self.host.bus.publish(EventKind.READY, self)

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        self.host.stop(wait, timeout)

    @property
    def running(self) -> bool:
        return self.host.running

    def service(self, timeout_ms: int = 0) -> Optional[Event]:
        return self.host.service(timeout_ms)

    # ---- events ----
    def on(self, kind: Union[EventKind, str], callback: Subscriber) -> "ServerSession":
        self.host.on(kind, callback)
        return self

    def off(self, kind: Union[EventKind, str], callback: Subscriber) -> "ServerSession":
        self.host.off(kind, callback)
        return self

    def once(self, kind: Union[EventKind, str], callback: Subscriber,
             predicate: Optional[Callable[[Any], bool]] = None) -> Subscriber:
        return self.host.once(kind, callback, predicate)

    # ---- peers ----
    def peers(self) -> List[PeerHandle]:
        """Every registered handle, pending handshakes included."""
        return self.host.peers.handles()

    def connected_peers(self) -> List[PeerHandle]:
        return self.host.connected_peers()

    def peer_info(self, peer: PeerHandle) -> Optional[PeerRecord]:
        return self.host.peer_info(peer)

    def send(self, peer: PeerHandle, channel: int, payload: Payload, reliable: bool = True) -> int:
        return self.host.send(peer, channel, payload, reliable)

    def send_raw(self, peer: PeerHandle, channel: int, data: Payload,
                 flags: int = PacketFlag.RELIABLE) -> int:
        return self.host.send_raw(peer, channel, data, flags)

    def send_object(self, peer: PeerHandle, channel: int, obj: Any,
                    codec: Union[str, Codec] = "json", reliable: bool = True) -> int:
        return self.host.send_object(peer, channel, obj, codec, reliable)

    def broadcast(self, channel: int, payload: Payload, reliable: bool = True) -> List[int]:
        """
        One send per connected peer, in registration order. A failed send is
        reported and the remaining peers are still tried. Returns the statuses.
        """
        return [self.host.send(peer, channel, payload, reliable) for peer in self.host.connected_peers()]

    def disconnect(self, peer: PeerHandle, data: int = 0) -> bool:
        return self.host.disconnect(peer, data)

    def disconnect_now(self, peer: PeerHandle, data: int = 0) -> bool:
        return self.host.disconnect_now(peer, data)

    def disconnect_later(self, peer: PeerHandle, data: int = 0) -> bool:
        return self.host.disconnect_later(peer, data)

    def flush(self) -> None:
        self.host.flush()

    # ---- teardown ----
    def destroy(self) -> None:
        self.host.destroy()

    def deinitialize(self) -> None:
        self.host.deinitialize()

    def close(self) -> None:
        self.host.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
