from __future__ import annotations
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntFlag, StrEnum
from typing import Hashable, Optional, Tuple

log = logging.getLogger(__name__)

EnginePeer = Hashable           # engine-side peer key, never exposed to callers
BindAddress = Tuple[str, int]   # (address, port)


class PacketFlag(IntFlag):
    """ENet packet flags, same bit values as the C library."""
    NONE                = 0
    RELIABLE            = 1
    UNSEQUENCED         = 2
    NO_ALLOCATE         = 4
    UNRELIABLE_FRAGMENT = 8
    SENT                = 256


class EngineEventType(StrEnum):
    CONNECT    = "connect"
    DISCONNECT = "disconnect"
    RECEIVE    = "receive"
    UNKNOWN    = "unknown"


@dataclass(frozen=True)
class EngineEvent:
    type: EngineEventType
    peer: Optional[EnginePeer] = None
    channel: int = 0
    data: bytes = b""
    code: int = 0                   # disconnect data
    address: Optional[str] = None   # remote endpoint, when the engine knows it
    port: Optional[int] = None
    raw_type: object = None         # engine's own tag for UNKNOWN events


class TransportEngine(ABC):
    """
    Primitive host/peer contract of a reliable-UDP engine.
    One instance drives at most one host; sessions never share an instance.
    """

    @abstractmethod
    def init(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def deinit(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def create_host(self, bind: Optional[BindAddress], *, peer_count: int, channel_limit: int,
                    incoming_bandwidth: int = 0, outgoing_bandwidth: int = 0) -> bool:
        raise NotImplementedError

    @abstractmethod
    def destroy_host(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def host_service(self, timeout_ms: int) -> Optional[EngineEvent]:
        """Block up to timeout_ms for one event."""
        raise NotImplementedError

    @abstractmethod
    def flush(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def connect(self, address: str, port: int, channel_limit: int, data: int = 0) -> Optional[EnginePeer]:
        """Start a handshake; the returned peer is usable before it completes."""
        raise NotImplementedError

    @abstractmethod
    def peer_disconnect(self, peer: EnginePeer, data: int = 0) -> None:
        raise NotImplementedError

    @abstractmethod
    def peer_disconnect_now(self, peer: EnginePeer, data: int = 0) -> None:
        raise NotImplementedError

    @abstractmethod
    def peer_disconnect_later(self, peer: EnginePeer, data: int = 0) -> None:
        raise NotImplementedError

    @abstractmethod
    def peer_send(self, peer: EnginePeer, channel: int, data: bytes, flags: int) -> int:
        """Queue a packet. Returns >= 0 when accepted, < 0 when rejected."""
        raise NotImplementedError

    @abstractmethod
    def set_compression(self, enabled: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_checksum(self, enabled: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_new_packet_mode(self, enabled: bool, is_server: bool) -> None:
        raise NotImplementedError


class EngineInitState:
    """
    Process-wide reference count over engine init/deinit.

    The first acquire runs the real init, the last release runs the real
    teardown. Every session in the process goes through the module-level
    `engine_state` instance.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._count = 0

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def acquire(self, engine: TransportEngine) -> bool:
        with self._lock:
            if self._count == 0:
                if not engine.init():
                    return False
                log.debug("transport engine initialized")
            self._count += 1
            return True

    def release(self, engine: TransportEngine) -> None:
        with self._lock:
            if self._count == 0:
                return
            self._count -= 1
            if self._count == 0:
                engine.deinit()
                log.debug("transport engine deinitialized")


engine_state = EngineInitState()
