from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable, Dict, List, Optional, Union

from .codecs import Codec, Codecs
from .registry import PeerHandle

log = logging.getLogger(__name__)


class EventKind(StrEnum):
    CONNECT    = "connect"
    DISCONNECT = "disconnect"
    RECEIVE    = "receive"
    ERROR      = "error"
    READY      = "ready"


@dataclass(frozen=True)
class ConnectEvent:
    peer: PeerHandle
    kind = EventKind.CONNECT


@dataclass(frozen=True)
class DisconnectEvent:
    peer: PeerHandle
    code: int = 0
    kind = EventKind.DISCONNECT


@dataclass(frozen=True)
class ReceiveEvent:
    peer: PeerHandle
    channel: int
    payload: bytes
    kind = EventKind.RECEIVE

    def text(self) -> str:
        return self.payload.decode("utf-8")

    def decode(self, codec: Union[str, Codec] = "json") -> Any:
        codec_obj = Codecs.get(codec) if isinstance(codec, str) else codec
        return codec_obj.loads(self.payload)


@dataclass(frozen=True)
class UnknownEvent:
    raw_type: Any = None
    kind = EventKind.ERROR


Event = Union[ConnectEvent, DisconnectEvent, ReceiveEvent, UnknownEvent]
Subscriber = Callable[[Any], None]


class EventBus:
    """
    One subscriber list per EventKind. Callbacks run inline on the publishing
    thread; a callback that raises is logged and the rest still run.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subs: Dict[EventKind, List[Subscriber]] = {kind: [] for kind in EventKind}

    def on(self, kind: Union[EventKind, str], callback: Subscriber) -> "EventBus":
        kind = EventKind(kind)
        with self._lock:
            self._subs[kind].append(callback)
        return self

    def off(self, kind: Union[EventKind, str], callback: Subscriber) -> "EventBus":
        kind = EventKind(kind)
        with self._lock:
            try:
                self._subs[kind].remove(callback)
            except ValueError:
                pass
        return self

    def once(self, kind: Union[EventKind, str], callback: Subscriber,
             predicate: Optional[Callable[[Any], bool]] = None) -> Subscriber:
        """
        Subscribe for a single matching publication. Returns the installed
        wrapper so the caller can off() it before it fires.
        """
        kind = EventKind(kind)
        fired = threading.Lock()

        def _wrapped(payload: Any) -> None:
            if predicate is not None and not predicate(payload):
                return
            if not fired.acquire(blocking=False):
                return
            self.off(kind, _wrapped)
            callback(payload)

        self.on(kind, _wrapped)
        return _wrapped

    def subscribers(self, kind: Union[EventKind, str]) -> List[Subscriber]:
        with self._lock:
            return list(self._subs[EventKind(kind)])

    def publish(self, kind: Union[EventKind, str], payload: Any = None) -> int:
        """Deliver to every subscriber of `kind`; returns how many were called."""
        kind = EventKind(kind)
        with self._lock:
            callbacks = list(self._subs[kind])
        for cb in callbacks:
            try:
                cb(payload)
            except Exception:
                log.exception("%s subscriber %r raised", kind, cb)
        return len(callbacks)

    def clear(self) -> None:
        with self._lock:
            for subs in self._subs.values():
                subs.clear()
