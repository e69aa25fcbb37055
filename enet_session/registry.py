from __future__ import annotations
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import InvalidPeerHandle
from .transport import EnginePeer


@dataclass(frozen=True, order=False)
class PeerHandle:
    """
    Opaque peer identity: an arena slot plus the generation it was issued in.
    Compare with ==, never order or do arithmetic on it.
    """
    slot: int
    generation: int

    def __repr__(self) -> str:
        return f"PeerHandle({self.slot}:{self.generation})"


@dataclass
class PeerRecord:
    connected: bool = False
    address: Optional[str] = None
    port: Optional[int] = None


@dataclass
class _Slot:
    generation: int = 0
    peer: Optional[EnginePeer] = None
    record: Optional[PeerRecord] = None


@dataclass
class PeerRegistry:
    """
    Arena of peer slots. Releasing a slot bumps its generation so handles
    issued before the release stop resolving.
    """
    _slots: List[_Slot] = field(default_factory=list)
    _free: List[int] = field(default_factory=list)
    _by_peer: Dict[EnginePeer, PeerHandle] = field(default_factory=dict)
    _order: Dict[PeerHandle, None] = field(default_factory=dict)   # registration order
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def register(self, peer: EnginePeer, *, connected: bool,
                 address: Optional[str] = None, port: Optional[int] = None) -> PeerHandle:
        """Issue a handle for `peer`, or update the record if it is already known."""
        with self._lock:
            handle = self._by_peer.get(peer)
            if handle is not None:
                rec = self._slots[handle.slot].record
                rec.connected = rec.connected or connected
                if address is not None:
                    rec.address = address
                if port is not None:
                    rec.port = port
                return handle

            if self._free:
                idx = self._free.pop()
            else:
                idx = len(self._slots)
                self._slots.append(_Slot())
            slot = self._slots[idx]
            slot.peer = peer
            slot.record = PeerRecord(connected=connected, address=address, port=port)
            handle = PeerHandle(idx, slot.generation)
            self._by_peer[peer] = handle
            self._order[handle] = None
            return handle

    def handle_for(self, peer: EnginePeer) -> Optional[PeerHandle]:
        with self._lock:
            return self._by_peer.get(peer)

    def resolve(self, handle: PeerHandle) -> EnginePeer:
        """Engine peer behind a live handle; InvalidPeerHandle otherwise."""
        with self._lock:
            slot = self._live_slot(handle)
            if slot is None:
                raise InvalidPeerHandle(f"{handle!r} is not registered")
            return slot.peer

    def get(self, handle: PeerHandle) -> Optional[PeerRecord]:
        with self._lock:
            slot = self._live_slot(handle)
            return slot.record if slot else None

    def remove(self, handle: PeerHandle) -> Optional[EnginePeer]:
        """Release the slot. Returns the engine peer, or None for a stale handle."""
        with self._lock:
            slot = self._live_slot(handle)
            if slot is None:
                return None
            peer = slot.peer
            self._by_peer.pop(peer, None)
            self._order.pop(handle, None)
            slot.peer = None
            slot.record = None
            slot.generation += 1
            self._free.append(handle.slot)
            return peer

    def connected(self) -> List[PeerHandle]:
        """Snapshot of connected handles in registration order."""
        with self._lock:
            return [h for h in self._order if self._slots[h.slot].record.connected]

    def items(self) -> List[Tuple[PeerHandle, PeerRecord]]:
        with self._lock:
            return [(h, self._slots[h.slot].record) for h in self._order]

    def clear(self) -> None:
        with self._lock:
            for handle in list(self._order):
                self.remove(handle)

    def __contains__(self, handle: object) -> bool:
        if not isinstance(handle, PeerHandle):
            return False
        with self._lock:
            return self._live_slot(handle) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)

    def __iter__(self) -> Iterator[PeerHandle]:
        return iter(self.handles())

    def handles(self) -> List[PeerHandle]:
        with self._lock:
            return list(self._order)

    def _live_slot(self, handle: PeerHandle) -> Optional[_Slot]:
        if not isinstance(handle, PeerHandle) or not 0 <= handle.slot < len(self._slots):
            return None
        slot = self._slots[handle.slot]
        if slot.generation != handle.generation or slot.record is None:
            return None
        return slot
