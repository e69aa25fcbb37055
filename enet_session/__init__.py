"""
Public API:
- ServerSession, ClientSession: bound multi-peer host / single-peer client
- HostSession: shared core (engine host, peer registry, event bus, poll loop)
- AdaptivePoller: service() loop with exponential idle backoff
- EventBus, EventKind and the Connect/Disconnect/Receive/Unknown events
- PeerHandle, PeerRecord, PeerRegistry: generation-checked peer identities
- PacketBuilder: fixed-capacity binary writer for raw payloads
- TransportEngine, PacketFlag, engine_state: engine contract and flags
- make_engine: "enet" (pyenet) | "loopback" (in-process) | engine instance
"""
import logging

# Sessions
from .server import ServerSession
from .client import ClientSession
from .host import HostSession
from .poller import AdaptivePoller

# Events & peers
from .events import (
    ConnectEvent,
    DisconnectEvent,
    EventBus,
    EventKind,
    ReceiveEvent,
    UnknownEvent,
)
from .registry import PeerHandle, PeerRecord, PeerRegistry

# Payloads
from .builder import PacketBuilder
from .codecs import Codecs

# Engine contract
from .config import SessionConfig
from .factory import make_engine
from .net import probe_port
from .transport import EngineInitState, PacketFlag, TransportEngine, engine_state

from .errors import (
    BufferOverflow,
    ConnectTimeout,
    HostCreateFailed,
    InitFailed,
    InvalidPeerHandle,
    NotConnected,
    PortInUse,
    SendFailed,
    SessionError,
    UnknownEventType,
    UnsupportedEncoding,
)

PACKET_FLAG_RELIABLE = PacketFlag.RELIABLE
PACKET_FLAG_UNSEQUENCED = PacketFlag.UNSEQUENCED
PACKET_FLAG_NO_ALLOCATE = PacketFlag.NO_ALLOCATE
PACKET_FLAG_UNRELIABLE_FRAGMENT = PacketFlag.UNRELIABLE_FRAGMENT
PACKET_FLAG_SENT = PacketFlag.SENT

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ServerSession",
    "ClientSession",
    "HostSession",
    "AdaptivePoller",
    "EventBus",
    "EventKind",
    "ConnectEvent",
    "DisconnectEvent",
    "ReceiveEvent",
    "UnknownEvent",
    "PeerHandle",
    "PeerRecord",
    "PeerRegistry",
    "PacketBuilder",
    "Codecs",
    "SessionConfig",
    "make_engine",
    "probe_port",
    "TransportEngine",
    "EngineInitState",
    "engine_state",
    "PacketFlag",
    "PACKET_FLAG_RELIABLE",
    "PACKET_FLAG_UNSEQUENCED",
    "PACKET_FLAG_NO_ALLOCATE",
    "PACKET_FLAG_UNRELIABLE_FRAGMENT",
    "PACKET_FLAG_SENT",
    "SessionError",
    "InitFailed",
    "HostCreateFailed",
    "PortInUse",
    "NotConnected",
    "InvalidPeerHandle",
    "SendFailed",
    "ConnectTimeout",
    "UnsupportedEncoding",
    "BufferOverflow",
    "UnknownEventType",
]

__version__ = "0.1.0"
