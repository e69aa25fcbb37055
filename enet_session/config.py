from __future__ import annotations
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional

DEFAULT_ADDRESS = "127.0.0.1"
DEFAULT_PORT = 17091
DEFAULT_MAX_PEERS = 32
DEFAULT_CHANNEL_LIMIT = 2

# spellings accepted by from_options() besides the field names themselves
_ALIASES: Dict[str, str] = {
    "ip": "address",
    "maxPeer": "max_peers",
    "maxPeers": "max_peers",
    "channelLimit": "channel_limit",
    "incomingBandwidth": "incoming_bandwidth",
    "outgoingBandwidth": "outgoing_bandwidth",
    "usingNewPacket": "new_packet_mode",
    "usingNewPacketForServer": "new_packet_mode",
    "newPacketMode": "new_packet_mode",
}


@dataclass(frozen=True)
class SessionConfig:
    """
    Host settings shared by server and client sessions.
    `max_peers` only matters for servers; a client host always holds one peer.
    Bandwidths are bytes/second, 0 means unlimited.
    """
    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    channel_limit: int = DEFAULT_CHANNEL_LIMIT
    max_peers: int = DEFAULT_MAX_PEERS
    incoming_bandwidth: int = 0
    outgoing_bandwidth: int = 0
    checksum: bool = True
    compression: bool = True
    new_packet_mode: bool = False

    def __post_init__(self):
        if not isinstance(self.address, str) or not self.address:
            raise ValueError("address must be a non-empty string")
        if not 0 <= int(self.port) <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")
        if self.channel_limit < 1:
            raise ValueError("channel_limit must be >= 1")
        if self.max_peers < 1:
            raise ValueError("max_peers must be >= 1")
        if self.incoming_bandwidth < 0 or self.outgoing_bandwidth < 0:
            raise ValueError("bandwidth caps must be >= 0")

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None, **kwargs: Any) -> "SessionConfig":
        """
        Build a config from a loose option mapping, e.g.
          SessionConfig.from_options({"ip": "0.0.0.0", "maxPeer": 64}, checksum=False)
        None values are treated as "use the default".
        """
        known = {f.name for f in fields(cls)}
        resolved: Dict[str, Any] = {}
        for key, value in {**(options or {}), **kwargs}.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown session option: {key}")
            if value is not None:
                resolved[name] = value
        return cls(**resolved)


def resolve_config(config: Optional[SessionConfig], options: Mapping[str, Any]) -> SessionConfig:
    """Explicit config, overridden by keyword options when both are given."""
    if config is None:
        return SessionConfig.from_options(options)
    if options:
        return SessionConfig.from_options({**asdict(config), **options})
    return config
