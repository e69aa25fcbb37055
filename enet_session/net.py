from __future__ import annotations
import logging
import socket

log = logging.getLogger(__name__)


def probe_port(host: str, port: int) -> bool:
    """
    True if a UDP socket can be bound on (host, port) right now.
    The probe socket is closed before returning; never raises.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        sock = socket.socket(family, socket.SOCK_DGRAM)
    except OSError as e:
        log.debug("port probe could not open a socket: %s", e)
        return False
    try:
        sock.bind((host, port))
        return True
    except (OSError, OverflowError) as e:
        log.debug("port %s on %s unavailable: %s", port, host, e)
        return False
    finally:
        sock.close()
