from __future__ import annotations


class SessionError(Exception):
    """Base class for everything the session layer reports."""


class InitFailed(SessionError):
    pass


class HostCreateFailed(SessionError):
    """The engine refused to create a host (bad address, exhausted resources)."""


class PortInUse(HostCreateFailed):
    def __init__(self, address: str, port: int):
        super().__init__(f"Port {port} is already in use on {address}")
        self.address = address
        self.port = port


class NotConnected(SessionError):
    pass


class InvalidPeerHandle(NotConnected):
    """Handle is unknown to the registry or refers to a released slot."""


class SendFailed(SessionError):
    pass


class ConnectTimeout(SessionError, TimeoutError):
    pass


class UnsupportedEncoding(SessionError, ValueError):
    pass


class BufferOverflow(SessionError):
    pass


class UnknownEventType(SessionError):
    pass
