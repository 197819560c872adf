"""
Error taxonomy for the UDP-over-TLS pipe client.
Each failure class carries the negative code returned by the public start call.
"""


class PipeError(Exception):
    """Base class for all pipe failures"""
    code = -6
    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind} error: {self.message}"


class ConfigurationError(PipeError):
    """Bad destination, unknown fingerprint profile, malformed proxy URL"""
    code = -1
    kind = "configuration"


class ConnectionEstablishmentError(PipeError):
    """DNS, TCP or proxy failure before TLS begins"""
    code = -2
    kind = "connection"


class ProxyError(ConnectionEstablishmentError):
    """The proxy was reachable but refused or broke the CONNECT/SOCKS exchange"""
    kind = "proxy"


class HandshakeError(PipeError):
    """TLS negotiation failure or certificate rejection"""
    code = -3
    kind = "tls"


class AuthenticationError(PipeError):
    """Password proof rejected, or no acknowledgment received"""
    code = -4
    kind = "authentication"


class ListenError(PipeError):
    """The local UDP socket could not be bound"""
    code = -5
    kind = "listen"


class FramingError(PipeError):
    """Malformed length prefix or EOF inside a frame"""
    kind = "framing"

