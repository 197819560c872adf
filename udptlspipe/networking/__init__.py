"""
Networking package for the pipe client.
Includes the tunnel session, datagram framing and proxy traversal.
"""

from udptlspipe.networking.framing import FrameReader, pack_frame, MAX_FRAME_SIZE
from udptlspipe.networking.proxy import ProxyConnector, parse_proxy_url, parse_destination
from udptlspipe.networking.tunnel import (
    TunnelConfig, TunnelOptions, TunnelSession, SessionState
)

__all__ = [
    'FrameReader',
    'pack_frame',
    'MAX_FRAME_SIZE',
    'ProxyConnector',
    'parse_proxy_url',
    'parse_destination',
    'TunnelConfig',
    'TunnelOptions',
    'TunnelSession',
    'SessionState'
]
