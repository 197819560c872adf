"""
TLS package for the pipe client.
Includes ClientHello templates, fingerprint profiles and the TLS stream.
"""

from udptlspipe.tls.hello import ClientHelloSpec, parse_client_hello
from udptlspipe.tls.fingerprint import FingerprintCatalog, PROFILE_NAMES, DEFAULT_PROFILE
from udptlspipe.tls.context import build_ssl_context
from udptlspipe.tls.stream import TLSStream

__all__ = [
    'ClientHelloSpec',
    'parse_client_hello',
    'FingerprintCatalog',
    'PROFILE_NAMES',
    'DEFAULT_PROFILE',
    'build_ssl_context',
    'TLSStream'
]
