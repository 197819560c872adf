"""
Test helpers for the pipe client.
Loopback TLS echo server, proxies and a test CA with a certificate for pipe.test.
"""

from udptlspipe.testing.servers import (
    CA_FILE, CERT_FILE, CERT_HOSTNAME, KEY_FILE,
    HTTPConnectProxy, SOCKS5Proxy, TLSEchoServer, unused_tcp_port,
)

__all__ = [
    'CA_FILE',
    'CERT_FILE',
    'CERT_HOSTNAME',
    'KEY_FILE',
    'HTTPConnectProxy',
    'SOCKS5Proxy',
    'TLSEchoServer',
    'unused_tcp_port'
]
