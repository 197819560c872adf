"""
UDP-over-TLS pipe client.
Carries local UDP datagrams over a TLS connection whose handshake imitates
common browser and HTTP client fingerprints.
"""

__version__ = "1.3.1"

__all__ = ['__version__']
