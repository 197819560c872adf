"""
Client package for the UDP-over-TLS pipe.
Includes the handle registry, the public entry points and the host adapter.
"""

from udptlspipe.client.registry import HandleRegistry
from udptlspipe.client.api import PipeLibrary
from udptlspipe.client.adapter import PipeAdapter, PipeAdapterError

__all__ = ['HandleRegistry', 'PipeLibrary', 'PipeAdapter', 'PipeAdapterError']
