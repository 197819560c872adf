"""
Cryptography package for the pipe client.
Includes the password proof and the random source.
"""

from udptlspipe.crypto.auth import build_auth_message, verify_auth_message, derive_auth_key
from udptlspipe.crypto.rng import RNG, RNGSource, RandomGenerator

__all__ = [
    'build_auth_message',
    'verify_auth_message',
    'derive_auth_key',
    'RNG',
    'RNGSource',
    'RandomGenerator'
]
