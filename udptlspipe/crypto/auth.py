"""
Password proof exchanged right after the TLS handshake.
Uses PyCryptodome for key derivation and HMAC.

Wire format (client to server, 60 bytes):

    magic "UTP\\x01" (4) | nonce (16) | unix time, uint64 big-endian (8) | HMAC-SHA256 (32)

The MAC covers magic, nonce and timestamp. The server answers with a single
status byte, 0x00 for accepted.
"""
import struct
import time
from typing import Optional

from Crypto.Hash import HMAC, SHA256
from Crypto.Protocol.KDF import PBKDF2

from udptlspipe.crypto.rng import RNG, RandomGenerator


AUTH_MAGIC = b"UTP\x01"
NONCE_SIZE = 16
TIMESTAMP_SIZE = 8
MAC_SIZE = 32
AUTH_MESSAGE_SIZE = len(AUTH_MAGIC) + NONCE_SIZE + TIMESTAMP_SIZE + MAC_SIZE

KDF_SALT = b"udptlspipe-auth-v1"
KDF_ITERATIONS = 4096
KEY_LENGTH = 32

STATUS_ACCEPTED = 0x00
STATUS_REJECTED = 0x01

# Allowed clock difference between client and server
MAX_CLOCK_SKEW = 300


def derive_auth_key(password: str) -> bytes:
    """
    Derive the MAC key from the shared password

    Args:
        password: Shared password

    Returns:
        32-byte key
    """
    return PBKDF2(
        password.encode("utf-8"),
        KDF_SALT,
        dkLen=KEY_LENGTH,
        count=KDF_ITERATIONS,
        hmac_hash_module=SHA256,
    )


def _mac(key: bytes, body: bytes) -> bytes:
    return HMAC.new(key, body, digestmod=SHA256).digest()


def build_auth_message(password: str, timestamp: Optional[int] = None,
                       rng: RandomGenerator = RNG) -> bytes:
    """
    Build the client proof for a password

    Args:
        password: Shared password
        timestamp: Unix time to embed (None for now)
        rng: Source of the nonce

    Returns:
        The 60-byte authentication message
    """
    if timestamp is None:
        timestamp = int(time.time())

    body = AUTH_MAGIC + rng.generate_bytes(NONCE_SIZE) + struct.pack("!Q", timestamp)
    return body + _mac(derive_auth_key(password), body)


def verify_auth_message(message: bytes, password: str,
                        now: Optional[int] = None,
                        max_skew: int = MAX_CLOCK_SKEW) -> bool:
    """
    Check a client proof the way a compatible server does

    Args:
        message: The received authentication message
        password: Password configured on the server
        now: Current unix time (None for now)
        max_skew: Accepted clock difference in seconds

    Returns:
        True if the proof is valid
    """
    if len(message) != AUTH_MESSAGE_SIZE or not message.startswith(AUTH_MAGIC):
        return False

    body, tag = message[:-MAC_SIZE], message[-MAC_SIZE:]
    (timestamp,) = struct.unpack("!Q", body[-TIMESTAMP_SIZE:])

    if now is None:
        now = int(time.time())
    if abs(now - timestamp) > max_skew:
        return False

    verifier = HMAC.new(derive_auth_key(password), body, digestmod=SHA256)
    try:
        verifier.verify(tag)
    except ValueError:
        return False
    return True
