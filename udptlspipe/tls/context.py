"""
Builds ssl.SSLContext objects shaped after a ClientHello template.
OpenSSL exposes the TLS 1.2 cipher order, ALPN, version bounds and the
session ticket and post-handshake-auth extensions; those parts of the
template are applied, the rest stays descriptive.
"""
import logging
import ssl
from typing import Optional

from udptlspipe.tls.hello import (
    ClientHelloSpec, TLS1_2, TLS1_3,
    EXT_SESSION_TICKET, EXT_POST_HANDSHAKE_AUTH,
)

logger = logging.getLogger("udptlspipe.tls")

# IANA code point -> OpenSSL cipher name (TLS 1.2 and below)
OPENSSL_CIPHER_NAMES = {
    0xC02B: "ECDHE-ECDSA-AES128-GCM-SHA256",
    0xC02F: "ECDHE-RSA-AES128-GCM-SHA256",
    0xC02C: "ECDHE-ECDSA-AES256-GCM-SHA384",
    0xC030: "ECDHE-RSA-AES256-GCM-SHA384",
    0xCCA9: "ECDHE-ECDSA-CHACHA20-POLY1305",
    0xCCA8: "ECDHE-RSA-CHACHA20-POLY1305",
    0xC023: "ECDHE-ECDSA-AES128-SHA256",
    0xC024: "ECDHE-ECDSA-AES256-SHA384",
    0xC027: "ECDHE-RSA-AES128-SHA256",
    0xC028: "ECDHE-RSA-AES256-SHA384",
    0xC009: "ECDHE-ECDSA-AES128-SHA",
    0xC00A: "ECDHE-ECDSA-AES256-SHA",
    0xC013: "ECDHE-RSA-AES128-SHA",
    0xC014: "ECDHE-RSA-AES256-SHA",
    0xC008: "ECDHE-ECDSA-DES-CBC3-SHA",
    0xC012: "ECDHE-RSA-DES-CBC3-SHA",
    0x009C: "AES128-GCM-SHA256",
    0x009D: "AES256-GCM-SHA384",
    0x003C: "AES128-SHA256",
    0x003D: "AES256-SHA256",
    0x002F: "AES128-SHA",
    0x0035: "AES256-SHA",
    0x000A: "DES-CBC3-SHA",
}

_TLS_VERSIONS = {
    TLS1_2: ssl.TLSVersion.TLSv1_2,
    TLS1_3: ssl.TLSVersion.TLSv1_3,
}


def openssl_cipher_string(spec: ClientHelloSpec) -> str:
    """
    OpenSSL cipher list for the TLS 1.2 part of a template

    Args:
        spec: ClientHello template

    Returns:
        Colon separated cipher names in template order
    """
    names = [OPENSSL_CIPHER_NAMES[c] for c in spec.tls12_cipher_suites
             if c in OPENSSL_CIPHER_NAMES]
    return ":".join(names)


def build_ssl_context(spec: ClientHelloSpec, secure: bool,
                      ca_file: Optional[str] = None) -> ssl.SSLContext:
    """
    Create a client SSLContext for a template

    Args:
        spec: ClientHello template to imitate
        secure: Verify the server certificate and host name
        ca_file: Extra trust anchors for verification (None for system store)

    Returns:
        Configured client context
    """
    if secure:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=ca_file)
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    # Versions below TLS 1.2 are advertised by some templates but never negotiated
    versions = [_TLS_VERSIONS[v] for v in spec.supported_versions if v in _TLS_VERSIONS]
    if versions:
        context.minimum_version = min(versions)
        context.maximum_version = max(versions)

    cipher_string = openssl_cipher_string(spec)
    if cipher_string:
        try:
            context.set_ciphers(cipher_string)
        except ssl.SSLError as e:
            logger.warning(f"Cipher list of {spec.name} not supported by OpenSSL, using defaults: {e}")

    if spec.alpn:
        context.set_alpn_protocols(spec.alpn)

    if EXT_SESSION_TICKET not in spec.extensions:
        context.options |= ssl.OP_NO_TICKET
    context.options |= ssl.OP_NO_COMPRESSION

    if EXT_POST_HANDSHAKE_AUTH in spec.extensions:
        context.post_handshake_auth = True

    return context
