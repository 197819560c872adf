"""
TLS ClientHello templates.
A ClientHelloSpec describes the byte-level shape of a ClientHello: cipher
suites, extension order, groups, signature algorithms and ALPN. It can be
serialized to a handshake record, summarized as a JA3 string, and parsed back
from a record captured on the wire.
"""
import hashlib
import struct
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from udptlspipe.crypto.rng import RNG, RandomGenerator


# Protocol versions
TLS1_0 = 0x0301
TLS1_1 = 0x0302
TLS1_2 = 0x0303
TLS1_3 = 0x0304

# TLS 1.3 cipher suites
TLS_AES_128_GCM_SHA256 = 0x1301
TLS_AES_256_GCM_SHA384 = 0x1302
TLS_CHACHA20_POLY1305_SHA256 = 0x1303
TLS13_CIPHER_SUITES = (TLS_AES_128_GCM_SHA256, TLS_AES_256_GCM_SHA384,
                       TLS_CHACHA20_POLY1305_SHA256)

# ECDHE AES-GCM suites, at least one must be offered for TLS 1.2 fallback
ECDHE_GCM_SUITES = (0xC02B, 0xC02F, 0xC02C, 0xC030)

# Extension types
EXT_SERVER_NAME = 0x0000
EXT_STATUS_REQUEST = 0x0005
EXT_SUPPORTED_GROUPS = 0x000A
EXT_EC_POINT_FORMATS = 0x000B
EXT_SIGNATURE_ALGORITHMS = 0x000D
EXT_ALPN = 0x0010
EXT_SCT = 0x0012
EXT_PADDING = 0x0015
EXT_EXTENDED_MASTER_SECRET = 0x0017
EXT_COMPRESS_CERTIFICATE = 0x001B
EXT_RECORD_SIZE_LIMIT = 0x001C
EXT_DELEGATED_CREDENTIALS = 0x0022
EXT_SESSION_TICKET = 0x0023
EXT_PRE_SHARED_KEY = 0x0029
EXT_SUPPORTED_VERSIONS = 0x002B
EXT_PSK_KEY_EXCHANGE_MODES = 0x002D
EXT_POST_HANDSHAKE_AUTH = 0x0031
EXT_KEY_SHARE = 0x0033
EXT_APPLICATION_SETTINGS = 0x4469
EXT_RENEGOTIATION_INFO = 0xFF01

# Named groups
GROUP_SECP256R1 = 0x0017
GROUP_SECP384R1 = 0x0018
GROUP_SECP521R1 = 0x0019
GROUP_X25519 = 0x001D
GROUP_FFDHE2048 = 0x0100
GROUP_FFDHE3072 = 0x0101

KEY_SHARE_SIZES = {
    GROUP_X25519: 32,
    GROUP_SECP256R1: 65,
    GROUP_SECP384R1: 97,
    GROUP_SECP521R1: 133,
    GROUP_FFDHE2048: 256,
    GROUP_FFDHE3072: 384,
}

CERT_COMPRESSION_BROTLI = 0x0002

GREASE_VALUES = tuple(0x0A0A + 0x1010 * i for i in range(16))

CONTENT_TYPE_HANDSHAKE = 0x16
HANDSHAKE_CLIENT_HELLO = 0x01


def is_grease(value: int) -> bool:
    """Check for a GREASE code point (RFC 8701)"""
    return (value & 0x0F0F) == 0x0A0A and (value >> 8) == (value & 0xFF)


def _u8_list(payload: bytes) -> bytes:
    return struct.pack("!B", len(payload)) + payload


def _u16_list(payload: bytes) -> bytes:
    return struct.pack("!H", len(payload)) + payload


def _pack_u16s(values: List[int]) -> bytes:
    return b"".join(struct.pack("!H", v) for v in values)


@dataclass
class ClientHelloSpec:
    """
    Template of a ClientHello message.

    Lists keep wire order. GREASE code points are not stored in the lists;
    the grease flag inserts fresh ones at the positions browsers use.
    """
    name: str
    cipher_suites: List[int]
    extensions: List[int]
    supported_groups: List[int]
    signature_algorithms: List[int]
    alpn: List[str] = field(default_factory=lambda: ["h2", "http/1.1"])
    supported_versions: List[int] = field(default_factory=lambda: [TLS1_3, TLS1_2])
    key_share_groups: List[int] = field(default_factory=lambda: [GROUP_X25519])
    ec_point_formats: List[int] = field(default_factory=lambda: [0])
    cert_compression: List[int] = field(default_factory=lambda: [CERT_COMPRESSION_BROTLI])
    record_size_limit: int = 0x4001
    grease: bool = False

    def copy(self, **changes) -> 'ClientHelloSpec':
        """
        Deep copy with optional field overrides

        Returns:
            New ClientHelloSpec
        """
        copied = replace(
            self,
            cipher_suites=list(self.cipher_suites),
            extensions=list(self.extensions),
            supported_groups=list(self.supported_groups),
            signature_algorithms=list(self.signature_algorithms),
            alpn=list(self.alpn),
            supported_versions=list(self.supported_versions),
            key_share_groups=list(self.key_share_groups),
            ec_point_formats=list(self.ec_point_formats),
            cert_compression=list(self.cert_compression),
        )
        return replace(copied, **changes) if changes else copied

    @property
    def tls12_cipher_suites(self) -> List[int]:
        return [c for c in self.cipher_suites if c not in TLS13_CIPHER_SUITES]

    def validate(self) -> None:
        """
        Check that a real TLS stack could have produced this template

        Raises:
            ValueError: If the combination is inconsistent
        """
        problems = []
        exts = self.extensions

        if len(set(exts)) != len(exts):
            problems.append("duplicate extension")
        if len(set(self.cipher_suites)) != len(self.cipher_suites):
            problems.append("duplicate cipher suite")
        if any(is_grease(v) for v in self.cipher_suites + exts + self.supported_groups):
            problems.append("GREASE values must come from the grease flag")

        for required in (EXT_SERVER_NAME, EXT_SUPPORTED_GROUPS, EXT_SIGNATURE_ALGORITHMS,
                         EXT_SUPPORTED_VERSIONS, EXT_KEY_SHARE):
            if required not in exts:
                problems.append(f"missing extension 0x{required:04x}")

        if EXT_PRE_SHARED_KEY in exts:
            problems.append("pre_shared_key requires a resumable session")
        if EXT_PADDING in exts and exts[-1] != EXT_PADDING:
            problems.append("padding must be the last extension")

        if TLS1_3 in self.supported_versions:
            if not any(c in TLS13_CIPHER_SUITES for c in self.cipher_suites):
                problems.append("TLS 1.3 offered without TLS 1.3 cipher suites")
            if EXT_PSK_KEY_EXCHANGE_MODES not in exts:
                problems.append("TLS 1.3 offered without psk_key_exchange_modes")
        if TLS1_2 in self.supported_versions:
            if not any(c in ECDHE_GCM_SUITES for c in self.cipher_suites):
                problems.append("TLS 1.2 offered without an ECDHE AES-GCM suite")
            if EXT_EC_POINT_FORMATS not in exts:
                problems.append("ECDHE offered without ec_point_formats")

        if not self.key_share_groups:
            problems.append("no key share")
        for group in self.key_share_groups:
            if group not in self.supported_groups:
                problems.append(f"key share for unsupported group 0x{group:04x}")
            if group not in KEY_SHARE_SIZES:
                problems.append(f"unknown key share size for group 0x{group:04x}")

        if self.alpn and EXT_ALPN not in exts:
            problems.append("ALPN protocols without the ALPN extension")
        if EXT_ALPN in exts and not self.alpn:
            problems.append("ALPN extension without protocols")
        if EXT_APPLICATION_SETTINGS in exts and "h2" not in self.alpn:
            problems.append("application_settings requires h2")

        if problems:
            raise ValueError(f"Invalid ClientHello template {self.name}: " + "; ".join(problems))

    def ja3_string(self) -> str:
        """
        JA3 summary of the template (GREASE excluded)

        Returns:
            "version,ciphers,extensions,groups,point_formats"
        """
        return ",".join([
            str(TLS1_2),
            "-".join(str(c) for c in self.cipher_suites),
            "-".join(str(e) for e in self.extensions),
            "-".join(str(g) for g in self.supported_groups),
            "-".join(str(p) for p in self.ec_point_formats),
        ])

    def ja3_hash(self) -> str:
        return hashlib.md5(self.ja3_string().encode("ascii")).hexdigest()

    def _extension_body(self, ext_type: int, server_name: str, grease: Dict[str, int],
                        rng: RandomGenerator) -> bytes:
        """Encode the body of one extension"""
        if ext_type == EXT_SERVER_NAME:
            host = server_name.encode("idna") if server_name else b""
            if not host:
                return b""
            return _u16_list(b"\x00" + _u16_list(host))
        if ext_type == EXT_STATUS_REQUEST:
            return b"\x01\x00\x00\x00\x00"
        if ext_type == EXT_SUPPORTED_GROUPS:
            groups = ([grease["group"]] if self.grease else []) + self.supported_groups
            return _u16_list(_pack_u16s(groups))
        if ext_type == EXT_EC_POINT_FORMATS:
            return _u8_list(bytes(self.ec_point_formats))
        if ext_type == EXT_SIGNATURE_ALGORITHMS:
            return _u16_list(_pack_u16s(self.signature_algorithms))
        if ext_type == EXT_ALPN:
            protocols = b"".join(_u8_list(p.encode("ascii")) for p in self.alpn)
            return _u16_list(protocols)
        if ext_type == EXT_RENEGOTIATION_INFO:
            return b"\x00"
        if ext_type == EXT_COMPRESS_CERTIFICATE:
            return _u8_list(_pack_u16s(self.cert_compression))
        if ext_type == EXT_RECORD_SIZE_LIMIT:
            return struct.pack("!H", self.record_size_limit)
        if ext_type == EXT_DELEGATED_CREDENTIALS:
            return _u16_list(_pack_u16s(self.signature_algorithms[:4]))
        if ext_type == EXT_SUPPORTED_VERSIONS:
            versions = ([grease["version"]] if self.grease else []) + self.supported_versions
            return _u8_list(_pack_u16s(versions))
        if ext_type == EXT_PSK_KEY_EXCHANGE_MODES:
            return _u8_list(b"\x01")  # psk_dhe_ke
        if ext_type == EXT_KEY_SHARE:
            entries = b""
            if self.grease:
                entries += struct.pack("!H", grease["group"]) + _u16_list(b"\x00")
            for group in self.key_share_groups:
                entries += struct.pack("!H", group) + _u16_list(
                    rng.generate_bytes(KEY_SHARE_SIZES[group]))
            return _u16_list(entries)
        if ext_type == EXT_APPLICATION_SETTINGS:
            return _u16_list(_u8_list(b"h2"))
        # extended_master_secret, session_ticket, sct, post_handshake_auth
        return b""

    def to_record(self, server_name: str = "", client_random: Optional[bytes] = None,
                  session_id: Optional[bytes] = None,
                  rng: RandomGenerator = RNG) -> bytes:
        """
        Serialize the template as a TLS handshake record

        Args:
            server_name: Host name for the SNI extension
            client_random: 32-byte random (None to generate)
            session_id: Legacy session id (None for 32 random bytes)
            rng: Source for randoms, GREASE values and key shares

        Returns:
            Record bytes starting with the 5-byte record header
        """
        if client_random is None:
            client_random = rng.generate_bytes(32)
        if session_id is None:
            session_id = rng.generate_bytes(32)

        grease = {
            "cipher": rng.choice(GREASE_VALUES),
            "ext_first": rng.choice(GREASE_VALUES),
            "group": rng.choice(GREASE_VALUES),
            "version": rng.choice(GREASE_VALUES),
        }
        grease["ext_last"] = rng.choice([g for g in GREASE_VALUES if g != grease["ext_first"]])

        suites = ([grease["cipher"]] if self.grease else []) + self.cipher_suites

        ext_order = [e for e in self.extensions if e != EXT_PADDING]
        encoded: List[Tuple[int, bytes]] = []
        if self.grease:
            encoded.append((grease["ext_first"], b""))
        for ext_type in ext_order:
            if ext_type == EXT_SERVER_NAME and not server_name:
                continue
            encoded.append((ext_type, self._extension_body(ext_type, server_name, grease, rng)))
        if self.grease:
            encoded.append((grease["ext_last"], b"\x00"))

        def assemble(ext_list: List[Tuple[int, bytes]]) -> bytes:
            ext_bytes = b"".join(struct.pack("!HH", t, len(b)) + b for t, b in ext_list)
            return (
                struct.pack("!H", TLS1_2) + client_random +
                _u8_list(session_id) +
                _u16_list(_pack_u16s(suites)) +
                b"\x01\x00" +
                _u16_list(ext_bytes)
            )

        body = assemble(encoded)
        if EXT_PADDING in self.extensions:
            # BoringSSL pads hellos of 256..511 bytes up to 512
            unpadded = len(body) + 4
            if 0xFF < unpadded < 0x200:
                pad_len = 0x200 - unpadded
                pad_len = pad_len - 4 if pad_len >= 5 else 1
                body = assemble(encoded + [(EXT_PADDING, b"\x00" * pad_len)])

        handshake = struct.pack("!B", HANDSHAKE_CLIENT_HELLO) + struct.pack("!I", len(body))[1:] + body
        return struct.pack("!BHH", CONTENT_TYPE_HANDSHAKE, TLS1_0, len(handshake)) + handshake


@dataclass
class ParsedClientHello:
    """A ClientHello read back from the wire"""
    spec: ClientHelloSpec
    server_name: Optional[str]
    client_random: bytes
    session_id: bytes


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, size: int) -> bytes:
        if self.pos + size > len(self.data):
            raise ValueError("Truncated ClientHello")
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return struct.unpack("!H", self.take(2))[0]

    def u24(self) -> int:
        return int.from_bytes(self.take(3), "big")

    def vector8(self) -> bytes:
        return self.take(self.u8())

    def vector16(self) -> bytes:
        return self.take(self.u16())

    def done(self) -> bool:
        return self.pos >= len(self.data)


def _u16_values(data: bytes) -> List[int]:
    return [v for (v,) in struct.iter_unpack("!H", data[:len(data) - len(data) % 2])]


def parse_client_hello(record: bytes) -> ParsedClientHello:
    """
    Parse the first ClientHello record of a TLS connection

    Args:
        record: Bytes starting at the record header

    Returns:
        ParsedClientHello with GREASE values stripped and the grease flag set

    Raises:
        ValueError: If the bytes are not a complete ClientHello
    """
    reader = _Reader(record)
    if reader.u8() != CONTENT_TYPE_HANDSHAKE:
        raise ValueError("Not a handshake record")
    reader.u16()
    fragment = _Reader(reader.vector16())

    if fragment.u8() != HANDSHAKE_CLIENT_HELLO:
        raise ValueError("Not a ClientHello")
    hello = _Reader(fragment.take(fragment.u24()))

    hello.u16()
    client_random = hello.take(32)
    session_id = hello.vector8()
    raw_suites = _u16_values(hello.vector16())
    hello.vector8()  # compression methods

    grease_seen = any(is_grease(c) for c in raw_suites)
    server_name = None
    extensions: List[int] = []
    fields: Dict[str, object] = {}

    if not hello.done():
        ext_reader = _Reader(hello.vector16())
        while not ext_reader.done():
            ext_type = ext_reader.u16()
            body = ext_reader.vector16()
            if is_grease(ext_type):
                grease_seen = True
                continue
            extensions.append(ext_type)

            if ext_type == EXT_SERVER_NAME and body:
                names = _Reader(_Reader(body).vector16())
                if names.u8() == 0:
                    server_name = names.vector16().decode("idna")
            elif ext_type == EXT_SUPPORTED_GROUPS:
                fields["supported_groups"] = [g for g in _u16_values(_Reader(body).vector16())
                                              if not is_grease(g)]
            elif ext_type == EXT_SIGNATURE_ALGORITHMS:
                fields["signature_algorithms"] = _u16_values(_Reader(body).vector16())
            elif ext_type == EXT_EC_POINT_FORMATS:
                fields["ec_point_formats"] = list(_Reader(body).vector8())
            elif ext_type == EXT_ALPN:
                protocols = _Reader(_Reader(body).vector16())
                alpn = []
                while not protocols.done():
                    alpn.append(protocols.vector8().decode("ascii"))
                fields["alpn"] = alpn
            elif ext_type == EXT_SUPPORTED_VERSIONS:
                fields["supported_versions"] = [v for v in _u16_values(_Reader(body).vector8())
                                                if not is_grease(v)]
            elif ext_type == EXT_KEY_SHARE:
                shares = _Reader(_Reader(body).vector16())
                groups = []
                while not shares.done():
                    group = shares.u16()
                    shares.vector16()
                    if not is_grease(group):
                        groups.append(group)
                fields["key_share_groups"] = groups
            elif ext_type == EXT_COMPRESS_CERTIFICATE:
                fields["cert_compression"] = _u16_values(_Reader(body).vector8())
            elif ext_type == EXT_RECORD_SIZE_LIMIT and len(body) == 2:
                fields["record_size_limit"] = struct.unpack("!H", body)[0]

    spec = ClientHelloSpec(
        name="parsed",
        cipher_suites=[c for c in raw_suites if not is_grease(c)],
        extensions=extensions,
        supported_groups=fields.pop("supported_groups", []),
        signature_algorithms=fields.pop("signature_algorithms", []),
        alpn=fields.pop("alpn", []),
        supported_versions=fields.pop("supported_versions", [TLS1_2]),
        key_share_groups=fields.pop("key_share_groups", []),
        ec_point_formats=fields.pop("ec_point_formats", []),
        cert_compression=fields.pop("cert_compression", []),
        grease=grease_seen,
        **fields,
    )
    return ParsedClientHello(spec=spec, server_name=server_name,
                             client_random=client_random, session_id=session_id)
