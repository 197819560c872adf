"""
Fingerprint catalog for the pipe client.
Holds the named ClientHello profiles that mimic common clients and the
process-wide cache of the "randomized" profile.
"""
import logging
import threading
from typing import Dict, List, Optional

from udptlspipe.crypto.rng import RNG, RandomGenerator
from udptlspipe.errors import ConfigurationError
from udptlspipe.tls.hello import (
    ClientHelloSpec, ECDHE_GCM_SUITES, TLS13_CIPHER_SUITES,
    TLS1_0, TLS1_1, TLS1_2, TLS1_3,
    EXT_SERVER_NAME, EXT_STATUS_REQUEST, EXT_SUPPORTED_GROUPS, EXT_EC_POINT_FORMATS,
    EXT_SIGNATURE_ALGORITHMS, EXT_ALPN, EXT_SCT, EXT_PADDING, EXT_EXTENDED_MASTER_SECRET,
    EXT_COMPRESS_CERTIFICATE, EXT_RECORD_SIZE_LIMIT, EXT_DELEGATED_CREDENTIALS,
    EXT_SESSION_TICKET, EXT_SUPPORTED_VERSIONS, EXT_PSK_KEY_EXCHANGE_MODES, EXT_KEY_SHARE,
    EXT_APPLICATION_SETTINGS, EXT_RENEGOTIATION_INFO,
    GROUP_X25519, GROUP_SECP256R1, GROUP_SECP384R1, GROUP_SECP521R1,
    GROUP_FFDHE2048, GROUP_FFDHE3072,
)

logger = logging.getLogger("udptlspipe.fingerprint")

PROFILE_CHROME = "chrome"
PROFILE_FIREFOX = "firefox"
PROFILE_SAFARI = "safari"
PROFILE_EDGE = "edge"
PROFILE_OKHTTP = "okhttp"
PROFILE_IOS = "ios"
PROFILE_RANDOMIZED = "randomized"

DEFAULT_PROFILE = PROFILE_OKHTTP

ALPN_H2_HTTP11 = ["h2", "http/1.1"]
ALPN_HTTP11_ONLY = ["http/1.1"]

# Chrome 120
CHROME_CIPHER_SUITES = [
    0x1301, 0x1302, 0x1303,
    0xC02B, 0xC02F, 0xC02C, 0xC030,
    0xCCA9, 0xCCA8,
    0xC013, 0xC014,
    0x009C, 0x009D, 0x002F, 0x0035,
]
CHROME_EXTENSIONS = [
    EXT_SERVER_NAME, EXT_EXTENDED_MASTER_SECRET, EXT_RENEGOTIATION_INFO,
    EXT_SUPPORTED_GROUPS, EXT_EC_POINT_FORMATS, EXT_SESSION_TICKET, EXT_ALPN,
    EXT_STATUS_REQUEST, EXT_SIGNATURE_ALGORITHMS, EXT_SCT, EXT_KEY_SHARE,
    EXT_PSK_KEY_EXCHANGE_MODES, EXT_SUPPORTED_VERSIONS, EXT_COMPRESS_CERTIFICATE,
    EXT_APPLICATION_SETTINGS, EXT_PADDING,
]
CHROME_GROUPS = [GROUP_X25519, GROUP_SECP256R1, GROUP_SECP384R1]
CHROME_SIG_ALGS = [0x0403, 0x0804, 0x0401, 0x0503, 0x0805, 0x0501, 0x0806, 0x0601]

# Firefox 121
FIREFOX_CIPHER_SUITES = [
    0x1301, 0x1303, 0x1302,
    0xC02B, 0xC02F, 0xCCA9, 0xCCA8, 0xC02C, 0xC030,
    0xC00A, 0xC009, 0xC013, 0xC014,
    0x009C, 0x009D, 0x002F, 0x0035,
]
FIREFOX_EXTENSIONS = [
    EXT_SERVER_NAME, EXT_EXTENDED_MASTER_SECRET, EXT_RENEGOTIATION_INFO,
    EXT_SUPPORTED_GROUPS, EXT_EC_POINT_FORMATS, EXT_SESSION_TICKET, EXT_ALPN,
    EXT_STATUS_REQUEST, EXT_DELEGATED_CREDENTIALS, EXT_KEY_SHARE,
    EXT_SUPPORTED_VERSIONS, EXT_SIGNATURE_ALGORITHMS, EXT_PSK_KEY_EXCHANGE_MODES,
    EXT_RECORD_SIZE_LIMIT, EXT_PADDING,
]
FIREFOX_GROUPS = [GROUP_X25519, GROUP_SECP256R1, GROUP_SECP384R1, GROUP_SECP521R1,
                  GROUP_FFDHE2048, GROUP_FFDHE3072]
FIREFOX_SIG_ALGS = [0x0403, 0x0503, 0x0603, 0x0804, 0x0805, 0x0806,
                    0x0401, 0x0501, 0x0601, 0x0203, 0x0201]

# Safari 17 / iOS 17
SAFARI_CIPHER_SUITES = [
    0x1301, 0x1302, 0x1303,
    0xC02C, 0xC02B, 0xCCA9, 0xC030, 0xC02F, 0xCCA8,
    0xC00A, 0xC009, 0xC014, 0xC013,
    0x009D, 0x009C, 0x0035, 0x002F,
    0xC008, 0xC012, 0x000A,
]
SAFARI_EXTENSIONS = [
    EXT_SERVER_NAME, EXT_EXTENDED_MASTER_SECRET, EXT_RENEGOTIATION_INFO,
    EXT_SUPPORTED_GROUPS, EXT_EC_POINT_FORMATS, EXT_ALPN, EXT_STATUS_REQUEST,
    EXT_SIGNATURE_ALGORITHMS, EXT_SCT, EXT_KEY_SHARE, EXT_PSK_KEY_EXCHANGE_MODES,
    EXT_SUPPORTED_VERSIONS, EXT_COMPRESS_CERTIFICATE, EXT_PADDING,
]
SAFARI_GROUPS = [GROUP_X25519, GROUP_SECP256R1, GROUP_SECP384R1, GROUP_SECP521R1]
SAFARI_SIG_ALGS = [0x0403, 0x0804, 0x0401, 0x0503, 0x0203, 0x0805,
                   0x0501, 0x0806, 0x0601, 0x0201]

# OkHttp 4 on Android (Conscrypt)
OKHTTP_CIPHER_SUITES = [
    0x1301, 0x1302, 0x1303,
    0xC02B, 0xC02C, 0xCCA9, 0xC02F, 0xC030, 0xCCA8,
    0xC013, 0xC014,
    0x009C, 0x009D, 0x002F, 0x0035,
]
OKHTTP_EXTENSIONS = [
    EXT_RENEGOTIATION_INFO, EXT_SERVER_NAME, EXT_EXTENDED_MASTER_SECRET,
    EXT_SESSION_TICKET, EXT_SIGNATURE_ALGORITHMS, EXT_STATUS_REQUEST, EXT_ALPN,
    EXT_EC_POINT_FORMATS, EXT_SUPPORTED_GROUPS, EXT_PSK_KEY_EXCHANGE_MODES,
    EXT_SUPPORTED_VERSIONS, EXT_KEY_SHARE,
]
OKHTTP_GROUPS = [GROUP_X25519, GROUP_SECP256R1, GROUP_SECP384R1]
OKHTTP_SIG_ALGS = [0x0403, 0x0804, 0x0401, 0x0503, 0x0805, 0x0501, 0x0806, 0x0601, 0x0201]


def _build_profiles() -> Dict[str, ClientHelloSpec]:
    chrome = ClientHelloSpec(
        name=PROFILE_CHROME,
        cipher_suites=CHROME_CIPHER_SUITES,
        extensions=CHROME_EXTENSIONS,
        supported_groups=CHROME_GROUPS,
        signature_algorithms=CHROME_SIG_ALGS,
        grease=True,
    )
    # Chromium based, without ALPS
    edge = chrome.copy(
        name=PROFILE_EDGE,
        extensions=[e for e in CHROME_EXTENSIONS if e != EXT_APPLICATION_SETTINGS],
    )
    firefox = ClientHelloSpec(
        name=PROFILE_FIREFOX,
        cipher_suites=FIREFOX_CIPHER_SUITES,
        extensions=FIREFOX_EXTENSIONS,
        supported_groups=FIREFOX_GROUPS,
        signature_algorithms=FIREFOX_SIG_ALGS,
        key_share_groups=[GROUP_X25519, GROUP_SECP256R1],
        cert_compression=[],
    )
    safari = ClientHelloSpec(
        name=PROFILE_SAFARI,
        cipher_suites=SAFARI_CIPHER_SUITES,
        extensions=SAFARI_EXTENSIONS,
        supported_groups=SAFARI_GROUPS,
        signature_algorithms=SAFARI_SIG_ALGS,
        supported_versions=[TLS1_3, TLS1_2, TLS1_1, TLS1_0],
        cert_compression=[0x0001],  # zlib
        grease=True,
    )
    ios = safari.copy(
        name=PROFILE_IOS,
        extensions=[e for e in SAFARI_EXTENSIONS if e != EXT_PADDING],
    )
    okhttp = ClientHelloSpec(
        name=PROFILE_OKHTTP,
        cipher_suites=OKHTTP_CIPHER_SUITES,
        extensions=OKHTTP_EXTENSIONS,
        supported_groups=OKHTTP_GROUPS,
        signature_algorithms=OKHTTP_SIG_ALGS,
        cert_compression=[],
    )

    profiles = {p.name: p for p in (chrome, firefox, safari, edge, okhttp, ios)}
    for spec in profiles.values():
        spec.validate()
    return profiles


BASE_PROFILES: Dict[str, ClientHelloSpec] = _build_profiles()

PROFILE_NAMES = tuple(list(BASE_PROFILES) + [PROFILE_RANDOMIZED])

# Extensions every randomized template keeps
REQUIRED_EXTENSIONS = (
    EXT_SERVER_NAME, EXT_SUPPORTED_GROUPS, EXT_EC_POINT_FORMATS,
    EXT_SIGNATURE_ALGORITHMS, EXT_ALPN, EXT_SUPPORTED_VERSIONS,
    EXT_PSK_KEY_EXCHANGE_MODES, EXT_KEY_SHARE,
)


def normalize_profile_name(name: Optional[str]) -> str:
    """
    Map a user-supplied profile name to a catalog key

    Args:
        name: Profile name, empty or None for the default

    Returns:
        Lowercase catalog key

    Raises:
        ConfigurationError: If the name is not in the catalog
    """
    if not name or not name.strip():
        return DEFAULT_PROFILE
    key = name.strip().lower()
    if key not in PROFILE_NAMES:
        raise ConfigurationError(
            f"unknown fingerprint profile {name!r} (expected one of {', '.join(PROFILE_NAMES)})")
    return key


def generate_randomized(rng: RandomGenerator = RNG) -> ClientHelloSpec:
    """
    Generate a random but internally consistent ClientHello template

    Args:
        rng: Random source

    Returns:
        A validated ClientHelloSpec named "randomized"
    """
    base = BASE_PROFILES[rng.choice(sorted(BASE_PROFILES))]

    # TLS 1.3 suites always lead, in one of the two orders browsers ship
    tls13 = list(TLS13_CIPHER_SUITES)
    if rng.chance(0.5):
        tls13 = [tls13[0], tls13[2], tls13[1]]

    tls12 = []
    for suite in base.tls12_cipher_suites:
        if suite in ECDHE_GCM_SUITES or rng.chance(0.75):
            tls12.append(suite)
    tls12 = rng.shuffled(tls12)

    groups = [GROUP_X25519, GROUP_SECP256R1]
    for optional in (GROUP_SECP384R1, GROUP_SECP521R1):
        if optional in base.supported_groups and rng.chance(0.7):
            groups.append(optional)
    if rng.chance(0.2):
        groups[0], groups[1] = groups[1], groups[0]

    alpn = list(ALPN_H2_HTTP11) if rng.chance(0.7) else list(ALPN_HTTP11_ONLY)

    kept = []
    for ext in base.extensions:
        if ext == EXT_PADDING:
            continue
        if ext == EXT_APPLICATION_SETTINGS and "h2" not in alpn:
            continue
        if ext in REQUIRED_EXTENSIONS or rng.chance(0.8):
            kept.append(ext)
    for ext in REQUIRED_EXTENSIONS:
        if ext not in kept:
            kept.append(ext)
    extensions = rng.shuffled(kept)
    if EXT_PADDING in base.extensions:
        extensions.append(EXT_PADDING)

    sig_algs = [alg for alg in base.signature_algorithms
                if alg not in (0x0201, 0x0203) or rng.chance(0.5)]

    spec = base.copy(
        name=PROFILE_RANDOMIZED,
        cipher_suites=tls13 + tls12,
        extensions=extensions,
        supported_groups=groups,
        signature_algorithms=sig_algs,
        alpn=alpn,
        supported_versions=[TLS1_3, TLS1_2],
        key_share_groups=[groups[0]],
        grease=rng.chance(0.5),
    )
    spec.validate()
    return spec


class FingerprintCatalog:
    """
    Resolves profile names to ClientHello templates.

    The randomized template is generated lazily and shared by every session
    until reset_randomized() is called.
    """
    def __init__(self, rng: RandomGenerator = RNG):
        """
        Initialize the catalog

        Args:
            rng: Random source for the randomized profile
        """
        self.rng = rng
        self._lock = threading.Lock()
        self._randomized: Optional[ClientHelloSpec] = None

    @staticmethod
    def names() -> List[str]:
        return list(PROFILE_NAMES)

    def resolve(self, name: Optional[str]) -> ClientHelloSpec:
        """
        Get the template for a profile

        Args:
            name: Profile name (None or empty for the default)

        Returns:
            A private copy of the template

        Raises:
            ConfigurationError: If the name is unknown
        """
        key = normalize_profile_name(name)
        if key != PROFILE_RANDOMIZED:
            return BASE_PROFILES[key].copy()

        with self._lock:
            if self._randomized is None:
                self._randomized = generate_randomized(self.rng)
                logger.debug(f"Generated randomized fingerprint, JA3 {self._randomized.ja3_hash()}")
            return self._randomized.copy()

    def reset_randomized(self) -> None:
        """Drop the cached randomized template"""
        with self._lock:
            self._randomized = None
        logger.debug("Randomized fingerprint reset")
