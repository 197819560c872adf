"""
Tests for pipe configuration parsing and the JSON configuration manager.
"""
import json

import pytest

from udptlspipe.utils.config import (
    ConfigManager, PipeConfiguration, parse_bool, parse_wg_quick_peers, rewrite_peer_endpoint,
)

WG_CONFIG = """[Interface]
PrivateKey = aGVsbG8gd29ybGQ=
Address = 10.8.0.2/32

[Peer]
PublicKey = cGVlciBvbmU=
Endpoint = 203.0.113.5:51820
AllowedIPs = 10.8.0.0/24

[Peer]
PublicKey = cGVlciB0d28=
Endpoint = vpn.example.com:443
AllowedIPs = 0.0.0.0/0
UdpTlsPipe = true
UdpTlsPipePassword = hunter2
UdpTlsPipeTlsServerName = cdn.example.net
UdpTlsPipeSecure = yes
UdpTlsPipeProxy = socks5://127.0.0.1:1080
UdpTlsPipeFingerprintProfile = chrome
"""


@pytest.mark.parametrize("text,expected", [
    ("true", True), ("YES", True), ("1", True), (" on ", True),
    ("false", False), ("No", False), ("0", False), ("off", False),
    ("maybe", None), ("", None),
])
def test_parse_bool(text, expected):
    assert parse_bool(text) is expected


class TestPipeConfiguration:
    def test_from_attributes(self):
        config = PipeConfiguration.from_attributes({
            "UdpTlsPipe": "true",
            "UDPTLSPIPEPASSWORD": "pw",
            "udptlspipesecure": "1",
            "udptlspipefingerprintprofile": "firefox",
        })
        assert config.enabled and config.is_valid
        assert config.password == "pw"
        assert config.secure is True
        assert config.fingerprint_profile == "firefox"
        assert config.tls_server_name is None
        assert config.proxy is None

    def test_disabled_or_missing(self):
        assert PipeConfiguration.from_attributes({}) is None
        assert PipeConfiguration.from_attributes({"udptlspipe": "off"}) is None
        assert PipeConfiguration.from_attributes({"udptlspipe": "garbage"}) is None

    def test_wg_quick_rendering(self):
        config = PipeConfiguration(enabled=True, password="pw", secure=True,
                                   proxy="http://proxy:3128", fingerprint_profile="ios")
        rendered = config.as_wg_quick_config()
        assert rendered == (
            "UdpTlsPipe = true\n"
            "UdpTlsPipePassword = pw\n"
            "UdpTlsPipeSecure = true\n"
            "UdpTlsPipeProxy = http://proxy:3128\n"
            "UdpTlsPipeFingerprintProfile = ios\n"
        )
        assert PipeConfiguration().as_wg_quick_config() == ""

    def test_rendered_lines_parse_back(self):
        config = PipeConfiguration(enabled=True, tls_server_name="sni.example", secure=False)
        attributes = {}
        for line in config.as_wg_quick_config().splitlines():
            key, _, value = line.partition(" = ")
            attributes[key] = value
        assert PipeConfiguration.from_attributes(attributes) == PipeConfiguration(
            enabled=True, password="", tls_server_name="sni.example")

    def test_repr_hides_password(self):
        assert "hunter2" not in repr(PipeConfiguration(enabled=True, password="hunter2"))

    def test_equality_and_hash(self):
        a = PipeConfiguration(enabled=True, password="x")
        b = PipeConfiguration(enabled=True, password="x")
        assert a == b
        assert hash(a) == hash(b)
        assert a != PipeConfiguration(enabled=True, password="y")


def test_parse_wg_quick_peers():
    peers = parse_wg_quick_peers(WG_CONFIG)
    assert len(peers) == 2
    assert peers[0]["endpoint"] == "203.0.113.5:51820"
    assert PipeConfiguration.from_attributes(peers[0]) is None

    config = PipeConfiguration.from_attributes(peers[1])
    assert config.password == "hunter2"
    assert config.tls_server_name == "cdn.example.net"
    assert config.secure is True
    assert config.proxy == "socks5://127.0.0.1:1080"
    assert config.fingerprint_profile == "chrome"


def test_rewrite_peer_endpoint():
    rewritten = rewrite_peer_endpoint(WG_CONFIG, 1, "127.0.0.1", 40000)
    peers = parse_wg_quick_peers(rewritten)

    assert peers[0]["endpoint"] == "203.0.113.5:51820"
    assert peers[1]["endpoint"] == "127.0.0.1:40000"
    assert not any(key.startswith("udptlspipe") for key in peers[1])
    assert "PrivateKey = aGVsbG8gd29ybGQ=" in rewritten
    assert rewritten.endswith("\n")


class TestConfigManager:
    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(str(tmp_path / "missing.json"))
        assert manager.get("client.fingerprint_profile") == "okhttp"
        assert manager.get("client.listen_port") == 0
        assert manager.get("client.destination") is None
        assert manager.get("client.destination", "fallback:1") == "fallback:1"
        assert manager.get("no.such.key", 5) == 5

    def test_file_values_override_defaults(self, tmp_path):
        path = tmp_path / "udptlspipe.json"
        path.write_text(json.dumps({
            "client": {"destination": "vpn.example.com:443", "secure": True},
            "logging": {"log_level": "DEBUG"},
        }))
        manager = ConfigManager(str(path))

        assert manager.get("client.destination") == "vpn.example.com:443"
        assert manager.get("client.fingerprint_profile") == "okhttp"
        assert manager.get("logging.log_level") == "DEBUG"

        pipe = manager.pipe_configuration()
        assert pipe.enabled and pipe.secure
        assert pipe.fingerprint_profile == "okhttp"

    def test_malformed_file_falls_back(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        manager = ConfigManager(str(path))
        assert manager.load() is False
        assert manager.get("client.fingerprint_profile") == "okhttp"

    def test_never_writes(self, tmp_path):
        path = tmp_path / "absent.json"
        ConfigManager(str(path))
        assert not path.exists()
