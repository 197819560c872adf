"""
Tests for the handle-based public entry points.
"""
import logging
import socket
import threading
import time

import pytest

from udptlspipe import __version__
from udptlspipe.client import api
from udptlspipe.client.registry import HandleRegistry
from udptlspipe.errors import PipeError
from udptlspipe.networking.tunnel import TunnelConfig, TunnelOptions
from udptlspipe.testing import HTTPConnectProxy, TLSEchoServer, unused_tcp_port
from udptlspipe.tls.fingerprint import FingerprintCatalog

logger = logging.getLogger('api_test')


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_start_and_exchange(library, echo_server, udp_exchange):
    handle = library.start(echo_server.address)
    assert handle > 0
    port = library.get_local_port(handle)
    assert port > 0
    assert udp_exchange(port, b"over the pipe") == b"over the pipe"

    library.stop(handle)
    assert library.get_local_port(handle) == 0


def test_handles_are_monotonic(library, echo_server):
    first = library.start(echo_server.address)
    library.stop(first)
    second = library.start(echo_server.address)
    assert second > first


@pytest.mark.parametrize("profile", ["chrome", "firefox", "safari", "edge", "okhttp", "ios",
                                     "randomized", "", None])
def test_every_profile_connects(library, echo_server, udp_exchange, profile):
    handle = library.start(echo_server.address, fingerprint_profile=profile)
    assert handle > 0, library.get_last_error()
    assert udp_exchange(library.get_local_port(handle), b"hi") == b"hi"


@pytest.mark.parametrize("kwargs,code", [
    ({"destination": "no-port"}, -1),
    ({"destination": "127.0.0.1:443", "fingerprint_profile": "mosaic"}, -1),
    ({"destination": "127.0.0.1:443", "proxy": "ftp://proxy"}, -1),
    ({"destination": "127.0.0.1:443", "listen_port": 99999}, -1),
])
def test_configuration_errors(library, kwargs, code):
    assert library.start(**kwargs) == code
    message = library.get_last_error()
    assert message and "configuration" in message


def test_connection_error_code(library):
    assert library.start(f"127.0.0.1:{unused_tcp_port()}") == -2
    assert "connection" in library.get_last_error()


def test_proxy_error_code(library, echo_server):
    with HTTPConnectProxy(reject=True) as proxy:
        code = library.start(echo_server.address, proxy=f"http://127.0.0.1:{proxy.port}")
    assert code == -2
    assert "proxy" in library.get_last_error()


def test_handshake_error_code(library, echo_server):
    code = library.start(echo_server.address, secure=True, tls_server_name="pipe.test")
    assert code == -3
    assert "tls" in library.get_last_error()


def test_authentication_error_code(library, auth_echo_server):
    assert library.start(auth_echo_server.address, password="nope") == -4
    assert "authentication" in library.get_last_error()


def test_listen_error_code(library, echo_server):
    busy = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    busy.bind(("127.0.0.1", 0))
    try:
        assert library.start(echo_server.address, listen_port=busy.getsockname()[1]) == -5
    finally:
        busy.close()


def test_via_http_proxy(library, echo_server, http_proxy, udp_exchange):
    handle = library.start(echo_server.address, proxy=f"http://127.0.0.1:{http_proxy.port}")
    assert handle > 0, library.get_last_error()
    assert udp_exchange(library.get_local_port(handle), b"proxied") == b"proxied"
    assert http_proxy.requests == [("127.0.0.1", echo_server.port)]


def test_via_socks5_proxy(library, auth_echo_server, socks5_proxy, udp_exchange):
    handle = library.start(auth_echo_server.address, password="correct horse",
                           proxy=f"socks5://127.0.0.1:{socks5_proxy.port}")
    assert handle > 0, library.get_last_error()
    assert udp_exchange(library.get_local_port(handle), b"socks") == b"socks"


def test_stop_is_idempotent(library, echo_server):
    handle = library.start(echo_server.address)
    library.stop(handle)
    library.stop(handle)
    library.stop(0)
    library.stop(-3)
    library.stop(123456)
    assert library.get_local_port(handle) == 0


def test_unknown_handle_port(library):
    assert library.get_local_port(0) == 0
    assert library.get_local_port(987654) == 0


def test_last_error_clear(library):
    assert library.start("bad destination") == -1
    assert library.get_last_error()
    library.clear_last_error()
    assert library.get_last_error() is None
    library.clear_last_error()
    assert library.get_last_error() is None


def test_session_failure_removes_handle(library):
    with TLSEchoServer(mode="corrupt") as server:
        handle = library.start(server.address)
        assert handle > 0
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.sendto(b"poison", ("127.0.0.1", library.get_local_port(handle)))
            assert wait_for(lambda: library.get_local_port(handle) == 0)
        finally:
            sock.close()
    assert "framing" in library.get_last_error()
    library.stop(handle)


def test_logger_receives_messages(library, echo_server):
    messages = []
    library.set_logger("ctx", lambda context, level, message: messages.append((context, level, message)))
    handle = library.start(echo_server.address, fingerprint_profile="chrome")
    library.stop(handle)
    assert library.start("nonsense") == -1
    library.set_logger(None, None)

    texts = [m for _, _, m in messages]
    assert any(f"Starting client to {echo_server.address} (fingerprint: chrome)" in t for t in texts)
    assert all(context == "ctx" for context, _, _ in messages)
    assert any(level == 1 for _, level, _ in messages)


def test_reset_fingerprint(library):
    first = library.catalog.resolve("randomized").ja3_hash()
    assert library.catalog.resolve("randomized").ja3_hash() == first
    library.reset_fingerprint()
    hashes = {first}
    for _ in range(5):
        library.reset_fingerprint()
        hashes.add(library.catalog.resolve("randomized").ja3_hash())
    assert len(hashes) > 1


def test_version():
    assert api.version() == __version__ == "1.3.1"


def test_shutdown_stops_sessions(echo_server):
    library = api.PipeLibrary()
    handle = library.start(echo_server.address)
    session = library.registry.get(handle)
    library.shutdown()
    library.shutdown()
    assert library.get_local_port(handle) == 0
    assert session.state.is_terminal
    assert library.start(echo_server.address) == -6


def test_concurrent_starts(library, echo_server):
    count = 100
    results = [None] * count

    def start(index):
        results[index] = library.start(echo_server.address)

    threads = [threading.Thread(target=start, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    handles = [h for h in results if h is not None and h > 0]
    failures = [h for h in results if h is None or h <= 0]
    logger.info(f"{len(handles)} sessions started, {len(failures)} failed")

    assert len(set(handles)) == len(handles)
    ports = [library.get_local_port(h) for h in handles]
    assert all(p > 0 for p in ports)
    assert len(set(ports)) == len(ports)
    assert len(handles) == count
    assert sorted(library.registry.handles()) == sorted(handles)

    for h in handles[:50]:
        library.stop(h)
    assert len(library.registry) == count - 50


def test_registry_lock_not_held_during_start(echo_server):
    registry = HandleRegistry(FingerprintCatalog())

    def slow_start():
        # Unroutable address, connect blocks until its timeout
        try:
            registry.start(TunnelOptions("10.255.255.1:443"))
        except PipeError:
            pass

    threading.Thread(target=slow_start, daemon=True).start()
    time.sleep(0.2)
    session = registry.start(TunnelOptions(echo_server.address))
    assert registry.get_local_port(session.handle) > 0
    registry.stop_all(timeout=1)


def test_authentication_timeout_code(library, monkeypatch):
    monkeypatch.setattr(TunnelConfig, "AUTH_TIMEOUT", 1.0)
    with TLSEchoServer(password="correct horse", mode="silent") as server:
        assert library.start(server.address, password="correct horse") == -4
    message = library.get_last_error()
    assert "authentication" in message and "acknowledgment" in message
    assert library.registry.handles() == []
