"""
Shared pytest fixtures for the pipe client tests.
"""
import logging
import socket

import pytest

from udptlspipe.client.api import PipeLibrary
from udptlspipe.tls.fingerprint import FingerprintCatalog
from udptlspipe.crypto.rng import RandomGenerator
from udptlspipe.testing import HTTPConnectProxy, SOCKS5Proxy, TLSEchoServer
from udptlspipe.utils.logging_setup import CLI_HANDLER_FLAG


@pytest.fixture(autouse=True)
def restore_pipe_logger():
    """Undo level and handler changes made by setup_logging() in a test"""
    pipe_logger = logging.getLogger("udptlspipe")
    level = pipe_logger.level
    yield
    pipe_logger.setLevel(level)
    for handler in list(pipe_logger.handlers):
        if getattr(handler, CLI_HANDLER_FLAG, False):
            pipe_logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def echo_server():
    with TLSEchoServer() as server:
        yield server


@pytest.fixture
def auth_echo_server():
    with TLSEchoServer(password="correct horse") as server:
        yield server


@pytest.fixture
def http_proxy():
    with HTTPConnectProxy() as proxy:
        yield proxy


@pytest.fixture
def socks5_proxy():
    with SOCKS5Proxy() as proxy:
        yield proxy


@pytest.fixture
def library():
    lib = PipeLibrary(FingerprintCatalog(RandomGenerator(seed=1234)))
    yield lib
    lib.shutdown()


@pytest.fixture
def udp_exchange():
    """Send a datagram to a local pipe port and return the reply"""
    sockets = []

    def exchange(port: int, payload: bytes, timeout: float = 5.0) -> bytes:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sockets.append(sock)
        sock.settimeout(timeout)
        sock.sendto(payload, ("127.0.0.1", port))
        data, _ = sock.recvfrom(65535)
        return data

    yield exchange
    for sock in sockets:
        sock.close()
