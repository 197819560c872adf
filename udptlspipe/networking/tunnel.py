"""
Tunneling implementation for the pipe client.
A TunnelSession carries local UDP datagrams over one TLS connection:
connect, TLS handshake with a fingerprint template, optional password proof,
then two copy loops between the UDP socket and the framed TLS stream.
"""
import enum
import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from udptlspipe.crypto.auth import AUTH_MAGIC, STATUS_ACCEPTED, build_auth_message
from udptlspipe.errors import (
    AuthenticationError, ConfigurationError, FramingError, HandshakeError,
    ListenError, PipeError,
)
from udptlspipe.networking.framing import FRAME_HEADER_SIZE, FrameReader, MAX_FRAME_SIZE, pack_frame
from udptlspipe.networking.proxy import ProxyConnector, parse_destination, parse_proxy_url
from udptlspipe.tls.context import build_ssl_context
from udptlspipe.tls.fingerprint import FingerprintCatalog, normalize_profile_name
from udptlspipe.tls.hello import ClientHelloSpec
from udptlspipe.tls.stream import TLSStream


class TunnelConfig:
    """Protocol constants and timeouts for the tunnel"""
    LISTEN_HOST = "127.0.0.1"

    FRAME_HEADER_SIZE = FRAME_HEADER_SIZE
    MAX_FRAME_SIZE = MAX_FRAME_SIZE
    AUTH_MAGIC = AUTH_MAGIC
    UDP_RECV_SIZE = 65535

    CONNECT_TIMEOUT = 10.0  # seconds
    HANDSHAKE_TIMEOUT = 10.0
    AUTH_TIMEOUT = 10.0
    POLL_INTERVAL = 0.5
    SHUTDOWN_TIMEOUT = 5.0


class SessionState(enum.Enum):
    """Lifecycle of a tunnel session"""
    CREATED = "created"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    AUTHENTICATING = "authenticating"
    BRIDGING = "bridging"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


class TunnelOptions:
    """
    Validated start parameters of one session
    """
    def __init__(self, destination: str, password: Optional[str] = None,
                 tls_server_name: Optional[str] = None, secure: bool = False,
                 proxy: Optional[str] = None, fingerprint_profile: Optional[str] = None,
                 listen_port: int = 0, ca_file: Optional[str] = None):
        """
        Initialize and validate the options

        Args:
            destination: Remote "host:port"
            password: Shared password (None or empty to skip authentication)
            tls_server_name: SNI / verification name (None for the destination host)
            secure: Verify the server certificate
            proxy: Proxy URL (None for a direct connection)
            fingerprint_profile: ClientHello profile (None for the default)
            listen_port: Local UDP port, 0 to auto-assign
            ca_file: Trust anchors for secure mode (None for the system store)

        Raises:
            ConfigurationError: If any parameter is invalid
        """
        self.destination = destination
        self.host, self.port = parse_destination(destination)
        self.password = password or None
        self.tls_server_name = (tls_server_name or "").strip() or None
        self.secure = bool(secure)
        self.proxy = (proxy or "").strip() or None
        parse_proxy_url(self.proxy)
        self.fingerprint_profile = normalize_profile_name(fingerprint_profile)
        self.ca_file = ca_file

        if not isinstance(listen_port, int) or not 0 <= listen_port < 65536:
            raise ConfigurationError(f"invalid listen port {listen_port!r}")
        self.listen_port = listen_port

    @property
    def server_name(self) -> str:
        return self.tls_server_name or self.host


class TunnelSession:
    """
    One UDP-over-TLS tunnel and its worker threads
    """
    def __init__(self, options: TunnelOptions, catalog: FingerprintCatalog,
                 on_failure: Optional[Callable[['TunnelSession', PipeError], None]] = None,
                 on_closed: Optional[Callable[['TunnelSession'], None]] = None):
        """
        Initialize the session

        Args:
            options: Validated start parameters
            catalog: Fingerprint catalog to resolve the profile from
            on_failure: Called once when a running session hits a fatal error
            on_closed: Called after teardown, once both copy loops have exited
        """
        self.options = options
        self.catalog = catalog
        self.on_failure = on_failure
        self.on_closed = on_closed

        self.handle = 0
        self.local_port = 0
        self.peer_address: Optional[Tuple[str, int]] = None
        self.hello_spec: Optional[ClientHelloSpec] = None
        self.failure: Optional[PipeError] = None

        self.transport: Optional[socket.socket] = None
        self.tls: Optional[TLSStream] = None
        self.udp_socket: Optional[socket.socket] = None

        self._state = SessionState.CREATED
        self._state_lock = threading.Lock()
        self._done = threading.Event()
        self._teardown_started = False

        self.udp_to_tls_thread: Optional[threading.Thread] = None
        self.tls_to_udp_thread: Optional[threading.Thread] = None
        self.monitor_thread: Optional[threading.Thread] = None

        self.datagrams_sent = 0
        self.datagrams_received = 0

        self.logger = logging.getLogger("udptlspipe.tunnel")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def client_hello(self) -> Optional[bytes]:
        """The ClientHello record as sent on the wire"""
        return self.tls.client_hello if self.tls else None

    def _set_state(self, state: SessionState) -> bool:
        """Move to a new state unless already terminal or closing"""
        with self._state_lock:
            current = self._state
            if current.is_terminal:
                return False
            if current == SessionState.CLOSING and state not in (SessionState.CLOSED,
                                                                 SessionState.FAILED):
                return False
            self._state = state
        self.logger.debug(f"Session {self.handle}: {current.value} -> {state.value}")
        return True

    def _check_not_stopped(self) -> None:
        if self._done.is_set():
            raise PipeError("session stopped during startup")

    def open(self) -> int:
        """
        Bring the tunnel up to the bridging state

        Returns:
            The bound local UDP port

        Raises:
            PipeError: Subclass matching the failed stage
        """
        try:
            self._set_state(SessionState.CONNECTING)
            self.transport = self._connect()
            self._check_not_stopped()

            self._set_state(SessionState.HANDSHAKING)
            self._handshake(self.transport)
            self._check_not_stopped()

            if self.options.password:
                self._set_state(SessionState.AUTHENTICATING)
                self._authenticate()
                self._check_not_stopped()

            self._bind_local()
            self._set_state(SessionState.BRIDGING)
            self._start_workers()
        except PipeError as e:
            self.failure = e
            self._release_resources()
            self._set_state(SessionState.FAILED)
            self._done.set()
            raise
        except Exception as e:
            self.failure = PipeError(f"unexpected failure during startup: {e}")
            self._release_resources()
            self._set_state(SessionState.FAILED)
            self._done.set()
            raise self.failure from e

        return self.local_port

    def _connect(self) -> socket.socket:
        connector = ProxyConnector(self.options.proxy, timeout=TunnelConfig.CONNECT_TIMEOUT)
        return connector.connect(self.options.host, self.options.port)

    def _handshake(self, sock: socket.socket) -> None:
        self.hello_spec = self.catalog.resolve(self.options.fingerprint_profile)
        try:
            context = build_ssl_context(self.hello_spec, self.options.secure, self.options.ca_file)
            self.tls = TLSStream(sock, context, self.options.server_name)
        except (OSError, ValueError) as e:
            sock.close()
            raise HandshakeError(f"cannot set up TLS: {e}") from e

        self.tls.do_handshake(TunnelConfig.HANDSHAKE_TIMEOUT)
        self.logger.info(
            f"TLS established with {self.options.destination} "
            f"({self.tls.version()}, profile {self.hello_spec.name}, "
            f"ALPN {self.tls.selected_alpn_protocol() or 'none'})"
        )

    def _authenticate(self) -> None:
        message = build_auth_message(self.options.password)
        self.tls.settimeout(TunnelConfig.AUTH_TIMEOUT)
        try:
            self.tls.sendall(message)
            reply = self.tls.recv(1)
        except socket.timeout as e:
            raise AuthenticationError("no authentication acknowledgment from server") from e
        except OSError as e:
            raise AuthenticationError(f"connection lost during authentication: {e}") from e
        finally:
            if not self.tls.closed:
                self.tls.settimeout(None)

        if not reply:
            raise AuthenticationError("server closed the connection during authentication")
        if reply[0] != STATUS_ACCEPTED:
            raise AuthenticationError(f"password rejected by server (status {reply[0]})")
        self.logger.debug("Authentication accepted")

    def _bind_local(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((TunnelConfig.LISTEN_HOST, self.options.listen_port))
        except OSError as e:
            sock.close()
            raise ListenError(
                f"cannot listen on {TunnelConfig.LISTEN_HOST}:{self.options.listen_port}: {e}") from e

        sock.settimeout(TunnelConfig.POLL_INTERVAL)
        self.udp_socket = sock
        self.local_port = sock.getsockname()[1]

    def _start_workers(self) -> None:
        name = f"pipe-{self.handle or id(self)}"
        self.udp_to_tls_thread = threading.Thread(
            target=self._udp_to_tls_loop, name=f"{name}-udp2tls", daemon=True)
        self.tls_to_udp_thread = threading.Thread(
            target=self._tls_to_udp_loop, name=f"{name}-tls2udp", daemon=True)
        self.monitor_thread = threading.Thread(
            target=self._monitor_loop, name=f"{name}-monitor", daemon=True)

        self.udp_to_tls_thread.start()
        self.tls_to_udp_thread.start()
        self.monitor_thread.start()

    @property
    def stopping(self) -> bool:
        return self._done.is_set()

    def _udp_to_tls_loop(self) -> None:
        """Copy datagrams from the local socket into the TLS stream"""
        while not self.stopping:
            try:
                data, addr = self.udp_socket.recvfrom(TunnelConfig.UDP_RECV_SIZE)
            except socket.timeout:
                continue
            except OSError as e:
                if not self.stopping:
                    self._fail(PipeError(f"local UDP socket error: {e}"))
                break

            if self.stopping:
                break
            if not data:
                # A zero length frame is a protocol violation on the TLS side
                self.logger.debug(f"Dropping empty datagram from {addr[0]}:{addr[1]}")
                continue

            self.peer_address = addr
            try:
                frame = pack_frame(data, TunnelConfig.MAX_FRAME_SIZE)
            except FramingError as e:
                self.logger.warning(f"Dropping datagram from {addr[0]}:{addr[1]}: {e.message}")
                continue

            try:
                self.tls.sendall(frame)
            except OSError as e:
                if not self.stopping:
                    self._fail(PipeError(f"TLS write failed: {e}"))
                break
            self.datagrams_sent += 1

    def _tls_to_udp_loop(self) -> None:
        """Copy framed datagrams from the TLS stream to the current peer"""
        reader = FrameReader(self.tls.recv, TunnelConfig.MAX_FRAME_SIZE)
        while not self.stopping:
            try:
                payload = reader.read_frame()
            except FramingError as e:
                if not self.stopping:
                    self._fail(e)
                break
            except OSError as e:
                if not self.stopping:
                    self._fail(PipeError(f"TLS read failed: {e}"))
                break

            if payload is None:
                if not self.stopping:
                    self._fail(PipeError("server closed the TLS connection"))
                break

            peer = self.peer_address
            if peer is None:
                self.logger.debug(f"Dropping {len(payload)} byte datagram, no local peer yet")
                continue
            try:
                self.udp_socket.sendto(payload, peer)
            except OSError as e:
                if self.stopping:
                    break
                # Local delivery errors (peer port gone, ICMP unreachable) drop one datagram only
                self.logger.warning(f"Failed to deliver datagram to {peer[0]}:{peer[1]}: {e}")
                continue
            self.datagrams_received += 1

    def _fail(self, error: PipeError) -> None:
        """Record a fatal error from a worker and start teardown"""
        with self._state_lock:
            first = self.failure is None and not self._done.is_set()
            if first:
                self.failure = error
        if not first:
            return

        self.logger.error(f"Session {self.handle} failed: {error}")
        if self.on_failure:
            try:
                self.on_failure(self, error)
            except Exception as e:
                self.logger.error(f"Failure callback raised: {e}")
        self._request_close()

    def _request_close(self) -> None:
        """Mark the session as closing and unblock both copy loops"""
        if self._set_state(SessionState.CLOSING):
            self.logger.info(f"Closing session {self.handle}")
        self._done.set()
        self._release_resources()

    def _release_resources(self) -> None:
        if self.tls is not None:
            self.tls.close()
        elif self.transport is not None:
            # Connected, TLS not set up yet
            try:
                self.transport.close()
            except OSError:
                pass
        if self.udp_socket is not None:
            try:
                self.udp_socket.close()
            except OSError:
                pass

    def _monitor_loop(self) -> None:
        """Wait for the stop signal, then join the workers and finish teardown"""
        self._done.wait()
        self._teardown()

    def _teardown(self) -> None:
        with self._state_lock:
            if self._teardown_started:
                return
            self._teardown_started = True

        self._request_close()
        current = threading.current_thread()
        for worker in (self.udp_to_tls_thread, self.tls_to_udp_thread):
            if worker is not None and worker is not current:
                worker.join(TunnelConfig.SHUTDOWN_TIMEOUT)
                if worker.is_alive():
                    self.logger.error(f"Worker {worker.name} did not exit in time")

        self._set_state(SessionState.FAILED if self.failure else SessionState.CLOSED)
        self.logger.info(
            f"Session {self.handle} {self.state.value} "
            f"(sent {self.datagrams_sent}, received {self.datagrams_received} datagrams)")

        if self.on_closed:
            try:
                self.on_closed(self)
            except Exception as e:
                self.logger.error(f"Close callback raised: {e}")

    def stop(self, timeout: float = TunnelConfig.SHUTDOWN_TIMEOUT) -> None:
        """
        Request shutdown and wait until both copy loops have exited

        Args:
            timeout: Upper bound for the wait in seconds
        """
        self._request_close()
        monitor = self.monitor_thread
        if monitor is None:
            return
        if monitor is threading.current_thread():
            return
        monitor.join(timeout)
