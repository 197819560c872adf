"""
TLS byte stream over a connected socket.
Drives an ssl.SSLObject through memory BIOs so that one thread can block on
reads while another writes, and so the first flight (the ClientHello) can be
captured exactly as it leaves the process.
"""
import socket
import ssl
import threading
import time
from typing import Optional

from udptlspipe.errors import HandshakeError

RECV_CHUNK = 65536
CLOSE_NOTIFY_TIMEOUT = 0.5


class TLSStream:
    """
    Client side TLS connection over an already connected socket
    """
    def __init__(self, sock: socket.socket, context: ssl.SSLContext,
                 server_hostname: Optional[str]):
        """
        Initialize the stream

        Args:
            sock: Connected TCP socket (direct or through a proxy)
            context: Client SSLContext
            server_hostname: SNI and verification name (None to omit SNI)
        """
        self.sock = sock
        self.incoming = ssl.MemoryBIO()
        self.outgoing = ssl.MemoryBIO()
        self.sslobj = context.wrap_bio(self.incoming, self.outgoing,
                                       server_side=False,
                                       server_hostname=server_hostname or None)
        # _ssl_lock guards the SSLObject and both BIOs. _send_lock is taken
        # while still holding _ssl_lock so records reach the socket in order,
        # then the socket write runs with _ssl_lock released.
        self._ssl_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self.client_hello: Optional[bytes] = None
        self.closed = False

    def _take_outgoing(self) -> Optional[bytes]:
        """Collect pending records and reserve the socket; caller holds _ssl_lock"""
        data = self.outgoing.read()
        if not data:
            return None
        if self.client_hello is None:
            self.client_hello = data
        self._send_lock.acquire()
        return data

    def _send_reserved(self, data: Optional[bytes]) -> None:
        if data is None:
            return
        try:
            self.sock.sendall(data)
        finally:
            self._send_lock.release()

    def do_handshake(self, timeout: float) -> None:
        """
        Run the client handshake

        Args:
            timeout: Overall handshake deadline in seconds

        Raises:
            HandshakeError: On negotiation failure, certificate rejection,
                timeout or connection loss
        """
        deadline = time.monotonic() + timeout
        try:
            while True:
                with self._ssl_lock:
                    try:
                        self.sslobj.do_handshake()
                        done = True
                    except ssl.SSLWantReadError:
                        done = False
                    pending = self._take_outgoing()
                self._send_reserved(pending)
                if done:
                    return

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise HandshakeError("TLS handshake timed out")
                self.sock.settimeout(remaining)
                data = self.sock.recv(RECV_CHUNK)
                if not data:
                    raise HandshakeError("connection closed during TLS handshake")
                with self._ssl_lock:
                    self.incoming.write(data)
        except ssl.SSLCertVerificationError as e:
            raise HandshakeError(f"certificate rejected: {e.verify_message or e}") from e
        except ssl.SSLError as e:
            raise HandshakeError(f"TLS negotiation failed: {e}") from e
        except socket.timeout as e:
            raise HandshakeError("TLS handshake timed out") from e
        except OSError as e:
            raise HandshakeError(f"connection lost during TLS handshake: {e}") from e
        finally:
            if not self.closed:
                self.sock.settimeout(None)

    def sendall(self, data: bytes) -> None:
        """
        Encrypt and send application data

        Args:
            data: Plaintext to send

        Raises:
            OSError: If the connection is broken (ssl.SSLError included)
        """
        view = memoryview(data)
        with self._ssl_lock:
            while view:
                written = self.sslobj.write(view)
                view = view[written:]
            pending = self._take_outgoing()
        self._send_reserved(pending)

    def recv(self, size: int = RECV_CHUNK) -> bytes:
        """
        Read decrypted application data

        Args:
            size: Maximum number of bytes to return

        Returns:
            Plaintext bytes, or b"" at end of stream

        Raises:
            socket.timeout: If a socket timeout is set and expires
            OSError: On connection or TLS errors
        """
        while True:
            with self._ssl_lock:
                try:
                    return self.sslobj.read(size)
                except ssl.SSLWantReadError:
                    pending = self._take_outgoing()
                except (ssl.SSLZeroReturnError, ssl.SSLEOFError):
                    return b""
            self._send_reserved(pending)

            data = self.sock.recv(RECV_CHUNK)
            with self._ssl_lock:
                if data:
                    self.incoming.write(data)
                else:
                    self.incoming.write_eof()

    def settimeout(self, timeout: Optional[float]) -> None:
        self.sock.settimeout(timeout)

    def selected_alpn_protocol(self) -> Optional[str]:
        return self.sslobj.selected_alpn_protocol()

    def version(self) -> Optional[str]:
        return self.sslobj.version()

    def close(self) -> None:
        """
        Send close_notify when the stream is idle, then close the socket.
        Unblocks a reader waiting in recv().
        """
        if self.closed:
            return
        self.closed = True

        pending = None
        if self._ssl_lock.acquire(timeout=CLOSE_NOTIFY_TIMEOUT):
            try:
                try:
                    self.sslobj.unwrap()
                except (ssl.SSLError, ValueError):
                    pass
                pending = self.outgoing.read()
            finally:
                self._ssl_lock.release()

        if pending and self._send_lock.acquire(timeout=CLOSE_NOTIFY_TIMEOUT):
            try:
                self.sock.setblocking(False)
                self.sock.send(pending)
            except OSError:
                pass
            finally:
                self._send_lock.release()

        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()
