"""
Public entry points of the pipe client library.

A single PipeLibrary is created when this module is imported and torn down
at interpreter exit. The module-level functions delegate to it so that a
host can drive the client through a flat, handle-based interface:

    handle = start("vpn.example.com:443", password="secret")
    port = get_local_port(handle)
    ...
    stop(handle)
"""
import atexit
import logging
from typing import Any, Optional

from udptlspipe import __version__
from udptlspipe.client.registry import HandleRegistry
from udptlspipe.errors import PipeError
from udptlspipe.networking.tunnel import TunnelOptions, TunnelSession
from udptlspipe.tls.fingerprint import DEFAULT_PROFILE, FingerprintCatalog
from udptlspipe.utils.diagnostics import Diagnostics, LoggerCallback


class PipeLibrary:
    """
    Owns the diagnostics facade, the fingerprint catalog and the handle registry
    """
    def __init__(self, catalog: Optional[FingerprintCatalog] = None):
        """
        Initialize the library

        Args:
            catalog: Fingerprint catalog (None for a new one on the system RNG)
        """
        self.diagnostics = Diagnostics()
        self.catalog = catalog or FingerprintCatalog()
        self.registry = HandleRegistry(self.catalog, on_failure=self._session_failed)
        self.logger = logging.getLogger("udptlspipe.api")
        self.closed = False

    def _session_failed(self, session: TunnelSession, error: PipeError) -> None:
        self.diagnostics.last_error.set(str(error))

    def set_logger(self, context: Any, callback: Optional[LoggerCallback]) -> None:
        self.diagnostics.set_logger(context, callback)

    def start(self, destination: str, password: Optional[str] = None,
              tls_server_name: Optional[str] = None, secure: bool = False,
              proxy: Optional[str] = None, fingerprint_profile: Optional[str] = DEFAULT_PROFILE,
              listen_port: int = 0, ca_file: Optional[str] = None) -> int:
        """
        Start a tunnel session

        Args:
            destination: Remote "host:port"
            password: Shared password (None or empty to skip authentication)
            tls_server_name: SNI override
            secure: Verify the server certificate
            proxy: Proxy URL, e.g. "socks5://127.0.0.1:1080"
            fingerprint_profile: ClientHello profile (empty for okhttp)
            listen_port: Local UDP port, 0 to auto-assign
            ca_file: Trust anchors for secure mode

        Returns:
            Positive handle on success, negative error code on failure
        """
        if self.closed:
            self.diagnostics.record_failure(PipeError("library is shut down"))
            return PipeError.code

        profile = fingerprint_profile or DEFAULT_PROFILE
        self.logger.info(f"udptlspipe: Starting client to {destination} (fingerprint: {profile})")
        try:
            options = TunnelOptions(destination, password=password,
                                    tls_server_name=tls_server_name, secure=secure,
                                    proxy=proxy, fingerprint_profile=profile,
                                    listen_port=listen_port, ca_file=ca_file)
            session = self.registry.start(options)
        except PipeError as e:
            self.diagnostics.record_failure(e, prefix=f"start {destination}: ")
            return e.code
        except Exception as e:
            self.logger.exception(f"Unexpected failure while starting client to {destination}")
            self.diagnostics.record_failure(PipeError(str(e)), prefix=f"start {destination}: ")
            return PipeError.code

        self.logger.info(
            f"udptlspipe: Client started, handle {session.handle}, "
            f"listening on 127.0.0.1:{session.local_port}")
        return session.handle

    def stop(self, handle: int) -> None:
        self.logger.info(f"udptlspipe: Stopping client {handle}")
        self.registry.stop(handle)

    def get_local_port(self, handle: int) -> int:
        return self.registry.get_local_port(handle)

    def version(self) -> str:
        return __version__

    def reset_fingerprint(self) -> None:
        """Generate a new randomized fingerprint on the next start"""
        self.catalog.reset_randomized()
        self.logger.info("udptlspipe: Randomized fingerprint reset")

    def get_last_error(self) -> Optional[str]:
        return self.diagnostics.last_error.get()

    def clear_last_error(self) -> None:
        self.diagnostics.last_error.clear()

    def shutdown(self) -> None:
        """Stop every session and detach the log handler"""
        if self.closed:
            return
        self.closed = True
        self.registry.stop_all()
        self.diagnostics.close()


_library = PipeLibrary()
atexit.register(_library.shutdown)


def set_logger(context: Any, callback: Optional[LoggerCallback]) -> None:
    """
    Install the host log callback

    Args:
        context: Opaque value passed back as the first callback argument
        callback: callback(context, level, message) with level 0 verbose,
            1 error; None disables forwarding
    """
    _library.set_logger(context, callback)


def start(destination: str, password: Optional[str] = None,
          tls_server_name: Optional[str] = None, secure: bool = False,
          proxy: Optional[str] = None, fingerprint_profile: Optional[str] = DEFAULT_PROFILE,
          listen_port: int = 0, ca_file: Optional[str] = None) -> int:
    """Start a session, see PipeLibrary.start"""
    return _library.start(destination, password=password, tls_server_name=tls_server_name,
                          secure=secure, proxy=proxy, fingerprint_profile=fingerprint_profile,
                          listen_port=listen_port, ca_file=ca_file)


def stop(handle: int) -> None:
    _library.stop(handle)


def get_local_port(handle: int) -> int:
    return _library.get_local_port(handle)


def version() -> str:
    return _library.version()


def reset_fingerprint() -> None:
    _library.reset_fingerprint()


def get_last_error() -> Optional[str]:
    return _library.get_last_error()


def clear_last_error() -> None:
    _library.clear_last_error()


def shutdown() -> None:
    _library.shutdown()
