"""
Host-side adapter around the pipe library.
Keeps at most one running client and reports through a (level, message)
log handler, the way a VPN network extension embeds the pipe.
"""
import threading
from typing import Callable, Optional

from udptlspipe import __version__
from udptlspipe.client import api
from udptlspipe.client.api import PipeLibrary
from udptlspipe.tls.fingerprint import DEFAULT_PROFILE
from udptlspipe.utils.config import PipeConfiguration
from udptlspipe.utils.diagnostics import LogLevel

LogHandler = Callable[[LogLevel, str], None]


class PipeAdapterError(Exception):
    """Raised when the adapter cannot start the client"""
    FAILED_TO_START = "failed_to_start"
    INVALID_CONFIGURATION = "invalid_configuration"

    def __init__(self, reason: str, message: str = "", code: Optional[int] = None):
        super().__init__(message or reason)
        self.reason = reason
        self.code = code


class PipeAdapter:
    """
    Manages a single pipe client instance
    """
    version = __version__

    def __init__(self, log_handler: LogHandler, library: Optional[PipeLibrary] = None):
        """
        Initialize the adapter and install its log handler

        Args:
            log_handler: Called as log_handler(level, message)
            library: Library instance (None for the process-wide one)
        """
        self.log_handler = log_handler
        self.library = library or api._library
        self.handle = -1
        self.local_port = 0
        self._lock = threading.Lock()

        self.library.set_logger(self, PipeAdapter._forward_log)

    @staticmethod
    def _forward_log(context: 'PipeAdapter', level: int, message: str) -> None:
        host_level = LogLevel.VERBOSE if level == LogLevel.VERBOSE else LogLevel.ERROR
        context.log_handler(host_level, message.strip("\n"))

    @property
    def is_running(self) -> bool:
        return self.handle > 0

    def start(self, destination: str, config: PipeConfiguration) -> int:
        """
        Start the client, replacing any running one

        Args:
            destination: Remote "host:port"
            config: Pipe settings of the peer

        Returns:
            The auto-assigned local UDP port

        Raises:
            PipeAdapterError: If the configuration is disabled or start fails
        """
        with self._lock:
            if not config.enabled:
                raise PipeAdapterError(PipeAdapterError.INVALID_CONFIGURATION,
                                       "UdpTlsPipe is not enabled")

            self._stop_locked()

            profile = config.fingerprint_profile or DEFAULT_PROFILE
            self.log_handler(LogLevel.VERBOSE,
                             f"UdpTlsPipe: Starting client to {destination} (fingerprint: {profile})")

            handle = self.library.start(destination,
                                        password=config.password or None,
                                        tls_server_name=config.tls_server_name,
                                        secure=config.secure,
                                        proxy=config.proxy,
                                        fingerprint_profile=profile,
                                        listen_port=0)
            if handle <= 0:
                self.log_handler(LogLevel.ERROR,
                                 f"UdpTlsPipe: Failed to start client, error code: {handle}")
                raise PipeAdapterError(PipeAdapterError.FAILED_TO_START,
                                       self.library.get_last_error() or "start failed",
                                       code=handle)

            port = self.library.get_local_port(handle)
            if port <= 0:
                self.log_handler(LogLevel.ERROR, "UdpTlsPipe: Failed to get local port")
                self.library.stop(handle)
                raise PipeAdapterError(PipeAdapterError.FAILED_TO_START, "no local port")

            self.handle = handle
            self.local_port = port
            self.log_handler(LogLevel.VERBOSE,
                             f"UdpTlsPipe: Started with handle {handle}, local port {port}")
            return port

    def _stop_locked(self) -> None:
        if self.handle <= 0:
            return
        self.log_handler(LogLevel.VERBOSE, f"UdpTlsPipe: Stopping client with handle {self.handle}")
        self.library.stop(self.handle)
        self.handle = -1
        self.local_port = 0
        self.log_handler(LogLevel.VERBOSE, "UdpTlsPipe: Client stopped")

    def stop(self) -> None:
        """Stop the client if one is running"""
        with self._lock:
            self._stop_locked()

    def close(self) -> None:
        """Remove the log handler and stop the client"""
        self.library.set_logger(None, None)
        self.stop()

    def __enter__(self) -> 'PipeAdapter':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
