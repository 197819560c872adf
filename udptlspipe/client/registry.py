"""
Handle registry for running tunnel sessions.
"""
import logging
import threading
from typing import Callable, Dict, List, Optional

from udptlspipe.errors import PipeError
from udptlspipe.networking.tunnel import TunnelConfig, TunnelOptions, TunnelSession
from udptlspipe.tls.fingerprint import FingerprintCatalog


class HandleRegistry:
    """
    Maps small positive integer handles to live sessions.

    Handles are issued monotonically and never reused. The lock only covers
    table mutations; connecting, handshaking and teardown run outside it.
    """
    def __init__(self, catalog: FingerprintCatalog,
                 on_failure: Optional[Callable[[TunnelSession, PipeError], None]] = None):
        """
        Initialize the registry

        Args:
            catalog: Fingerprint catalog shared by all sessions
            on_failure: Called when a bridging session fails
        """
        self.catalog = catalog
        self.on_failure = on_failure
        self.sessions: Dict[int, TunnelSession] = {}
        self._lock = threading.Lock()
        self._next_handle = 1
        self.logger = logging.getLogger("udptlspipe.registry")

    def start(self, options: TunnelOptions) -> TunnelSession:
        """
        Create a session, bring it up and register it

        Args:
            options: Validated start parameters

        Returns:
            The bridging session, its handle assigned

        Raises:
            PipeError: If the session fails before bridging
        """
        session = TunnelSession(options, self.catalog,
                                on_failure=self.on_failure,
                                on_closed=self._session_closed)
        with self._lock:
            session.handle = self._next_handle
            self._next_handle += 1
            self.sessions[session.handle] = session

        try:
            session.open()
        except PipeError:
            self._remove(session)
            raise

        self.logger.debug(f"Registered session {session.handle} on port {session.local_port}")
        return session

    def _remove(self, session: TunnelSession) -> None:
        with self._lock:
            if self.sessions.get(session.handle) is session:
                del self.sessions[session.handle]

    def _session_closed(self, session: TunnelSession) -> None:
        self._remove(session)
        self.logger.debug(f"Session {session.handle} removed")

    def get(self, handle: int) -> Optional[TunnelSession]:
        with self._lock:
            return self.sessions.get(handle)

    def stop(self, handle: int, timeout: float = TunnelConfig.SHUTDOWN_TIMEOUT) -> None:
        """
        Stop a session; unknown or already stopped handles are ignored

        Args:
            handle: Session handle
            timeout: Upper bound for waiting on teardown
        """
        session = self.get(handle)
        if session is None:
            self.logger.debug(f"Stop ignored for unknown handle {handle}")
            return

        session.stop(timeout)
        self._remove(session)

    def get_local_port(self, handle: int) -> int:
        """
        Bound UDP port of a session

        Args:
            handle: Session handle

        Returns:
            The port, or 0 for an unknown handle
        """
        session = self.get(handle)
        if session is None:
            return 0
        return session.local_port

    def handles(self) -> List[int]:
        with self._lock:
            return sorted(self.sessions)

    def stop_all(self, timeout: float = TunnelConfig.SHUTDOWN_TIMEOUT) -> None:
        """Stop every registered session"""
        with self._lock:
            sessions = list(self.sessions.values())
        for session in sessions:
            session.stop(0)
        for session in sessions:
            session.stop(timeout)
            self._remove(session)

    def __len__(self) -> int:
        with self._lock:
            return len(self.sessions)
