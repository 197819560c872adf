"""
Diagnostics facade for the pipe client.
Routes log records to a host-supplied callback and keeps the most recent
failure message in a clearable slot.
"""
import enum
import logging
import threading
from typing import Any, Callable, Dict, Optional


LoggerCallback = Callable[[Any, int, str], None]

ROOT_LOGGER_NAME = "udptlspipe"


class LogLevel(enum.IntEnum):
    """Levels understood by the host logger callback"""
    VERBOSE = 0
    ERROR = 1

    @classmethod
    def from_record_level(cls, levelno: int) -> "LogLevel":
        """Collapse a logging module level into the two host levels"""
        return cls.ERROR if levelno >= logging.WARNING else cls.VERBOSE


class Logger:
    """
    Capability that receives (level, message) pairs
    """
    def log(self, level: LogLevel, message: str) -> None:
        raise NotImplementedError("Subclasses must implement log")


class NullLogger(Logger):
    """Logger used while no callback is installed"""
    def log(self, level: LogLevel, message: str) -> None:
        return None


class CallbackLogger(Logger):
    """
    Logger that forwards to a C-style callback with an opaque context
    """
    def __init__(self, context: Any, callback: LoggerCallback):
        """
        Initialize the callback logger

        Args:
            context: Opaque value handed back on every call
            callback: Function called as callback(context, level, message)
        """
        self.context = context
        self.callback = callback

    def log(self, level: LogLevel, message: str) -> None:
        self.callback(self.context, int(level), message.rstrip("\n"))


class CallbackHandler(logging.Handler):
    """
    logging.Handler that hands formatted records to the current Logger
    """
    def __init__(self, diagnostics: "Diagnostics"):
        super().__init__(level=logging.DEBUG)
        self.diagnostics = diagnostics
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        logger = self.diagnostics.logger
        if isinstance(logger, NullLogger):
            return
        try:
            logger.log(LogLevel.from_record_level(record.levelno), self.format(record))
        except Exception:
            self.handleError(record)


class LastErrorSlot:
    """
    Single process-wide optional error message
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._message: Optional[str] = None

    def set(self, message: Optional[str]) -> None:
        with self._lock:
            self._message = message or None

    def get(self) -> Optional[str]:
        with self._lock:
            return self._message

    def clear(self) -> None:
        self.set(None)


class _VerboseHold:
    """
    Keeps a logger at DEBUG while at least one host callback is installed,
    then puts back the level it had before
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._holders: Dict[str, int] = {}
        self._saved: Dict[str, int] = {}

    def acquire(self, log: logging.Logger) -> None:
        with self._lock:
            count = self._holders.get(log.name, 0)
            if count == 0:
                self._saved[log.name] = log.level
                log.setLevel(logging.DEBUG)
            self._holders[log.name] = count + 1

    def release(self, log: logging.Logger) -> None:
        with self._lock:
            count = self._holders.get(log.name, 0)
            if count == 0:
                return
            if count == 1:
                del self._holders[log.name]
                log.setLevel(self._saved.pop(log.name))
            else:
                self._holders[log.name] = count - 1


_verbose_hold = _VerboseHold()


class Diagnostics:
    """
    Owns the installed Logger, the forwarding handler and the last-error slot.

    The logger level is left to the host until a callback is installed; only
    then is the hierarchy opened up to DEBUG so verbose lines reach it.
    """
    def __init__(self, logger_name: str = ROOT_LOGGER_NAME):
        """
        Initialize diagnostics and attach the forwarding handler

        Args:
            logger_name: Name of the logging hierarchy to forward
        """
        self.logger: Logger = NullLogger()
        self.last_error = LastErrorSlot()
        self.handler = CallbackHandler(self)
        self._holding_level = False
        self._state_lock = threading.Lock()

        self._log = logging.getLogger(logger_name)
        self._log.addHandler(self.handler)

    def set_logger(self, context: Any, callback: Optional[LoggerCallback]) -> None:
        """
        Install or replace the host callback

        Args:
            context: Opaque context pointer for the callback
            callback: The callback, or None to disable forwarding
        """
        with self._state_lock:
            if callback is None:
                self.logger = NullLogger()
                if self._holding_level:
                    self._holding_level = False
                    _verbose_hold.release(self._log)
            else:
                self.logger = CallbackLogger(context, callback)
                if not self._holding_level:
                    self._holding_level = True
                    _verbose_hold.acquire(self._log)

    def record_failure(self, error: BaseException, prefix: str = "") -> str:
        """
        Store an error in the last-error slot and log it

        Args:
            error: The failure to record
            prefix: Optional context prepended to the message

        Returns:
            The recorded message
        """
        message = f"{prefix}{error}" if prefix else str(error)
        self.last_error.set(message)
        self._log.error(message)
        return message

    def close(self) -> None:
        """Detach the forwarding handler and give the logger level back"""
        self.set_logger(None, None)
        self._log.removeHandler(self.handler)
