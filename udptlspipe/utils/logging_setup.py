"""
Logging configuration for the command-line client.
Console output goes to stderr so that stdout stays free for the rewritten
WireGuard configuration; an optional rotating file receives the same lines.
"""
import os
import logging
import logging.handlers
import sys
from typing import List, Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
THREADED_FORMAT = '%(asctime)s - %(name)s - [%(threadName)s] - %(levelname)s - %(message)s'

# Marks handlers owned by setup_logging; others (the host callback handler) are left alone
CLI_HANDLER_FLAG = "_pipe_cli_handler"


def _owned_handlers(logger: logging.Logger) -> List[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, CLI_HANDLER_FLAG, False)]


def _attach(logger: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    setattr(handler, CLI_HANDLER_FLAG, True)
    logger.addHandler(handler)


def _rotating_file_handler(path: str, max_size: int, backup_count: int) -> logging.Handler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return logging.handlers.RotatingFileHandler(path, maxBytes=max_size, backupCount=backup_count)


def setup_logging(
    app_name: str = "udptlspipe",
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_to_console: bool = True,
    log_format: Optional[str] = None,
    max_size: int = 10485760,  # 10 MB
    backup_count: int = 5,
    include_thread_info: bool = False
) -> logging.Logger:
    """
    Configure the pipe logger hierarchy for command-line use

    Calling it again replaces the handlers added by the previous call.

    Args:
        app_name: Root of the logger hierarchy
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Rotating log file path (None for no file)
        log_to_console: Write to stderr
        log_format: Format string (None picks one by include_thread_info)
        max_size: Rotation size in bytes
        backup_count: Rotated files to keep
        include_thread_info: Add the worker thread name to each line

    Returns:
        The configured logger
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))

    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format or (THREADED_FORMAT if include_thread_info
                                                 else DEFAULT_FORMAT))
    if log_to_console:
        _attach(logger, logging.StreamHandler(sys.stderr), formatter)

    if log_file:
        try:
            _attach(logger, _rotating_file_handler(log_file, max_size, backup_count), formatter)
        except OSError as e:
            logger.error(f"Cannot open log file {log_file}: {e}")
        else:
            logger.info(f"Logging to file: {log_file}")

    logger.debug(f"{app_name} logging at level {logging.getLevelName(logger.level)}")
    return logger
