"""Process plumbing shared by the discharger add-on.

Covers logging setup, signal-driven shutdown and the interruptible
background loop used for periodic work.

Usage:
    from shared.addon_base import setup_logging, setup_signal_handlers, run_addon_loop

    logger = setup_logging(name=__name__)
    shutdown_event = setup_signal_handlers(logger)

    run_addon_loop(poll_status, 60, shutdown_event, logger)
"""

import logging
import os
import signal
import threading
from logging.handlers import RotatingFileHandler
from typing import Callable, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def setup_logging(level: int = logging.INFO, name: Optional[str] = None, log_dir: str = "/data/logs") -> logging.Logger:
    """Configure console logging plus a rotating file in the data directory.

    Args:
        level: Logging level (default: INFO)
        name: Logger name (default: None for root logger)
        log_dir: Directory for log files (default: /data/logs)

    Returns:
        Configured logger instance
    """
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger = logging.getLogger(name)

    try:
        os.makedirs(log_dir, exist_ok=True)
        log_name = (name or "discharger").replace(".", "_")
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, f"{log_name}.log"),
            maxBytes=2 * 1024 * 1024,
            backupCount=3,
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)
    except OSError:
        # Console logging is enough when /data is not writable (local runs)
        logger.debug("Could not set up file logging in %s", log_dir)

    return logger


def set_log_level(level_name: str) -> int:
    """Apply a config-style level name ("debug", "info", ...) to the root logger.

    Unknown names fall back to INFO. Returns the numeric level applied.
    """
    level = LOG_LEVELS.get((level_name or 'info').lower(), logging.INFO)
    logging.getLogger().setLevel(level)
    return level


def setup_signal_handlers(logger: Optional[logging.Logger] = None) -> threading.Event:
    """Register SIGTERM and SIGINT handlers for graceful shutdown.

    Args:
        logger: Optional logger for shutdown messages

    Returns:
        Event that will be set when shutdown signal is received
    """
    shutdown_event = threading.Event()
    _logger = logger or logging.getLogger(__name__)

    def signal_handler(signum, frame):
        _logger.info("Received signal %d, initiating graceful shutdown...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    return shutdown_event


def sleep_with_shutdown_check(shutdown_event: threading.Event, total_seconds: float) -> bool:
    """Sleep for the given duration unless shutdown is requested first.

    Returns:
        True if the sleep completed normally, False if shutdown was requested
    """
    if total_seconds <= 0:
        return not shutdown_event.is_set()
    return not shutdown_event.wait(timeout=total_seconds)


def run_addon_loop(
    update_func: Callable[[], None],
    interval_seconds: float,
    shutdown_event: threading.Event,
    logger: Optional[logging.Logger] = None,
    run_once: bool = False
) -> None:
    """Call update_func every interval_seconds until shutdown.

    Exceptions raised by update_func are logged and the loop continues.

    Args:
        update_func: Function to call each iteration
        interval_seconds: Sleep interval between iterations
        shutdown_event: Event to check for shutdown
        logger: Optional logger for error messages
        run_once: If True, exit after first iteration
    """
    _logger = logger or logging.getLogger(__name__)

    while not shutdown_event.is_set():
        try:
            update_func()
        except Exception as e:
            _logger.error("Error in update loop: %s", e, exc_info=True)

        if run_once:
            _logger.info("Single iteration complete, exiting")
            break

        if not sleep_with_shutdown_check(shutdown_event, interval_seconds):
            break
