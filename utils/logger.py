"""
logger.py - Logging setup for the AFK fleet.

Installs three kinds of handlers on the root logger:
- Console output
- Rotating files: error.log (errors only) and combined.log (everything)
- A callback handler that streams formatted lines to live subscribers,
  e.g. a chat adapter relaying logs to an operator
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional, Set

LOG_FORMAT = '[%(asctime)s] %(levelname)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MAX_LOG_BYTES = 50 * 1024 * 1024
LOG_BACKUPS = 7

LogStream = Callable[[str], None]


class CallbackHandler(logging.Handler):
    """
    Logging handler that forwards formatted records to callbacks.

    A failing callback is reported on stderr and never stops delivery to
    the others.
    """

    def __init__(self, level: int = logging.NOTSET):
        super().__init__(level)
        self.callbacks: Set[LogStream] = set()

    def emit(self, record: logging.LogRecord) -> None:
        if not self.callbacks:
            return
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return

        for callback in list(self.callbacks):
            try:
                callback(message)
            except Exception:
                self.handleError(record)

    def add_callback(self, callback: LogStream) -> None:
        self.callbacks.add(callback)

    def remove_callback(self, callback: LogStream) -> None:
        self.callbacks.discard(callback)


_callback_handler = CallbackHandler()


def add_stream(callback: LogStream) -> None:
    """Subscribe to formatted log lines."""
    _callback_handler.add_callback(callback)


def remove_stream(callback: LogStream) -> None:
    _callback_handler.remove_callback(callback)


def resolve_level(level: Optional[str] = None) -> int:
    """Pick the log level from the argument, then LOG_LEVEL, then INFO."""
    name = (level or os.environ.get('LOG_LEVEL') or 'INFO').upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = 'logs') -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Level name; falls back to the LOG_LEVEL environment variable
        log_dir: Directory for rotating log files (None disables files)

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.setLevel(resolve_level(level))

    # Re-running setup replaces the handlers installed last time
    for handler in list(root.handlers):
        if getattr(handler, '_afk_fleet', False):
            root.removeHandler(handler)
            if handler is not _callback_handler:
                handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    handlers = [console]

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)

        error_file = RotatingFileHandler(
            os.path.join(log_dir, 'error.log'),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUPS,
            encoding='utf-8'
        )
        error_file.setLevel(logging.ERROR)
        handlers.append(error_file)

        combined_file = RotatingFileHandler(
            os.path.join(log_dir, 'combined.log'),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUPS,
            encoding='utf-8'
        )
        handlers.append(combined_file)

    handlers.append(_callback_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._afk_fleet = True
        root.addHandler(handler)

    return root
