"""
Utilities module for the AFK fleet.

This module provides common utilities:
- Logging setup (console, rotating files, live log streams)
- Configuration management
- Duration formatting
"""

from .logger import (
    CallbackHandler,
    setup_logging,
    add_stream,
    remove_stream
)
from .timefmt import format_duration

__all__ = [
    'CallbackHandler',
    'setup_logging',
    'add_stream',
    'remove_stream',
    'format_duration'
]
