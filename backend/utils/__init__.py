"""
ConfSync Backend Utilities Package.

Common utilities shared across all backend modules.
Requires Python 3.11+.
"""

from utils.config import Settings, get_settings
from utils.exceptions import ConfSyncError, LocalIOFailure, StoreUnavailable, WatchSetupFailure
from utils.logger import bind_node_context, configure_logging, get_logger, logger, LoggerMixin

__all__ = [
    "Settings",
    "get_settings",
    "ConfSyncError",
    "LocalIOFailure",
    "StoreUnavailable",
    "WatchSetupFailure",
    "bind_node_context",
    "configure_logging",
    "get_logger",
    "logger",
    "LoggerMixin",
]
