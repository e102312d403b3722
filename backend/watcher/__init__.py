"""
ConfSync File Watcher Package.

Change notifications for individual configuration files.
Requires Python 3.11+.
"""

from watcher.file_watcher import FileWatcher, WatchedFile
from watcher.debouncer import Debouncer

__all__ = ["FileWatcher", "WatchedFile", "Debouncer"]
