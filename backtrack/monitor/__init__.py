"""
Recordings directory monitoring.
"""

from backtrack.monitor.watcher import CatalogEventHandler, RecordingsWatcher

__all__ = ["CatalogEventHandler", "RecordingsWatcher"]
