"""
Recordings catalog for Backtrack.

Tracks exported recordings and export history using SQLite.
"""

from backtrack.state.store import Store, RecordingEntry, ExportEntry

__all__ = ["Store", "RecordingEntry", "ExportEntry"]
