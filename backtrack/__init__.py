__version__ = "0.1.0"

from backtrack.config import BufferConfig
from backtrack.core import (
    BufferStore,
    Chunk,
    ChunkRecorder,
    ExportCoordinator,
    RecordingController,
    SessionState,
)
from backtrack.app import App, create_app
from backtrack.logging import get_logger, get_backtrack_logger, setup_logging

"""
Foundations of Backtrack:
    Chunk is one fixed-length capture file in the buffer directory.
    BufferStore holds the chunks of the last buffer_duration seconds.
    ChunkRecorder captures chunks back to back until stopped.
    ExportCoordinator merges the last export_window seconds into one recording.
    RecordingController is the Idle/Recording switch over all of it.
"""

__all__ = [
    "BufferConfig",
    "BufferStore",
    "Chunk",
    "ChunkRecorder",
    "ExportCoordinator",
    "RecordingController",
    "SessionState",
    "App",
    "create_app",
    "get_logger",
    "get_backtrack_logger",
    "setup_logging",
]
