"""
Core Backtrack functionality.

Exports the rolling buffer, recorder, exporter and controller.
"""

from backtrack.core.chunk import Chunk, chunk_filename, parse_chunk_filename
from backtrack.core.buffer import BufferStore
from backtrack.core.recorder import ChunkRecorder, RecorderStats
from backtrack.core.exporter import ExportArtifact, ExportCoordinator
from backtrack.core.controller import RecordingController, SessionState

__all__ = [
    "Chunk",
    "chunk_filename",
    "parse_chunk_filename",
    "BufferStore",
    "ChunkRecorder",
    "RecorderStats",
    "ExportArtifact",
    "ExportCoordinator",
    "RecordingController",
    "SessionState",
]
