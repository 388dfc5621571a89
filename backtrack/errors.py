"""
Error types for Backtrack.

Hierarchy:
    BacktrackError
    ├── ExecutableNotFound
    │   └── EncoderNotFound
    ├── CaptureUnavailable
    ├── ProcessLaunchFailed
    ├── ProcessFailed
    │   └── MergeFailed
    ├── ChunkCaptureFailed
    │   └── EmptyChunkFile
    ├── NoChunksAvailable
    └── ExportInProgress

Chunk-level errors (ChunkCaptureFailed, EmptyChunkFile) are recovered inside
the recorder loop. Everything else reaches the caller.
"""

from typing import Optional


class BacktrackError(Exception):
    """Base class for all Backtrack errors."""

    pass


class ExecutableNotFound(BacktrackError):
    """An external binary could not be located."""

    def __init__(self, executable: str, hint: Optional[str] = None):
        self.executable = executable
        self.hint = hint
        message = f"Executable not found: {executable}"
        if hint:
            message += f". {hint}"
        super().__init__(message)


class EncoderNotFound(ExecutableNotFound):
    """The merge/encode binary (ffmpeg) is missing."""

    pass


class CaptureUnavailable(BacktrackError):
    """Screen capture is not possible (binary missing, no display, no permission)."""

    pass


class ProcessLaunchFailed(BacktrackError):
    """The OS refused to spawn a process."""

    def __init__(self, executable: str, reason: str):
        self.executable = executable
        self.reason = reason
        super().__init__(f"Failed to launch {executable}: {reason}")


class ProcessFailed(BacktrackError):
    """A process exited with a non-zero status."""

    def __init__(self, executable: str, exit_code: int, stderr: str = ""):
        self.executable = executable
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"{executable} exited with status {exit_code}"
        if stderr:
            message += f":\n{stderr}"
        super().__init__(message)


class MergeFailed(ProcessFailed):
    """The concat merge exited non-zero. stderr is kept verbatim."""

    pass


class ChunkCaptureFailed(BacktrackError):
    """A single chunk iteration produced nothing usable."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Chunk {path} discarded: {reason}")


class EmptyChunkFile(ChunkCaptureFailed):
    """The capture process finished but its output is missing or empty."""

    def __init__(self, path: str, size: int = 0):
        self.size = size
        reason = "file is empty" if size == 0 else f"unexpected size {size}"
        super().__init__(path, reason)


class NoChunksAvailable(BacktrackError):
    """The export window does not contain any buffered chunk."""

    def __init__(self, window: float):
        self.window = window
        super().__init__(f"No chunks recorded in the last {window:g}s")


class ExportInProgress(BacktrackError):
    """Another export is still merging."""

    def __init__(self):
        super().__init__("An export is already in progress")
