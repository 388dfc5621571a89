"""
ExportCoordinator - turn the tail of the buffer into one recording.

Export never modifies the buffer. It checks out a snapshot of the chunks in
the window (pinning their files), merges them with ffmpeg, and records the
result in the catalog when one is attached.
"""

import os
import socket
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from backtrack.capture.ffmpeg import ExportQuality, FFmpeg
from backtrack.config import BufferConfig
from backtrack.core.buffer import BufferStore
from backtrack.core.chunk import Chunk, local_time, utc_now
from backtrack.errors import BacktrackError, ExportInProgress, MergeFailed, NoChunksAvailable
from backtrack.logging import get_logger
from backtrack.state.store import ExportEntry, RecordingEntry, Store

logger = get_logger(__name__)


@dataclass
class ExportArtifact:
    """A merged recording produced by an export."""
    path: Path
    created_at: datetime
    duration: float
    chunk_count: int
    file_size: int
    quality: ExportQuality
    window: float

    @property
    def file_name(self) -> str:
        return self.path.name


class ExportCoordinator:
    """
    Exports the last N seconds of the buffer.

    Example:
        exporter = ExportCoordinator(store, ffmpeg, config)
        artifact = exporter.export_last(60)
        print(artifact.path)
    """

    def __init__(
        self,
        store: BufferStore,
        ffmpeg: FFmpeg,
        config: BufferConfig,
        catalog: Optional[Store] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize export coordinator.

        Args:
            store: Buffer to read chunks from
            ffmpeg: Encoder used for the merge
            config: Default window, quality and recordings directory
            catalog: Recordings catalog (optional)
            clock: Source of "now" (tests substitute it)
        """
        self.store = store
        self.ffmpeg = ffmpeg
        self.config = config
        self.catalog = catalog
        self.clock = clock
        self._lock = threading.Lock()

    @property
    def exporting(self) -> bool:
        return self._lock.locked()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no export is running.

        Returns:
            False if the timeout expired first
        """
        if not self._lock.acquire(timeout=-1 if timeout is None else timeout):
            return False
        self._lock.release()
        return True


    def output_path(self, now: datetime) -> Path:
        """Unused `Recording <timestamp>.<ext>` path in the recordings directory."""
        base = f"Recording {local_time(now):%Y-%m-%d %H.%M.%S}"
        extension = self.config.export_extension
        directory = self.config.recordings_dir

        path = directory / f"{base}.{extension}"
        counter = 2
        while path.exists():
            path = directory / f"{base} ({counter}).{extension}"
            counter += 1
        return path

    def select(self, window: float, now: Optional[datetime] = None) -> List[Chunk]:
        """Chunks an export of `window` seconds would use, oldest first."""
        now = now or self.clock()
        return self.store.query_range(now - timedelta(seconds=window), now)

    def export_last(
        self,
        window: Optional[float] = None,
        quality: Optional[ExportQuality] = None,
    ) -> ExportArtifact:
        """
        Merge the chunks recorded in the last `window` seconds.

        Args:
            window: Seconds to export (default: config.export_window)
            quality: Encoder preset (default: config.quality)

        Raises:
            ExportInProgress: Another export is still running
            NoChunksAvailable: Nothing recorded in the window
            EncoderNotFound: ffmpeg is missing
            MergeFailed: ffmpeg failed (stderr attached)

        Returns:
            ExportArtifact describing the new recording
        """
        window = window if window is not None else self.config.export_window
        quality = quality or ExportQuality(self.config.quality)

        if window <= 0:
            raise ValueError(f"Export window must be positive, got {window}")

        if not self._lock.acquire(blocking=False):
            raise ExportInProgress()

        try:
            return self._export(window, quality)
        finally:
            self._lock.release()

    def _export(self, window: float, quality: ExportQuality) -> ExportArtifact:
        now = self.clock()
        cutoff = now - timedelta(seconds=window)
        chunk_count = 0

        try:
            with self.store.checkout(cutoff, now) as chunks:
                chunk_count = len(chunks)
                if not chunks:
                    raise NoChunksAvailable(window)

                output = self.output_path(now)
                logger.info(
                    f"Exporting last {window:g}s: {chunk_count} chunk(s) "
                    f"from {local_time(chunks[0].created_at):%H:%M:%S} -> {output.name}"
                )
                self.ffmpeg.merge([c.path for c in chunks], output, quality)
                duration = sum(c.duration for c in chunks)
                file_size = self._output_size(output)
        except BacktrackError as e:
            logger.error(f"Export failed: {e}")
            self._record_history(now, window, chunk_count, error=str(e))
            raise

        artifact = ExportArtifact(
            path=output,
            created_at=now,
            duration=duration,
            chunk_count=chunk_count,
            file_size=file_size,
            quality=quality,
            window=window,
        )
        logger.info(f"Exported {artifact.file_name} ({artifact.file_size} bytes)")

        if self.catalog is not None:
            self.catalog.add_recording(RecordingEntry(
                path=str(output),
                created_at=local_time(now),
                duration=duration,
                file_size=artifact.file_size,
                chunk_count=chunk_count,
            ))
        self._record_history(now, window, chunk_count, output=str(output))
        return artifact

    def _output_size(self, output: Path) -> int:
        """Size of the merged file; an encoder that exited 0 without writing it failed."""
        try:
            size = output.stat().st_size
        except FileNotFoundError:
            size = 0

        if size <= 0:
            output.unlink(missing_ok=True)
            raise MergeFailed("ffmpeg", 0, f"no output written to {output.name}")
        return size

    def _record_history(
        self,
        now: datetime,
        window: float,
        chunk_count: int,
        output: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.catalog is None:
            return

        self.catalog.add_export(ExportEntry(
            timestamp=local_time(now),
            window=window,
            chunk_count=chunk_count,
            success=error is None,
            output=output,
            error=error,
            user=os.getenv("USER", "unknown"),
            hostname=socket.gethostname(),
        ))
