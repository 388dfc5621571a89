"""
ChunkRecorder - the perpetual capture loop.

Each iteration:
1. Evict expired chunks
2. Pick a destination from the current time
3. Launch a capture that stops itself after chunk_duration
4. Wait for it
5. Register the file if it exists and is non-empty, otherwise discard it

Chunk boundaries come from the capture process's own duration limit, not
from a timer here. A failed iteration never ends the loop.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from backtrack.capture.screen import CaptureBackend
from backtrack.config import BufferConfig
from backtrack.core.buffer import BufferStore
from backtrack.core.chunk import Chunk, chunk_filename, utc_now
from backtrack.errors import (
    BacktrackError,
    CaptureUnavailable,
    ChunkCaptureFailed,
    EmptyChunkFile,
    ExecutableNotFound,
)
from backtrack.logging import get_logger
from backtrack.process import Gateway, ProcessHandle

logger = get_logger(__name__)

# Poll interval while waiting for a chunk file to show up
SETTLE_POLL_INTERVAL = 0.1


@dataclass
class RecorderStats:
    """Counters for observing the loop from outside."""
    iterations: int = 0
    recorded: int = 0
    discarded: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_chunk_at: Optional[datetime] = None


class ChunkRecorder:
    """
    Records fixed-duration chunks into a BufferStore until stopped.

    Example:
        recorder = ChunkRecorder(gateway, backend, store, config)
        recorder.start()
        ...
        recorder.stop()
    """

    def __init__(
        self,
        gateway: Gateway,
        backend: CaptureBackend,
        store: BufferStore,
        config: BufferConfig,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize recorder.

        Args:
            gateway: Launches capture processes
            backend: Builds the capture command
            store: Buffer that receives finished chunks
            config: Durations, directories, backoff
            clock: Source of "now" as an aware UTC datetime (tests substitute it)
        """
        self.gateway = gateway
        self.backend = backend
        self.store = store
        self.config = config
        self.clock = clock

        self._lock = threading.Lock()
        # Serializes start/stop so a start during stop's join waits for it
        self._lifecycle = threading.Lock()
        self._running = False
        self._wakeup = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._current: Optional[ProcessHandle] = None
        self.stats = RecorderStats()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def capturing(self) -> bool:
        """True while a capture process is in flight."""
        with self._lock:
            return self._current is not None and not self._current.done

    def start(self) -> None:
        """
        Start the loop on a background thread.

        No-op if already running.

        Raises:
            CaptureUnavailable: If the backend cannot record here
        """
        with self._lifecycle, self._lock:
            if self._running:
                return

            self.backend.check_available()
            self.config.buffer_dir.mkdir(parents=True, exist_ok=True)

            self._running = True
            self._wakeup.clear()
            self.stats.consecutive_failures = 0
            self._thread = threading.Thread(
                target=self._loop,
                name="backtrack-recorder",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            f"Recording {self.config.chunk_duration:g}s chunks with {self.backend.name}, "
            f"keeping {self.config.buffer_duration:g}s"
        )

    def stop(self) -> None:
        """
        Stop the loop and wait for it to exit.

        Cancels the in-flight capture. Once this returns no further chunk
        will be registered. No-op if not running.
        """
        with self._lifecycle:
            if not self._stop_loop():
                return

        logger.info("Recording stopped")

    def _stop_loop(self) -> bool:
        with self._lock:
            thread = self._thread
            if not self._running and thread is None:
                return False
            self._running = False
            self._wakeup.set()
            handle = self._current

        if handle is not None:
            handle.cancel()

        if thread is not None and thread is not threading.current_thread():
            thread.join()

        with self._lock:
            self._thread = None

        return True

    def _loop(self) -> None:
        while self.running:
            try:
                chunk = self.record_chunk()
            except BacktrackError as e:
                logger.warning(f"Chunk iteration failed: {e}")
                self._failed(str(e))
                chunk = None
            except Exception as e:
                logger.error(f"Chunk iteration failed: {e}", exc_info=True)
                self._failed(str(e))
                chunk = None

            if chunk is None and self.running:
                self._backoff()

    def _backoff(self) -> None:
        """Sleep after repeated failures. stop() interrupts it."""
        failures = self.stats.consecutive_failures
        threshold = self.config.failure_threshold
        if failures < threshold:
            return

        delay = min(
            self.config.backoff_base * (2 ** (failures - threshold)),
            self.config.backoff_max,
        )
        if failures == threshold:
            logger.warning(
                f"{failures} consecutive chunk failures, backing off "
                f"(last error: {self.stats.last_error})"
            )
        if delay > 0:
            logger.debug(f"Backing off {delay:g}s before next chunk")
            self._wakeup.wait(delay)

    def _failed(self, reason: str) -> None:
        self.stats.discarded += 1
        self.stats.consecutive_failures += 1
        self.stats.last_error = reason

    def _chunk_path(self, created_at: datetime) -> Path:
        extension = self.backend.extension
        serial = 0
        while True:
            path = self.config.buffer_dir / chunk_filename(created_at, extension, serial)
            if not path.exists():
                return path
            serial += 1

    def record_chunk(self) -> Optional[Chunk]:
        """
        Run one iteration of the loop.

        Returns:
            The registered chunk, or None if the iteration was discarded or
            skipped because a capture is already in flight
        """
        self.store.evict_expired(self.clock(), self.config.buffer_duration)

        with self._lock:
            if self._current is not None and not self._current.done:
                logger.debug("Capture already in progress, skipping")
                return None

            # Checked under the lock so stop() either sees this handle or
            # prevents the launch
            if self._thread is not None and not self._running:
                return None

            self.stats.iterations += 1
            created_at = self.clock()
            path = self._chunk_path(created_at)
            spec = self.backend.command(
                path,
                self.config.chunk_duration,
                timeout=self.config.capture_timeout,
            )
            try:
                handle = self.gateway.launch(spec)
            except ExecutableNotFound as e:
                raise CaptureUnavailable(str(e)) from e
            self._current = handle

        started = time.monotonic()
        try:
            result = handle.wait()
        finally:
            with self._lock:
                if self._current is handle:
                    self._current = None

        if not result.success and not result.cancelled:
            logger.warning(
                f"Capture exited with status {result.exit_code}"
                + (f": {result.stderr.strip()}" if result.stderr.strip() else "")
            )

        try:
            size = self._settled_size(path, wait=not result.cancelled)
            if size <= 0:
                raise EmptyChunkFile(str(path), size)
        except ChunkCaptureFailed as e:
            logger.warning(str(e))
            self._discard(path)
            self._failed(str(e))
            return None

        duration = self.config.chunk_duration
        if result.cancelled:
            duration = min(duration, time.monotonic() - started)

        chunk = Chunk(path=path, created_at=created_at, duration=duration)
        self.store.add(chunk)
        self.stats.recorded += 1
        self.stats.consecutive_failures = 0
        self.stats.last_chunk_at = created_at
        logger.info(f"Recorded {path.name} ({size} bytes, {len(self.store)} buffered)")
        return chunk

    def _settled_size(self, path: Path, wait: bool = True) -> int:
        """Size of path, waiting up to settle_timeout for it to appear."""
        deadline = time.monotonic() + (self.config.settle_timeout if wait else 0)
        while True:
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                size = -1

            if size > 0 or time.monotonic() >= deadline:
                break
            if self._wakeup.wait(SETTLE_POLL_INTERVAL):
                break

        if size < 0:
            raise ChunkCaptureFailed(str(path), "file was not created")
        return size

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove partial chunk {path}: {e}")
