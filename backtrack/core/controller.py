"""
RecordingController - Idle/Recording state machine.

    Idle --start()--> Recording    clear buffer, start recorder
    Recording --stop()--> Idle     stop recorder

start() while Recording and stop() while Idle are no-ops.
"""

import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from backtrack.capture.ffmpeg import ExportQuality
from backtrack.config import BufferConfig
from backtrack.core.buffer import BufferStore
from backtrack.core.exporter import ExportArtifact, ExportCoordinator
from backtrack.core.recorder import ChunkRecorder
from backtrack.logging import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """Recording session states."""
    IDLE = "idle"
    RECORDING = "recording"


StateListener = Callable[[SessionState], None]


class RecordingController:
    """
    Top-level start/stop for the rolling recorder.

    Example:
        with RecordingController(recorder, store, config, exporter) as controller:
            controller.start()
            ...
            artifact = controller.export_last()
    """

    def __init__(
        self,
        recorder: ChunkRecorder,
        store: BufferStore,
        config: BufferConfig,
        exporter: Optional[ExportCoordinator] = None,
    ):
        self.recorder = recorder
        self.store = store
        self.config = config
        self.exporter = exporter
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is SessionState.RECORDING

    def subscribe(self, listener: StateListener) -> None:
        """Call listener with the new state after each transition."""
        self._listeners.append(listener)

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")

    def start(self) -> None:
        """
        Discard stale chunks and start recording.

        Raises:
            CaptureUnavailable: Recording cannot run here; state stays Idle
        """
        with self._lock:
            if self._state is SessionState.RECORDING:
                return

            cleared = self.store.clear_all(directory=self.config.buffer_dir)
            if cleared:
                logger.info(f"Discarded {cleared} stale chunk file(s)")

            self.recorder.start()
            self._set_state(SessionState.RECORDING)

    def stop(self) -> None:
        """Stop recording and wait for the capture loop to exit."""
        with self._lock:
            if self._state is SessionState.IDLE:
                return

            self.recorder.stop()
            self._set_state(SessionState.IDLE)

    def export_last(
        self,
        window: Optional[float] = None,
        quality: Optional[ExportQuality] = None,
    ) -> ExportArtifact:
        """Delegate to the export coordinator. Does not touch the session state."""
        if self.exporter is None:
            raise RuntimeError("No export coordinator configured")
        return self.exporter.export_last(window, quality)

    def status(self) -> Dict[str, Any]:
        """Snapshot for display."""
        stats = self.recorder.stats
        latest = self.store.latest()
        return {
            "state": self._state.value,
            "chunks": len(self.store),
            "buffered_seconds": self.store.buffered_seconds(),
            "latest_chunk": latest.file_name if latest else None,
            "recorded": stats.recorded,
            "discarded": stats.discarded,
            "consecutive_failures": stats.consecutive_failures,
            "last_error": stats.last_error,
            "exporting": bool(self.exporter and self.exporter.exporting),
        }

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - stops recording."""
        self.stop()
