"""
Runtime configuration.

Every value has a default; the CLI maps its options (and BACKTRACK_*
environment variables) onto BufferConfig.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from backtrack.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_DURATION = 10.0
DEFAULT_BUFFER_DURATION = 120.0
DEFAULT_EXPORT_WINDOW = 60.0


def default_state_dir() -> Path:
    """Get default state directory (~/.backtrack)."""
    return Path.home() / ".backtrack"


def default_buffer_dir() -> Path:
    return default_state_dir() / "buffer"


def default_recordings_dir() -> Path:
    return Path.home() / "Videos" / "Backtrack"


def default_catalog_path() -> Path:
    return default_state_dir() / "catalog.db"


@dataclass
class BufferConfig:
    """
    Rolling buffer settings.

    chunk_duration: length of each capture, in seconds
    buffer_duration: how far back chunks are kept
    export_window: how much an export covers by default
    """
    chunk_duration: float = DEFAULT_CHUNK_DURATION
    buffer_duration: float = DEFAULT_BUFFER_DURATION
    export_window: float = DEFAULT_EXPORT_WINDOW
    buffer_dir: Path = field(default_factory=default_buffer_dir)
    recordings_dir: Path = field(default_factory=default_recordings_dir)
    catalog_path: Optional[Path] = field(default_factory=default_catalog_path)

    capture_backend: str = "auto"  # auto, screencapture, x11grab
    ffmpeg_path: Optional[str] = None
    quality: str = "medium"  # high, medium, low
    export_extension: str = "mov"

    # Extra seconds a capture may run past chunk_duration before it is killed
    capture_grace: float = 2.0
    # How long to wait for the chunk file to appear after the capture exits
    settle_timeout: float = 2.0

    failure_threshold: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0

    def __post_init__(self):
        self.buffer_dir = Path(self.buffer_dir).expanduser()
        self.recordings_dir = Path(self.recordings_dir).expanduser()
        if self.catalog_path is not None:
            self.catalog_path = Path(self.catalog_path).expanduser()

    @property
    def capture_timeout(self) -> float:
        """Hard limit for one capture process."""
        return self.chunk_duration + self.capture_grace

    def validate(self) -> "BufferConfig":
        """
        Check the settings make sense together.

        Raises:
            ValueError: On impossible combinations

        Returns:
            self, for chaining
        """
        from backtrack.capture.ffmpeg import ExportQuality

        for name in ("chunk_duration", "buffer_duration", "export_window"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        if self.buffer_duration < self.chunk_duration:
            raise ValueError(
                f"buffer_duration ({self.buffer_duration:g}s) is shorter than "
                f"chunk_duration ({self.chunk_duration:g}s)"
            )

        if self.export_window > self.buffer_duration:
            raise ValueError(
                f"export_window ({self.export_window:g}s) exceeds "
                f"buffer_duration ({self.buffer_duration:g}s)"
            )

        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")

        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff values must not be negative")

        try:
            ExportQuality(self.quality)
        except ValueError:
            choices = ", ".join(q.value for q in ExportQuality)
            raise ValueError(f"Unknown quality '{self.quality}' (choose from {choices})")

        buffer_dir = self.buffer_dir.resolve()
        recordings_dir = self.recordings_dir.resolve()
        if (
            buffer_dir == recordings_dir
            or buffer_dir in recordings_dir.parents
            or recordings_dir in buffer_dir.parents
        ):
            raise ValueError(
                f"buffer_dir ({buffer_dir}) and recordings_dir ({recordings_dir}) must not overlap"
            )

        remainder = self.buffer_duration % self.chunk_duration
        if remainder > 1e-9 and abs(remainder - self.chunk_duration) > 1e-9:
            logger.warning(
                f"buffer_duration {self.buffer_duration:g}s is not a multiple of "
                f"chunk_duration {self.chunk_duration:g}s"
            )

        return self
