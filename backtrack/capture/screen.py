"""
Screen capture backends.

A backend turns (output path, duration) into a ProcessSpec for a process
that records exactly that long and exits on its own. Nobody sends it a stop
signal except an explicit stop of the recorder.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Type

from backtrack.capture.ffmpeg import FFmpeg
from backtrack.errors import CaptureUnavailable, EncoderNotFound
from backtrack.platform import Platform
from backtrack.process import Gateway, ProcessSpec


class CaptureBackend(ABC):
    """Base class for screen capture backends."""

    name: str = ""
    extension: str = "mov"

    def __init__(self, gateway: Gateway, platform: Optional[Platform] = None):
        self.gateway = gateway
        self.platform = platform or Platform.detect()

    @abstractmethod
    def check_available(self) -> None:
        """
        Verify capture can run here.

        Raises:
            CaptureUnavailable: With the reason
        """
        pass

    @abstractmethod
    def command(self, output: Path, duration: float, timeout: Optional[float] = None) -> ProcessSpec:
        """Build the capture process for one chunk."""
        pass

    def __repr__(self):
        return f"{type(self).__name__}()"


class ScreencaptureBackend(CaptureBackend):
    """
    macOS screencapture(1) in video mode.

    `screencapture -v -V <seconds> <file>` stops by itself after <seconds>.
    """

    name = "screencapture"
    extension = "mov"
    executable = "/usr/sbin/screencapture"

    def check_available(self) -> None:
        if not self.platform.is_macos:
            raise CaptureUnavailable(f"screencapture needs macOS (running on {self.platform.system})")
        if self.gateway.which(self.executable) is None:
            raise CaptureUnavailable(f"{self.executable} not found")

    def command(self, output: Path, duration: float, timeout: Optional[float] = None) -> ProcessSpec:
        return ProcessSpec(
            self.executable,
            ["-v", "-V", str(max(1, int(round(duration)))), str(output)],
            timeout=timeout,
        )


class X11GrabBackend(CaptureBackend):
    """
    ffmpeg x11grab for Linux desktops.

    Matroska output survives a SIGTERM mid-chunk, so a chunk cut short by
    stop() is still playable.
    """

    name = "x11grab"
    extension = "mkv"
    framerate = 30

    def __init__(
        self,
        gateway: Gateway,
        platform: Optional[Platform] = None,
        ffmpeg: Optional[FFmpeg] = None,
    ):
        super().__init__(gateway, platform)
        self.ffmpeg = ffmpeg or FFmpeg(gateway, platform=self.platform)

    @property
    def display(self) -> Optional[str]:
        return self.platform.display or os.environ.get("DISPLAY")

    def check_available(self) -> None:
        if not self.platform.is_linux:
            raise CaptureUnavailable(f"x11grab needs Linux (running on {self.platform.system})")
        if not self.display:
            raise CaptureUnavailable("No X11 display ($DISPLAY is not set)")
        try:
            self.ffmpeg.locate()
        except EncoderNotFound as e:
            raise CaptureUnavailable(str(e)) from e

    def command(self, output: Path, duration: float, timeout: Optional[float] = None) -> ProcessSpec:
        return ProcessSpec(
            self.ffmpeg.locate(),
            [
                "-nostdin",
                "-hide_banner",
                "-loglevel", "error",
                "-f", "x11grab",
                "-framerate", str(self.framerate),
                "-i", self.display or ":0",
                "-t", f"{duration:g}",
                "-c:v", "libx264",
                "-preset", "ultrafast",
                "-pix_fmt", "yuv420p",
                "-y",
                str(output),
            ],
            timeout=timeout,
        )


BACKENDS: Dict[str, Type[CaptureBackend]] = {
    ScreencaptureBackend.name: ScreencaptureBackend,
    X11GrabBackend.name: X11GrabBackend,
}


def detect_backend(
    gateway: Gateway,
    platform: Optional[Platform] = None,
    name: str = "auto",
    ffmpeg: Optional[FFmpeg] = None,
) -> CaptureBackend:
    """
    Pick a capture backend.

    Args:
        gateway: Process gateway
        platform: Platform info (detected if None)
        name: Backend name, or "auto" to choose by platform
        ffmpeg: Shared FFmpeg helper for ffmpeg-based backends

    Raises:
        CaptureUnavailable: Unknown name, or no backend for this platform
    """
    platform = platform or Platform.detect()

    if name == "auto":
        if platform.is_macos:
            name = ScreencaptureBackend.name
        elif platform.is_linux:
            name = X11GrabBackend.name
        else:
            raise CaptureUnavailable(f"No capture backend for {platform.system}")

    backend_cls = BACKENDS.get(name)
    if backend_cls is None:
        choices = ", ".join(sorted(BACKENDS))
        raise CaptureUnavailable(f"Unknown capture backend '{name}' (choose from {choices})")

    if backend_cls is X11GrabBackend:
        return X11GrabBackend(gateway, platform, ffmpeg=ffmpeg)
    return backend_cls(gateway, platform)
