"""
Capture and encode integrations.

Components:
- FFmpeg: locate ffmpeg, merge chunk files via the concat demuxer
- CaptureBackend: build the fixed-duration screen capture command
"""

from backtrack.capture.ffmpeg import FFmpeg, ExportQuality, concat_list
from backtrack.capture.screen import (
    BACKENDS,
    CaptureBackend,
    ScreencaptureBackend,
    X11GrabBackend,
    detect_backend,
)

__all__ = [
    "FFmpeg",
    "ExportQuality",
    "concat_list",
    "BACKENDS",
    "CaptureBackend",
    "ScreencaptureBackend",
    "X11GrabBackend",
    "detect_backend",
]
