"""
FFmpeg wrapper - locate the binary, merge chunks and trim recordings.

Merging uses the concat demuxer. The list file looks like:

    file '/home/me/.backtrack/buffer/chunk_2025-07-13T10-00-00.000.mov'
    file '/home/me/.backtrack/buffer/chunk_2025-07-13T10-00-10.004.mov'
"""

import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from backtrack.errors import EncoderNotFound, ExecutableNotFound, MergeFailed
from backtrack.logging import get_logger
from backtrack.platform import Platform
from backtrack.process import Gateway, ProcessResult, ProcessSpec

logger = get_logger(__name__)

# Checked after $PATH, in order
FFMPEG_SEARCH_PATHS = [
    "/opt/homebrew/bin/ffmpeg",  # Apple Silicon Homebrew
    "/usr/local/bin/ffmpeg",  # Intel Homebrew
    "/usr/bin/ffmpeg",
    "/opt/local/bin/ffmpeg",  # MacPorts
]


class ExportQuality(Enum):
    """x264 quality presets for exports."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def crf(self) -> str:
        return {"high": "18", "medium": "23", "low": "28"}[self.value]

    @property
    def preset(self) -> str:
        return {"high": "slow", "medium": "medium", "low": "faster"}[self.value]


def escape_concat_path(path: str) -> str:
    """Quote a path for a concat list line (' becomes '\\'')."""
    return "'" + path.replace("'", "'\\''") + "'"


def concat_list(inputs: Sequence[Path]) -> str:
    """
    Build concat demuxer input, one `file '<absolute-path>'` per line.

    Args:
        inputs: Files in playback order

    Returns:
        List file content
    """
    return "".join(
        f"file {escape_concat_path(str(Path(p).resolve()))}\n" for p in inputs
    )


class FFmpeg:
    """
    FFmpeg invocation helper.

    Example:
        ffmpeg = FFmpeg(LocalGateway())
        ffmpeg.merge([chunk1, chunk2], Path("out.mov"))
    """

    def __init__(
        self,
        gateway: Gateway,
        binary: Optional[str] = None,
        platform: Optional[Platform] = None,
    ):
        """
        Args:
            gateway: Process gateway used for every invocation
            binary: Explicit ffmpeg path (searched for if None)
            platform: Used for install hints (detected if None)
        """
        self.gateway = gateway
        self.binary = binary
        self._platform = platform
        self._resolved: Optional[str] = None

    @property
    def platform(self) -> Platform:
        if self._platform is None:
            self._platform = Platform.detect()
        return self._platform

    def locate(self) -> str:
        """
        Find the ffmpeg executable.

        Raises:
            EncoderNotFound: If it is not installed

        Returns:
            Path to ffmpeg
        """
        if self._resolved is not None:
            return self._resolved

        if self.binary:
            candidates = [self.binary]
        else:
            candidates = ["ffmpeg", *FFMPEG_SEARCH_PATHS]

        for candidate in candidates:
            path = self.gateway.which(candidate)
            if path:
                self._resolved = path
                return path

        raise EncoderNotFound(self.binary or "ffmpeg", self.platform.install_hint("ffmpeg"))

    @property
    def available(self) -> bool:
        """Check if ffmpeg can be found."""
        try:
            self.locate()
        except EncoderNotFound:
            return False
        return True

    def merge_args(
        self,
        list_path: Path,
        output: Path,
        quality: ExportQuality = ExportQuality.MEDIUM,
    ) -> List[str]:
        """Arguments for a concat merge."""
        return [
            "-nostdin",
            "-hide_banner",
            "-loglevel", "error",
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-c:v", "libx264",
            "-crf", quality.crf,
            "-preset", quality.preset,
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", "128k",
            "-movflags", "+faststart",
            "-y",
            str(output),
        ]

    def merge(
        self,
        inputs: Sequence[Path],
        output: Path,
        quality: ExportQuality = ExportQuality.MEDIUM,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        """
        Concatenate inputs into one file.

        The list file is temporary and removed whatever the outcome. A failed
        merge leaves no partial output behind.

        Raises:
            EncoderNotFound: ffmpeg is missing
            MergeFailed: ffmpeg exited non-zero (stderr attached)
        """
        if not inputs:
            raise ValueError("merge needs at least one input")

        binary = self.locate()
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)

        fd, list_name = tempfile.mkstemp(prefix="backtrack-concat-", suffix=".txt")
        list_path = Path(list_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(concat_list(inputs))

            logger.debug(f"Merging {len(inputs)} file(s) into {output.name}")
            spec = ProcessSpec(
                binary,
                self.merge_args(list_path, output, quality),
                timeout=timeout,
            )
            try:
                result = self.gateway.run(spec)
            except ExecutableNotFound as e:
                raise EncoderNotFound(binary, self.platform.install_hint("ffmpeg")) from e
        finally:
            list_path.unlink(missing_ok=True)

        if not result.success:
            output.unlink(missing_ok=True)
            raise MergeFailed(spec.name, result.exit_code, result.stderr.strip())

        return result

    def trim_args(
        self,
        source: Path,
        output: Path,
        start: float,
        duration: float,
        quality: ExportQuality = ExportQuality.HIGH,
    ) -> List[str]:
        """Arguments to re-encode duration seconds of source starting at start."""
        return [
            "-nostdin",
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(source),
            "-ss", f"{start:.2f}",
            "-t", f"{duration:.2f}",
            "-c:v", "libx264",
            "-c:a", "aac",
            "-preset", quality.preset,
            "-crf", quality.crf,
            "-movflags", "+faststart",
            "-avoid_negative_ts", "make_zero",
            "-y",
            str(output),
        ]

    def trim(
        self,
        source: Path,
        output: Path,
        start: float,
        duration: float,
        quality: ExportQuality = ExportQuality.HIGH,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        """
        Cut [start, start + duration) out of source into a new file.

        A failed trim leaves no partial output behind.

        Raises:
            ValueError: Negative start or non-positive duration
            EncoderNotFound: ffmpeg is missing
            ProcessFailed: ffmpeg exited non-zero (stderr attached)
        """
        if start < 0 or duration <= 0:
            raise ValueError(f"Invalid trim range: start={start}, duration={duration}")

        binary = self.locate()
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Trimming {Path(source).name} at {start:g}s for {duration:g}s -> {output.name}")
        spec = ProcessSpec(binary, self.trim_args(source, output, start, duration, quality), timeout=timeout)
        try:
            result = self.gateway.run(spec)
        except ExecutableNotFound as e:
            raise EncoderNotFound(binary, self.platform.install_hint("ffmpeg")) from e

        if not result.success:
            output.unlink(missing_ok=True)
        return result.raise_for_status()
