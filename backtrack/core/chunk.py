"""
Chunk model and chunk file naming.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

CHUNK_PREFIX = "chunk_"

# chunk_2025-07-13T10-00-00.123.mov
_CHUNK_NAME = re.compile(
    r"^chunk_(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})\.(\d{3})(?:-\d+)?\.[A-Za-z0-9]+$"
)


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime. Buffer ages are measured in it."""
    return datetime.now(timezone.utc)


def local_time(moment: datetime) -> datetime:
    """Naive local wall time for display and file names."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


def chunk_filename(created_at: datetime, extension: str, serial: int = 0) -> str:
    """
    File name for a chunk started at created_at.

    Names carry the local start time to the millisecond. serial > 0 is only
    used when the plain name is already taken (the same local time twice,
    e.g. when clocks go back).
    """
    local = local_time(created_at)
    stamp = local.strftime("%Y-%m-%dT%H-%M-%S")
    millis = local.microsecond // 1000
    suffix = f"-{serial}" if serial else ""
    return f"{CHUNK_PREFIX}{stamp}.{millis:03d}{suffix}.{extension}"


def parse_chunk_filename(name: str) -> Optional[datetime]:
    """Timestamp encoded in a chunk file name, or None if it is not one."""
    match = _CHUNK_NAME.match(name)
    if not match:
        return None
    stamp, millis = match.groups()
    parsed = datetime.strptime(stamp, "%Y-%m-%dT%H-%M-%S")
    return parsed.replace(microsecond=int(millis) * 1000)


def is_chunk_file(path: Path) -> bool:
    return path.is_file() and parse_chunk_filename(path.name) is not None


@dataclass(frozen=True)
class Chunk:
    """One fixed-duration capture held in the rolling buffer."""
    path: Path
    created_at: datetime
    duration: float = 10.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def file_name(self) -> str:
        return self.path.name

    @property
    def ends_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.duration)

    def age(self, now: datetime) -> float:
        """Seconds since recording started."""
        return (now - self.created_at).total_seconds()

    def is_expired(self, now: datetime, buffer_duration: float) -> bool:
        """True when the chunk started before the retention window."""
        return self.created_at < now - timedelta(seconds=buffer_duration)
