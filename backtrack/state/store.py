"""
Recordings catalog using SQLite.

Tracks:
- Exported recordings (path, size, duration, chunk count)
- Export history, failures included
"""

import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from backtrack.config import default_catalog_path
from backtrack.logging import get_logger

logger = get_logger(__name__)

MEDIA_EXTENSIONS = {".mov", ".mp4", ".mkv", ".gif"}


@dataclass
class RecordingEntry:
    """A finished recording in the recordings directory."""
    path: str
    created_at: datetime
    duration: float = 0.0
    file_size: int = 0
    kind: str = "video"  # "video", "gif"
    chunk_count: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def file_name(self) -> str:
        return Path(self.path).name

    @property
    def exists(self) -> bool:
        return Path(self.path).exists()


@dataclass
class ExportEntry:
    """One export attempt."""
    timestamp: datetime
    window: float
    chunk_count: int
    success: bool
    user: str
    hostname: str
    output: Optional[str] = None
    error: Optional[str] = None


def kind_for(path: Path) -> str:
    return "gif" if path.suffix.lower() == ".gif" else "video"


class Store:
    """
    SQLite-based recordings catalog.

    Safe to share between the export path, the directory watcher and the
    CLI thread.

    Example:
        with Store() as store:
            store.add_recording(RecordingEntry(path, datetime.now()))
            recordings = store.list_recordings()
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize catalog.

        Args:
            db_path: Path to SQLite database (default: ~/.backtrack/catalog.db)
        """
        if db_path is None:
            db_path = str(default_catalog_path())

        self.db_path = str(db_path)
        self._ensure_db_dir()
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _ensure_db_dir(self) -> None:
        """Ensure catalog directory exists."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS recordings (
                    id TEXT PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    duration REAL NOT NULL,
                    file_size INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    chunk_count INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS exports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    window_seconds REAL NOT NULL,
                    chunk_count INTEGER NOT NULL,
                    success INTEGER NOT NULL,
                    output TEXT,
                    error TEXT,
                    user TEXT NOT NULL,
                    hostname TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_recordings_created
                    ON recordings(created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_exports_timestamp
                    ON exports(timestamp DESC);
            """)
            self.conn.commit()

    @staticmethod
    def _row_to_recording(row: sqlite3.Row) -> RecordingEntry:
        return RecordingEntry(
            id=row["id"],
            path=row["path"],
            created_at=datetime.fromisoformat(row["created_at"]),
            duration=row["duration"],
            file_size=row["file_size"],
            kind=row["kind"],
            chunk_count=row["chunk_count"],
        )

    # --- Recordings ---

    def add_recording(self, entry: RecordingEntry) -> RecordingEntry:
        """
        Insert a recording, or refresh the row already holding its path.

        Args:
            entry: RecordingEntry to save

        Returns:
            The stored entry (keeps the existing id on conflict)
        """
        with self._lock:
            self.conn.execute("""
                INSERT INTO recordings
                (id, path, created_at, duration, file_size, kind, chunk_count)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    duration = excluded.duration,
                    file_size = excluded.file_size,
                    kind = excluded.kind,
                    chunk_count = excluded.chunk_count
            """, (
                entry.id,
                entry.path,
                entry.created_at.isoformat(),
                entry.duration,
                entry.file_size,
                entry.kind,
                entry.chunk_count,
            ))
            self.conn.commit()
            return self.find_by_path(entry.path)

    def get_recording(self, recording_id: str) -> Optional[RecordingEntry]:
        """
        Get recording by id (a unique id prefix is accepted).

        Returns:
            RecordingEntry or None if not found
        """
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM recordings WHERE id LIKE ? LIMIT 2",
                (recording_id + "%",),
            ).fetchall()

        if len(rows) != 1:
            return None
        return self._row_to_recording(rows[0])

    def find_by_path(self, path: str) -> Optional[RecordingEntry]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM recordings WHERE path = ?",
                (str(path),),
            ).fetchone()

        if not row:
            return None
        return self._row_to_recording(row)

    def list_recordings(self) -> List[RecordingEntry]:
        """
        List all recordings, newest first.

        Returns:
            List of RecordingEntry objects
        """
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM recordings ORDER BY created_at DESC"
            ).fetchall()

        return [self._row_to_recording(row) for row in rows]

    def delete_recording(self, recording_id: str, delete_file: bool = True) -> bool:
        """
        Remove a recording from the catalog, and its file by default.

        Returns:
            True if a row was removed
        """
        entry = self.get_recording(recording_id)
        if entry is None:
            return False

        if delete_file:
            Path(entry.path).unlink(missing_ok=True)

        with self._lock:
            self.conn.execute("DELETE FROM recordings WHERE id = ?", (entry.id,))
            self.conn.commit()
        return True

    def forget_path(self, path: str) -> bool:
        """Drop the row for a file that no longer exists."""
        with self._lock:
            cursor = self.conn.execute("DELETE FROM recordings WHERE path = ?", (str(path),))
            self.conn.commit()
            return cursor.rowcount > 0

    def move_path(self, old_path: str, new_path: str) -> bool:
        """Follow a rename of a catalogued file."""
        with self._lock:
            cursor = self.conn.execute(
                "UPDATE OR REPLACE recordings SET path = ?, kind = ? WHERE path = ?",
                (str(new_path), kind_for(Path(new_path)), str(old_path)),
            )
            self.conn.commit()
            return cursor.rowcount > 0

    def sync_directory(self, directory: Path) -> Tuple[int, int]:
        """
        Reconcile the catalog with the files in directory.

        Adds media files the catalog does not know about and drops rows
        whose file has disappeared.

        Returns:
            (added, removed)
        """
        # Stored paths are absolute, so compare resolved paths
        directory = Path(directory).expanduser().resolve()
        added = removed = 0

        for entry in self.list_recordings():
            if Path(entry.path).resolve().parent == directory and not entry.exists:
                self.forget_path(entry.path)
                removed += 1

        if directory.is_dir():
            for path in sorted(directory.iterdir()):
                if not path.is_file() or path.suffix.lower() not in MEDIA_EXTENSIONS:
                    continue
                if self.find_by_path(str(path)) is not None:
                    continue
                stat = path.stat()
                self.add_recording(RecordingEntry(
                    path=str(path),
                    created_at=datetime.fromtimestamp(stat.st_mtime),
                    file_size=stat.st_size,
                    kind=kind_for(path),
                ))
                added += 1

        if added or removed:
            logger.info(f"Catalog sync: {added} added, {removed} removed")
        return added, removed

    # --- Export history ---

    def add_export(self, entry: ExportEntry) -> None:
        """
        Add export history entry.

        Args:
            entry: ExportEntry to record
        """
        with self._lock:
            self.conn.execute("""
                INSERT INTO exports
                (timestamp, window_seconds, chunk_count, success, output, error, user, hostname)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.timestamp.isoformat(),
                entry.window,
                entry.chunk_count,
                1 if entry.success else 0,
                entry.output,
                entry.error,
                entry.user,
                entry.hostname,
            ))
            self.conn.commit()

    def list_exports(self, limit: int = 10) -> List[ExportEntry]:
        """
        Get recent export attempts, newest first.

        Args:
            limit: Maximum number of entries to return
        """
        with self._lock:
            rows = self.conn.execute("""
                SELECT * FROM exports
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            """, (limit,)).fetchall()

        return [
            ExportEntry(
                timestamp=datetime.fromisoformat(row["timestamp"]),
                window=row["window_seconds"],
                chunk_count=row["chunk_count"],
                success=bool(row["success"]),
                output=row["output"],
                error=row["error"],
                user=row["user"],
                hostname=row["hostname"],
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
