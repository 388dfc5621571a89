"""
Rolling buffer of recorded chunks.

BufferStore is the only thing that deletes chunk files. Its lock guards the
list of records and nothing else; file deletion always happens outside it.

Lifecycle of a chunk:
    add()            registered, newest last
    evict_expired()  dropped once older than the retention window
    clear_all()      dropped unconditionally (session start)

A chunk checked out by an export is pinned: if it is evicted while pinned,
its record goes away immediately but its file stays on disk until the
export releases it.
"""

import threading
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from backtrack.core.chunk import Chunk, is_chunk_file
from backtrack.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[Tuple[Chunk, ...]], None]


def unlink_file(path: Path) -> None:
    """Default deletion capability."""
    Path(path).unlink()


class BufferStore:
    """
    Thread-safe, time-ordered registry of buffered chunks.

    Example:
        store = BufferStore()
        store.add(chunk)
        store.evict_expired(utc_now(), 120)
        recent = store.query_range(start, end)
    """

    def __init__(self, delete_file: Optional[Callable[[Path], None]] = None):
        """
        Initialize buffer store.

        Args:
            delete_file: Callable that deletes one file (default: Path.unlink)
        """
        self._delete_file = delete_file or unlink_file
        self._lock = threading.RLock()
        self._chunks: List[Chunk] = []
        self._pins: Counter = Counter()
        self._deferred: Dict[str, Chunk] = {}
        self._listeners: List[Listener] = []

    # --- Observation ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call listener with the ordered snapshot after every change.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            snapshot = tuple(self._chunks)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Buffer listener failed")

    def chunks(self) -> List[Chunk]:
        """Copy of the buffered chunks, oldest first."""
        with self._lock:
            return list(self._chunks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def __contains__(self, chunk: Chunk) -> bool:
        with self._lock:
            return any(c.id == chunk.id for c in self._chunks)

    def latest(self) -> Optional[Chunk]:
        with self._lock:
            return self._chunks[-1] if self._chunks else None

    def buffered_seconds(self) -> float:
        """Sum of nominal chunk durations currently held."""
        with self._lock:
            return sum(c.duration for c in self._chunks)

    # --- Mutation ---

    def add(self, chunk: Chunk) -> None:
        """
        Register a chunk whose file has already been verified.

        Args:
            chunk: Chunk to add
        """
        with self._lock:
            self._chunks.append(chunk)
            self._chunks.sort(key=lambda c: c.created_at)
            count = len(self._chunks)

        logger.debug(f"Buffered {chunk.file_name} ({count} chunk(s))")
        self._notify()

    def remove(self, chunk: Chunk) -> bool:
        """
        Drop a chunk's record and delete its file.

        A failed deletion is logged; the record is removed regardless.

        Returns:
            True if the chunk was in the buffer
        """
        with self._lock:
            removed = self._detach([chunk])

        if not removed:
            return False

        self._dispose(removed)
        self._notify()
        return True

    def evict_expired(self, now: datetime, buffer_duration: float) -> List[Chunk]:
        """
        Remove every chunk that started before now - buffer_duration.

        Args:
            now: Reference time
            buffer_duration: Retention window in seconds

        Returns:
            The evicted chunks, oldest first
        """
        cutoff = now - timedelta(seconds=buffer_duration)

        with self._lock:
            expired = [c for c in self._chunks if c.created_at < cutoff]
            removed = self._detach(expired)

        if removed:
            logger.info(f"Evicting {len(removed)} expired chunk(s) older than {cutoff:%H:%M:%S}")
            self._dispose(removed)
            self._notify()
        return removed

    def clear_all(self, directory: Optional[Path] = None) -> int:
        """
        Remove every chunk.

        Args:
            directory: Also delete untracked chunk files found here
                       (left over from a previous run)

        Returns:
            Number of files deleted or scheduled for deletion
        """
        with self._lock:
            removed = self._detach(list(self._chunks))
            known = {c.path for c in removed} | {c.path for c in self._deferred.values()}

        count = len(removed)
        if removed:
            logger.info(f"Clearing {count} chunk(s) from buffer")
            self._dispose(removed)

        if directory is not None and Path(directory).is_dir():
            for path in sorted(Path(directory).iterdir()):
                if path in known or not is_chunk_file(path):
                    continue
                logger.debug(f"Removing stale chunk file {path.name}")
                self._delete(path)
                count += 1

        if removed:
            self._notify()
        return count

    # --- Export support ---

    def query_range(self, start: datetime, end: datetime) -> List[Chunk]:
        """
        Chunks with created_at in [start, end], oldest first.

        Pure read.
        """
        with self._lock:
            return [c for c in self._chunks if start <= c.created_at <= end]

    @contextmanager
    def checkout(self, start: datetime, end: datetime) -> Iterator[List[Chunk]]:
        """
        query_range() whose files stay on disk until the block exits.

        Example:
            with store.checkout(cutoff, now) as chunks:
                ffmpeg.merge([c.path for c in chunks], output)
        """
        with self._lock:
            chunks = [c for c in self._chunks if start <= c.created_at <= end]
            for chunk in chunks:
                self._pins[chunk.id] += 1

        try:
            yield chunks
        finally:
            released = []
            with self._lock:
                for chunk in chunks:
                    self._pins[chunk.id] -= 1
                    if self._pins[chunk.id] <= 0:
                        del self._pins[chunk.id]
                        deferred = self._deferred.pop(chunk.id, None)
                        if deferred is not None:
                            released.append(deferred)

            for chunk in released:
                logger.debug(f"Deleting {chunk.file_name} after export released it")
                self._delete(chunk.path)

    def pinned_count(self) -> int:
        with self._lock:
            return len(self._pins)

    # --- Internals ---

    def _detach(self, chunks: List[Chunk]) -> List[Chunk]:
        """Remove records. Caller holds the lock."""
        ids = {c.id for c in chunks}
        removed = [c for c in self._chunks if c.id in ids]
        if removed:
            self._chunks = [c for c in self._chunks if c.id not in ids]
        return removed

    def _dispose(self, chunks: List[Chunk]) -> None:
        """Delete files of detached chunks, deferring pinned ones."""
        for chunk in chunks:
            with self._lock:
                if self._pins.get(chunk.id):
                    self._deferred[chunk.id] = chunk
                    logger.debug(f"{chunk.file_name} is in use by an export, deferring deletion")
                    continue
            self._delete(chunk.path)

    def _delete(self, path: Path) -> None:
        try:
            self._delete_file(path)
        except FileNotFoundError:
            logger.warning(f"Chunk file already gone: {path}")
        except OSError as e:
            logger.warning(f"Failed to delete chunk file {path}: {e}")
