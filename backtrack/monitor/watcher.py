"""
Recordings directory watcher.

Keeps the catalog in step with what the user does to the recordings folder
while Backtrack runs: deleted files are forgotten, renamed files followed.
New files are picked up by Store.sync_directory() instead, since a file
that has just been created may still be written to by the encoder.
"""

from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from backtrack.logging import get_logger
from backtrack.state.store import MEDIA_EXTENSIONS, Store

logger = get_logger(__name__)


class CatalogEventHandler(FileSystemEventHandler):
    """
    Filesystem event handler for the recordings directory.

    Applies delete/move events to the catalog.
    """

    def __init__(self, store: Store):
        super().__init__()
        self.store = store

    @staticmethod
    def is_media(path: str) -> bool:
        return Path(path).suffix.lower() in MEDIA_EXTENSIONS

    def on_deleted(self, event: FileSystemEvent):
        """Handle file deletion."""
        if event.is_directory or not self.is_media(event.src_path):
            return

        if self.store.forget_path(event.src_path):
            logger.info(f"Recording removed: {Path(event.src_path).name}")

    def on_moved(self, event: FileSystemEvent):
        """Handle rename (or move out of the directory)."""
        if event.is_directory:
            return

        src, dest = event.src_path, event.dest_path
        if self.is_media(dest):
            if self.store.move_path(src, dest):
                logger.info(f"Recording renamed: {Path(src).name} -> {Path(dest).name}")
        elif self.store.forget_path(src):
            logger.info(f"Recording removed: {Path(src).name}")


class RecordingsWatcher:
    """
    Filesystem watcher for the recordings directory.

    Example:
        watcher = RecordingsWatcher(store, config.recordings_dir)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(self, store: Store, directory: Path):
        """
        Initialize watcher.

        Args:
            store: Catalog to keep in sync
            directory: Recordings directory
        """
        self.store = store
        self.directory = Path(directory)
        self.observer = Observer()
        self.handler = CatalogEventHandler(store)
        self._started = False

    def start(self):
        """Start watching the directory."""
        if self._started:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        self.observer.schedule(self.handler, str(self.directory), recursive=False)
        self.observer.start()
        self._started = True

    def stop(self):
        """Stop watching."""
        if not self._started:
            return
        self.observer.stop()
        self.observer.join()
        self._started = False
