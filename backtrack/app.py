"""
Wire the components together.

Everything is passed explicitly; create_app() just supplies the defaults a
desktop session needs. Tests build the pieces directly with fakes instead.
"""

from dataclasses import dataclass
from typing import Optional

from backtrack.capture.ffmpeg import FFmpeg
from backtrack.capture.screen import CaptureBackend, detect_backend
from backtrack.config import BufferConfig
from backtrack.core.buffer import BufferStore
from backtrack.core.controller import RecordingController
from backtrack.core.exporter import ExportCoordinator
from backtrack.core.recorder import ChunkRecorder
from backtrack.platform import Platform
from backtrack.process import Gateway, LocalGateway
from backtrack.state.store import Store


@dataclass
class App:
    """A fully wired Backtrack session."""
    config: BufferConfig
    gateway: Gateway
    platform: Platform
    ffmpeg: FFmpeg
    backend: CaptureBackend
    store: BufferStore
    recorder: ChunkRecorder
    exporter: ExportCoordinator
    controller: RecordingController
    catalog: Optional[Store] = None

    def close(self) -> None:
        """Stop recording and wait for a running export before closing the gateway and catalog."""
        self.controller.stop()
        self.exporter.wait_idle()
        self.gateway.close()
        if self.catalog is not None:
            self.catalog.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_app(
    config: BufferConfig,
    gateway: Optional[Gateway] = None,
    platform: Optional[Platform] = None,
    backend: Optional[CaptureBackend] = None,
    with_catalog: bool = True,
) -> App:
    """
    Build an App from config.

    Args:
        config: Validated configuration
        gateway: Process gateway (default: LocalGateway)
        platform: Platform info (default: detected)
        backend: Capture backend (default: chosen from config.capture_backend)
        with_catalog: Open the recordings catalog at config.catalog_path

    Raises:
        CaptureUnavailable: If no capture backend matches the platform
    """
    gateway = gateway or LocalGateway()
    platform = platform or Platform.detect()
    ffmpeg = FFmpeg(gateway, binary=config.ffmpeg_path, platform=platform)

    if backend is None:
        backend = detect_backend(gateway, platform, config.capture_backend, ffmpeg=ffmpeg)

    catalog = None
    if with_catalog and config.catalog_path is not None:
        catalog = Store(str(config.catalog_path))

    store = BufferStore()
    recorder = ChunkRecorder(gateway, backend, store, config)
    exporter = ExportCoordinator(store, ffmpeg, config, catalog=catalog)
    controller = RecordingController(recorder, store, config, exporter)

    return App(
        config=config,
        gateway=gateway,
        platform=platform,
        ffmpeg=ffmpeg,
        backend=backend,
        store=store,
        recorder=recorder,
        exporter=exporter,
        controller=controller,
        catalog=catalog,
    )
