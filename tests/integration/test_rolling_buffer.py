"""
Integration tests for a full recording session.

Real child processes through LocalGateway: a Python script stands in for
the screen recorder and another for ffmpeg.
"""

import stat
import sys
import textwrap
import threading
import time
from pathlib import Path

import pytest

from backtrack.app import create_app
from backtrack.capture.screen import CaptureBackend
from backtrack.config import BufferConfig
from backtrack.core.controller import SessionState
from backtrack.errors import MergeFailed
from backtrack.platform import Platform
from backtrack.process import LocalGateway, ProcessSpec

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals"),
]

CAPTURE_SCRIPT = """
import signal, sys, time

output, duration = sys.argv[1], float(sys.argv[2])

def stop(signum, frame):
    with open(output, "wb") as f:
        f.write(b"partial")
    sys.exit(0)

signal.signal(signal.SIGTERM, stop)
time.sleep(duration)
with open(output, "wb") as f:
    f.write(b"frame" * 100)
"""

FFMPEG_SCRIPT = """
import sys

args = sys.argv[1:]
list_path, output = args[args.index("-i") + 1], args[-1]
with open(output, "wb") as out:
    for line in open(list_path):
        path = line.strip()[len("file '"):-1]
        with open(path, "rb") as f:
            out.write(f.read())
"""

SLOW_FFMPEG_SCRIPT = FFMPEG_SCRIPT.replace("import sys\n", "import sys, time\n\ntime.sleep(1.5)\n", 1)

FAILING_FFMPEG_SCRIPT = """
import sys

sys.stderr.write("Invalid data found when processing input")
sys.exit(1)
"""


def write_executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class ScriptBackend(CaptureBackend):
    """Runs the capture script with the current interpreter."""

    name = "script"
    extension = "mov"

    def __init__(self, gateway, platform, script: Path):
        super().__init__(gateway, platform)
        self.script = script

    def check_available(self) -> None:
        pass

    def command(self, output, duration, timeout=None) -> ProcessSpec:
        return ProcessSpec(
            sys.executable,
            [str(self.script), str(output), f"{duration:g}"],
            timeout=timeout,
        )


@pytest.fixture
def scripts(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return {
        "capture": write_executable(bin_dir / "capture.py", CAPTURE_SCRIPT),
        "ffmpeg": write_executable(bin_dir / "ffmpeg", FFMPEG_SCRIPT),
        "failing": write_executable(bin_dir / "ffmpeg-broken", FAILING_FFMPEG_SCRIPT),
        "slow": write_executable(bin_dir / "ffmpeg-slow", SLOW_FFMPEG_SCRIPT),
    }


@pytest.fixture
def make_app(tmp_path, scripts):
    apps = []

    def factory(chunk_duration=0.2, ffmpeg="ffmpeg"):
        config = BufferConfig(
            chunk_duration=chunk_duration,
            buffer_duration=chunk_duration * 5,
            export_window=chunk_duration * 3,
            buffer_dir=tmp_path / "buffer",
            recordings_dir=tmp_path / "recordings",
            catalog_path=tmp_path / "catalog.db",
            ffmpeg_path=str(scripts[ffmpeg]),
        ).validate()
        gateway = LocalGateway(kill_grace=1.0)
        platform = Platform("Linux", "ubuntu", "24.04", "x86_64", ":0")
        app = create_app(
            config,
            gateway=gateway,
            platform=platform,
            backend=ScriptBackend(gateway, platform, scripts["capture"]),
        )
        apps.append(app)
        return app

    yield factory

    for app in apps:
        app.close()


class TestRecordingSession:
    """Record, export and stop with real processes."""

    def test_record_and_export(self, make_app):
        app = make_app()
        app.controller.start()
        assert wait_for(lambda: len(app.store) >= 3)

        artifact = app.controller.export_last()

        assert app.controller.state is SessionState.RECORDING
        assert artifact.path.exists()
        assert artifact.path.parent == app.config.recordings_dir
        assert artifact.chunk_count >= 1
        assert artifact.file_size >= artifact.chunk_count * len(b"frame" * 100)

        entries = app.catalog.list_recordings()
        assert [e.path for e in entries] == [str(artifact.path)]
        assert app.catalog.list_exports()[0].success

    def test_buffer_stays_bounded(self, make_app):
        app = make_app()
        app.controller.start()
        time.sleep(app.config.buffer_duration * 2.5)
        app.controller.stop()

        chunks = app.store.chunks()
        assert chunks
        span = (chunks[-1].created_at - chunks[0].created_at).total_seconds()
        assert span <= app.config.buffer_duration + app.config.chunk_duration

        on_disk = {p for p in app.config.buffer_dir.iterdir()}
        assert on_disk == {c.path for c in chunks}

    def test_stop_interrupts_long_chunk(self, make_app):
        app = make_app(chunk_duration=30)
        app.controller.start()
        assert wait_for(lambda: app.recorder.capturing)
        time.sleep(1.0)

        started = time.monotonic()
        app.controller.stop()

        assert time.monotonic() - started < 5
        assert app.gateway.active_count == 0
        assert not app.recorder.capturing
        chunks = app.store.chunks()
        assert len(chunks) == 1
        assert chunks[0].path.read_bytes() == b"partial"
        assert chunks[0].duration < 30

    def test_restart_discards_previous_session(self, make_app):
        app = make_app()
        app.controller.start()
        assert wait_for(lambda: len(app.store) >= 2)
        app.controller.stop()
        previous = app.store.chunks()

        app.controller.start()
        app.controller.stop()

        assert not any(c.path.exists() for c in previous)

    def test_merge_failure_keeps_buffer(self, make_app):
        app = make_app(ffmpeg="failing")
        app.controller.start()
        assert wait_for(lambda: len(app.store) >= 2)
        app.controller.stop()
        before = app.store.chunks()

        with pytest.raises(MergeFailed) as exc_info:
            app.controller.export_last(app.config.buffer_duration)

        assert "Invalid data" in exc_info.value.stderr
        assert app.store.chunks() == before
        assert all(c.path.exists() for c in before)
        assert list(app.config.recordings_dir.glob("*.mov")) == []
        assert not app.catalog.list_exports()[0].success

    def test_close_lets_running_export_finish(self, make_app):
        app = make_app(ffmpeg="slow")
        app.controller.start()
        assert wait_for(lambda: len(app.store) >= 2)

        outcome = {}

        def export():
            try:
                outcome["artifact"] = app.controller.export_last(app.config.buffer_duration)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=export)
        worker.start()
        assert wait_for(lambda: app.gateway.active_count > 0 and app.exporter.exporting)
        time.sleep(0.3)

        app.close()
        worker.join(timeout=10)

        assert outcome.get("error") is None
        artifact = outcome["artifact"]
        assert artifact.path.exists()
        assert artifact.file_size > 0
        assert app.gateway.active_count == 0
