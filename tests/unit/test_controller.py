"""
Unit tests for the Idle/Recording state machine.
"""

import threading
import time
from datetime import timedelta

import pytest

from backtrack.core.chunk import utc_now
from backtrack.core.controller import RecordingController, SessionState
from backtrack.core.recorder import ChunkRecorder
from backtrack.errors import CaptureUnavailable

from tests.conftest import FakeBackend, block_until, make_chunk


@pytest.fixture
def release():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def controller(gateway, backend, store, config, release):
    gateway.default_effect = block_until(release)
    recorder = ChunkRecorder(gateway, backend, store, config)
    ctrl = RecordingController(recorder, store, config)
    yield ctrl
    ctrl.stop()


class TestTransitions:
    """start()/stop() move between Idle and Recording."""

    def test_starts_idle(self, controller):
        assert controller.state is SessionState.IDLE
        assert not controller.is_recording

    def test_start_and_stop(self, controller):
        controller.start()
        assert controller.state is SessionState.RECORDING
        assert controller.recorder.running

        controller.stop()
        assert controller.state is SessionState.IDLE
        assert not controller.recorder.running

    def test_start_twice(self, controller, gateway):
        states = []
        controller.subscribe(states.append)

        controller.start()
        controller.start()

        assert states == [SessionState.RECORDING]

    def test_stop_while_idle(self, controller):
        states = []
        controller.subscribe(states.append)

        controller.stop()

        assert states == []
        assert controller.state is SessionState.IDLE

    def test_context_manager_stops(self, controller):
        with controller:
            controller.start()
        assert controller.state is SessionState.IDLE


class TestStartClearsBuffer:
    """Each session starts from an empty buffer."""

    def test_stale_files_removed_before_first_chunk(self, controller, store, buffer_dir, gateway):
        old = make_chunk(buffer_dir, utc_now() - timedelta(hours=1))
        store.add(old)
        leftover = make_chunk(buffer_dir, utc_now() - timedelta(days=2))
        snapshots = []
        store.subscribe(snapshots.append)

        controller.start()

        assert not old.path.exists()
        assert not leftover.path.exists()
        assert snapshots[0] == ()
        assert old not in store

    def test_restart_clears_previous_session(self, controller, store, release):
        controller.start()
        release.set()
        deadline = time.monotonic() + 5
        while len(store) == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        controller.stop()
        assert len(store) > 0
        previous = store.chunks()

        release.clear()
        controller.start()

        assert not any(c in store for c in previous)
        assert not any(c.path.exists() for c in previous)


class TestUnavailableCapture:
    """A failed start leaves the session Idle."""

    def test_capture_unavailable(self, gateway, store, config):
        recorder = ChunkRecorder(gateway, FakeBackend(gateway, available=False), store, config)
        controller = RecordingController(recorder, store, config)
        states = []
        controller.subscribe(states.append)

        with pytest.raises(CaptureUnavailable):
            controller.start()

        assert controller.state is SessionState.IDLE
        assert states == []
        assert gateway.launched == []


class TestStatus:
    """status() summarises the session for display."""

    def test_status_fields(self, controller, store, buffer_dir):
        status = controller.status()

        assert status["state"] == "idle"
        assert status["chunks"] == 0
        assert status["latest_chunk"] is None
        assert status["exporting"] is False

    def test_export_without_exporter(self, controller):
        with pytest.raises(RuntimeError):
            controller.export_last()
