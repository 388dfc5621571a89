"""
Shared fixtures: a scriptable fake gateway and capture backend.

FakeGateway never spawns anything. Each launch runs an "effect" on a thread;
the effect gets the ProcessSpec and a cancel Event and returns an exit code.
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from backtrack.capture.screen import CaptureBackend
from backtrack.config import BufferConfig
from backtrack.core.buffer import BufferStore
from backtrack.core.chunk import Chunk, chunk_filename
from backtrack.errors import CaptureUnavailable, ExecutableNotFound
from backtrack.platform import Platform
from backtrack.process import Gateway, ProcessHandle, ProcessResult, ProcessSpec

Effect = Callable[[ProcessSpec, threading.Event], int]


def write_chunk(size: int = 1024) -> Effect:
    """Effect: write `size` bytes to the output path (first arg) and exit 0."""
    def effect(spec, cancel):
        Path(spec.args[0]).write_bytes(b"x" * size)
        return 0
    return effect


def write_nothing(spec, cancel):
    """Effect: exit 0 without creating the file."""
    return 0


def write_empty(spec, cancel):
    """Effect: create an empty file and exit 0."""
    Path(spec.args[0]).write_bytes(b"")
    return 0


def fail_with(exit_code: int) -> Effect:
    def effect(spec, cancel):
        return exit_code
    return effect


def block_until(release: threading.Event) -> Effect:
    """Effect: run until released or cancelled, then write a partial file."""
    def effect(spec, cancel):
        while not (release.is_set() or cancel.is_set()):
            cancel.wait(0.01)
        Path(spec.args[0]).write_bytes(b"partial")
        return -15 if cancel.is_set() else 0
    return effect


class FakeHandle(ProcessHandle):
    """Handle whose "process" is an effect running on a thread."""

    def __init__(self, gateway: "FakeGateway", spec: ProcessSpec, effect: Effect):
        self.spec = spec
        self._gateway = gateway
        self._cancel = threading.Event()
        self._finished = threading.Event()
        self._result: Optional[ProcessResult] = None
        self.cancel_calls = 0
        self._thread = threading.Thread(target=self._run, args=(effect,), daemon=True)
        self._thread.start()

    def _run(self, effect: Effect) -> None:
        # An effect that raises reports as a crashed process instead of
        # leaving wait() blocked forever
        exit_code, stderr = -1, f"{self.spec.name} crashed"
        try:
            exit_code = effect(self.spec, self._cancel)
            stderr = "" if exit_code == 0 else f"{self.spec.name} failed"
        except Exception as e:
            stderr = f"{self.spec.name} crashed: {e}"
        finally:
            self._gateway._finished(self)
            self._result = ProcessResult(
                exit_code=exit_code,
                stderr=stderr,
                cancelled=self._cancel.is_set(),
                executable=self.spec.name,
            )
            self._finished.set()

    @property
    def pid(self) -> Optional[int]:
        return None

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def cancel(self) -> None:
        self.cancel_calls += 1
        self._cancel.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[ProcessResult]:
        if not self._finished.wait(timeout):
            return None
        return self._result


class FakeGateway(Gateway):
    """
    Records every launch and runs scripted effects.

    effects are consumed in order; once empty, default_effect is used.
    """

    def __init__(self, default_effect: Optional[Effect] = None):
        self.default_effect = default_effect or write_chunk()
        self.effects: List[Effect] = []
        self.launched: List[ProcessSpec] = []
        self.handles: List[FakeHandle] = []
        self.missing = set()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def which(self, executable: str) -> Optional[str]:
        if executable in self.missing:
            return None
        return executable

    def launch(self, spec: ProcessSpec) -> FakeHandle:
        if spec.executable in self.missing:
            raise ExecutableNotFound(spec.executable)

        with self._lock:
            effect = self.effects.pop(0) if self.effects else self.default_effect
            self.launched.append(spec)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            handle = FakeHandle(self, spec, effect)
            self.handles.append(handle)
        return handle

    def _finished(self, handle: FakeHandle) -> None:
        with self._lock:
            self.active -= 1


class FakeBackend(CaptureBackend):
    """Capture backend whose command is `fake-capture <output> <duration>`."""

    name = "fake"
    extension = "mov"

    def __init__(self, gateway: Gateway, available: bool = True):
        super().__init__(gateway, Platform("Linux", "ubuntu", "24.04", "x86_64", ":0"))
        self.available = available

    def check_available(self) -> None:
        if not self.available:
            raise CaptureUnavailable("no screen to record")

    def command(self, output, duration, timeout=None) -> ProcessSpec:
        return ProcessSpec("fake-capture", [str(output), f"{duration:g}"], timeout=timeout)


def make_chunk(directory: Path, created_at: datetime, duration: float = 10.0, size: int = 16) -> Chunk:
    """Write a chunk file to directory and return its record."""
    path = Path(directory) / chunk_filename(created_at, "mov")
    path.write_bytes(b"c" * size)
    return Chunk(path=path, created_at=created_at, duration=duration)


@pytest.fixture
def linux_platform():
    return Platform("Linux", "ubuntu", "24.04", "x86_64", ":0")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def backend(gateway):
    return FakeBackend(gateway)


@pytest.fixture
def config(tmp_path):
    return BufferConfig(
        chunk_duration=10,
        buffer_duration=120,
        export_window=60,
        buffer_dir=tmp_path / "buffer",
        recordings_dir=tmp_path / "recordings",
        catalog_path=None,
        settle_timeout=0.0,
        backoff_base=0.0,
    )


@pytest.fixture
def buffer_dir(config):
    config.buffer_dir.mkdir(parents=True, exist_ok=True)
    return config.buffer_dir


@pytest.fixture
def store():
    return BufferStore()
