"""
Local gateway - run processes on the local machine.
"""

import os
import shutil
import subprocess
import threading
from typing import Optional, Set

from backtrack.errors import ExecutableNotFound, ProcessLaunchFailed
from backtrack.logging import get_logger
from backtrack.process.base import Gateway, ProcessHandle, ProcessResult, ProcessSpec

logger = get_logger(__name__)

# Seconds between SIGTERM and SIGKILL on cancel or timeout
DEFAULT_KILL_GRACE = 5.0


class LocalProcessHandle(ProcessHandle):
    """
    Handle around a subprocess.Popen.

    A waiter thread owns communicate(), so the child is always reaped whether
    it exits on its own, times out, or is cancelled.
    """

    def __init__(
        self,
        popen: subprocess.Popen,
        spec: ProcessSpec,
        kill_grace: float = DEFAULT_KILL_GRACE,
        on_done=None,
    ):
        self._popen = popen
        self._spec = spec
        self._kill_grace = kill_grace
        self._on_done = on_done
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._cancelled = False
        self._timed_out = False
        self._result: Optional[ProcessResult] = None

        self._waiter = threading.Thread(
            target=self._reap,
            name=f"reap-{spec.name}-{popen.pid}",
            daemon=True,
        )
        self._waiter.start()

    @property
    def pid(self) -> Optional[int]:
        return self._popen.pid

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _reap(self) -> None:
        """Collect output and exit status. Runs on the waiter thread."""
        try:
            try:
                stdout, stderr = self._popen.communicate(timeout=self._spec.timeout)
            except subprocess.TimeoutExpired:
                self._timed_out = True
                logger.warning(
                    f"{self._spec.name} (pid {self._popen.pid}) exceeded "
                    f"{self._spec.timeout:g}s, terminating"
                )
                self._terminate()
                stdout, stderr = self._popen.communicate()
        except (OSError, ValueError) as e:
            # Pipes torn down underneath us; the exit status is still valid
            logger.debug(f"Output collection for {self._spec.name} failed: {e}")
            stdout, stderr = "", ""
            self._popen.wait()

        self._result = ProcessResult(
            exit_code=self._popen.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            cancelled=self._cancelled,
            timed_out=self._timed_out,
            executable=self._spec.name,
        )
        if self._on_done is not None:
            self._on_done(self)
        self._finished.set()

    def _terminate(self) -> None:
        """SIGTERM, then SIGKILL after the grace period."""
        try:
            self._popen.terminate()
        except OSError:
            return
        try:
            self._popen.wait(timeout=self._kill_grace)
        except subprocess.TimeoutExpired:
            logger.warning(f"{self._spec.name} (pid {self._popen.pid}) ignored SIGTERM, killing")
            try:
                self._popen.kill()
            except OSError:
                pass

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled or self._finished.is_set():
                return
            self._cancelled = True

        logger.debug(f"Cancelling {self._spec.name} (pid {self._popen.pid})")
        # Popen.send_signal is a no-op once the child has been reaped
        try:
            self._popen.terminate()
        except OSError:
            return

        if not self._finished.wait(self._kill_grace):
            logger.warning(f"{self._spec.name} (pid {self._popen.pid}) ignored SIGTERM, killing")
            try:
                self._popen.kill()
            except OSError:
                pass

    def wait(self, timeout: Optional[float] = None) -> Optional[ProcessResult]:
        if not self._finished.wait(timeout):
            return None
        return self._result


class LocalGateway(Gateway):
    """
    Local gateway for running processes on the local machine.

    Uses subprocess.Popen for execution. Tracks every live handle so close()
    can cancel stragglers.
    """

    def __init__(self, kill_grace: float = DEFAULT_KILL_GRACE):
        self.kill_grace = kill_grace
        self._lock = threading.Lock()
        self._active: Set[LocalProcessHandle] = set()

    @property
    def active_count(self) -> int:
        """Number of launched processes not yet reaped."""
        with self._lock:
            return len(self._active)

    def which(self, executable: str) -> Optional[str]:
        """Resolve an executable name or path."""
        if os.sep in executable:
            if os.path.isfile(executable) and os.access(executable, os.X_OK):
                return executable
            return None
        return shutil.which(executable)

    def launch(self, spec: ProcessSpec) -> LocalProcessHandle:
        """
        Spawn a process.

        Args:
            spec: What to run

        Returns:
            LocalProcessHandle
        """
        path = self.which(spec.executable)
        if path is None:
            raise ExecutableNotFound(spec.executable)

        output = subprocess.PIPE if spec.capture_output else subprocess.DEVNULL

        try:
            popen = subprocess.Popen(
                spec.argv(path),
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as e:
            raise ExecutableNotFound(spec.executable) from e
        except OSError as e:
            raise ProcessLaunchFailed(spec.executable, str(e)) from e

        logger.debug(f"Launched {spec.name} (pid {popen.pid}): {' '.join(spec.args)}")

        # Register before the waiter can finish and unregister
        with self._lock:
            handle = LocalProcessHandle(popen, spec, self.kill_grace, on_done=self._forget)
            if not handle.done:
                self._active.add(handle)
        return handle

    def _forget(self, handle: LocalProcessHandle) -> None:
        with self._lock:
            self._active.discard(handle)

    def close(self) -> None:
        """Cancel and reap every process still running."""
        with self._lock:
            handles = list(self._active)

        for handle in handles:
            handle.cancel()
            handle.wait()
