"""
Base process gateway interface.

All gateway implementations must implement this interface. The recorder and
exporter only ever talk to a Gateway, which keeps them testable without
spawning real capture or encoder processes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from backtrack.errors import ProcessFailed


@dataclass
class ProcessSpec:
    """
    What to run.

    Example:
        ProcessSpec("ffmpeg", ["-version"], timeout=10)
    """
    executable: str
    args: List[str] = field(default_factory=list)
    timeout: Optional[float] = None  # hard limit; the process is killed past it
    capture_output: bool = True

    @property
    def name(self) -> str:
        """Short executable name for log lines."""
        return self.executable.rsplit("/", 1)[-1]

    def argv(self, executable: Optional[str] = None) -> List[str]:
        """Full argument vector, optionally with a resolved executable path."""
        return [executable or self.executable, *self.args]


@dataclass
class ProcessResult:
    """Outcome of a finished process."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    cancelled: bool = False
    timed_out: bool = False
    executable: str = ""

    @property
    def success(self) -> bool:
        """Check if the process exited cleanly."""
        return self.exit_code == 0

    def raise_for_status(self) -> "ProcessResult":
        """
        Raise ProcessFailed for a non-zero exit.

        Returns:
            self, for chaining
        """
        if not self.success:
            raise ProcessFailed(self.executable, self.exit_code, self.stderr.strip())
        return self


class ProcessHandle(ABC):
    """
    A launched process.

    cancel() may be called any number of times, from any thread, before or
    after the process exits on its own.
    """

    @property
    @abstractmethod
    def pid(self) -> Optional[int]:
        """OS process id (None for processes that never existed)."""
        pass

    @property
    @abstractmethod
    def done(self) -> bool:
        """True once the process has exited and been reaped."""
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Ask the process to stop. Idempotent."""
        pass

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> Optional[ProcessResult]:
        """
        Wait for completion.

        Args:
            timeout: Seconds to wait (None = until done)

        Returns:
            ProcessResult, or None if the timeout elapsed first
        """
        pass


class Gateway(ABC):
    """
    Abstract base class for launching external processes.

    Implementations:
    - LocalGateway: subprocess on the local machine
    """

    @abstractmethod
    def launch(self, spec: ProcessSpec) -> ProcessHandle:
        """
        Spawn a process.

        Raises:
            ExecutableNotFound: If spec.executable cannot be resolved
            ProcessLaunchFailed: If the OS refuses to spawn it
        """
        pass

    @abstractmethod
    def which(self, executable: str) -> Optional[str]:
        """Resolve an executable to a path, or None."""
        pass

    def run(self, spec: ProcessSpec) -> ProcessResult:
        """
        Launch and wait.

        Example:
            result = gateway.run(ProcessSpec("ffmpeg", ["-version"]))
            result.raise_for_status()
        """
        return self.launch(spec).wait()

    def close(self) -> None:
        """Release resources. Default is a no-op."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - cancels anything still running."""
        self.close()
