"""
Process gateway for capture and encoder processes.

Provides abstraction for:
- Launching external processes with a hard timeout
- Cancelling them idempotently
- Collecting exit status and stderr for diagnostics
"""

from backtrack.process.base import Gateway, ProcessHandle, ProcessResult, ProcessSpec
from backtrack.process.local import LocalGateway, LocalProcessHandle

__all__ = [
    "Gateway",
    "ProcessHandle",
    "ProcessResult",
    "ProcessSpec",
    "LocalGateway",
    "LocalProcessHandle",
]
