"""
Logging for Backtrack.

All loggers live under the "backtrack" namespace and print through one rich
console on stderr, so log lines never mix with command output on stdout.

Example:
    from backtrack.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Recorded chunk_2025-07-13T10-00-00.000.mov")
    logger.warning("Chunk discarded: file is empty")
"""

import logging
from typing import Iterable, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.theme import Theme

ROOT_LOGGER = "backtrack"

BACKTRACK_THEME = Theme({
    "log.time": "dim cyan",
    "log.level.debug": "dim blue",
    "log.level.info": "green",
    "log.level.warning": "yellow",
    "log.level.error": "bold red",
    "log.level.critical": "bold white on red",
    "backtrack.success": "bold green",
    "backtrack.action.add": "green",
    "backtrack.action.export": "cyan",
    "backtrack.action.evict": "red",
    "backtrack.action.discard": "yellow",
})

# Symbol per action style
ACTION_SYMBOLS = {
    "add": "+",
    "evict": "-",
    "discard": "!",
    "export": "»",
}

# Chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("watchdog",)

console = Console(theme=BACKTRACK_THEME, stderr=True)

_handler: Optional[RichHandler] = None


def _build_handler(show_time: bool, show_path: bool, rich_tracebacks: bool) -> RichHandler:
    handler = RichHandler(
        console=console,
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
        markup=False,
        log_time_format="[%X]",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_logging(
    level: str = "INFO",
    show_time: bool = True,
    show_path: bool = False,
    rich_tracebacks: bool = True,
    quiet: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """
    Configure the "backtrack" logger.

    The handler is installed on first call; later calls only change the
    level (the CLI calls this again with --log-level after modules have
    already logged).

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        show_time: Prefix lines with the time
        show_path: Show the emitting file and line
        rich_tracebacks: Render exc_info with rich
        quiet: Other loggers to raise to WARNING
    """
    global _handler

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    if _handler is None:
        _handler = _build_handler(show_time, show_path, rich_tracebacks)
        root.addHandler(_handler)
        root.propagate = False


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a module, configuring logging with defaults if needed.

    Names outside the "backtrack" namespace are nested under it.
    """
    if _handler is None:
        setup_logging()

    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


class BacktrackLogger:
    """
    Logger plus console output for the CLI.

    debug/info/warning/error/exception go to the wrapped logger; success,
    action and table_row print directly to the console.
    """

    def __init__(self, name: str):
        self.logger = get_logger(name)
        self.console = console

    def __getattr__(self, attr):
        if attr in ("debug", "info", "warning", "error", "exception"):
            return getattr(self.logger, attr)
        raise AttributeError(attr)

    def success(self, message: str) -> None:
        self.console.print(f"[backtrack.success]✓[/backtrack.success] {escape(message)}")

    def action(self, action: str, target: str, details: Optional[str] = None) -> None:
        """
        Print one lifecycle line, e.g. `» Recording 2025-07-13 10.00.00.mov (6 chunks)`.

        Args:
            action: add, evict, discard or export
            target: File name
            details: Shown dimmed in parentheses
        """
        key = action.lower()
        style = f"backtrack.action.{key}"
        parts: List[str] = [
            f"[{style}]{ACTION_SYMBOLS.get(key, '•')}[/{style}]",
            escape(target),
        ]
        if details:
            parts.append(f"[dim]({escape(details)})[/dim]")
        self.console.print(" ".join(parts))

    def table_row(self, *columns, widths: Optional[List[int]] = None) -> None:
        """Print columns padded to widths (0 = no padding), without markup."""
        cells = [str(col) for col in columns]
        if widths:
            cells = [cell.ljust(width) for cell, width in zip(cells, widths)]
        self.console.print("  ".join(cells), markup=False, highlight=False)


def get_backtrack_logger(name: str) -> BacktrackLogger:
    """
    Example:
        out = get_backtrack_logger(__name__)
        out.success("Saved Recording 2025-07-13 10.00.00.mov")
        out.action("export", "Recording 2025-07-13 10.00.00.mov", "6 chunks")
    """
    return BacktrackLogger(name)
