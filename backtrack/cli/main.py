"""
Backtrack CLI - keep a rolling screen recording and save the last minute.

Commands:
    backtrack run                  - Record until quit; Enter saves the last window
    backtrack recordings list      - List saved recordings
    backtrack recordings show <id> - Show one recording
    backtrack recordings delete    - Delete a recording and its file
    backtrack recordings trim      - Save part of a recording as a new one
    backtrack recordings sync      - Reconcile the catalog with the folder
    backtrack recordings history   - Show recent export attempts
    backtrack platform-info        - Show platform, capture backend and ffmpeg
    backtrack version              - Show version
"""

import click
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from backtrack import __version__
from backtrack.app import App, create_app
from backtrack.capture.ffmpeg import ExportQuality, FFmpeg
from backtrack.capture.screen import BACKENDS, detect_backend
from backtrack.config import (
    DEFAULT_BUFFER_DURATION,
    DEFAULT_CHUNK_DURATION,
    DEFAULT_EXPORT_WINDOW,
    BufferConfig,
    default_buffer_dir,
    default_catalog_path,
    default_recordings_dir,
)
from backtrack.core.controller import SessionState
from backtrack.errors import BacktrackError, CaptureUnavailable, EncoderNotFound, ExportInProgress
from backtrack.logging import get_backtrack_logger, setup_logging
from backtrack.monitor import RecordingsWatcher
from backtrack.platform import Platform
from backtrack.process import LocalGateway
from backtrack.state import RecordingEntry, Store

out = get_backtrack_logger("backtrack.cli")

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx):
    """Backtrack - always-on screen recording, save the last minute on demand."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option('--chunk-duration', type=float, default=DEFAULT_CHUNK_DURATION, show_default=True,
              envvar='BACKTRACK_CHUNK_DURATION', help='Seconds per chunk')
@click.option('--buffer-duration', type=float, default=DEFAULT_BUFFER_DURATION, show_default=True,
              envvar='BACKTRACK_BUFFER_DURATION', help='Seconds of history to keep')
@click.option('--export-window', type=float, default=DEFAULT_EXPORT_WINDOW, show_default=True,
              envvar='BACKTRACK_EXPORT_WINDOW', help='Seconds saved per export')
@click.option('--buffer-dir', type=click.Path(file_okay=False), default=None,
              envvar='BACKTRACK_BUFFER_DIR', help=f'Chunk directory (default: {default_buffer_dir()})')
@click.option('--recordings-dir', type=click.Path(file_okay=False), default=None,
              envvar='BACKTRACK_RECORDINGS_DIR',
              help=f'Where exports are saved (default: {default_recordings_dir()})')
@click.option('--quality', type=click.Choice([q.value for q in ExportQuality]), default='medium',
              show_default=True, envvar='BACKTRACK_QUALITY', help='Export quality')
@click.option('--backend', type=click.Choice(['auto'] + sorted(BACKENDS)), default='auto',
              show_default=True, envvar='BACKTRACK_BACKEND', help='Capture backend')
@click.option('--ffmpeg', 'ffmpeg_path', default=None, envvar='BACKTRACK_FFMPEG',
              help='Path to ffmpeg (default: search PATH)')
@click.option('--no-catalog', is_flag=True, help='Do not track recordings in the catalog')
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default='INFO',
              show_default=True, envvar='BACKTRACK_LOG_LEVEL', help='Log level')
def run(chunk_duration: float, buffer_duration: float, export_window: float,
        buffer_dir: Optional[str], recordings_dir: Optional[str], quality: str,
        backend: str, ffmpeg_path: Optional[str], no_catalog: bool, log_level: str):
    """
    Record continuously until quit.

    Press Enter to save the last --export-window seconds, 's' for status,
    'q' to quit. `kill -USR1 <pid>` saves from another terminal.

    Example:
        backtrack run
        backtrack run --export-window 30 --quality high
    """
    setup_logging(level=log_level.upper())

    config = BufferConfig(
        chunk_duration=chunk_duration,
        buffer_duration=buffer_duration,
        export_window=export_window,
        quality=quality,
        capture_backend=backend,
        ffmpeg_path=ffmpeg_path,
    )
    if buffer_dir:
        config.buffer_dir = Path(buffer_dir).expanduser()
    if recordings_dir:
        config.recordings_dir = Path(recordings_dir).expanduser()

    try:
        config.validate()
    except ValueError as e:
        click.secho(f"Invalid configuration: {e}", fg="red")
        sys.exit(1)

    try:
        app = create_app(config, with_catalog=not no_catalog)
    except BacktrackError as e:
        click.secho(f"Error: {e}", fg="red")
        sys.exit(1)

    exports: List[threading.Thread] = []

    with app:
        watcher = _start_watcher(app)
        app.controller.subscribe(
            lambda state: out.info(f"Session {state.value}")
        )

        try:
            app.controller.start()
            _install_signal_handlers(app, exports)
            click.echo(
                f"Recording to {config.buffer_dir} ({app.backend.name}). "
                f"Exports go to {config.recordings_dir}"
            )
            if sys.stdin.isatty():
                _interactive_loop(app)
            else:
                click.echo("stdin is not a terminal; send SIGUSR1 to export, SIGTERM to stop")
                while True:
                    time.sleep(1)
        except BacktrackError as e:
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)
        except KeyboardInterrupt:
            click.echo("\nStopping...")
        finally:
            pending = [thread for thread in exports if thread.is_alive()]
            if pending:
                click.echo("Waiting for export to finish...")
            for thread in pending:
                thread.join()
            if watcher is not None:
                watcher.stop()

    click.secho("Recording stopped.", fg="green")


def _start_watcher(app: App) -> Optional[RecordingsWatcher]:
    """Sync the catalog with the recordings folder and follow it."""
    if app.catalog is None:
        return None

    app.catalog.sync_directory(app.config.recordings_dir)
    watcher = RecordingsWatcher(app.catalog, app.config.recordings_dir)
    watcher.start()
    return watcher


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def _install_signal_handlers(app: App, exports: List[threading.Thread]) -> None:
    """SIGUSR1 exports on a worker thread (kept in exports), SIGTERM stops like Ctrl-C."""
    signal.signal(signal.SIGTERM, _raise_interrupt)

    if hasattr(signal, "SIGUSR1"):
        def on_usr1(signum, frame):
            thread = threading.Thread(
                target=_export, args=(app,), name="backtrack-export", daemon=True
            )
            exports.append(thread)
            thread.start()

        signal.signal(signal.SIGUSR1, on_usr1)


def _interactive_loop(app: App) -> None:
    window = app.config.export_window
    click.echo(f"Press Enter to save the last {window:g}s, 's' for status, 'q' to quit.")

    for line in sys.stdin:
        command = line.strip().lower()
        if command in ("q", "quit", "exit"):
            break
        elif command == "":
            _export(app)
        elif command in ("s", "status"):
            _print_status(app)
        else:
            click.echo(f"Unknown command: {command}")


def _export(app: App) -> None:
    """Export the last window and report the outcome."""
    try:
        artifact = app.controller.export_last()
    except ExportInProgress as e:
        click.secho(str(e), fg="yellow")
        return
    except BacktrackError as e:
        click.secho(f"Export failed: {e}", fg="red")
        return

    out.action(
        "export",
        artifact.file_name,
        f"{artifact.chunk_count} chunks, {artifact.duration:.0f}s, {_format_size(artifact.file_size)}",
    )
    out.success(f"Saved {artifact.path}")


def _print_status(app: App) -> None:
    status = app.controller.status()
    state = status["state"]
    color = "green" if state == SessionState.RECORDING.value else "yellow"

    widths = [12, 0]
    click.secho(f"State: {state}", fg=color)
    out.table_row("  Chunks:", f"{status['chunks']} ({status['buffered_seconds']:.0f}s buffered)",
                  widths=widths)
    out.table_row("  Latest:", status["latest_chunk"] or "-", widths=widths)
    out.table_row("  Recorded:", f"{status['recorded']}, discarded: {status['discarded']}",
                  widths=widths)
    if status["exporting"]:
        out.table_row("  Export:", "in progress", widths=widths)
    if status["consecutive_failures"]:
        click.secho(
            f"  Failing:   {status['consecutive_failures']} in a row ({status['last_error']})",
            fg="red",
        )


@cli.command()
@click.option('--backend', type=click.Choice(['auto'] + sorted(BACKENDS)), default='auto',
              envvar='BACKTRACK_BACKEND', help='Capture backend to check')
@click.option('--ffmpeg', 'ffmpeg_path', default=None, envvar='BACKTRACK_FFMPEG',
              help='Path to ffmpeg')
def platform_info(backend: str, ffmpeg_path: Optional[str]):
    """Show detected platform, capture backend and ffmpeg."""
    plat = Platform.detect()
    gateway = LocalGateway()
    ffmpeg = FFmpeg(gateway, binary=ffmpeg_path, platform=plat)

    click.echo("Platform Information:")
    click.echo(f"  System:  {plat.system}")
    click.echo(f"  Distro:  {plat.distro}")
    click.echo(f"  Version: {plat.version}")
    click.echo(f"  Arch:    {plat.arch}")
    if plat.is_linux:
        click.echo(f"  Display: {plat.display or '-'}")

    try:
        capture = detect_backend(gateway, plat, backend, ffmpeg=ffmpeg)
        capture.check_available()
        click.secho(f"  Capture: {capture.name}", fg="green")
    except CaptureUnavailable as e:
        click.secho(f"  Capture: unavailable ({e})", fg="red")

    try:
        click.secho(f"  FFmpeg:  {ffmpeg.locate()}", fg="green")
    except EncoderNotFound as e:
        click.secho(f"  FFmpeg:  {e}", fg="red")


@cli.group()
@click.option('--catalog', 'catalog_path', type=click.Path(dir_okay=False), default=None,
              envvar='BACKTRACK_CATALOG', help=f'Catalog database (default: {default_catalog_path()})')
@click.pass_context
def recordings(ctx, catalog_path: Optional[str]):
    """Manage saved recordings."""
    ctx.ensure_object(dict)
    ctx.obj["catalog_path"] = catalog_path or str(default_catalog_path())


def _open_catalog(ctx) -> Store:
    return Store(ctx.obj["catalog_path"])


@recordings.command("list")
@click.pass_context
def recordings_list(ctx):
    """List saved recordings, newest first."""
    with _open_catalog(ctx) as store:
        entries = store.list_recordings()

        if not entries:
            click.echo("No recordings found.")
            click.echo("Run 'backtrack recordings sync' to import existing files.")
            return

        click.echo(f"{'ID':<10} {'CREATED':<20} {'LENGTH':<8} {'SIZE':<10} {'KIND':<6} FILE")
        click.echo("-" * 80)

        for entry in entries:
            length = f"{entry.duration:.0f}s" if entry.duration else "-"
            name = entry.file_name if entry.exists else f"{entry.file_name} (missing)"
            click.echo(
                f"{entry.id[:8]:<10} {entry.created_at.strftime('%Y-%m-%d %H:%M:%S'):<20} "
                f"{length:<8} {_format_size(entry.file_size):<10} {entry.kind:<6} {name}"
            )


@recordings.command("show")
@click.argument("recording_id")
@click.pass_context
def recordings_show(ctx, recording_id: str):
    """Show details for a recording (id or unique id prefix)."""
    with _open_catalog(ctx) as store:
        entry = store.get_recording(recording_id)

        if not entry:
            click.secho(f"Recording not found: {recording_id}", fg="red")
            sys.exit(1)

        click.echo(f"Recording: {entry.id}")
        click.echo(f"File: {entry.path}")
        click.echo(f"Created: {entry.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
        click.echo(f"Kind: {entry.kind}")
        click.echo(f"Duration: {entry.duration:.1f}s")
        click.echo(f"Chunks: {entry.chunk_count}")
        click.echo(f"Size: {_format_size(entry.file_size)}")
        if not entry.exists:
            click.secho("File is missing on disk", fg="yellow")


@recordings.command("delete")
@click.argument("recording_id")
@click.option('--keep-file', is_flag=True, help='Only remove the catalog entry')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation')
@click.pass_context
def recordings_delete(ctx, recording_id: str, keep_file: bool, yes: bool):
    """Delete a recording and its file."""
    with _open_catalog(ctx) as store:
        entry = store.get_recording(recording_id)

        if not entry:
            click.secho(f"Recording not found: {recording_id}", fg="red")
            sys.exit(1)

        if not yes and not click.confirm(f"Delete {entry.file_name}?"):
            click.echo("Aborted.")
            return

        store.delete_recording(entry.id, delete_file=not keep_file)
        out.action("evict", entry.file_name, "catalog only" if keep_file else None)


@recordings.command("trim")
@click.argument("recording_id")
@click.option('--start', type=float, default=0.0, show_default=True, help='Seconds into the recording')
@click.option('--duration', type=float, required=True, help='Seconds to keep')
@click.option('--output', type=click.Path(dir_okay=False), default=None,
              help='Output file (default: "Trimmed - <timestamp>.mov" next to the source)')
@click.option('--quality', type=click.Choice([q.value for q in ExportQuality]), default='high',
              show_default=True, help='Encoder quality')
@click.option('--ffmpeg', 'ffmpeg_path', default=None, envvar='BACKTRACK_FFMPEG',
              help='Path to ffmpeg (default: search PATH)')
@click.pass_context
def recordings_trim(ctx, recording_id: str, start: float, duration: float,
                    output: Optional[str], quality: str, ffmpeg_path: Optional[str]):
    """
    Save part of a recording as a new recording.

    Example:
        backtrack recordings trim 3f2a --start 12 --duration 20
    """
    with _open_catalog(ctx) as store:
        entry = store.get_recording(recording_id)

        if not entry:
            click.secho(f"Recording not found: {recording_id}", fg="red")
            sys.exit(1)
        if not entry.exists:
            click.secho(f"File is missing on disk: {entry.path}", fg="red")
            sys.exit(1)
        if entry.duration and start >= entry.duration:
            click.secho(f"--start {start:g}s is past the end ({entry.duration:g}s)", fg="red")
            sys.exit(1)

        source = Path(entry.path)
        now = datetime.now()
        if output:
            target = Path(output).expanduser()
        else:
            base = f"Trimmed - {now:%Y-%m-%d %H.%M.%S}"
            target = source.parent / f"{base}.mov"
            counter = 2
            while target.exists():
                target = source.parent / f"{base} ({counter}).mov"
                counter += 1

        try:
            with LocalGateway() as gateway:
                FFmpeg(gateway, binary=ffmpeg_path).trim(
                    source, target, start, duration, ExportQuality(quality)
                )
        except (BacktrackError, ValueError) as e:
            click.secho(f"Trim failed: {e}", fg="red")
            sys.exit(1)

        if entry.duration:
            duration = min(duration, entry.duration - start)
        trimmed = store.add_recording(RecordingEntry(
            path=str(target.resolve()),
            created_at=now,
            duration=duration,
            file_size=target.stat().st_size,
        ))

    out.action("add", trimmed.file_name, f"{duration:g}s from {entry.file_name}")


@recordings.command("sync")
@click.option('--dir', 'directory', type=click.Path(file_okay=False), default=None,
              envvar='BACKTRACK_RECORDINGS_DIR',
              help=f'Recordings directory (default: {default_recordings_dir()})')
@click.pass_context
def recordings_sync(ctx, directory: Optional[str]):
    """Import files from the recordings folder and drop missing ones."""
    directory = Path(directory).expanduser() if directory else default_recordings_dir()

    with _open_catalog(ctx) as store:
        added, removed = store.sync_directory(directory)

    click.secho(f"Synced {directory}: {added} added, {removed} removed", fg="green")


@recordings.command("history")
@click.option("--limit", default=10, help="Number of export attempts to show")
@click.pass_context
def recordings_history(ctx, limit: int):
    """Show recent export attempts."""
    with _open_catalog(ctx) as store:
        history = store.list_exports(limit)

        if not history:
            click.echo("No exports yet.")
            return

        for entry in history:
            symbol = "✓" if entry.success else "✗"
            click.echo(
                f"{entry.timestamp.strftime('%Y-%m-%d %H:%M:%S')} {symbol} "
                f"last {entry.window:g}s, {entry.chunk_count} chunk(s) by {entry.user}@{entry.hostname}"
            )
            if entry.output:
                click.echo(f"  -> {entry.output}")
            if entry.error:
                click.secho(f"  ! {entry.error}", fg="red")


@cli.command()
def version():
    """Show version."""
    click.echo(f"backtrack {__version__}")


def _format_size(size: float) -> str:
    if size < 1024:
        return f"{size:.0f} B"
    for unit in ("KB", "MB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f} {unit}"
    return f"{size / 1024:.1f} GB"


def main():
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
