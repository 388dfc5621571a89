"""
Unit tests for the CLI commands that do not record.
"""

import stat
import sys
from datetime import datetime
from pathlib import Path

import pytest
from click.testing import CliRunner

from backtrack import __version__
from backtrack.cli.main import _format_size, cli
from backtrack.state import ExportEntry, RecordingEntry, Store


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def catalog_path(tmp_path):
    return str(tmp_path / "catalog.db")


def invoke(runner, catalog_path, *args, **kwargs):
    return runner.invoke(cli, ["recordings", "--catalog", catalog_path, *args], **kwargs)


class TestBasics:

    def test_version(self, runner):
        result = runner.invoke(cli, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_without_command(self, runner):
        result = runner.invoke(cli, [])

        assert result.exit_code == 0
        assert "recordings" in result.output

    def test_platform_info(self, runner):
        result = runner.invoke(cli, ["platform-info"])

        assert result.exit_code == 0
        assert "System:" in result.output
        assert "FFmpeg:" in result.output

    def test_run_rejects_bad_config(self, runner, tmp_path):
        result = runner.invoke(cli, [
            "run",
            "--export-window", "500",
            "--buffer-dir", str(tmp_path / "buffer"),
            "--recordings-dir", str(tmp_path / "out"),
            "--no-catalog",
        ])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    @pytest.mark.parametrize("size,expected", [
        (512, "512 B"),
        (2048, "2.0 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024 ** 3, "3.0 GB"),
    ])
    def test_format_size(self, size, expected):
        assert _format_size(size) == expected


class TestRecordingsCommands:

    def test_list_empty(self, runner, catalog_path):
        result = invoke(runner, catalog_path, "list")

        assert result.exit_code == 0
        assert "No recordings found" in result.output

    def test_sync_list_show_delete(self, runner, catalog_path, tmp_path):
        recordings = tmp_path / "videos"
        recordings.mkdir()
        video = recordings / "Recording 2025-07-13 10.00.00.mov"
        video.write_bytes(b"v" * 2048)

        result = invoke(runner, catalog_path, "sync", "--dir", str(recordings))
        assert result.exit_code == 0
        assert "1 added" in result.output

        result = invoke(runner, catalog_path, "list")
        assert result.exit_code == 0
        assert video.name in result.output

        with Store(catalog_path) as store:
            entry_id = store.list_recordings()[0].id

        result = invoke(runner, catalog_path, "show", entry_id[:8])
        assert result.exit_code == 0
        assert str(video) in result.output
        assert "2.0 KB" in result.output

        result = invoke(runner, catalog_path, "delete", entry_id, input="n\n")
        assert "Aborted" in result.output
        assert video.exists()

        result = invoke(runner, catalog_path, "delete", entry_id, "--yes")
        assert result.exit_code == 0
        assert not video.exists()

    def test_show_unknown(self, runner, catalog_path):
        result = invoke(runner, catalog_path, "show", "deadbeef")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_history(self, runner, catalog_path):
        with Store(catalog_path) as store:
            store.add_export(ExportEntry(
                timestamp=datetime(2025, 7, 13, 10, 0, 0),
                window=60,
                chunk_count=0,
                success=False,
                user="me",
                hostname="laptop",
                error="No chunks recorded in the last 60s",
            ))

        result = invoke(runner, catalog_path, "history")

        assert result.exit_code == 0
        assert "last 60s" in result.output
        assert "No chunks recorded" in result.output


COPY_FFMPEG = """
import shutil, sys

args = sys.argv[1:]
shutil.copyfile(args[args.index("-i") + 1], args[-1])
"""


def fake_ffmpeg(directory: Path, body: str) -> Path:
    path = directory / "ffmpeg"
    path.write_text(f"#!{sys.executable}\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


@pytest.mark.skipif(sys.platform == "win32", reason="needs an executable script")
class TestTrimCommand:

    @pytest.fixture
    def source(self, tmp_path, catalog_path):
        videos = tmp_path / "videos"
        videos.mkdir()
        video = videos / "Recording 2025-07-13 10.00.00.mov"
        video.write_bytes(b"v" * 4096)
        with Store(catalog_path) as store:
            return store.add_recording(RecordingEntry(
                path=str(video),
                created_at=datetime(2025, 7, 13, 10, 0, 0),
                duration=60,
                file_size=4096,
            ))

    def test_trim_adds_recording(self, runner, catalog_path, tmp_path, source):
        ffmpeg = fake_ffmpeg(tmp_path, COPY_FFMPEG)

        result = invoke(runner, catalog_path, "trim", source.id[:8],
                        "--start", "50", "--duration", "30", "--ffmpeg", str(ffmpeg))

        assert result.exit_code == 0, result.output
        with Store(catalog_path) as store:
            trimmed = [e for e in store.list_recordings() if e.id != source.id]
        assert len(trimmed) == 1
        assert trimmed[0].file_name.startswith("Trimmed - ")
        assert trimmed[0].duration == 10
        assert trimmed[0].file_size == 4096
        assert Path(trimmed[0].path).parent == Path(source.path).parent.resolve()
        assert Path(source.path).exists()

    def test_trim_to_explicit_output(self, runner, catalog_path, tmp_path, source):
        ffmpeg = fake_ffmpeg(tmp_path, COPY_FFMPEG)
        output = tmp_path / "cut.mov"

        result = invoke(runner, catalog_path, "trim", source.id, "--duration", "5",
                        "--output", str(output), "--ffmpeg", str(ffmpeg))

        assert result.exit_code == 0, result.output
        assert output.read_bytes() == b"v" * 4096
        with Store(catalog_path) as store:
            assert store.find_by_path(str(output.resolve())) is not None

    def test_start_past_end(self, runner, catalog_path, source):
        result = invoke(runner, catalog_path, "trim", source.id, "--start", "60", "--duration", "5")

        assert result.exit_code == 1
        assert "past the end" in result.output

    def test_encoder_failure(self, runner, catalog_path, tmp_path, source):
        ffmpeg = fake_ffmpeg(tmp_path, "import sys\nsys.exit(1)\n")

        result = invoke(runner, catalog_path, "trim", source.id, "--duration", "5",
                        "--ffmpeg", str(ffmpeg))

        assert result.exit_code == 1
        assert "Trim failed" in result.output
        with Store(catalog_path) as store:
            assert [e.id for e in store.list_recordings()] == [source.id]

    def test_unknown_recording(self, runner, catalog_path):
        result = invoke(runner, catalog_path, "trim", "deadbeef", "--duration", "5")

        assert result.exit_code == 1
        assert "not found" in result.output
