"""Tests for the command-line entry point."""

import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from clipstitch.cli import main
from clipstitch.engine import EngineResult
from clipstitch.errors import StitchError
from clipstitch.models import TargetProfile

PROFILE = TargetProfile(width=1280, height=720, sample_rate=48000, channels=2)


def _run(argv):
    with patch("sys.argv", ["clipstitch", *argv]):
        main()


@pytest.fixture
def manifest_copy(tmp_path, sample_manifest_path) -> Path:
    path = tmp_path / "cut.json"
    shutil.copy(sample_manifest_path, path)
    return path


class TestStitchCommand:
    @patch("clipstitch.cli.process")
    def test_applies_overrides(self, mock_process, manifest_copy, tmp_path, capsys):
        mock_process.return_value = EngineResult(
            data=b"x", duration=10.0, profile=PROFILE, output_path=tmp_path / "o.mp4",
            segments_processed=2, segments_truncated=1,
        )
        _run([
            "stitch", str(manifest_copy), "-o", str(tmp_path / "o.mp4"),
            "--timeout", "5", "--skip-policy", "hold", "--undecodable-audio", "silence",
        ])

        manifest = mock_process.call_args[0][0]
        assert manifest.output == tmp_path / "o.mp4"
        assert manifest.config.timeout == 5.0
        assert manifest.config.skipped_segment_policy == "hold"
        assert manifest.config.undecodable_audio_policy == "silence"
        assert manifest.config.max_sample_rate == 48000
        out = capsys.readouterr().out
        assert "1280x720" in out
        assert "Segments truncated: 1" in out

    @patch("clipstitch.cli.process", side_effect=StitchError("Source 9 not found"))
    def test_engine_error_exits_1(self, mock_process, manifest_copy, capsys):
        with pytest.raises(SystemExit) as exc:
            _run(["stitch", str(manifest_copy)])
        assert exc.value.code == 1
        assert "Source 9 not found" in capsys.readouterr().err

    def test_bad_manifest_exits_1(self, tmp_path, capsys):
        bad = tmp_path / "bad.json"
        bad.write_text("{}")
        with pytest.raises(SystemExit) as exc:
            _run(["stitch", str(bad)])
        assert exc.value.code == 1
        assert "could not load manifest" in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc:
            _run([])
        assert exc.value.code == 0
        assert "stitch" in capsys.readouterr().out
