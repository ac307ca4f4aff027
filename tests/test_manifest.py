"""Tests for manifest loading and validation."""

import json
from pathlib import Path

import pytest

from clipstitch.errors import SourceNotFoundError
from clipstitch.manifest import Manifest, StitchConfig, load_manifest, parse_manifest
from clipstitch.models import Segment, SourceFile


class TestStitchConfig:
    def test_defaults(self):
        cfg = StitchConfig()
        assert cfg.max_sample_rate == 48000
        assert cfg.default_sample_rate == 48000
        assert cfg.default_channels == 2
        assert cfg.frame_rate == 30.0
        assert cfg.silence_slice == 0.1
        assert cfg.skipped_segment_policy == "collapse"
        assert cfg.undecodable_audio_policy == "gap"

    def test_custom_values(self):
        cfg = StitchConfig(default_sample_rate=44100, skipped_segment_policy="hold")
        assert cfg.default_sample_rate == 44100
        assert cfg.skipped_segment_policy == "hold"

    def test_rejects_unknown_policy(self):
        with pytest.raises(ValueError, match="skipped_segment_policy"):
            StitchConfig(skipped_segment_policy="stretch")
        with pytest.raises(ValueError, match="undecodable_audio_policy"):
            StitchConfig(undecodable_audio_policy="noise")

    def test_rejects_bad_rates(self):
        with pytest.raises(ValueError):
            StitchConfig(max_sample_rate=0)
        with pytest.raises(ValueError):
            StitchConfig(frame_rate=-1)


class TestSegment:
    def test_seconds(self):
        seg = Segment(scene_id=1, source_id=1, start_ms=1500, end_ms=4000)
        assert seg.start == 1.5
        assert seg.end == 4.0
        assert seg.duration == 2.5

    def test_inverted_range_has_no_duration(self):
        assert Segment(scene_id=1, source_id=1, start_ms=4000, end_ms=1000).duration == 0.0

    def test_label(self):
        assert Segment(scene_id=3, source_id=1, start_ms=0, end_ms=1).label() == "scene 3"
        assert Segment(scene_id=3, source_id=1, start_ms=0, end_ms=1, purpose="hook").label() == "hook"


class TestManifest:
    def test_source_lookup(self):
        sf = SourceFile(source_id=1, location="a.mp4", width=10, height=10)
        m = Manifest(sources=[sf], segments=[])
        assert m.source(1) is sf
        with pytest.raises(SourceNotFoundError, match="scene 4"):
            m.source(2, scene_id=4)

    def test_nominal_duration(self):
        m = Manifest(
            sources=[],
            segments=[
                Segment(scene_id=1, source_id=1, start_ms=0, end_ms=1000),
                Segment(scene_id=2, source_id=1, start_ms=500, end_ms=3000),
            ],
        )
        assert m.nominal_duration == 3.5


class TestLoadManifest:
    def test_load_sample(self, sample_manifest_path: Path):
        m = load_manifest(sample_manifest_path)
        assert m.version == "1"
        assert m.project_name == "Spring launch cutdown"
        assert m.output == Path("stitched.mp4")
        assert [s.source_id for s in m.sources] == [1, 2]
        assert m.sources[0].width == 1920
        assert m.sources[0].duration_ms == 120000
        assert m.sources[1].location.endswith("broll_city.mp4")
        assert m.segments[1].muted is True
        assert m.segments[0].start == 12.0
        assert m.config.max_sample_rate == 48000

    def test_flat_document(self):
        m = parse_manifest({
            "source_files": [
                {"source_id": "a", "location": "a.mp4", "width": 640, "height": 360, "duration_sec": 2.5}
            ],
            "segments": [{"scene_id": 1, "source_id": "a", "start_ms": 0, "end_ms": 1000}],
        })
        assert m.sources[0].duration_ms == 2500
        assert m.sources[0].height == 360
        assert m.segments[0].muted is False
        assert m.output is None

    def test_load_invalid_json(self, tmp_path: Path):
        bad = tmp_path / "bad.json"
        bad.write_text("not json")
        with pytest.raises(json.JSONDecodeError):
            load_manifest(bad)

    def test_load_missing_fields(self, tmp_path: Path):
        incomplete = tmp_path / "incomplete.json"
        incomplete.write_text('{"version": "1"}')
        with pytest.raises(ValueError, match="must contain"):
            load_manifest(incomplete)

    def test_segment_missing_offsets(self):
        with pytest.raises(ValueError, match="start_ms"):
            parse_manifest({
                "source_files": [],
                "segments": [{"scene_id": 1, "source_id": 1, "end_ms": 10}],
            })

    def test_source_missing_dimension(self):
        with pytest.raises(ValueError, match="dimension"):
            parse_manifest({
                "source_files": [{"source_id": 1, "url": "a.mp4"}],
                "segments": [],
            })

    def test_unknown_config_key(self):
        with pytest.raises(ValueError, match="Unknown config keys: bogus"):
            parse_manifest({"source_files": [], "segments": [], "config": {"bogus": 1}})
