"""Tests for target profile probing."""

import logging

import pytest

from fakes import FakeAudioTrack, FakeHandle, FakeVideoTrack, make_registry, make_source

from clipstitch.errors import SourceNotFoundError
from clipstitch.manifest import Manifest, StitchConfig
from clipstitch.models import EventKind, Segment, TargetProfile
from clipstitch.profile import probe_target_profile, target_dimensions


def _seg(source_id, muted=False, scene_id=1) -> Segment:
    return Segment(scene_id=scene_id, source_id=source_id, start_ms=0, end_ms=1000, muted=muted)


class TestTargetDimensions:
    @pytest.mark.parametrize(
        "sizes, expected",
        [
            ([(1920, 1080)], (1920, 1080)),
            ([(1920, 1080), (1280, 720)], (1280, 720)),
            ([(1080, 1920), (1920, 1080)], (1080, 1080)),
            ([(640, 480), (800, 360), (1024, 576)], (640, 360)),
        ],
    )
    def test_minimum_over_referenced_sources(self, sizes, expected):
        sources = [make_source(i, w, h) for i, (w, h) in enumerate(sizes)]
        segments = [_seg(i) for i in range(len(sizes))]
        assert target_dimensions(Manifest(sources=sources, segments=segments)) == expected

    def test_unreferenced_source_ignored(self):
        sources = [make_source(1, 1920, 1080), make_source(2, 320, 240)]
        manifest = Manifest(sources=sources, segments=[_seg(1)])
        assert target_dimensions(manifest) == (1920, 1080)

    def test_no_known_source_is_fatal(self):
        manifest = Manifest(sources=[make_source(1)], segments=[_seg(7)])
        with pytest.raises(SourceNotFoundError):
            target_dimensions(manifest)


def _probe(handles: dict, segments: list[Segment], config: StitchConfig | None = None):
    sources = [h.source for h in handles.values()]
    manifest = Manifest(sources=sources, segments=segments, config=config or StitchConfig())
    registry, _ = make_registry(handles)
    events = []
    profile = probe_target_profile(manifest, registry, on_event=events.append)
    return profile, events


class TestAudioProbe:
    def test_first_unmuted_segment_wins(self):
        handles = {
            1: FakeHandle(make_source(1), audio=FakeAudioTrack(22050, 1)),
            2: FakeHandle(make_source(2), audio=FakeAudioTrack(44100, 2)),
        }
        profile, events = _probe(handles, [_seg(1, muted=True), _seg(2), _seg(1)])
        assert profile == TargetProfile(width=1920, height=1080, sample_rate=44100, channels=2)
        assert events == []

    def test_rate_capped(self):
        handles = {1: FakeHandle(make_source(1), audio=FakeAudioTrack(96000, 2))}
        profile, _ = _probe(handles, [_seg(1)])
        assert profile.sample_rate == 48000

    def test_custom_cap(self):
        handles = {1: FakeHandle(make_source(1), audio=FakeAudioTrack(48000, 2))}
        profile, _ = _probe(handles, [_seg(1)], StitchConfig(max_sample_rate=32000))
        assert profile.sample_rate == 32000

    def test_skips_sources_without_usable_audio(self):
        handles = {
            1: FakeHandle(make_source(1), audio=None),
            2: FakeHandle(make_source(2), audio=FakeAudioTrack(32000, 2, decodable=False)),
            3: FakeHandle(make_source(3), audio=FakeAudioTrack(24000, 1)),
        }
        profile, events = _probe(handles, [_seg(1), _seg(2), _seg(3)])
        assert profile.sample_rate == 24000
        assert profile.channels == 1
        assert events == []

    def test_all_muted_falls_back(self):
        handles = {1: FakeHandle(make_source(1), audio=FakeAudioTrack(44100, 2))}
        profile, events = _probe(handles, [_seg(1, muted=True)])
        assert profile.sample_rate == 48000
        assert profile.channels == 2
        assert [e.kind for e in events] == [EventKind.PROBE_FAILED]

    def test_fallback_is_configurable(self):
        handles = {1: FakeHandle(make_source(1), audio=None)}
        config = StitchConfig(default_sample_rate=16000, default_channels=1)
        profile, events = _probe(handles, [_seg(1)], config)
        assert (profile.sample_rate, profile.channels) == (16000, 1)
        assert events[0].kind is EventKind.PROBE_FAILED

    def test_video_track_not_needed(self):
        handles = {1: FakeHandle(make_source(1, 640, 480), video=FakeVideoTrack(640, 480, decodable=False))}
        profile, _ = _probe(handles, [_seg(1, muted=True)])
        assert (profile.width, profile.height) == (640, 480)

    def test_fallback_warning_left_to_event_handler(self, caplog):
        handles = {1: FakeHandle(make_source(1), audio=None)}
        with caplog.at_level(logging.WARNING, logger="clipstitch.profile"):
            _, events = _probe(handles, [_seg(1)])
        assert len(events) == 1
        assert not [r for r in caplog.records if r.name == "clipstitch.profile"]

    def test_fallback_logged_without_event_handler(self, caplog):
        handles = {1: FakeHandle(make_source(1), audio=None)}
        manifest = Manifest(sources=[handles[1].source], segments=[_seg(1)])
        registry, _ = make_registry(handles)
        with caplog.at_level(logging.WARNING, logger="clipstitch.profile"):
            probe_target_profile(manifest, registry)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "No unmuted segment" in warnings[0].getMessage()
