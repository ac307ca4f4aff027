"""JSON manifest schema — the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path

from clipstitch.errors import SourceNotFoundError
from clipstitch.models import Segment, SourceFile

SKIP_POLICIES = ("collapse", "hold")
UNDECODABLE_AUDIO_POLICIES = ("gap", "silence")


@dataclass
class StitchConfig:
    """Output profile policy, fallbacks and run limits."""

    max_sample_rate: int = 48000
    default_sample_rate: int = 48000
    default_channels: int = 2
    frame_rate: float = 30.0
    video_codec: str = "libx264"
    video_bitrate: int = 6_000_000
    keyframe_interval: float = 2.0
    audio_codec: str = "aac"
    audio_bitrate: int = 128_000
    silence_slice: float = 0.1
    audio_chunk_frames: int = 4096
    timeout: float | None = 600.0
    decode_timeout: float = 30.0
    # "collapse": a skipped segment takes no time; "hold": it keeps its nominal length as silence
    skipped_segment_policy: str = "collapse"
    # "gap": emit nothing for an undecodable unmuted track; "silence": generate silence instead
    undecodable_audio_policy: str = "gap"

    def __post_init__(self) -> None:
        if self.skipped_segment_policy not in SKIP_POLICIES:
            raise ValueError(
                f"skipped_segment_policy must be one of {SKIP_POLICIES}, "
                f"got {self.skipped_segment_policy!r}"
            )
        if self.undecodable_audio_policy not in UNDECODABLE_AUDIO_POLICIES:
            raise ValueError(
                f"undecodable_audio_policy must be one of {UNDECODABLE_AUDIO_POLICIES}, "
                f"got {self.undecodable_audio_policy!r}"
            )
        if self.max_sample_rate <= 0 or self.default_sample_rate <= 0:
            raise ValueError("sample rates must be positive")
        if self.frame_rate <= 0:
            raise ValueError("frame_rate must be positive")
        if self.silence_slice <= 0:
            raise ValueError("silence_slice must be positive")


@dataclass
class Manifest:
    """Ordered segments, the sources they cut from, and where to write the result."""

    sources: list[SourceFile]
    segments: list[Segment]
    output: Path | None = None
    version: str = "1"
    project_name: str = ""
    config: StitchConfig = field(default_factory=StitchConfig)

    def source(self, source_id, scene_id=None) -> SourceFile:
        for sf in self.sources:
            if sf.source_id == source_id:
                return sf
        raise SourceNotFoundError(source_id, scene_id)

    def has_source(self, source_id) -> bool:
        return any(sf.source_id == source_id for sf in self.sources)

    @property
    def nominal_duration(self) -> float:
        return sum(seg.duration for seg in self.segments)


def _parse_source(data: dict) -> SourceFile:
    location = data.get("url") or data.get("location")
    if "source_id" not in data or not location:
        raise ValueError("Each source file needs 'source_id' and 'url'")
    dimension = data.get("dimension") or {}
    width = dimension.get("width", data.get("width"))
    height = dimension.get("height", data.get("height"))
    if width is None or height is None:
        raise ValueError(f"Source {data['source_id']!r} is missing its dimension")
    if "duration_ms" in data:
        duration_ms = int(data["duration_ms"])
    else:
        duration_ms = int(round(float(data.get("duration_sec", 0)) * 1000))
    return SourceFile(
        source_id=data["source_id"],
        location=str(location),
        width=int(width),
        height=int(height),
        fps=float(data.get("fps", 30.0)),
        duration_ms=duration_ms,
        asset_id=data.get("asset_id"),
    )


def _parse_segment(data: dict) -> Segment:
    missing = [k for k in ("scene_id", "source_id", "start_ms", "end_ms") if k not in data]
    if missing:
        raise ValueError(f"Segment is missing {', '.join(missing)}")
    return Segment(
        scene_id=data["scene_id"],
        source_id=data["source_id"],
        start_ms=int(data["start_ms"]),
        end_ms=int(data["end_ms"]),
        muted=bool(data.get("muted", False)),
        purpose=data.get("purpose", ""),
        summary=data.get("summary", ""),
        timecode=data.get("timecode", ""),
    )


def parse_config(data: dict | None) -> StitchConfig:
    """Build a StitchConfig, rejecting unknown keys."""
    if not data:
        return StitchConfig()
    known = {f.name for f in fields(StitchConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    return StitchConfig(**data)


def parse_manifest(data: dict) -> Manifest:
    """Validate a decoded manifest document."""
    if not isinstance(data, dict):
        raise ValueError("Manifest must be a JSON object")
    body = data.get("video_cutdown_result", data)

    if "source_files" not in body or "segments" not in body:
        raise ValueError("Manifest must contain 'source_files' and 'segments' fields")

    output = data.get("output", body.get("output"))
    return Manifest(
        version=str(data.get("version", "1")),
        project_name=body.get("project_name", ""),
        sources=[_parse_source(s) for s in body["source_files"]],
        segments=[_parse_segment(s) for s in body["segments"]],
        output=Path(output) if output else None,
        config=parse_config(data.get("config", body.get("config"))),
    )


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())
    return parse_manifest(data)
