"""Shared data types used across ClipStitch."""

from dataclasses import dataclass, replace
from enum import Enum

import numpy as np


@dataclass(frozen=True)
class SourceFile:
    """An original media file that one or more segments cut from."""

    source_id: int | str
    location: str
    width: int
    height: int
    fps: float = 30.0
    duration_ms: int = 0
    asset_id: str | None = None

    @property
    def duration(self) -> float:
        return self.duration_ms / 1000


@dataclass(frozen=True)
class Segment:
    """A time range cut from a source, placed in list order on the output timeline.

    ``purpose``, ``summary`` and ``timecode`` are descriptive only.
    """

    scene_id: int | str
    source_id: int | str
    start_ms: int
    end_ms: int
    muted: bool = False
    purpose: str = ""
    summary: str = ""
    timecode: str = ""

    @property
    def start(self) -> float:
        return self.start_ms / 1000

    @property
    def end(self) -> float:
        return self.end_ms / 1000

    @property
    def duration(self) -> float:
        return max(0.0, (self.end_ms - self.start_ms) / 1000)

    def label(self) -> str:
        return self.purpose or f"scene {self.scene_id}"


@dataclass(frozen=True)
class TargetProfile:
    """Common output frame size and audio format, fixed before the first segment."""

    width: int
    height: int
    sample_rate: int
    channels: int


@dataclass
class VideoFrame:
    """A decoded RGB frame. ``data`` has shape (height, width, 3), dtype uint8."""

    data: np.ndarray
    timestamp: float
    duration: float

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    def with_timestamp(self, timestamp: float) -> "VideoFrame":
        return replace(self, timestamp=timestamp)


@dataclass
class AudioChunk:
    """Decoded audio. ``data`` has shape (frames, channels), dtype float32."""

    data: np.ndarray
    sample_rate: int
    timestamp: float

    @property
    def channels(self) -> int:
        return int(self.data.shape[1])

    @property
    def frame_count(self) -> int:
        return int(self.data.shape[0])

    @property
    def duration(self) -> float:
        return self.frame_count / self.sample_rate

    def with_timestamp(self, timestamp: float) -> "AudioChunk":
        return replace(self, timestamp=timestamp)


@dataclass
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    audio_sample_rate: int | None = None
    audio_channels: int | None = None
    codec_video: str | None = None
    codec_audio: str | None = None

    @property
    def has_video(self) -> bool:
        return self.width is not None and self.height is not None

    @property
    def has_audio(self) -> bool:
        return self.audio_sample_rate is not None


class EventKind(str, Enum):
    PROBE_FAILED = "probe_failed"
    SEGMENT_OUT_OF_BOUNDS = "segment_out_of_bounds"
    SEGMENT_TRUNCATED = "segment_truncated"
    TRACK_UNDECODABLE = "track_undecodable"


@dataclass(frozen=True)
class StitchEvent:
    """A non-fatal condition reported while stitching."""

    kind: EventKind
    message: str
    segment_index: int | None = None
    scene_id: int | str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "segment_index": self.segment_index,
            "scene_id": self.scene_id,
        }
