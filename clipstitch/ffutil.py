"""FFmpeg/ffprobe subprocess helpers."""

import json
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Iterator

import numpy as np

from clipstitch.models import AudioChunk, ProbeResult, VideoFrame

ProcessHook = Callable[[subprocess.Popen], None]


class FFmpegNotFoundError(RuntimeError):
    pass


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def _parse_rate(value: str | None) -> float | None:
    if not value:
        return None
    num, _, den = value.partition("/")
    try:
        rate = float(num) / float(den or 1)
    except (ValueError, ZeroDivisionError):
        return None
    return rate or None


def parse_probe(data: dict) -> ProbeResult:
    """Turn ffprobe's JSON document into a ProbeResult.

    Either stream may be absent; a source without audio is still a valid source.
    """
    streams = data.get("streams", [])
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

    # streams ffprobe could not fully describe are treated as absent
    if video_stream is not None and not (video_stream.get("width") and video_stream.get("height")):
        video_stream = None
    if audio_stream is not None and not audio_stream.get("sample_rate"):
        audio_stream = None

    if video_stream is None and audio_stream is None:
        raise ValueError("No audio or video stream found")

    duration = float(data.get("format", {}).get("duration") or 0.0)
    result = ProbeResult(duration=duration)

    if video_stream is not None:
        result.width = int(video_stream["width"])
        result.height = int(video_stream["height"])
        result.fps = _parse_rate(video_stream.get("avg_frame_rate")) or _parse_rate(
            video_stream.get("r_frame_rate")
        )
        result.codec_video = video_stream.get("codec_name")

    if audio_stream is not None:
        result.audio_sample_rate = int(audio_stream["sample_rate"])
        result.audio_channels = int(audio_stream.get("channels") or 2)
        result.codec_audio = audio_stream.get("codec_name")

    return result


def probe(input_path: str | Path, timeout: float | None = None) -> ProbeResult:
    """Extract media metadata via ffprobe."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    return parse_probe(json.loads(result.stdout))


def can_decode(input_path: str | Path, kind: str, timeout: float | None = None) -> bool:
    """Decode one frame of the primary ``kind`` ("v" or "a") stream and report success."""
    if kind not in ("v", "a"):
        raise ValueError(f"kind must be 'v' or 'a', got {kind!r}")
    cmd = [
        "ffmpeg",
        "-v", "error",
        "-i", str(input_path),
        "-map", f"0:{kind}:0",
        f"-frames:{kind}", "1",
        "-f", "null", "-",
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return False
    return result.returncode == 0


def _read_exact(stream, size: int) -> bytes:
    """Read up to ``size`` bytes, looping over short pipe reads."""
    buf = bytearray()
    while len(buf) < size:
        block = stream.read(size - len(buf))
        if not block:
            break
        buf.extend(block)
    return bytes(buf)


def _stop(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        proc.kill()
    if proc.stdout:
        proc.stdout.close()
    proc.wait()


def read_video_frames(
    input_path: str | Path,
    start: float,
    duration: float,
    width: int,
    height: int,
    fps: float,
    on_spawn: ProcessHook | None = None,
) -> Iterator[VideoFrame]:
    """Decode ``[start, start + duration)`` of the primary video stream as RGB frames.

    Frames are pulled one at a time from the ffmpeg pipe; the process is killed
    as soon as the generator is closed or exhausted.
    """
    cmd = [
        "ffmpeg",
        "-v", "error",
        "-ss", f"{start:.6f}",
        "-i", str(input_path),
        "-t", f"{duration:.6f}",
        "-map", "0:v:0",
        "-an", "-sn",
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-",
    ]
    frame_size = width * height * 3
    frame_duration = 1.0 / fps
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
    if on_spawn:
        on_spawn(proc)
    try:
        n = 0
        while True:
            raw = _read_exact(proc.stdout, frame_size)
            if len(raw) < frame_size:
                break
            data = np.frombuffer(raw, dtype=np.uint8).reshape(height, width, 3)
            yield VideoFrame(data=data, timestamp=start + n * frame_duration, duration=frame_duration)
            n += 1
    finally:
        _stop(proc)


def read_audio_chunks(
    input_path: str | Path,
    start: float,
    duration: float,
    sample_rate: int,
    channels: int,
    chunk_frames: int = 4096,
    on_spawn: ProcessHook | None = None,
) -> Iterator[AudioChunk]:
    """Decode ``[start, start + duration)`` of the primary audio stream as float32 chunks."""
    cmd = [
        "ffmpeg",
        "-v", "error",
        "-ss", f"{start:.6f}",
        "-i", str(input_path),
        "-t", f"{duration:.6f}",
        "-map", "0:a:0",
        "-vn", "-sn",
        "-f", "f32le",
        "-ar", str(sample_rate),
        "-ac", str(channels),
        "-",
    ]
    bytes_per_frame = 4 * channels
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
    if on_spawn:
        on_spawn(proc)
    try:
        frames_read = 0
        while True:
            raw = _read_exact(proc.stdout, chunk_frames * bytes_per_frame)
            usable = len(raw) - len(raw) % bytes_per_frame
            if usable == 0:
                break
            data = np.frombuffer(raw[:usable], dtype="<f4").reshape(-1, channels)
            yield AudioChunk(
                data=data,
                sample_rate=sample_rate,
                timestamp=start + frames_read / sample_rate,
            )
            frames_read += data.shape[0]
            if usable < chunk_frames * bytes_per_frame:
                break
    finally:
        _stop(proc)


def video_encode_cmd(
    width: int,
    height: int,
    fps: float,
    codec: str,
    bitrate: int,
    keyframe_interval: float,
    output_path: Path,
) -> list[str]:
    """Command for a long-lived encoder reading raw RGB frames on stdin.

    yuv420p needs even dimensions, so an odd target loses its last row/column here.
    """
    gop = max(1, round(fps * keyframe_interval))
    return [
        "ffmpeg", "-y",
        "-v", "error",
        "-f", "rawvideo",
        "-pix_fmt", "rgb24",
        "-s", f"{width}x{height}",
        "-r", f"{fps:g}",
        "-i", "-",
        "-vf", "crop=trunc(iw/2)*2:trunc(ih/2)*2",
        "-c:v", codec,
        "-b:v", str(bitrate),
        "-g", str(gop),
        "-pix_fmt", "yuv420p",
        str(output_path),
    ]


def mux_cmd(
    video_path: Path,
    audio_path: Path,
    sample_rate: int,
    channels: int,
    codec: str,
    bitrate: int,
    output_path: Path,
) -> list[str]:
    """Mux an encoded video file with spooled f32le audio into one MP4."""
    return [
        "ffmpeg", "-y",
        "-v", "error",
        "-i", str(video_path),
        "-f", "f32le",
        "-ar", str(sample_rate),
        "-ac", str(channels),
        "-i", str(audio_path),
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-c:v", "copy",
        "-c:a", codec,
        "-b:a", str(bitrate),
        "-movflags", "+faststart",
        str(output_path),
    ]
