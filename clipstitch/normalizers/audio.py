"""Audio resampling, channel matching and silence generation."""

from typing import Iterator

import numpy as np

from clipstitch.models import AudioChunk


def resample_chunk(chunk: AudioChunk, target_rate: int) -> AudioChunk:
    """Linearly interpolate ``chunk`` to ``target_rate``.

    Output frame ``i`` samples the input at fractional position ``i * rate / target``,
    blending the two bracketing input frames. Produces
    ``floor(frame_count / (rate / target))`` frames. Lightweight, not band-limited.
    """
    if chunk.sample_rate == target_rate:
        return chunk
    if target_rate <= 0:
        raise ValueError("target_rate must be positive")

    frame_count = chunk.frame_count
    out_count = frame_count * target_rate // chunk.sample_rate
    if out_count == 0 or frame_count == 0:
        empty = np.zeros((0, chunk.channels), dtype=np.float32)
        return AudioChunk(data=empty, sample_rate=target_rate, timestamp=chunk.timestamp)

    ratio = chunk.sample_rate / target_rate
    positions = np.arange(out_count, dtype=np.float64) * ratio
    index1 = np.floor(positions).astype(np.int64)
    index1 = np.minimum(index1, frame_count - 1)
    index2 = np.minimum(index1 + 1, frame_count - 1)
    weight = (positions - index1)[:, np.newaxis]

    src = chunk.data.astype(np.float32, copy=False)
    data = src[index1] * (1.0 - weight) + src[index2] * weight

    return AudioChunk(
        data=data.astype(np.float32),
        sample_rate=target_rate,
        timestamp=chunk.timestamp,
    )


def match_channels(chunk: AudioChunk, channels: int) -> AudioChunk:
    """Up-mix mono by duplication, down-mix to mono by averaging, else keep leading channels."""
    if chunk.channels == channels:
        return chunk
    src = chunk.data
    if chunk.channels == 1:
        data = np.repeat(src, channels, axis=1)
    elif channels == 1:
        data = src.mean(axis=1, keepdims=True)
    elif chunk.channels > channels:
        data = src[:, :channels]
    else:
        pad = np.repeat(src[:, -1:], channels - chunk.channels, axis=1)
        data = np.concatenate([src, pad], axis=1)
    return AudioChunk(
        data=np.ascontiguousarray(data, dtype=np.float32),
        sample_rate=chunk.sample_rate,
        timestamp=chunk.timestamp,
    )


def normalize_chunk(chunk: AudioChunk, sample_rate: int, channels: int) -> AudioChunk:
    return match_channels(resample_chunk(chunk, sample_rate), channels)


def trim_chunk(chunk: AudioChunk, end: float) -> AudioChunk | None:
    """Drop the frames of ``chunk`` at or after ``end`` (same clock as its timestamp)."""
    if chunk.timestamp >= end:
        return None
    keep = int(round((end - chunk.timestamp) * chunk.sample_rate))
    if keep >= chunk.frame_count:
        return chunk
    if keep <= 0:
        return None
    return AudioChunk(data=chunk.data[:keep], sample_rate=chunk.sample_rate, timestamp=chunk.timestamp)


def generate_silence(
    start: float,
    duration: float,
    sample_rate: int,
    channels: int,
    slice_duration: float = 0.1,
) -> Iterator[AudioChunk]:
    """Yield zero-valued chunks covering exactly ``[start, start + duration)``.

    Chunks are ``slice_duration`` long except the last, which is cut to fill the
    remainder. The total frame count is ``round(duration * sample_rate)``.
    """
    total = int(round(duration * sample_rate))
    per_slice = max(1, int(round(slice_duration * sample_rate)))
    emitted = 0
    while emitted < total:
        count = min(per_slice, total - emitted)
        yield AudioChunk(
            data=np.zeros((count, channels), dtype=np.float32),
            sample_rate=sample_rate,
            timestamp=start + emitted / sample_rate,
        )
        emitted += count
