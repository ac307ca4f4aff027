"""Source handles and the per-run registry that shares them between segments."""

import logging
import subprocess
import threading
from collections import Counter
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

from clipstitch import ffutil
from clipstitch.models import AudioChunk, ProbeResult, SourceFile, VideoFrame

logger = logging.getLogger(__name__)


class VideoTrack:
    """Primary video stream of a source."""

    def __init__(self, handle: "SourceHandle", width: int, height: int, fps: float):
        self._handle = handle
        self.width = width
        self.height = height
        self.fps = fps
        self._decodable: bool | None = None

    def can_decode(self) -> bool:
        if self._decodable is None:
            self._decodable = ffutil.can_decode(
                self._handle.location, "v", timeout=self._handle.timeout
            )
        return self._decodable

    def samples(self, start: float, end: float) -> Iterator[VideoFrame]:
        return ffutil.read_video_frames(
            self._handle.location,
            start,
            end - start,
            self.width,
            self.height,
            self.fps,
            on_spawn=self._handle._track_process,
        )


class AudioTrack:
    """Primary audio stream of a source, decoded at its native rate and channel count."""

    def __init__(
        self, handle: "SourceHandle", sample_rate: int, channels: int, chunk_frames: int = 4096
    ):
        self._handle = handle
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_frames = chunk_frames
        self._decodable: bool | None = None

    def can_decode(self) -> bool:
        if self._decodable is None:
            self._decodable = ffutil.can_decode(
                self._handle.location, "a", timeout=self._handle.timeout
            )
        return self._decodable

    def samples(self, start: float, end: float) -> Iterator[AudioChunk]:
        return ffutil.read_audio_chunks(
            self._handle.location,
            start,
            end - start,
            self.sample_rate,
            self.channels,
            chunk_frames=self.chunk_frames,
            on_spawn=self._handle._track_process,
        )


class SourceHandle:
    """Open decode context for one source file.

    Probing happens lazily on first use and is cached. Decode processes spawned
    for this source are tracked so that close() can stop them from any thread.
    """

    def __init__(
        self, source: SourceFile, timeout: float | None = None, chunk_frames: int = 4096
    ):
        self.source = source
        self.location = source.location
        self.timeout = timeout
        self.chunk_frames = chunk_frames
        self.closed = False
        self._probe: ProbeResult | None = None
        self._probe_failed = False
        self._processes: list[subprocess.Popen] = []
        self._lock = threading.Lock()

    def _track_process(self, proc: subprocess.Popen) -> None:
        with self._lock:
            if self.closed:
                proc.kill()
                return
            self._processes = [p for p in self._processes if p.poll() is None]
            self._processes.append(proc)

    def probe(self) -> ProbeResult | None:
        if self._probe is None and not self._probe_failed:
            try:
                self._probe = ffutil.probe(self.location, timeout=self.timeout)
            except (subprocess.CalledProcessError, subprocess.TimeoutExpired, ValueError) as e:
                logger.warning("Could not probe %s: %s", self.location, e)
                self._probe_failed = True
        return self._probe

    @property
    def duration(self) -> float:
        """Actual media duration, or the declared one when probing yields none."""
        result = self.probe()
        if result is not None and result.duration > 0:
            return result.duration
        return self.source.duration

    def video_track(self) -> VideoTrack | None:
        result = self.probe()
        if result is None or not result.has_video:
            return None
        return VideoTrack(self, result.width, result.height, result.fps or self.source.fps)

    def audio_track(self) -> AudioTrack | None:
        result = self.probe()
        if result is None or not result.has_audio:
            return None
        return AudioTrack(
            self, result.audio_sample_rate, result.audio_channels or 2, self.chunk_frames
        )

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
            procs, self._processes = self._processes, []
        for proc in procs:
            if proc.poll() is None:
                proc.kill()


class SourceRegistry:
    """Instance-scoped cache of one handle per source identifier.

    Handles are reference-counted against the segments still to be processed;
    a handle is closed when its last segment finishes, and release_all() closes
    whatever is left. Every handle is closed exactly once.
    """

    def __init__(self, opener: Callable[[SourceFile], SourceHandle] = SourceHandle):
        self._opener = opener
        self._handles: dict = {}
        self._remaining: Counter = Counter()
        self._released = False
        self._lock = threading.Lock()

    def get_handle(self, source: SourceFile) -> SourceHandle:
        with self._lock:
            if self._released:
                raise RuntimeError("SourceRegistry has already been released")
            handle = self._handles.get(source.source_id)
            if handle is None:
                logger.debug("Opening source %s (%s)", source.source_id, source.location)
                handle = self._opener(source)
                self._handles[source.source_id] = handle
            return handle

    def expect(self, source_ids: Iterable) -> None:
        """Register one pending use per segment that will reference each source."""
        with self._lock:
            self._remaining.update(source_ids)

    def remaining(self, source_id) -> int:
        return self._remaining[source_id]

    def is_open(self, source_id) -> bool:
        return source_id in self._handles

    @contextmanager
    def lease(self, source: SourceFile) -> Iterator[SourceHandle]:
        """Hand out the shared handle for one segment and release the reference on exit."""
        handle = self.get_handle(source)
        try:
            yield handle
        finally:
            self._release(source.source_id)

    def _release(self, source_id) -> None:
        with self._lock:
            self._remaining[source_id] -= 1
            if self._remaining[source_id] > 0:
                return
            del self._remaining[source_id]
            handle = self._handles.pop(source_id, None)
        if handle is not None:
            logger.debug("Closing source %s, no segments left", source_id)
            handle.close()

    def release_all(self) -> None:
        with self._lock:
            self._released = True
            handles = list(self._handles.values())
            self._handles.clear()
            self._remaining.clear()
        for handle in handles:
            handle.close()
