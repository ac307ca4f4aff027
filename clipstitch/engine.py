"""Orchestrator: stitches the segments of a Manifest into one file."""

import logging
import threading
from contextlib import closing
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from clipstitch import ffutil
from clipstitch.errors import OperationTimeoutError, StitchCancelledError, StitchError
from clipstitch.manifest import Manifest
from clipstitch.models import EventKind, Segment, SourceFile, StitchEvent, TargetProfile
from clipstitch.normalizers.audio import generate_silence, normalize_chunk, trim_chunk
from clipstitch.normalizers.frame import normalize_frame
from clipstitch.profile import probe_target_profile
from clipstitch.sink import EncoderSink
from clipstitch.sources import SourceHandle, SourceRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]
EventCallback = Callable[[StitchEvent], None]


class StitchState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class EngineResult:
    data: bytes
    duration: float
    profile: TargetProfile
    output_path: Path | None = None
    segments_processed: int = 0
    segments_skipped: int = 0
    segments_truncated: int = 0
    events: list[StitchEvent] = field(default_factory=list)


class Stitcher:
    """Single-use state machine for one stitch run.

    Segments are processed strictly in order; each segment's video and audio are
    fully drained into the sink before the timeline cursor moves on. The cursor
    only changes once a segment has been completely emitted, so a failed or
    cancelled run never exposes a half-advanced timeline.
    """

    def __init__(
        self,
        manifest: Manifest,
        on_progress: ProgressCallback | None = None,
        on_event: EventCallback | None = None,
        registry: SourceRegistry | None = None,
        sink_factory: Callable[[TargetProfile, object], EncoderSink] | None = None,
    ):
        self.manifest = manifest
        self.config = manifest.config
        self.registry = registry or SourceRegistry(opener=self._open_source)
        self._sink_factory = sink_factory or EncoderSink
        self._on_progress = on_progress
        self._on_event = on_event

        self.state = StitchState.IDLE
        self.status = "Waiting to start"
        self.progress = 0.0
        self.profile: TargetProfile | None = None
        self.sink = None
        self.cursor = 0.0
        self.current_segment: int | None = None
        self.events: list[StitchEvent] = []
        self.error: BaseException | None = None
        self.result: EngineResult | None = None
        self.segments_processed = 0
        self.segments_skipped = 0
        self.segments_truncated = 0

        self._cancelled = threading.Event()
        self._timed_out = threading.Event()
        self._lock = threading.Lock()

    # -- signals -----------------------------------------------------------

    def _open_source(self, source: SourceFile) -> SourceHandle:
        return SourceHandle(
            source,
            timeout=self.config.decode_timeout,
            chunk_frames=self.config.audio_chunk_frames,
        )

    def _progress(self, status: str, frac: float) -> None:
        self.status = status
        self.progress = frac
        if self._on_progress:
            self._on_progress(status, frac)

    def _report(self, event: StitchEvent) -> None:
        self.events.append(event)
        logger.warning(event.message)
        if self._on_event:
            self._on_event(event)

    def _set_state(self, state: StitchState) -> None:
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state

    # -- cancellation ------------------------------------------------------

    def cancel(self) -> None:
        """Abort the run from any thread; the run raises StitchCancelledError."""
        if self.state in (StitchState.COMPLETE, StitchState.FAILED):
            return
        self._cancelled.set()
        self._release_resources()

    def _expire(self) -> None:
        logger.error("Stitching exceeded %ss, aborting", self.config.timeout)
        self._timed_out.set()
        self._release_resources()

    def _release_resources(self) -> None:
        with self._lock:
            self.registry.release_all()
            if self.sink is not None:
                self.sink.abort()

    def _interruption(self) -> StitchError | None:
        if self._timed_out.is_set():
            return OperationTimeoutError(f"Stitching did not finish within {self.config.timeout}s")
        if self._cancelled.is_set():
            return StitchCancelledError("Stitching was cancelled")
        return None

    def _check_interrupted(self) -> None:
        error = self._interruption()
        if error is not None:
            raise error

    # -- run ---------------------------------------------------------------

    def run(self) -> EngineResult:
        """Execute the whole stitch and return the encoded file.

        Raises the fatal error after moving to FAILED and releasing every handle
        and the encoder session.
        """
        with self._lock:
            if self.state is not StitchState.IDLE:
                raise RuntimeError("A Stitcher can only run once; create a new one")
            self._set_state(StitchState.PROBING)

        timer = None
        if self.config.timeout:
            timer = threading.Timer(self.config.timeout, self._expire)
            timer.daemon = True
            timer.start()

        try:
            self.result = self._run()
            return self.result
        except BaseException as exc:
            # killed decoders or an aborted sink surface as secondary errors
            interrupted = self._interruption()
            if interrupted is None or isinstance(exc, type(interrupted)):
                error = exc
            else:
                error = interrupted
            self._fail(error)
            if error is exc:
                raise
            raise error from exc
        finally:
            if timer is not None:
                timer.cancel()
            self.registry.release_all()

    def _fail(self, error: BaseException) -> None:
        self.error = error
        self._set_state(StitchState.FAILED)
        self._release_resources()
        logger.error("Stitching failed: %s", error)
        self._progress("Error", self.progress)

    def _run(self) -> EngineResult:
        self._check_interrupted()
        self._progress("Probing sources", 0.0)
        self.profile = probe_target_profile(self.manifest, self.registry, on_event=self._report)
        self._check_interrupted()

        self._progress("Initializing encoder", 0.0)
        with self._lock:
            self.sink = self._sink_factory(self.profile, self.config)
        self.sink.start()

        segments = self.manifest.segments
        self.registry.expect(seg.source_id for seg in segments)
        total = self.manifest.nominal_duration
        processed = 0.0

        for index, segment in enumerate(segments):
            self._check_interrupted()
            self.current_segment = index
            self._set_state(StitchState.PROCESSING)
            status = f"Processing segment {index + 1}/{len(segments)}: {segment.label()}"
            self._progress(status, self.progress)
            logger.info(status)

            self._process_segment(index, segment)

            processed += segment.duration
            frac = processed / total if total > 0 else 1.0
            self._progress(status, min(0.99, frac))

        self._check_interrupted()
        self.current_segment = None
        self._set_state(StitchState.FINALIZING)
        self._progress("Finalizing", self.progress)
        self.registry.release_all()
        data = self.sink.finalize(self.cursor)

        output_path = None
        if self.manifest.output is not None:
            output_path = Path(self.manifest.output)
            output_path.write_bytes(data)

        self._set_state(StitchState.COMPLETE)
        self._progress("Ready", 1.0)
        logger.info("Stitched %.3fs from %d segments", self.cursor, self.segments_processed)
        return EngineResult(
            data=data,
            duration=self.cursor,
            profile=self.profile,
            output_path=output_path,
            segments_processed=self.segments_processed,
            segments_skipped=self.segments_skipped,
            segments_truncated=self.segments_truncated,
            events=list(self.events),
        )

    # -- per segment -------------------------------------------------------

    def _process_segment(self, index: int, segment: Segment) -> None:
        source = self.manifest.source(segment.source_id, segment.scene_id)
        with self.registry.lease(source) as handle:
            start, end = segment.start, segment.end
            source_duration = handle.duration
            base = self.cursor

            if start >= source_duration:
                self.segments_skipped += 1
                self._report(StitchEvent(
                    kind=EventKind.SEGMENT_OUT_OF_BOUNDS,
                    message=(
                        f"Segment {index} ({segment.label()}) starts at {start:.3f}s, past the "
                        f"end of source {source.source_id} ({source_duration:.3f}s); skipped"
                    ),
                    segment_index=index,
                    scene_id=segment.scene_id,
                ))
                if self.config.skipped_segment_policy == "hold" and segment.duration > 0:
                    self._emit_silence(base, segment.duration)
                    self._check_interrupted()
                    self.cursor = base + segment.duration
                return

            if end > source_duration:
                self.segments_truncated += 1
                self._report(StitchEvent(
                    kind=EventKind.SEGMENT_TRUNCATED,
                    message=(
                        f"Segment {index} ({segment.label()}) ends at {end:.3f}s, past the end of "
                        f"source {source.source_id} ({source_duration:.3f}s); truncated"
                    ),
                    segment_index=index,
                    scene_id=segment.scene_id,
                ))
                end = source_duration

            duration = end - start
            if duration <= 0:
                logger.warning("Segment %d (%s) is empty; nothing to emit", index, segment.label())
                self.segments_processed += 1
                return

            self._emit_video(index, segment, handle, start, end, base)
            self._emit_audio(index, segment, handle, start, end, base)
            # killed decoders end their streams early without raising
            self._check_interrupted()

            self.cursor = base + duration
            self.segments_processed += 1

    def _undecodable(self, index: int, segment: Segment, what: str) -> None:
        self._report(StitchEvent(
            kind=EventKind.TRACK_UNDECODABLE,
            message=f"Segment {index} ({segment.label()}): {what}",
            segment_index=index,
            scene_id=segment.scene_id,
        ))

    def _emit_video(self, index, segment, handle, start, end, base) -> None:
        track = handle.video_track()
        if track is None or not track.can_decode():
            self._undecodable(index, segment, "no decodable video track, video omitted")
            return

        width, height = self.profile.width, self.profile.height
        first_ts = None
        with closing(track.samples(start, end)) as frames:
            for frame in frames:
                self._check_interrupted()
                if frame.timestamp < start or frame.timestamp >= end:
                    continue
                if first_ts is None:
                    first_ts = frame.timestamp
                out = normalize_frame(frame, width, height, base + (frame.timestamp - first_ts))
                self.sink.add_video_frame(out)

    def _emit_audio(self, index, segment, handle, start, end, base) -> None:
        duration = end - start
        if segment.muted:
            self._emit_silence(base, duration)
            return

        track = handle.audio_track()
        if track is None or not track.can_decode():
            if self.config.undecodable_audio_policy == "silence":
                self._undecodable(index, segment, "no decodable audio track, silence substituted")
                self._emit_silence(base, duration)
            else:
                self._undecodable(index, segment, "no decodable audio track, audio omitted")
            return

        rate, channels = self.profile.sample_rate, self.profile.channels
        if track.sample_rate != rate:
            logger.info(
                "Resampling segment %d audio from %d to %d Hz", index, track.sample_rate, rate
            )

        limit = base + duration
        first_ts = None
        with closing(track.samples(start, end)) as chunks:
            for chunk in chunks:
                self._check_interrupted()
                if chunk.timestamp >= end or chunk.timestamp + chunk.duration <= start:
                    continue
                chunk = normalize_chunk(chunk, rate, channels)
                if first_ts is None:
                    first_ts = chunk.timestamp
                chunk = trim_chunk(chunk.with_timestamp(base + (chunk.timestamp - first_ts)), limit)
                if chunk is None:
                    continue
                self.sink.add_audio_chunk(chunk)

    def _emit_silence(self, base: float, duration: float) -> None:
        for chunk in generate_silence(
            base,
            duration,
            self.profile.sample_rate,
            self.profile.channels,
            self.config.silence_slice,
        ):
            self._check_interrupted()
            self.sink.add_audio_chunk(chunk)


def process(
    manifest: Manifest,
    on_progress: ProgressCallback | None = None,
    on_event: EventCallback | None = None,
) -> EngineResult:
    """Stitch every segment of ``manifest`` into one MP4.

    Args:
        manifest: Validated stitch manifest.
        on_progress: Optional callback(status, fraction_complete).
        on_event: Optional callback for non-fatal skip/truncate/undecodable events.
    """
    ffutil.check_ffmpeg()
    return Stitcher(manifest, on_progress=on_progress, on_event=on_event).run()
