"""Encoder and muxer sink: one encode session for the whole run.

Video frames stream into a single ffmpeg encoder over stdin at a constant frame
rate; audio is spooled as raw float32 PCM and muxed with the video on finalize().
"""

import logging
import subprocess
import tempfile
import threading
from pathlib import Path

import numpy as np

from clipstitch import ffutil
from clipstitch.errors import EncoderError, SinkStateError
from clipstitch.manifest import StitchConfig
from clipstitch.models import AudioChunk, TargetProfile, VideoFrame

logger = logging.getLogger(__name__)

_NEW, _STARTED, _FINALIZED, _ABORTED = "new", "started", "finalized", "aborted"


class EncoderSink:
    def __init__(self, profile: TargetProfile, config: StitchConfig, work_dir: Path | None = None):
        self.profile = profile
        self.config = config
        self.fps = config.frame_rate
        self._work_dir = work_dir
        self._state = _NEW
        self._lock = threading.Lock()
        self._tmpdir: tempfile.TemporaryDirectory | None = None
        self._video_proc: subprocess.Popen | None = None
        self._audio_file = None
        self._log_file = None
        self._black = np.zeros((profile.height, profile.width, 3), dtype=np.uint8)
        self._last_frame: np.ndarray | None = None
        self._last_video_ts: float | None = None
        self._last_audio_ts: float | None = None
        self.video_frames_written = 0
        self.audio_frames_written = 0

    @property
    def state(self) -> str:
        return self._state

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._state != _NEW:
                raise SinkStateError(f"start() called on a {self._state} sink")
            self._tmpdir = tempfile.TemporaryDirectory(prefix="clipstitch_", dir=self._work_dir)
            tmp = Path(self._tmpdir.name)
            self.video_path = tmp / "video.mp4"
            self.audio_path = tmp / "audio.f32"
            self.output_path = tmp / "output.mp4"
            self._log_file = open(tmp / "encode.log", "wb")
            cmd = ffutil.video_encode_cmd(
                self.profile.width,
                self.profile.height,
                self.fps,
                self.config.video_codec,
                self.config.video_bitrate,
                self.config.keyframe_interval,
                self.video_path,
            )
            try:
                self._video_proc = subprocess.Popen(
                    cmd,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=self._log_file,
                )
            except OSError as e:
                self._cleanup()
                self._state = _ABORTED
                raise EncoderError(f"Could not start video encoder: {e}") from e
            self._audio_file = open(self.audio_path, "wb")
            self._state = _STARTED
        logger.info(
            "Encoder started: %dx%d @ %g fps, audio %d Hz x%d",
            self.profile.width, self.profile.height, self.fps,
            self.profile.sample_rate, self.profile.channels,
        )

    def _require_started(self) -> None:
        if self._state != _STARTED:
            raise SinkStateError(f"Sink is {self._state}; samples are only accepted after start()")

    # -- video -------------------------------------------------------------

    def _write_video(self, data: np.ndarray) -> None:
        try:
            self._video_proc.stdin.write(np.ascontiguousarray(data).tobytes())
        except (BrokenPipeError, OSError, ValueError) as e:
            raise EncoderError(f"Video encoder rejected a frame: {self._log_tail() or e}") from e
        self.video_frames_written += 1

    def _fill_video_until(self, slot: int) -> None:
        filler = self._last_frame if self._last_frame is not None else self._black
        while self.video_frames_written < slot:
            self._write_video(filler)

    def add_video_frame(self, frame: VideoFrame) -> None:
        """Write ``frame`` into output slot ``round(timestamp * fps)``.

        Earlier empty slots repeat the previous frame; a frame whose slot is
        already written is dropped.
        """
        self._require_started()
        if frame.width != self.profile.width or frame.height != self.profile.height:
            raise EncoderError(
                f"Frame is {frame.width}x{frame.height}, "
                f"expected {self.profile.width}x{self.profile.height}"
            )
        if self._last_video_ts is not None and frame.timestamp < self._last_video_ts:
            raise EncoderError(
                f"Video timestamp went backwards: {frame.timestamp:.6f} < {self._last_video_ts:.6f}"
            )
        self._last_video_ts = frame.timestamp

        slot = int(round(frame.timestamp * self.fps))
        if slot < self.video_frames_written:
            return
        self._fill_video_until(slot)
        self._write_video(frame.data)
        self._last_frame = frame.data

    # -- audio -------------------------------------------------------------

    def _write_audio(self, data: np.ndarray) -> None:
        try:
            self._audio_file.write(np.ascontiguousarray(data, dtype="<f4").tobytes())
        except (OSError, ValueError) as e:
            raise EncoderError(f"Could not spool audio: {e}") from e
        self.audio_frames_written += data.shape[0]

    def _pad_audio_until(self, index: int) -> None:
        missing = index - self.audio_frames_written
        if missing > 0:
            self._write_audio(np.zeros((missing, self.profile.channels), dtype=np.float32))

    def add_audio_chunk(self, chunk: AudioChunk) -> None:
        """Place ``chunk`` at sample index ``round(timestamp * rate)``.

        Gaps become zero samples; frames overlapping already written audio are dropped.
        """
        self._require_started()
        if chunk.sample_rate != self.profile.sample_rate or chunk.channels != self.profile.channels:
            raise EncoderError(
                f"Audio chunk is {chunk.sample_rate} Hz x{chunk.channels}, expected "
                f"{self.profile.sample_rate} Hz x{self.profile.channels}"
            )
        if self._last_audio_ts is not None and chunk.timestamp < self._last_audio_ts:
            raise EncoderError(
                f"Audio timestamp went backwards: {chunk.timestamp:.6f} < {self._last_audio_ts:.6f}"
            )
        self._last_audio_ts = chunk.timestamp

        index = int(round(chunk.timestamp * self.profile.sample_rate))
        data = chunk.data
        if index < self.audio_frames_written:
            data = data[self.audio_frames_written - index:]
        else:
            self._pad_audio_until(index)
        if data.shape[0]:
            self._write_audio(data)

    # -- finish ------------------------------------------------------------

    def finalize(self, duration: float) -> bytes:
        """Pad both tracks to ``duration`` seconds, close the encoder and return the MP4 bytes."""
        self._require_started()
        try:
            total_slots = int(round(duration * self.fps))
            if total_slots <= 0:
                raise EncoderError("Timeline is empty; nothing to encode")
            self._fill_video_until(total_slots)
            self._pad_audio_until(int(round(duration * self.profile.sample_rate)))

            self._audio_file.close()
            try:
                self._video_proc.stdin.close()
            except (BrokenPipeError, OSError) as e:
                raise EncoderError(f"Video encoder failed: {self._log_tail() or e}") from e
            try:
                rc = self._video_proc.wait(timeout=self.config.decode_timeout + duration)
            except subprocess.TimeoutExpired as e:
                raise EncoderError("Video encoder did not finish in time") from e
            if rc != 0:
                raise EncoderError(f"Video encoder exited with {rc}: {self._log_tail()}")

            cmd = ffutil.mux_cmd(
                self.video_path,
                self.audio_path,
                self.profile.sample_rate,
                self.profile.channels,
                self.config.audio_codec,
                self.config.audio_bitrate,
                self.output_path,
            )
            try:
                subprocess.run(
                    cmd, capture_output=True, check=True,
                    timeout=self.config.decode_timeout + duration,
                )
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or b"").decode(errors="replace")
                raise EncoderError(f"Muxing failed: {stderr[-500:] or e}") from e
            except subprocess.TimeoutExpired as e:
                raise EncoderError("Muxing did not finish in time") from e

            data = self.output_path.read_bytes()
        except BaseException:
            self.abort()
            raise

        with self._lock:
            self._state = _FINALIZED
            self._cleanup()
        logger.info(
            "Encoded %d video frames, %d audio frames (%d bytes)",
            self.video_frames_written, self.audio_frames_written, len(data),
        )
        return data

    def abort(self) -> None:
        """Kill the encoder and discard partial output. Safe to call more than once."""
        with self._lock:
            if self._state in (_FINALIZED, _ABORTED):
                return
            self._state = _ABORTED
            proc = self._video_proc
            if proc is not None and proc.poll() is None:
                proc.kill()
            if proc is not None:
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    logger.error("Video encoder did not exit after kill")
            self._cleanup()
        logger.info("Encoder session aborted")

    def _cleanup(self) -> None:
        if self._video_proc is not None and self._video_proc.stdin:
            try:
                self._video_proc.stdin.close()
            except (BrokenPipeError, OSError) as e:
                logger.debug("Encoder stdin already closed: %s", e)
        for fh in (self._audio_file, self._log_file):
            if fh is not None and not fh.closed:
                fh.close()
        if self._tmpdir is not None:
            self._tmpdir.cleanup()
            self._tmpdir = None

    def _log_tail(self) -> str:
        if self._tmpdir is None:
            return ""
        path = Path(self._tmpdir.name) / "encode.log"
        try:
            self._log_file.flush()
            return path.read_bytes().decode(errors="replace")[-500:].strip()
        except (OSError, ValueError):
            return ""
