"""Picks the common output frame size and audio format for a run."""

import logging
from typing import Callable

from clipstitch.errors import SourceNotFoundError
from clipstitch.manifest import Manifest
from clipstitch.models import EventKind, StitchEvent, TargetProfile
from clipstitch.sources import SourceRegistry

logger = logging.getLogger(__name__)


def target_dimensions(manifest: Manifest) -> tuple[int, int]:
    """Smallest width and smallest height over every source a segment references.

    Never upscales: each source is at least this large, so a center crop always fits.
    """
    widths: list[int] = []
    heights: list[int] = []
    for seg in manifest.segments:
        if not manifest.has_source(seg.source_id):
            continue
        sf = manifest.source(seg.source_id)
        widths.append(sf.width)
        heights.append(sf.height)

    if not widths:
        if manifest.segments:
            raise SourceNotFoundError(manifest.segments[0].source_id, manifest.segments[0].scene_id)
        raise SourceNotFoundError(None)
    return min(widths), min(heights)


def probe_target_profile(
    manifest: Manifest,
    registry: SourceRegistry,
    on_event: Callable[[StitchEvent], None] | None = None,
) -> TargetProfile:
    """Compute the immutable output profile before any segment is processed.

    The audio format comes from the first unmuted segment whose source has a
    decodable audio track, with its rate capped at ``max_sample_rate``. When no
    such segment exists the configured defaults are used and a ``probe_failed``
    event is reported.
    """
    config = manifest.config
    width, height = target_dimensions(manifest)
    logger.info("Target video dimensions: %dx%d", width, height)

    sample_rate = None
    channels = None
    for seg in manifest.segments:
        if seg.muted or not manifest.has_source(seg.source_id):
            continue
        handle = registry.get_handle(manifest.source(seg.source_id))
        track = handle.audio_track()
        if track is None or not track.can_decode():
            logger.debug("Source %s has no usable audio track", seg.source_id)
            continue
        sample_rate = min(track.sample_rate, config.max_sample_rate)
        channels = track.channels
        break

    if sample_rate is None:
        sample_rate = config.default_sample_rate
        channels = config.default_channels
        event = StitchEvent(
            kind=EventKind.PROBE_FAILED,
            message=(
                "No unmuted segment with decodable audio; "
                f"using {sample_rate} Hz, {channels} channels"
            ),
        )
        if on_event:
            on_event(event)
        else:
            logger.warning(event.message)

    logger.info("Target audio: %d Hz, %d channels", sample_rate, channels)
    return TargetProfile(width=width, height=height, sample_rate=sample_rate, channels=channels)
