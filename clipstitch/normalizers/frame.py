"""Center-crops decoded frames to the target size."""

import numpy as np

from clipstitch.models import VideoFrame


def crop_origin(width: int, height: int, target_width: int, target_height: int) -> tuple[int, int]:
    """Top-left corner of the centered target rectangle."""
    sx = max(0, (width - target_width) // 2)
    sy = max(0, (height - target_height) // 2)
    return sx, sy


def center_crop(frame: VideoFrame, target_width: int, target_height: int) -> VideoFrame:
    """Extract the centered ``target_width x target_height`` region of ``frame``.

    No scaling is done. A frame smaller than the target along an axis (its decoded
    size disagreed with the declared one) is centered on a black canvas instead.
    """
    if frame.width == target_width and frame.height == target_height:
        return frame

    sx, sy = crop_origin(frame.width, frame.height, target_width, target_height)
    region = frame.data[sy:sy + target_height, sx:sx + target_width]

    if region.shape[0] != target_height or region.shape[1] != target_width:
        canvas = np.zeros((target_height, target_width, 3), dtype=np.uint8)
        oy = (target_height - region.shape[0]) // 2
        ox = (target_width - region.shape[1]) // 2
        canvas[oy:oy + region.shape[0], ox:ox + region.shape[1]] = region
        region = canvas

    return VideoFrame(
        data=np.ascontiguousarray(region),
        timestamp=frame.timestamp,
        duration=frame.duration,
    )


def normalize_frame(
    frame: VideoFrame, target_width: int, target_height: int, timestamp: float
) -> VideoFrame:
    """Crop to the target if needed and move the frame to its output timestamp."""
    return center_crop(frame, target_width, target_height).with_timestamp(timestamp)
