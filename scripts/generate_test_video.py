#!/usr/bin/env python3
"""Generate synthetic sources and a manifest for ClipStitch end-to-end runs.

Produces, in the target directory:
  a.mp4          10 s, 640x360, blue, 440 Hz tone at 44.1 kHz stereo
  b.mp4          10 s, 480x320, red, no audio track
  c.mp4           6 s, 640x480, green, 660 Hz tone at 96 kHz mono
  manifest.json  segments exercising crop, resample, mute, truncation and a skip
"""

import json
import subprocess
import sys
from pathlib import Path

SOURCES = [
    {"name": "a.mp4", "color": "blue", "size": (640, 360), "duration": 10, "tone": (440, 44100, 2)},
    {"name": "b.mp4", "color": "red", "size": (480, 320), "duration": 10, "tone": None},
    {"name": "c.mp4", "color": "green", "size": (640, 480), "duration": 6, "tone": (660, 96000, 1)},
]


def _generate_source(out_dir: Path, src: dict) -> None:
    width, height = src["size"]
    duration = src["duration"]
    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi",
        "-i", f"color=c={src['color']}:s={width}x{height}:d={duration}:r=30",
    ]
    if src["tone"]:
        freq, rate, channels = src["tone"]
        layout = "stereo" if channels == 2 else "mono"
        cmd += [
            "-f", "lavfi",
            "-i", f"sine=f={freq}:d={duration}:sample_rate={rate}",
            "-af", f"aformat=channel_layouts={layout}",
            "-c:a", "aac",
            "-ar", str(rate),
        ]
    cmd += ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-shortest", str(out_dir / src["name"])]
    subprocess.run(cmd, check=True)


def generate_fixtures(out_dir: Path) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    for src in SOURCES:
        _generate_source(out_dir, src)

    source_files = [
        {
            "source_id": i,
            "url": str((out_dir / src["name"]).resolve()),
            "duration_ms": src["duration"] * 1000,
            "fps": 30,
            "dimension": {"width": src["size"][0], "height": src["size"][1]},
        }
        for i, src in enumerate(SOURCES, 1)
    ]
    segments = [
        {"scene_id": 1, "source_id": 1, "start_ms": 0, "end_ms": 3000, "muted": False, "purpose": "intro"},
        {"scene_id": 2, "source_id": 2, "start_ms": 2000, "end_ms": 5000, "muted": True, "purpose": "b-roll"},
        {"scene_id": 3, "source_id": 3, "start_ms": 999999, "end_ms": 1001000, "muted": False, "purpose": "skipped"},
        {"scene_id": 4, "source_id": 3, "start_ms": 4000, "end_ms": 8000, "muted": False, "purpose": "truncated"},
        {"scene_id": 5, "source_id": 1, "start_ms": 6000, "end_ms": 8000, "muted": False, "purpose": "outro"},
    ]
    manifest = {
        "version": "1",
        "output": str((out_dir / "stitched.mp4").resolve()),
        "video_cutdown_result": {
            "project_name": "synthetic",
            "source_files": source_files,
            "segments": segments,
        },
    }
    manifest_path = out_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2))
    return manifest_path


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/synthetic")
    path = generate_fixtures(out)
    print(f"Generated: {path}")
