"""Thin CLI entry point — loads a Manifest and calls the engine."""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from clipstitch.engine import process
from clipstitch.errors import StitchError
from clipstitch.ffutil import FFmpegNotFoundError
from clipstitch.manifest import SKIP_POLICIES, UNDECODABLE_AUDIO_POLICIES, load_manifest
from clipstitch.models import StitchEvent


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="clipstitch",
        description="ClipStitch — join trimmed segments of many videos into one file.",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="command")

    stitch = sub.add_parser("stitch", help="Stitch the segments of a manifest")
    stitch.add_argument("manifest", type=Path, help="Path to a JSON manifest file")
    stitch.add_argument("--output", "-o", type=Path, help="Output file path")
    stitch.add_argument("--timeout", type=float, help="Abort the run after this many seconds")
    stitch.add_argument("--skip-policy", choices=SKIP_POLICIES, help="Timeline policy for out-of-range segments")
    stitch.add_argument(
        "--undecodable-audio",
        choices=UNDECODABLE_AUDIO_POLICIES,
        help="What to emit when an unmuted segment's audio cannot be decoded",
    )

    serve = sub.add_parser("serve", help="Launch the job API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from clipstitch.web import create_app
        app = create_app()
        print(f"ClipStitch job API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    try:
        m = load_manifest(args.manifest)
    except (OSError, ValueError) as e:
        print(f"Error: could not load manifest: {e}", file=sys.stderr)
        sys.exit(1)

    overrides = {}
    if args.timeout is not None:
        overrides["timeout"] = args.timeout
    if args.skip_policy:
        overrides["skipped_segment_policy"] = args.skip_policy
    if args.undecodable_audio:
        overrides["undecodable_audio_policy"] = args.undecodable_audio
    if overrides:
        m.config = replace(m.config, **overrides)
    m.output = args.output or m.output or args.manifest.with_suffix(".mp4")

    def on_progress(stage: str, frac: float) -> None:
        print(f"  [{frac:3.0%}] {stage}")

    def on_event(event: StitchEvent) -> None:
        print(f"  note: {event.message}")

    try:
        result = process(m, on_progress=on_progress, on_event=on_event)
    except (StitchError, FFmpegNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Duration: {result.duration:.1f}s at {result.profile.width}x{result.profile.height}")
    print(f"  Audio: {result.profile.sample_rate} Hz, {result.profile.channels} ch")
    if result.segments_skipped:
        print(f"  Segments skipped: {result.segments_skipped}")
    if result.segments_truncated:
        print(f"  Segments truncated: {result.segments_truncated}")


if __name__ == "__main__":
    main()
