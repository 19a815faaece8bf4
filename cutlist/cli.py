"""Thin CLI entry point — builds a Manifest and calls the engine."""

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path

from cutlist import ffutil
from cutlist.engine import process
from cutlist.errors import CutlistError
from cutlist.logging_utils import setup_logging
from cutlist.manifest import Manifest, load_manifest
from cutlist.models import TimeRange
from cutlist.streaming import encode_segment_streaming


def _cut_arg(value: str) -> TimeRange:
    start, sep, end = value.partition(":")
    try:
        if not sep:
            raise ValueError(value)
        return TimeRange(start=float(start), end=float(end))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected START:END in seconds, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cutlist",
        description="cutlist: remove time ranges from media files and stream previews.",
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    sub = parser.add_subparsers(dest="command")

    exp = sub.add_parser("export", help="Export a copy with time ranges removed")
    exp.add_argument("video", nargs="?", type=Path, help="Input media file")
    exp.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    exp.add_argument("--output", "-o", type=Path, help="Output file path")
    exp.add_argument(
        "--cut", "-c", action="append", type=_cut_arg, default=[],
        metavar="START:END", help="Range to remove, in seconds (repeatable)",
    )

    prb = sub.add_parser("probe", help="Print media metadata as JSON")
    prb.add_argument("video", type=Path)

    prev = sub.add_parser("preview", help="Stream a fragmented-MP4 preview of one range")
    prev.add_argument("video", type=Path)
    prev.add_argument("--start", type=float, required=True)
    prev.add_argument("--end", type=float, required=True)
    prev.add_argument("--width", type=int, default=960, help="Maximum frame width")
    prev.add_argument("--output", "-o", default="-", help="Output file, or - for stdout")

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    return parser


def _run_export(args, parser) -> None:
    if args.manifest:
        m = load_manifest(args.manifest)
    elif args.video:
        output = args.output or args.video.with_stem(args.video.stem + "_edited")
        m = Manifest(input=args.video, output=output, cuts=args.cut)
    else:
        parser.error("provide either a VIDEO argument or --manifest.")

    def on_progress(stage: str, frac: float) -> None:
        print(f"  [{frac:3.0%}] {stage}")

    result = process(m, on_progress=on_progress)

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Duration: {result.duration_original:.1f}s -> {result.duration_final:.1f}s")
    if result.ranges_removed:
        print(f"  Ranges removed: {result.ranges_removed}")
    elif result.copied:
        print("  Nothing to cut; source copied unchanged")


def _run_preview(args) -> None:
    out = sys.stdout.buffer if args.output == "-" else open(args.output, "wb")
    try:
        with encode_segment_streaming(args.video, args.start, args.end, width=args.width) as stream:
            for chunk in stream:
                out.write(chunk)
    finally:
        if out is not sys.stdout.buffer:
            out.close()


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        from cutlist.web import create_app
        app = create_app()
        print(f"cutlist web API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    try:
        if args.command == "export":
            _run_export(args, parser)
        elif args.command == "probe":
            print(json.dumps(asdict(ffutil.probe(args.video)), indent=2))
        elif args.command == "preview":
            _run_preview(args)
    except (CutlistError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
