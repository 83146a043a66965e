"""
Command-line entry point.

Analyzes one audio file and writes its manifold as JSON (embedded points
or segmented graph), optionally alongside a NumPy archive of the raw
per-frame features.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from audiomanifold.config import AnalysisConfig
from audiomanifold.errors import ManifoldError
from audiomanifold.io.exporter import FORMS, ManifoldExporter
from audiomanifold.pipeline import AudioPipeline

logger = logging.getLogger("audiomanifold")


def _progress_printer():
    last = [-1]

    def report(fraction: float):
        pct = int(fraction * 100)
        if pct // 10 != last[0] // 10 or pct == 100:
            last[0] = pct
            print(f"{pct:3d}% analyzed", file=sys.stderr, flush=True)

    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="audiomanifold",
        description="Turn an audio file into a 3D point manifold",
    )

    parser.add_argument(
        "audio",
        type=Path,
        help="Input audio file (wav, mp3, flac)",
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output JSON file (default: <audio>_<form>.json)",
    )

    parser.add_argument(
        "--form",
        choices=FORMS,
        default="points",
        help="Output form (default: points)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON file with analysis parameters",
    )

    parser.add_argument(
        "--sr",
        type=int,
        default=None,
        help="Resample to this rate before analysis (default: native)",
    )

    parser.add_argument(
        "--precision",
        type=int,
        default=4,
        help="Decimal places in the JSON output (default: 4)",
    )

    parser.add_argument(
        "--include-pca",
        action="store_true",
        help="Add eigenvalues and reducer flags to the output",
    )

    parser.add_argument(
        "--npz",
        type=Path,
        default=None,
        help="Also write per-frame features to this .npz file",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Do not print progress",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.audio.exists():
        print(f"Error: Audio file not found: {args.audio}", file=sys.stderr)
        return 1

    try:
        config = AnalysisConfig.from_json(args.config) if args.config else AnalysisConfig()
    except (OSError, ValueError, TypeError) as exc:
        print(f"Error: Invalid config {args.config}: {exc}", file=sys.stderr)
        return 1

    output = args.output
    if output is None:
        output = args.audio.with_name(f"{args.audio.stem}_{args.form}.json")

    pipeline = AudioPipeline(
        config=config,
        progress_callback=None if args.quiet else _progress_printer(),
    )

    try:
        result = pipeline.run_file(args.audio, sr=args.sr)
    except ManifoldError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    exporter = ManifoldExporter(precision=args.precision, include_pca=args.include_pca)
    exporter.export_json(result, output, form=args.form)
    logger.info("Wrote %s", output)
    if args.npz is not None:
        exporter.export_numpy(result, args.npz)
        logger.info("Wrote %s", args.npz)

    if not args.quiet:
        print(
            f"{len(result.points)} points, {len(result.segments)} phrases "
            f"in {result.elapsed:.2f}s -> {output}",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
