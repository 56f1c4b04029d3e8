#!/usr/bin/env python3
"""
Process a single session log and write its JSON export.

Usage:
    python process_log.py LOG [--output OUT.json] [--max-points N] [--smoothing LEVEL] [--auto-calibrate]

Examples:
    python process_log.py data/sessions/ride.csv
    python process_log.py ride.csv --output ride.json --max-points 500
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from ridelog.filters.chain import SmoothLevel
from ridelog.models.config import ProcessingConfig
from ridelog.models.errors import SessionProcessingError
from ridelog.services.export import write_export
from ridelog.services.pipeline import SessionProcessor
from ridelog.services.progress import ProcessingProgress


logger = logging.getLogger("process_log")


def _print_progress(progress: ProcessingProgress) -> None:
    print(f"\r[{progress.fraction * 100:5.1f}%] {progress.stage.value:<12} {progress.message:<40}", end="", flush=True)


def main() -> int:
    parser = argparse.ArgumentParser(description="Process a motorcycle session log")
    parser.add_argument("log", help="Path to the session log (.csv)")
    parser.add_argument(
        "--output", "-o",
        help="Export path (default: LOG with a .json suffix)"
    )
    parser.add_argument(
        "--max-points",
        type=int,
        default=None,
        help="Maximum points per exported time series (default: 1000)"
    )
    parser.add_argument(
        "--smoothing",
        choices=[level.value for level in SmoothLevel],
        help="Smooth the exported track, lean and g-force series for display"
    )
    parser.add_argument(
        "--auto-calibrate",
        action="store_true",
        help="Calibrate from the first seconds of data when the log has no calibration"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log debug output"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    config = ProcessingConfig.from_env()
    if args.auto_calibrate:
        config = replace(config, calibration=replace(config.calibration, auto_calibrate=True))
    max_points = args.max_points if args.max_points is not None else config.pipeline.export_max_points

    log_path = Path(args.log)
    output = Path(args.output) if args.output else log_path.with_suffix(".json")

    try:
        session = SessionProcessor(config).process_file(log_path, progress_callback=_print_progress)
    except SessionProcessingError as e:
        print()
        logger.error(f"{log_path.name}: {e}")
        return 1
    print()

    smoothing = SmoothLevel(args.smoothing) if args.smoothing else None
    write_export(session, output, max_points, smoothing)

    stats = session.statistics
    print(f"Session:   {session.info.file_name} ({session.info.duration_ms / 1000:.0f}s)")
    print(f"Calibrated: {session.info.calibration_quality or 'no'}")
    print(f"Distance:  {stats.total_distance / 1000:.2f} km")
    print(f"Max speed: {stats.max_speed * 3.6:.1f} km/h")
    print(f"Max lean:  {stats.max_lean_angle:.1f} deg")
    print(f"Segments:  {len(session.segments)}")
    print(f"Events:    {len(session.events)}")
    print(f"Issues:    {len(session.errors)}")
    print(f"Export:    {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
