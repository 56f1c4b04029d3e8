#!/usr/bin/env python3
"""
Launch script for the Ride Telemetry backend.

Usage:
    python run_server.py [data_folder] [--port PORT] [--host HOST]

Examples:
    python run_server.py                       # Serve ./data/sessions
    python run_server.py /path/to/logs         # Serve another folder
    python run_server.py --auto-calibrate      # Level uncalibrated logs from their first seconds
    python run_server.py --timeout 30          # Give up on a log after 30 s
"""

import argparse
import os
from pathlib import Path


ENDPOINTS = (
    ("GET", "/health", "Repository status"),
    ("GET", "/config", "Active processing configuration"),
    ("GET", "/folder", "Current folder info"),
    ("POST", "/folder", "Set data folder"),
    ("POST", "/folder/rescan", "Re-index the data folder"),
    ("GET", "/sessions", "List processed sessions"),
    ("GET", "/sessions/{id}", "Session statistics"),
    ("GET", "/sessions/{id}/segments", "Ride segments"),
    ("GET", "/sessions/{id}/events", "Detected maneuvers"),
    ("GET", "/sessions/{id}/errors", "Processing warnings"),
    ("GET", "/sessions/{id}/export", "Full JSON export"),
    ("POST", "/sessions/{id}/reprocess", "Process a log again"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ride Telemetry Backend Server")
    parser.add_argument(
        "data_folder",
        nargs="?",
        default="./data/sessions",
        help="Folder containing *.csv session logs (default: ./data/sessions)"
    )
    parser.add_argument("--port", "-p", type=int, default=8000, help="Port to listen on (default: 8000)")
    parser.add_argument(
        "--host", "-H",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1, use 0.0.0.0 for all interfaces)"
    )
    parser.add_argument(
        "--auto-calibrate",
        action="store_true",
        help="Calibrate uncalibrated sessions from their first seconds of data"
    )
    parser.add_argument("--timeout", type=float, help="Per-session processing budget in seconds")
    parser.add_argument("--no-filter", action="store_true", help="Skip noise filtering")
    parser.add_argument("--debug", "-d", action="store_true", help="Reload on code changes and log debug output")
    return parser


def processing_overrides(args: argparse.Namespace) -> dict[str, str]:
    """Translate command-line switches into RIDELOG_* environment overrides."""
    overrides = {}
    if args.auto_calibrate:
        overrides["RIDELOG_CALIBRATION_AUTO_CALIBRATE"] = "1"
    if args.timeout is not None:
        overrides["RIDELOG_PIPELINE_PROCESSING_TIMEOUT_S"] = str(args.timeout)
    if args.no_filter:
        overrides["RIDELOG_FILTERS_ENABLED"] = "0"
    if args.debug:
        overrides["RIDELOG_DEBUG"] = "1"
    return overrides


def main():
    args = build_parser().parse_args()
    data_folder = Path(args.data_folder)

    print("Ride Telemetry Backend")
    print("=" * 40)
    print(f"Data folder: {data_folder.absolute()}")
    print(f"Server: http://{args.host}:{args.port}")

    if data_folder.is_dir():
        os.environ["RIDELOG_DATA_FOLDER"] = str(data_folder)
    else:
        print(f"\nWarning: Data folder does not exist: {data_folder}")
        print("You can set it later via POST /folder")

    overrides = processing_overrides(args)
    os.environ.update(overrides)
    for key, value in overrides.items():
        print(f"  {key}={value}")
    print("=" * 40)

    print("\nAPI Endpoints:")
    for method, path, summary in ENDPOINTS:
        print(f"  {method:<5}{path:<30}{summary}")

    import uvicorn

    uvicorn.run(
        "ridelog.main:app",
        host=args.host,
        port=args.port,
        reload=args.debug,
        log_level="debug" if args.debug else "info",
    )


if __name__ == "__main__":
    main()
