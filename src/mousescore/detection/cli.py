#!/usr/bin/env python3
"""
CLI Entry Points for MouseScore Behaviour Detection
====================================================

INSTALLED COMMANDS
------------------
These commands are installed when you `pip install mousescore`:

    mousescore-detect   - Score every session in a folder
    mousescore-rerun    - Re-run the cascade tail of a saved session
    mousescore-config   - Print the effective configuration

TYPICAL WORKFLOW
----------------
1. Score all sessions (DLC table + tracking file + movie per session):
   $ mousescore-detect -i Data/ --workers 4

2. Review and correct episodes; corrected files keep their history.

3. After changing thresholds or editing episodes, recompute Freezing,
   AreaBound, Flight and Remaining:
   $ mousescore-rerun Data/ 20240312_M0412_OF_Day1 --grooming-threshold 6.0

FILE FLOW
---------
    <base>DLC_*.csv + <base>_tracking.npz + <base>.avi
         | mousescore-detect
    <base>_behaviour.json        Episodes, parameters, processing history
         | manual review / mousescore-rerun
    <base>_behaviour.json        History entry appended on every save
"""

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

logger = logging.getLogger(__name__)


def setup_logging(log_dir: Path, verbose: bool = False, quiet: bool = False):
    """
    Setup logging to console and rotating file.

    Args:
        log_dir: Directory for log files
        verbose: Enable debug logging
        quiet: Suppress info logging (errors only)
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "mousescore.log"

    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.INFO

    formatter = logging.Formatter('%(asctime)s %(levelname)-8s %(name)s - %(message)s')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    # File handler (rotating, 10MB max, keep 5 backups)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    return log_file


# =============================================================================
# mousescore-detect: Batch scoring
# =============================================================================
def main_detect():
    """
    Score every session in a folder.

    Examples:
        mousescore-detect -i Data/
        mousescore-detect -i Data/ --workers 4 --no-reprocess
    """
    from mousescore.config import LOG_DIR, OUTPUT_DIR, WORKERS, find_dlc_files
    from mousescore.detection.core import process_batch

    parser = argparse.ArgumentParser(
        description="Detect behaviours in DLC + contour tracking sessions",
        epilog="""
Examples:
  mousescore-detect -i Data/                     # Score all sessions
  mousescore-detect -i Data/ --workers 4         # 4 sessions in parallel
  mousescore-detect -i Data/ --no-reprocess      # Ignore existing behaviour files
  mousescore-detect -i Data/ --export-features   # Also write per-frame features
        """
    )
    parser.add_argument('-i', '--input', type=Path, required=True,
                        help="Directory containing DLC tables and tracking files")
    parser.add_argument('-o', '--output', type=Path, default=None,
                        help="Output directory for behaviour files (default: next to inputs)")
    parser.add_argument('--workers', type=int, default=WORKERS,
                        help="Sessions processed in parallel; a single session uses them "
                             f"for the contour scan (default: {WORKERS})")
    parser.add_argument('--no-reprocess', action='store_true',
                        help="Score from scratch even if a behaviour file exists")
    parser.add_argument('--export-features', action='store_true',
                        help="Write <base>_features.csv next to each behaviour file")
    parser.add_argument('-q', '--quiet', action='store_true',
                        help="Minimal output (errors only)")
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Debug logging")
    args = parser.parse_args()

    setup_logging(LOG_DIR, verbose=args.verbose, quiet=args.quiet)

    dlc_files = find_dlc_files(args.input)
    print(f"Found {len(dlc_files)} sessions to score")
    if not dlc_files:
        print("No DLC files found. Looking for *DLC*.csv / *DLC*.h5 files.")
        return

    results = process_batch(
        args.input,
        output_dir=args.output or OUTPUT_DIR,
        workers=args.workers,
        reprocess=not args.no_reprocess,
        export_features=args.export_features,
        verbose=not args.quiet,
    )
    if results['failed']:
        sys.exit(1)


# =============================================================================
# mousescore-rerun: Recompute the cascade tail of a saved session
# =============================================================================
def main_rerun():
    """
    Reload a scored session and recompute Freezing, AreaBound, Flight and
    Remaining, optionally after changing a detection threshold.

    Examples:
        mousescore-rerun Data/ 20240312_M0412_OF_Day1
        mousescore-rerun Data/ 20240312_M0412_OF_Day1 --grooming-threshold 6.0
    """
    from mousescore.config import LOG_DIR, OUTPUT_DIR, FilePatterns, find_dlc_files, get_session_id
    from mousescore.detection.core import (
        rerun_algorithm, run_algorithm, set_grooming_threshold,
        set_stretch_attend_length, set_tail_rattling_threshold,
    )
    from mousescore.session import load_session, save_session

    parser = argparse.ArgumentParser(
        description="Re-run the lower-priority stages of a scored session",
        epilog="""
Examples:
  mousescore-rerun Data/ 20240312_M0412_OF_Day1
  mousescore-rerun Data/ 20240312_M0412_OF_Day1 --stretch-attend-length 7.5
        """
    )
    parser.add_argument('session_dir', type=Path, help="Folder with the session files")
    parser.add_argument('basename', help="Session base name")
    parser.add_argument('-o', '--output', type=Path, default=None,
                        help="Folder holding the behaviour file (default: session folder)")
    parser.add_argument('--grooming-threshold', type=float, default=None)
    parser.add_argument('--stretch-attend-length', type=float, default=None,
                        help="Size-corrected length in cm")
    parser.add_argument('--tail-rattling-threshold', type=float, default=None)
    parser.add_argument('-v', '--verbose', action='store_true', help="Debug logging")
    args = parser.parse_args()

    setup_logging(LOG_DIR, verbose=args.verbose)

    matches = [p for p in find_dlc_files(args.session_dir)
               if get_session_id(p.name) == args.basename]
    if not matches:
        print(f"No DLC file for {args.basename} in {args.session_dir}")
        sys.exit(1)

    output_dir = args.output or OUTPUT_DIR or args.session_dir
    behaviour_file = Path(output_dir) / f"{args.basename}{FilePatterns.BEHAVIOUR_SUFFIX}"
    if not behaviour_file.exists():
        print(f"{behaviour_file.name} not found; run mousescore-detect first")
        sys.exit(1)

    ctx = load_session(matches[0], reprocess=True, output_dir=output_dir)
    run_algorithm(ctx)

    if args.grooming_threshold is not None:
        set_grooming_threshold(ctx, args.grooming_threshold)
    if args.stretch_attend_length is not None:
        set_stretch_attend_length(ctx, args.stretch_attend_length)
    if args.tail_rattling_threshold is not None:
        set_tail_rattling_threshold(ctx, args.tail_rattling_threshold)

    rerun_algorithm(ctx)
    path = save_session(ctx, output_dir)
    print(f"Saved {path}")


# =============================================================================
# mousescore-config: Show configuration
# =============================================================================
def main_config():
    """Print the effective MouseScore configuration."""
    from mousescore.config import print_config
    print_config()


if __name__ == "__main__":
    main_detect()
