#!/usr/bin/env python3
"""
MouseScore Configuration

Master configuration file with paths, file naming conventions and constants.
Settings are configurable via ~/.mousescore/config.json (preferred) or
environment variables.

Example ~/.mousescore/config.json:

    {
        "output_dir": "D:/Behaviour/Scored",
        "log_dir": "D:/Behaviour/Logs",
        "workers": 4,
        "parameters": {
            "grooming": {"base_threshold": 6.0},
            "rearing": {"rearing_over_stretch_attend": true}
        }
    }
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, List

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(Exception):
    """Raised when configuration is present but malformed."""
    pass


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

CONFIG_FILE = Path.home() / ".mousescore" / "config.json"


def _load_config(config_file: Path = CONFIG_FILE) -> dict:
    """Load configuration from JSON file."""
    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {config_file}: {e}")
    return {}

_config = _load_config()

# =============================================================================
# OUTPUT LOCATIONS - CONFIGURABLE VIA CONFIG FILE OR ENVIRONMENT VARIABLES
# =============================================================================
# Priority: config.json > environment variable > None (next to the input files)

_output_dir = _config.get("output_dir") or os.getenv("MOUSESCORE_OUTPUT_DIR")
OUTPUT_DIR: Optional[Path] = Path(_output_dir) if _output_dir else None

_log_dir = _config.get("log_dir") or os.getenv("MOUSESCORE_LOG_DIR")
LOG_DIR: Path = Path(_log_dir) if _log_dir else Path.home() / ".mousescore" / "logs"

_workers = _config.get("workers") or os.getenv("MOUSESCORE_WORKERS")
try:
    WORKERS: int = max(1, int(_workers)) if _workers else 1
except ValueError:
    raise ConfigurationError(f"'workers' must be an integer, got {_workers!r}")


def get_parameter_overrides() -> dict:
    """Detection parameter overrides from the config file (may be empty)."""
    overrides = _config.get("parameters", {})
    if not isinstance(overrides, dict):
        raise ConfigurationError(
            "The 'parameters' entry of ~/.mousescore/config.json must be an object "
            "mapping behaviour names to parameter values."
        )
    return overrides


# =============================================================================
# DLC BODYPARTS
# =============================================================================

class BodyParts:
    """DeepLabCut tracked bodyparts (fixed naming vocabulary)."""

    ALL = [
        'Snout', 'EarLeft', 'EarRight',
        'ForePawLeft', 'ForePawRight',
        'HindPawLeft', 'HindPawRight',
        'TailBase', 'TailQuarterAnt', 'TailMiddle', 'TailQuarterPost', 'TailEnd',
    ]

    # Required for any scoring
    REQUIRED = ['Snout', 'EarLeft', 'EarRight', 'TailBase', 'HindPawLeft', 'HindPawRight']

    HEAD = ['Snout', 'EarLeft', 'EarRight']
    FORE_PAWS = ['ForePawLeft', 'ForePawRight']
    HIND_PAWS = ['HindPawLeft', 'HindPawRight']

    # Tail chain, base to tip
    TAIL = ['TailBase', 'TailQuarterAnt', 'TailMiddle', 'TailQuarterPost', 'TailEnd']


# =============================================================================
# TRACKING LIMITS
# =============================================================================

class TrackingLimits:
    """Validity rules applied to every body part before any computation."""

    # Below this DLC likelihood the position is treated as missing
    MIN_SCORE = 0.95

    # Tracking frame is 640x480; border positions are tracker artefacts
    MIN_COORD = 1
    MAX_X = 639
    MAX_Y = 479

    # Fallback calibration when the tracking file has none
    DEFAULT_PX_PER_CM = 10.0


# =============================================================================
# FILENAME CONVENTIONS
# =============================================================================

class FilePatterns:
    """Filename patterns and conventions."""

    # Session: 20240312_M0412_OF_Day1
    #   -> 20240312_M0412_OF_Day1DLC_resnet50_...csv
    #   -> 20240312_M0412_OF_Day1_tracking.npz
    #   -> 20240312_M0412_OF_Day1.avi
    # Light/dark box recordings are scored on the converted thermal movie:
    #   -> 20240312_M0412_LDB_IRtoBWDLC_resnet50_...csv
    #   -> 20240312_M0412_LDB_IRtoBW.avi

    DLC_GLOBS = ["*DLC*.csv", "*DLC*.h5"]
    THERMAL_TAG = "_IRtoBW"

    TRACKING_SUFFIX = "_tracking.npz"
    MOVIE_SUFFIX = ".avi"
    THERMAL_MOVIE_SUFFIX = "_IRtoBW.avi"

    # Output
    BEHAVIOUR_SUFFIX = "_behaviour.json"


def get_session_id(filename: str) -> str:
    """Extract the session base name from any filename of a session.

    Example: "20240312_M0412_OF_Day1" from any of:
        - 20240312_M0412_OF_Day1DLC_resnet50_....csv
        - 20240312_M0412_LDB_IRtoBWDLC_resnet50_....csv (-> 20240312_M0412_LDB)
        - 20240312_M0412_OF_Day1_tracking.npz
        - 20240312_M0412_OF_Day1_behaviour.json
    """
    name = Path(filename).name

    if FilePatterns.THERMAL_TAG in name:
        return name.split(FilePatterns.THERMAL_TAG)[0]
    if 'DLC' in name:
        return name.split('DLC')[0]

    for suffix in [FilePatterns.TRACKING_SUFFIX, FilePatterns.BEHAVIOUR_SUFFIX]:
        if name.endswith(suffix):
            return name[:-len(suffix)]

    return Path(name).stem


def find_dlc_files(input_dir: Path) -> List[Path]:
    """Find all DLC tracking tables in a directory (csv preferred over h5)."""
    input_dir = Path(input_dir)
    found = {}
    for pattern in FilePatterns.DLC_GLOBS:
        for path in sorted(input_dir.glob(pattern)):
            found.setdefault(get_session_id(path.name), path)
    return [found[k] for k in sorted(found)]


def print_config():
    """Print configuration summary."""
    print("=" * 60)
    print("MouseScore Configuration")
    print("=" * 60)
    print()
    print("CONFIG FILE:")
    print(f"  {CONFIG_FILE} ({'found' if CONFIG_FILE.exists() else 'not found'})")
    print()
    print("ENVIRONMENT CONFIGURATION:")
    print(f"  MOUSESCORE_OUTPUT_DIR: {os.getenv('MOUSESCORE_OUTPUT_DIR', '(not set)')}")
    print(f"  MOUSESCORE_LOG_DIR:    {os.getenv('MOUSESCORE_LOG_DIR', '(not set)')}")
    print(f"  MOUSESCORE_WORKERS:    {os.getenv('MOUSESCORE_WORKERS', '(not set)')}")
    print()
    print("RESOLVED SETTINGS:")
    print(f"  Output dir:  {OUTPUT_DIR or '(next to input files)'}")
    print(f"  Log dir:     {LOG_DIR}")
    print(f"  Workers:     {WORKERS}")
    print()
    print("DLC BODYPARTS:")
    print(f"  Total: {len(BodyParts.ALL)}")
    print(f"  Required: {BodyParts.REQUIRED}")
    print()
    print("PARAMETER OVERRIDES:")
    overrides = get_parameter_overrides()
    if not overrides:
        print("  (none, using defaults)")
    for group, values in overrides.items():
        print(f"  {group}: {values}")
    print()
