"""
MouseScore - Rodent behaviour detection and episode scoring
===========================================================

Converts per-frame pose tracking (DeepLabCut) and contour tracking of a single
mouse into discrete, non-overlapping behavioural episodes that can be reviewed
and corrected by hand.

Behaviours (in priority order):
    TailRattling, Grooming, OpenRearing, Rearing, WallRearing, HeadDips,
    StretchAttend, Freezing, AreaBound, Flight, Remaining

Packages:
    detection - feature extraction, size calibration, zones, classifier, episodes
    session   - loading session inputs and persisting scored sessions
    utils     - shared helpers (smoothing, user/host info)

Usage:
    from mousescore.session import load_session
    from mousescore.detection.core import run_algorithm

    ctx = load_session(Path("Data/20240312_M0412_OF_Day1DLC_resnet50.csv"))
    run_algorithm(ctx)
"""

__version__ = "1.0.0"
__author__ = "MouseScore contributors"

# Convenience imports for common config access
from mousescore.config import BodyParts, FilePatterns, get_session_id
