"""
MouseScore Behaviour Detection - Core Module
=============================================

Turns per-frame pose and contour tracking of one mouse into non-overlapping
behaviour episodes.

WHAT THIS MODULE DOES
---------------------
Input:  TrackingData (DLC body parts, contour centroid and outline, motion,
        timestamps, arena geometry), see mousescore.session.load_session
Output: Episodes ([start, end] seconds) and exclusive per-frame masks for
        every behaviour of the session's paradigm

MODULE STRUCTURE
----------------
    behaviours.py  - Behaviour / Paradigm enums and the priority order
    parameters.py  - Detection parameter dataclasses
    tracking.py    - Track, ArenaGeometry, TrackingData
    features.py    - FeatureExtractor: speeds, body lengths, hind paws, ...
    size.py        - SizeCalibrator: per-animal SizeCorrection
    zones.py       - SpatialZoneBuilder: rings around arena features
    episodes.py    - Mask <-> episode conversion, small-gap reallocation
    classifier.py  - BehaviourClassifier: the priority cascade
    editing.py     - Manual episode corrections
    pipeline.py    - SessionContext, run/rerun, threshold callbacks
    batch.py       - Batch scoring of a folder

WORKFLOW
--------
1. LOAD: >>> ctx = load_session(Path("Data/20240312_M0412_OF_Day1DLC_resnet50.csv"))
2. SCORE: >>> run_algorithm(ctx)
3. EDIT:  >>> ctx.episodes = reconcile_adjacent(ctx.episodes, Behaviour.GROOMING, 0,
          ...                                    (3.1, 6.0), ctx.times)
          >>> rerun_algorithm(ctx)
4. SAVE:  >>> save_session(ctx)

CLI COMMANDS
------------
mousescore-detect   - Score every session in a folder
mousescore-rerun    - Re-run the cascade tail of a saved session
mousescore-config   - Print configuration

OUTPUT FORMAT
-------------
See mousescore.session.store for the <base>_behaviour.json layout.
"""

# =============================================================================
# DATA MODEL
# =============================================================================
from .behaviours import (
    Behaviour,
    Paradigm,
    RecordingKey,
    PRIORITY,
    CASCADE_TAIL,
    AREA_BOUND_THRESHOLDS,
)
from .parameters import DetectionParameters
from .tracking import ArenaGeometry, ArenaShape, Track, TrackingData, invalidate_positions

# =============================================================================
# FEATURES, SIZE AND ZONES
# =============================================================================
from .features import FeatureExtractor, FeatureSeries, extract_features
from .size import SizeCalibrator
from .zones import RingSet, SpatialZoneBuilder, ZoneSet

# =============================================================================
# EPISODES AND CLASSIFICATION
# =============================================================================
from .episodes import (
    check_episodes,
    episodes_to_mask,
    get_ranges,
    normalize_intervals,
    reallocate_small_gaps,
)
from .classifier import BehaviourClassifier, check_exclusivity, priority_order
from .editing import delete_episode, insert_episode, reclassify_episode, reconcile_adjacent

# =============================================================================
# PIPELINE
# =============================================================================
from .pipeline import (
    SessionContext,
    redetect,
    rerun_algorithm,
    run_algorithm,
    set_grooming_threshold,
    set_stretch_attend_length,
    set_tail_rattling_threshold,
    update_masks,
)
from .batch import process_batch, process_single
