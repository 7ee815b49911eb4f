"""
Session-level detection pipeline.

WORKFLOW
========
    run_algorithm(ctx)
        features -> size correction -> zones -> classification cascade
    rerun_algorithm(ctx)
        keep every episode above Freezing (manual edits included) and
        recompute Freezing, AreaBound, Flight and Remaining
    update_masks(ctx)
        refresh per-frame masks after episodes were edited by hand

Threshold callbacks (set_grooming_threshold, set_stretch_attend_length,
set_tail_rattling_threshold) re-detect one behaviour with a new threshold and
refresh the masks; call rerun_algorithm afterwards to update the cascade.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from mousescore.detection.core.behaviours import (
    Behaviour, CASCADE_TAIL, Paradigm, RecordingKey,
)
from mousescore.detection.core.classifier import (
    BehaviourClassifier, check_exclusivity, masks_from_episodes,
)
from mousescore.detection.core.episodes import (
    check_episodes, empty_episodes, episodes_to_mask,
)
from mousescore.detection.core.features import FeatureExtractor, FeatureSeries
from mousescore.detection.core.parameters import DetectionParameters
from mousescore.detection.core.size import SizeCalibrator
from mousescore.detection.core.tracking import TrackingData
from mousescore.detection.core.zones import SpatialZoneBuilder, ZoneSet

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """Inputs, parameters and results of one scoring session."""
    name: str
    paradigm: Paradigm
    data: TrackingData
    parameters: DetectionParameters = field(default_factory=DetectionParameters.default)
    features: Optional[FeatureSeries] = None
    zones: Optional[ZoneSet] = None
    episodes: Dict[Behaviour, np.ndarray] = field(default_factory=dict)
    masks: Dict[Behaviour, np.ndarray] = field(default_factory=dict)
    exclusion_ranges: np.ndarray = field(default_factory=empty_episodes)
    processing_history: List[dict] = field(default_factory=list)
    reprocessing: bool = False
    source_dir: Optional[Path] = None

    @property
    def times(self) -> np.ndarray:
        return self.data.times

    @property
    def recording_key(self) -> RecordingKey:
        return self.paradigm.recording_key

    @property
    def behaviours(self):
        return self.classifier().order

    def classifier(self) -> BehaviourClassifier:
        return BehaviourClassifier(self.parameters, self.paradigm)


def _ensure_features(ctx: SessionContext, workers: int = 1) -> None:
    if ctx.features is None:
        extractor = FeatureExtractor(ctx.parameters, workers=workers)
        ctx.features = extractor.extract(
            ctx.data, with_tail=ctx.paradigm.supports_tail_rattling)
    if ctx.zones is None:
        ctx.zones = SpatialZoneBuilder(ctx.parameters).build(ctx.data.geometry, ctx.paradigm)


def _calibrate(ctx: SessionContext) -> None:
    params = ctx.parameters
    if ctx.reprocessing and params.size_correction is not None:
        logger.info(f"Reusing saved SizeCorrection = {params.size_correction:.3f}")
    else:
        params.size_correction = SizeCalibrator(params.size).compute(
            ctx.features, ctx.data.score('HindPawLeft'), ctx.data.score('HindPawRight'))
    if not ctx.reprocessing or params.grooming.threshold is None:
        params.grooming.threshold = params.grooming.base_threshold * params.size_correction


def run_algorithm(ctx: SessionContext, workers: int = 1) -> SessionContext:
    """Full detection for a session.

    When the context holds episodes loaded from a previous save
    (ctx.reprocessing), those behaviours are kept and only the missing ones
    are computed.

    Args:
        ctx: Session context (modified in place)
        workers: Processes for the per-frame contour scan

    Returns:
        The same context, with features, zones, episodes and masks filled
    """
    logger.info(f"Scoring {ctx.name} ({ctx.paradigm.value}, {ctx.data.n_frames} frames, "
                f"{ctx.recording_key.value})")
    _ensure_features(ctx, workers)
    _calibrate(ctx)

    keep = dict(ctx.episodes) if ctx.reprocessing else {}
    computed = [b.value for b in ctx.behaviours if b not in keep]
    if keep:
        logger.info(f"Reprocessing: computing {computed or 'nothing'}")

    ctx.episodes, ctx.masks = ctx.classifier().classify(ctx.data, ctx.features, ctx.zones, keep)
    for behaviour, values in ctx.episodes.items():
        check_episodes(values, behaviour.value)
    return ctx


def rerun_algorithm(ctx: SessionContext) -> SessionContext:
    """Recompute Freezing, AreaBound, Flight and Remaining from the current
    higher-priority episodes (including manual edits), then reallocate."""
    _ensure_features(ctx)
    keep = {b: v for b, v in ctx.episodes.items() if b not in CASCADE_TAIL}
    ctx.episodes, ctx.masks = ctx.classifier().classify(ctx.data, ctx.features, ctx.zones, keep)
    logger.info(f"Re-ran {', '.join(b.value for b in CASCADE_TAIL)} for {ctx.name}")
    return ctx


def update_masks(ctx: SessionContext) -> SessionContext:
    """Rebuild the per-frame masks from the current episodes."""
    ctx.masks = masks_from_episodes(ctx.episodes, ctx.times, ctx.behaviours)
    check_exclusivity(ctx.masks)
    return ctx


def redetect(ctx: SessionContext, behaviour: Behaviour) -> SessionContext:
    """Re-detect one behaviour with the current parameters.

    Frames held by higher-priority behaviours stay excluded; lower-priority
    behaviours keep their episodes and lose the overlapping frames in the masks.
    """
    _ensure_features(ctx)
    classifier = ctx.classifier()
    order = classifier.order
    claimed = np.zeros(ctx.data.n_frames, dtype=bool)
    for earlier in order[:order.index(behaviour)]:
        claimed |= ctx.masks.get(earlier, episodes_to_mask(
            ctx.episodes.get(earlier, empty_episodes()), ctx.times))
    ctx.episodes[behaviour], _ = classifier.detect(
        behaviour, ctx.data, ctx.features, ctx.zones, claimed)
    logger.info(f"{behaviour.value}: {len(ctx.episodes[behaviour])} episode(s) after re-detection")
    return update_masks(ctx)


def set_grooming_threshold(ctx: SessionContext, value: float) -> SessionContext:
    ctx.parameters.grooming.threshold = float(value)
    return redetect(ctx, Behaviour.GROOMING)


def set_stretch_attend_length(ctx: SessionContext, value: float) -> SessionContext:
    """Set the displayed (size-corrected) stretch-attend length."""
    correction = ctx.parameters.size_correction or 1.0
    ctx.parameters.stretch_attend.length = float(value) / correction
    return redetect(ctx, Behaviour.STRETCH_ATTEND)


def set_tail_rattling_threshold(ctx: SessionContext, value: float) -> SessionContext:
    if not ctx.paradigm.supports_tail_rattling:
        raise ValueError(f"Tail rattling is not scored for {ctx.paradigm.value} sessions")
    ctx.parameters.tail_rattling.threshold = float(value)
    return redetect(ctx, Behaviour.TAIL_RATTLING)
