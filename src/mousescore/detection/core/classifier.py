"""
Priority-ordered behaviour classification.

ALGORITHM SUMMARY
=================
Behaviours are evaluated one at a time in priority order:

    TailRattling > Grooming > OpenRearing > Rearing > WallRearing >
    HeadDips > StretchAttend > Freezing > AreaBound > Flight > Remaining

For each stage:
    1. Raw candidate mask from features and zones.
    2. Frames already claimed by an earlier stage are removed.
    3. Episodes: runs of the candidate, merged across short gaps and filtered
       by minimum duration (see episodes.get_ranges).
    4. The stage mask is the projection of its episodes minus claimed frames,
       so merging never steals frames from an earlier behaviour.
Remaining is whatever no stage claimed. AreaBound and Remaining are finally
cleaned up by reallocate_small_gaps.

With rearing.rearing_over_stretch_attend = False, StretchAttend is evaluated
right after Grooming and takes precedence over the rearing family and head
dips.

KEY PARAMETERS
==============
| Stage         | Candidate                                         | Merge / Min    |
|---------------|---------------------------------------------------|----------------|
| TailRattling  | TailMotion > 4.5, StepSpeed and TB StepSpeed < 1.5| 0.1 / 0.4      |
| Grooming      | score < 6.5*SC, StepSpeed < 2, Motion > 0.01      | 0.1 / 0.5      |
| Rearing       | head/fore paws beyond the arena rings             | 0.1 / 0.5      |
| HeadDips      | head beyond the open-arm rings                    | 0.1 / 0.3      |
| StretchAttend | TotalLength > 6*SC, slow, hind paws behind        | 0.1 / 0.5      |
| Freezing      | moving mean of Motion < 1.0                       | <0.15 / >0.5   |
| AreaBound     | AreaExplored < paradigm threshold                 | <0.15 / -      |
| Flight        | StepSpeed >= 20                                   | <0.15 / >0.2   |
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from mousescore.errors import InvariantViolation
from mousescore.detection.core.behaviours import Behaviour, Paradigm, PRIORITY
from mousescore.detection.core.episodes import (
    empty_episodes, episodes_to_mask, find_runs, get_ranges, reallocate_small_gaps,
)
from mousescore.detection.core.features import FeatureSeries
from mousescore.detection.core.parameters import DetectionParameters
from mousescore.detection.core.tracking import TrackingData
from mousescore.detection.core.zones import RingSet, ZoneSet
from mousescore.utils.smoothing import gaussian_smooth, moving_mean

logger = logging.getLogger(__name__)


def priority_order(paradigm: Paradigm,
                   params: Optional[DetectionParameters] = None) -> Tuple[Behaviour, ...]:
    """Behaviours of a paradigm in the order they claim frames."""
    order = list(paradigm.behaviours())
    if params is not None and not params.rearing.rearing_over_stretch_attend:
        order.remove(Behaviour.STRETCH_ATTEND)
        order.insert(order.index(Behaviour.GROOMING) + 1, Behaviour.STRETCH_ATTEND)
    return tuple(order)


def presence_in_rings(rings: RingSet, data: TrackingData) -> np.ndarray:
    """Head or fore paws reaching into the rings: snout in the second ring,
    both ears in the first ring, or either fore paw in the first ring."""
    candidate = (
        rings.contains('second', data.xy('Snout'))
        | (rings.contains('first', data.xy('EarLeft'))
           & rings.contains('first', data.xy('EarRight')))
    )
    for paw in ('ForePawLeft', 'ForePawRight'):
        if paw in data.tracks:
            candidate |= rings.contains('first', data.xy(paw))
    return candidate


def head_dip_candidate(rings: RingSet, data: TrackingData) -> np.ndarray:
    """Snout in the first open-arm ring, or both ears off the open-arm edge."""
    def edge(part):
        xy = data.xy(part)
        return rings.contains('zero', xy) | rings.contains('first', xy)

    return rings.contains('first', data.xy('Snout')) | (edge('EarLeft') & edge('EarRight'))


def join_undefined_gaps(candidate: np.ndarray, score: np.ndarray) -> np.ndarray:
    """Fill gaps between runs when every frame of the gap has an undefined score."""
    joined = np.asarray(candidate, dtype=bool).copy()
    runs = find_runs(joined)
    for (_, prev_last), (next_first, _) in zip(runs[:-1], runs[1:]):
        gap = slice(prev_last + 1, next_first)
        if np.all(np.isnan(score[gap])):
            joined[gap] = True
    return joined


def check_exclusivity(masks: Dict[Behaviour, np.ndarray]) -> None:
    """Raise InvariantViolation if any frame belongs to more than one behaviour."""
    if not masks:
        return
    counts = np.sum([m.astype(np.int8) for m in masks.values()], axis=0)
    overlap = np.flatnonzero(counts > 1)
    if overlap.size:
        claimed = [b.value for b, m in masks.items() if m[overlap[0]]]
        message = (f"{overlap.size} frame(s) claimed by several behaviours "
                   f"(first at frame {overlap[0]}: {claimed})")
        logger.error(message)
        raise InvariantViolation(message)


class BehaviourClassifier:
    """Run the classification cascade for one session."""

    VERSION = "1.0.0"

    def __init__(self, params: DetectionParameters, paradigm: Paradigm):
        self.params = params
        self.paradigm = paradigm
        self.order = priority_order(paradigm, params)

    @property
    def size_correction(self) -> float:
        return self.params.size_correction or 1.0

    # -- raw candidates --------------------------------------------------------

    def candidate(self, behaviour: Behaviour, data: TrackingData, features: FeatureSeries,
                  zones: Optional[ZoneSet]) -> np.ndarray:
        """Raw per-frame candidate mask of one behaviour (no exclusions)."""
        n = data.n_frames
        p = self.params
        with np.errstate(invalid='ignore'):
            if behaviour is Behaviour.TAIL_RATTLING:
                tr = p.tail_rattling
                if features.tail_motion is None or tr.reference not in features.part_step_speed:
                    return np.zeros(n, dtype=bool)
                return ((features.tail_motion > tr.threshold)
                        & (features.step_speed < tr.max_step_speed_body)
                        & (features.part_step_speed[tr.reference] < tr.max_step_speed_moving))

            if behaviour is Behaviour.GROOMING:
                gp = p.grooming
                threshold = gp.threshold if gp.threshold is not None \
                    else gp.base_threshold * self.size_correction
                return ((features.grooming < threshold)
                        & (features.step_speed < gp.max_step_speed)
                        & (features.motion > gp.low_motion))

            if behaviour is Behaviour.REARING:
                return presence_in_rings(zones.rearing, data)

            if behaviour is Behaviour.WALL_REARING:
                if zones is None or zones.wall_rearing is None:
                    return np.zeros(n, dtype=bool)
                return presence_in_rings(zones.wall_rearing, data)

            if behaviour is Behaviour.OPEN_REARING:
                # Only assigned by hand (reclassified grooming)
                return np.zeros(n, dtype=bool)

            if behaviour is Behaviour.HEAD_DIPS:
                if zones is None or zones.head_dips is None:
                    return np.zeros(n, dtype=bool)
                return head_dip_candidate(zones.head_dips, data)

            if behaviour is Behaviour.STRETCH_ATTEND:
                return self._stretch_attend(data, features)

            if behaviour is Behaviour.FREEZING:
                fp = p.freezing
                window = max(1, int(round(data.fps * fp.smoothing_window)))
                return moving_mean(features.motion, window) < fp.threshold

            if behaviour is Behaviour.AREA_BOUND:
                threshold = p.area_bound.threshold
                if threshold is None:
                    threshold = self.paradigm.area_bound_threshold
                return features.area_explored < threshold

            if behaviour is Behaviour.FLIGHT:
                return features.step_speed >= p.flight.step_speed

            if behaviour is Behaviour.REMAINING:
                return np.ones(n, dtype=bool)

        raise ValueError(f"No detector for {behaviour}")

    def _stretch_attend(self, data: TrackingData, features: FeatureSeries) -> np.ndarray:
        sp = self.params.stretch_attend
        left, right = features.hind_paw_left, features.hind_paw_right
        score_left, score_right = data.score('HindPawLeft'), data.score('HindPawRight')

        stretched = features.raw_total_length > sp.length * self.size_correction
        slow = gaussian_smooth(features.step_speed, sp.step_speed_window) < sp.step_speed
        both_back = (left < sp.both_hind_paws) & (right < sp.both_hind_paws)
        left_back = (left < sp.both_hind_paws) & ((score_right < sp.paw_score)
                                                  | (right < sp.single_hind_paw))
        right_back = (right < sp.both_hind_paws) & ((score_left < sp.paw_score)
                                                    | (left < sp.single_hind_paw))
        return stretched & slow & (both_back | left_back | right_back)

    # -- episodes --------------------------------------------------------------

    def resolve(self, behaviour: Behaviour, candidate: np.ndarray, times: np.ndarray,
                features: Optional[FeatureSeries] = None) -> np.ndarray:
        """Episodes of one behaviour from its (already exclusive) candidate mask."""
        p = self.params
        if behaviour is Behaviour.TAIL_RATTLING:
            return get_ranges(candidate, times, p.tail_rattling.merging,
                              p.tail_rattling.minimum_duration)
        if behaviour is Behaviour.GROOMING:
            if features is not None:
                candidate = join_undefined_gaps(candidate, features.grooming)
            return get_ranges(candidate, times, p.grooming.merging, p.grooming.minimum_duration)
        if behaviour in (Behaviour.REARING, Behaviour.WALL_REARING, Behaviour.OPEN_REARING):
            return get_ranges(candidate, times, p.rearing.merging, p.rearing.minimum_duration)
        if behaviour is Behaviour.HEAD_DIPS:
            return get_ranges(candidate, times, p.head_dips.merging, p.head_dips.minimum_duration)
        if behaviour is Behaviour.STRETCH_ATTEND:
            return get_ranges(candidate, times, p.stretch_attend.merging,
                              p.stretch_attend.minimum_duration)
        if behaviour is Behaviour.FREEZING:
            return get_ranges(candidate, times, p.freezing.merging,
                              p.freezing.minimum_duration, strict=True)
        if behaviour is Behaviour.AREA_BOUND:
            return get_ranges(candidate, times, p.area_bound.merging, 0.0, strict=True)
        if behaviour is Behaviour.FLIGHT:
            return get_ranges(candidate, times, p.flight.merging,
                              p.flight.minimum_duration, strict=True)
        return get_ranges(candidate, times, None, 0.0)

    def detect(self, behaviour: Behaviour, data: TrackingData, features: FeatureSeries,
               zones: Optional[ZoneSet], claimed: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Episodes and mask of one stage given the frames already claimed."""
        candidate = self.candidate(behaviour, data, features, zones) & ~claimed
        episodes = self.resolve(behaviour, candidate, data.times, features)
        if behaviour is Behaviour.REMAINING:
            return episodes, ~claimed
        return episodes, episodes_to_mask(episodes, data.times) & ~claimed

    # -- cascade ---------------------------------------------------------------

    def classify(self, data: TrackingData, features: FeatureSeries,
                 zones: Optional[ZoneSet],
                 keep: Optional[Dict[Behaviour, np.ndarray]] = None
                 ) -> Tuple[Dict[Behaviour, np.ndarray], Dict[Behaviour, np.ndarray]]:
        """Run every stage of the paradigm.

        Args:
            data: Tracking data
            features: Extracted features
            zones: Spatial zones
            keep: Episodes taken as given instead of being detected (saved or
                manually edited behaviours)

        Returns:
            (episodes, masks), both keyed by Behaviour
        """
        keep = keep or {}
        episodes: Dict[Behaviour, np.ndarray] = {}
        masks: Dict[Behaviour, np.ndarray] = {}
        claimed = np.zeros(data.n_frames, dtype=bool)

        for behaviour in self.order:
            if behaviour in keep:
                episodes[behaviour] = np.asarray(keep[behaviour], dtype=float).reshape(-1, 2)
                if behaviour is Behaviour.REMAINING:
                    masks[behaviour] = ~claimed
                else:
                    masks[behaviour] = episodes_to_mask(episodes[behaviour], data.times) & ~claimed
            else:
                episodes[behaviour], masks[behaviour] = self.detect(
                    behaviour, data, features, zones, claimed)
            claimed |= masks[behaviour]
            logger.debug(f"{behaviour.value}: {len(episodes[behaviour])} episode(s), "
                         f"{int(masks[behaviour].sum())} frame(s)")

        if Behaviour.AREA_BOUND not in keep and Behaviour.REMAINING not in keep:
            self.reallocate(episodes, masks, data.times)

        check_exclusivity(masks)
        return episodes, masks

    def reallocate(self, episodes: Dict[Behaviour, np.ndarray],
                   masks: Dict[Behaviour, np.ndarray], times: np.ndarray) -> None:
        """Apply the AreaBound / Remaining clean-up and refresh both masks in place."""
        rp = self.params.reallocation
        episodes[Behaviour.AREA_BOUND], episodes[Behaviour.REMAINING] = reallocate_small_gaps(
            episodes[Behaviour.AREA_BOUND], episodes[Behaviour.REMAINING], times,
            rp.small_thresholds, rp.merging_thresholds)

        others = np.zeros(len(times), dtype=bool)
        for behaviour, mask in masks.items():
            if behaviour not in (Behaviour.AREA_BOUND, Behaviour.REMAINING):
                others |= mask
        masks[Behaviour.AREA_BOUND] = episodes_to_mask(episodes[Behaviour.AREA_BOUND], times) & ~others
        masks[Behaviour.REMAINING] = ~(others | masks[Behaviour.AREA_BOUND])


def masks_from_episodes(episodes: Dict[Behaviour, np.ndarray], times: np.ndarray,
                        order: Iterable[Behaviour] = PRIORITY) -> Dict[Behaviour, np.ndarray]:
    """Exclusive per-frame masks from episode lists, earlier behaviours first.

    Remaining is always the set of frames no other behaviour holds.
    """
    masks: Dict[Behaviour, np.ndarray] = {}
    claimed = np.zeros(len(times), dtype=bool)
    for behaviour in order:
        if behaviour is Behaviour.REMAINING:
            continue
        values = episodes.get(behaviour, empty_episodes())
        masks[behaviour] = episodes_to_mask(values, times) & ~claimed
        claimed |= masks[behaviour]
    masks[Behaviour.REMAINING] = ~claimed
    return masks
