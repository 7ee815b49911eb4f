#!/usr/bin/env python3
"""
Tests for the priority cascade: candidates, exclusion and mask bookkeeping.
"""

import logging
from types import SimpleNamespace

import numpy as np
import pytest

from mousescore.errors import InvariantViolation
from mousescore.detection.core.behaviours import Behaviour, Paradigm, PRIORITY
from mousescore.detection.core.classifier import (
    BehaviourClassifier,
    check_exclusivity,
    join_undefined_gaps,
    masks_from_episodes,
    priority_order,
)
from mousescore.detection.core.parameters import DetectionParameters


# =============================================================================
# FIXTURES
# =============================================================================

def frames(n: int, fps: float):
    return SimpleNamespace(n_frames=n, fps=fps, times=np.round(np.arange(n) / fps, 3))


@pytest.fixture
def classifier():
    return BehaviourClassifier(DetectionParameters(), Paradigm.OPEN_FIELD)


# =============================================================================
# TESTS
# =============================================================================

class TestPriorityOrder:
    """Tests for the per-paradigm evaluation order."""

    def test_default_order_follows_priority(self):
        """Open field runs every RGB stage except the light/dark box and plus maze ones."""
        order = priority_order(Paradigm.OPEN_FIELD, DetectionParameters())
        assert order == tuple(b for b in PRIORITY
                              if b not in (Behaviour.WALL_REARING, Behaviour.HEAD_DIPS,
                                           Behaviour.OPEN_REARING))

    def test_thermal_sessions_skip_tail_rattling(self):
        """Light/dark box sessions score wall rearing but never tail rattling."""
        order = priority_order(Paradigm.LIGHT_DARK_BOX)
        assert Behaviour.TAIL_RATTLING not in order
        assert Behaviour.WALL_REARING in order

    def test_plus_maze_scores_head_dips(self):
        """Head dips and open rearing only exist on the plus maze."""
        order = priority_order(Paradigm.ELEVATED_PLUS_MAZE)
        assert Behaviour.HEAD_DIPS in order
        assert order.index(Behaviour.OPEN_REARING) < order.index(Behaviour.REARING)

    def test_stretch_attend_over_rearing(self):
        """With the rearing flag off, StretchAttend moves right after Grooming."""
        params = DetectionParameters()
        params.rearing.rearing_over_stretch_attend = False
        order = priority_order(Paradigm.OPEN_FIELD, params)

        assert order.index(Behaviour.STRETCH_ATTEND) == order.index(Behaviour.GROOMING) + 1
        assert order.index(Behaviour.STRETCH_ATTEND) < order.index(Behaviour.REARING)
        assert order[-1] is Behaviour.REMAINING


class TestStages:
    """Tests for single stages on hand-made features."""

    def test_freezing_episode(self, classifier):
        """Five low-motion frames at 1 Hz give one 4 s freezing episode."""
        data = frames(10, 1.0)
        motion = np.full(10, 5.0)
        motion[2:7] = 0.2
        features = SimpleNamespace(motion=motion)

        episodes, mask = classifier.detect(Behaviour.FREEZING, data, features, None,
                                           np.zeros(10, dtype=bool))

        np.testing.assert_allclose(episodes, [[2.0, 6.0]])
        assert np.flatnonzero(mask).tolist() == [2, 3, 4, 5, 6]

    def test_claimed_frames_split_candidates(self, classifier):
        """A frame held by an earlier behaviour splits the run."""
        data = frames(10, 1.0)
        motion = np.full(10, 5.0)
        motion[2:7] = 0.2
        claimed = np.zeros(10, dtype=bool)
        claimed[4] = True

        episodes, mask = classifier.detect(Behaviour.FREEZING, data,
                                           SimpleNamespace(motion=motion), None, claimed)

        np.testing.assert_allclose(episodes, [[2.0, 3.0], [5.0, 6.0]])
        assert not mask[4]

    def test_merging_never_steals_claimed_frames(self):
        """Episodes merged across a claimed frame leave that frame out of the mask."""
        params = DetectionParameters()
        params.freezing.merging = 0.5
        classifier = BehaviourClassifier(params, Paradigm.OPEN_FIELD)
        data = frames(11, 10.0)
        claimed = np.zeros(11, dtype=bool)
        claimed[4] = True

        episodes, mask = classifier.detect(Behaviour.FREEZING, data,
                                           SimpleNamespace(motion=np.zeros(11)), None, claimed)

        np.testing.assert_allclose(episodes, [[0.0, 1.0]])
        assert not mask[4]
        assert mask.sum() == 10

    def test_flight(self, classifier):
        """StepSpeed of at least 20 cm/s held for more than 0.2 s is flight."""
        data = frames(20, 10.0)
        step_speed = np.zeros(20)
        step_speed[5:10] = 25.0
        step_speed[15] = 30.0
        features = SimpleNamespace(step_speed=step_speed)

        episodes, _ = classifier.detect(Behaviour.FLIGHT, data, features, None,
                                        np.zeros(20, dtype=bool))

        np.testing.assert_allclose(episodes, [[0.5, 0.9]])

    def test_area_bound_uses_paradigm_threshold(self):
        """Without an explicit threshold, the paradigm ceiling applies."""
        data = frames(5, 1.0)
        features = SimpleNamespace(area_explored=np.array([10.0, 40.0, 100.0, 160.0, np.nan]))

        of = BehaviourClassifier(DetectionParameters(), Paradigm.OPEN_FIELD)
        ext = BehaviourClassifier(DetectionParameters(), Paradigm.EXTINCTION)

        assert of.candidate(Behaviour.AREA_BOUND, data, features, None).tolist() == \
            [True, True, True, False, False]
        assert ext.candidate(Behaviour.AREA_BOUND, data, features, None).tolist() == \
            [True, False, False, False, False]

    def test_missing_tail_motion_disables_tail_rattling(self, classifier):
        """Sessions without tail features have no tail-rattling candidates."""
        data = frames(5, 1.0)
        features = SimpleNamespace(tail_motion=None, part_step_speed={})
        assert not classifier.candidate(Behaviour.TAIL_RATTLING, data, features, None).any()


class TestGroomingGaps:
    """Tests for joining grooming runs across undefined scores."""

    def test_nan_gap_is_joined(self):
        """A gap whose score is entirely undefined is filled."""
        candidate = np.array([1, 1, 0, 0, 1, 1, 0, 1], dtype=bool)
        score = np.array([1, 1, np.nan, np.nan, 1, 1, 9, 1], dtype=float)

        joined = join_undefined_gaps(candidate, score)

        assert joined.tolist() == [True] * 6 + [False, True]

    def test_partially_defined_gap_is_kept(self):
        """A gap with any defined score stays open."""
        candidate = np.array([1, 0, 0, 1], dtype=bool)
        score = np.array([1, np.nan, 9, 1], dtype=float)
        assert join_undefined_gaps(candidate, score).tolist() == [True, False, False, True]


class TestMasks:
    """Tests for exclusive masks."""

    def test_overlap_raises(self):
        """Two behaviours on the same frame is an invariant violation."""
        masks = {Behaviour.GROOMING: np.array([True, True, False]),
                 Behaviour.FREEZING: np.array([False, True, False])}
        with pytest.raises(InvariantViolation):
            check_exclusivity(masks)

    def test_overlap_is_logged(self, caplog):
        """The overlap is logged before the error propagates."""
        masks = {Behaviour.GROOMING: np.array([True, True, False]),
                 Behaviour.FREEZING: np.array([False, True, False])}
        with caplog.at_level(logging.ERROR), pytest.raises(InvariantViolation):
            check_exclusivity(masks)

        assert "first at frame 1" in caplog.text

    def test_earlier_behaviour_wins(self):
        """Overlapping episodes are resolved in priority order; Remaining is the rest."""
        times = np.arange(10, dtype=float)
        episodes = {Behaviour.FREEZING: np.array([[2.0, 6.0]]),
                    Behaviour.GROOMING: np.array([[5.0, 8.0]])}

        masks = masks_from_episodes(episodes, times)

        assert np.flatnonzero(masks[Behaviour.GROOMING]).tolist() == [5, 6, 7, 8]
        assert np.flatnonzero(masks[Behaviour.FREEZING]).tolist() == [2, 3, 4]
        assert np.flatnonzero(masks[Behaviour.REMAINING]).tolist() == [0, 1, 9]
        check_exclusivity(masks)

    def test_open_rearing_overrides_rearing(self):
        """Hand-assigned open rearing keeps its frames against detected rearing."""
        times = np.arange(10, dtype=float)
        episodes = {Behaviour.REARING: np.array([[1.0, 6.0]]),
                    Behaviour.OPEN_REARING: np.array([[4.0, 8.0]])}

        masks = masks_from_episodes(episodes, times)

        assert np.flatnonzero(masks[Behaviour.REARING]).tolist() == [1, 2, 3]
        assert np.flatnonzero(masks[Behaviour.OPEN_REARING]).tolist() == [4, 5, 6, 7, 8]


class TestCascade:
    """Tests for the full cascade on a still mouse."""

    def test_kept_episodes_are_not_redetected(self, classifier, stationary_tracking):
        """Behaviours passed in `keep` are taken as given."""
        from mousescore.detection.core.features import FeatureExtractor
        from mousescore.detection.core.zones import SpatialZoneBuilder

        features = FeatureExtractor().extract(stationary_tracking)
        zones = SpatialZoneBuilder().build(stationary_tracking.geometry, Paradigm.OPEN_FIELD)
        kept = np.array([[1.0, 2.0]])

        episodes, masks = classifier.classify(stationary_tracking, features, zones,
                                              keep={Behaviour.GROOMING: kept})

        np.testing.assert_allclose(episodes[Behaviour.GROOMING], kept)
        assert masks[Behaviour.GROOMING].sum() == 31
        total = np.sum([m.astype(int) for m in masks.values()], axis=0)
        assert np.all(total == 1)
