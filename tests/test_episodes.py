#!/usr/bin/env python3
"""
Tests for episode resolution: runs, merging, projection, reallocation and
interval normalisation.
"""

import numpy as np
import pytest

from mousescore.errors import InvariantViolation
from mousescore.detection.core.episodes import (
    check_episodes,
    episode_summary,
    episodes_to_mask,
    find_runs,
    get_ranges,
    normalize_intervals,
    reallocate_small_gaps,
)
from mousescore.detection.core.behaviours import Behaviour


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def times_100hz():
    return np.round(np.arange(100) * 0.01, 3)


@pytest.fixture
def times_50hz():
    return np.round(np.arange(150) * 0.02, 3)


def mask_from(times, *intervals):
    mask = np.zeros(len(times), dtype=bool)
    for start, end in intervals:
        mask |= (times >= start - 1e-9) & (times <= end + 1e-9)
    return mask


# =============================================================================
# TESTS
# =============================================================================

class TestFindRuns:
    """Tests for maximal run detection."""

    def test_runs_are_inclusive(self):
        """Runs report first and last True index."""
        mask = np.array([0, 1, 1, 0, 0, 1, 0, 1], dtype=bool)
        assert find_runs(mask) == [(1, 2), (5, 5), (7, 7)]

    def test_empty_mask(self):
        """No runs in an all-False or empty mask."""
        assert find_runs(np.zeros(5, dtype=bool)) == []
        assert find_runs(np.zeros(0, dtype=bool)) == []


class TestGetRanges:
    """Tests for mask -> episode conversion."""

    def test_merge_then_discard(self, times_100hz):
        """Two 0.3 s runs 0.05 s apart merge into one 0.65 s episode that survives min 0.5."""
        mask = mask_from(times_100hz, (0.0, 0.30), (0.35, 0.65))
        episodes = get_ranges(mask, times_100hz, merge_gap=0.1, min_duration=0.5)

        assert episodes.shape == (1, 2)
        assert episodes[0, 0] == pytest.approx(0.0)
        assert episodes[0, 1] == pytest.approx(0.65)

    def test_unmerged_short_runs_are_dropped(self, times_100hz):
        """Without merging both 0.3 s runs fall below the minimum duration."""
        mask = mask_from(times_100hz, (0.0, 0.30), (0.35, 0.65))
        episodes = get_ranges(mask, times_100hz, merge_gap=0.01, min_duration=0.5)
        assert len(episodes) == 0

    def test_strict_boundaries(self):
        """Strict mode merges only gaps strictly shorter and drops durations not strictly longer."""
        times = np.arange(20, dtype=float)
        mask = mask_from(times, (0, 2), (4, 6), (10, 11))

        loose = get_ranges(mask, times, merge_gap=2, min_duration=1)
        strict = get_ranges(mask, times, merge_gap=2, min_duration=1, strict=True)

        np.testing.assert_allclose(loose, [[0, 6], [10, 11]])
        np.testing.assert_allclose(strict, [[0, 2], [4, 6]])

    def test_zero_length_runs_are_dropped(self):
        """Single-frame runs never become episodes, even without a minimum duration."""
        times = np.arange(10, dtype=float)
        mask = mask_from(times, (2, 2), (5, 7))
        episodes = get_ranges(mask, times, merge_gap=None, min_duration=0.0)
        np.testing.assert_allclose(episodes, [[5, 7]])

    def test_episodes_are_ordered_and_disjoint(self, times_100hz):
        """Episodes are sorted, non-overlapping and satisfy start < end."""
        rng = np.random.default_rng(3)
        mask = rng.random(len(times_100hz)) > 0.4
        episodes = get_ranges(mask, times_100hz, merge_gap=0.02, min_duration=0.03)

        assert np.all(episodes[:, 0] < episodes[:, 1])
        assert np.all(episodes[1:, 0] > episodes[:-1, 1])

    def test_projection_round_trip(self, times_100hz):
        """Resolving the projection of resolved episodes gives the same episodes."""
        mask = mask_from(times_100hz, (0.05, 0.20), (0.40, 0.70), (0.85, 0.99))
        episodes = get_ranges(mask, times_100hz, merge_gap=0.1, min_duration=0.1)
        again = get_ranges(episodes_to_mask(episodes, times_100hz), times_100hz,
                           merge_gap=0.1, min_duration=0.1)
        np.testing.assert_allclose(again, episodes)


class TestEpisodesToMask:
    """Tests for episode -> mask projection."""

    def test_bounds_are_inclusive(self):
        """Frames at exactly start and end are marked."""
        times = np.arange(10, dtype=float)
        mask = episodes_to_mask(np.array([[2.0, 4.0]]), times)
        assert mask.tolist() == [False, False, True, True, True,
                                 False, False, False, False, False]

    def test_millisecond_rounded_bounds_still_match(self):
        """Bounds stored in ms still select the frames they came from."""
        times = np.arange(30) / 29.97
        episodes = normalize_intervals([[times[3], times[9]]])
        mask = episodes_to_mask(episodes, times)
        assert np.flatnonzero(mask).tolist() == list(range(3, 10))


class TestReallocation:
    """Tests for AreaBound / Remaining small-gap reallocation."""

    def test_small_gap_between_area_bound_is_absorbed(self, times_50hz):
        """A 0.08 s Remaining gap between two long AreaBound episodes disappears."""
        area_bound = np.array([[0.0, 0.70], [0.82, 1.50]])
        remaining = np.array([[0.72, 0.80], [1.52, 2.98]])

        ab, rem = reallocate_small_gaps(area_bound, remaining, times_50hz)

        np.testing.assert_allclose(ab, [[0.0, 1.50]])
        np.testing.assert_allclose(rem, [[1.52, 2.98]])

    def test_gap_at_recording_start_joins_single_neighbour(self, times_50hz):
        """A 0.08 s Remaining episode at the start is taken over by the following AreaBound."""
        remaining = np.array([[0.0, 0.08]])
        area_bound = np.array([[0.10, 0.80]])

        ab, rem = reallocate_small_gaps(area_bound, remaining, times_50hz)

        np.testing.assert_allclose(ab, [[0.0, 0.80]])
        assert len(rem) == 0

    def test_previous_neighbour_is_preferred(self, times_50hz):
        """A small gap whose later neighbour is too short extends the earlier neighbour."""
        area_bound = np.array([[0.0, 0.60], [0.72, 1.00]])
        remaining = np.array([[0.62, 0.70]])

        ab, rem = reallocate_small_gaps(area_bound, remaining, times_50hz,
                                        small_thresholds=(0.25,), merging_thresholds=(0.5,))

        np.testing.assert_allclose(ab, [[0.0, 0.70], [0.72, 1.00]])
        assert len(rem) == 0

    def test_long_episodes_are_untouched(self, times_50hz):
        """Episodes longer than every small threshold are never reallocated."""
        area_bound = np.array([[0.0, 0.70], [1.50, 2.50]])
        remaining = np.array([[0.72, 1.48]])

        ab, rem = reallocate_small_gaps(area_bound, remaining, times_50hz)

        np.testing.assert_allclose(ab, area_bound)
        np.testing.assert_allclose(rem, remaining)

    def test_short_neighbours_do_not_absorb(self, times_50hz):
        """In the first pass, neighbours shorter than 0.5 s cannot absorb a gap."""
        area_bound = np.array([[0.0, 0.30], [0.42, 0.70]])
        remaining = np.array([[0.32, 0.40]])

        ab, rem = reallocate_small_gaps(area_bound, remaining, times_50hz,
                                        small_thresholds=(0.25,), merging_thresholds=(0.5,))

        np.testing.assert_allclose(ab, area_bound)
        np.testing.assert_allclose(rem, remaining)


class TestNormalizeIntervals:
    """Tests for interval normalisation before saving."""

    def test_rounds_sorts_and_merges(self):
        """Intervals are rounded to ms, sorted, and merged when they share a millisecond."""
        result = normalize_intervals([[5.0, 6.0], [1.00049, 2.0004], [2.0001, 3.0], [3.5, 4.0]])
        np.testing.assert_allclose(result, [[1.0, 3.0], [3.5, 4.0], [5.0, 6.0]])

    def test_empty(self):
        """Empty input gives an empty (0, 2) array."""
        assert normalize_intervals([]).shape == (0, 2)

    def test_idempotent(self):
        """Normalising twice changes nothing."""
        once = normalize_intervals([[0.1234, 0.5678], [0.5, 0.9], [2.0, 2.5]])
        np.testing.assert_array_equal(normalize_intervals(once), once)

    def test_sub_millisecond_interval_is_dropped(self):
        """An interval that rounds to zero length is removed, so the result stays valid."""
        result = normalize_intervals([[1.0, 2.0], [3.0001, 3.0004], [4.0, 5.0]])

        np.testing.assert_allclose(result, [[1.0, 2.0], [4.0, 5.0]])
        check_episodes(result)

    def test_only_degenerate_intervals(self):
        assert normalize_intervals([[0.5, 0.5]]).shape == (0, 2)


class TestChecks:
    """Tests for episode invariant checks and summaries."""

    def test_start_after_end_raises(self):
        """An episode with start >= end is an invariant violation."""
        with pytest.raises(InvariantViolation):
            check_episodes(np.array([[1.0, 2.0], [3.0, 3.0]]), "Grooming")

    def test_valid_episodes_pass(self):
        """Well-formed episodes pass silently."""
        check_episodes(np.array([[1.0, 2.0], [3.0, 3.5]]))

    def test_summary_counts_and_durations(self):
        """episode_summary reports count and total duration per behaviour name."""
        summary = episode_summary({Behaviour.GROOMING: np.array([[1.0, 2.0], [3.0, 3.5]]),
                                   Behaviour.FLIGHT: np.zeros((0, 2))})
        assert summary['Grooming'] == {'count': 2, 'total_duration': pytest.approx(1.5)}
        assert summary['Flight']['count'] == 0
