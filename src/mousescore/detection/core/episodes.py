"""
Episode resolution: boolean frame masks <-> [start, end] time intervals.

ALGORITHM SUMMARY
=================
get_ranges:
    1. Find maximal runs of True frames.
    2. Left-to-right, merge each run into the previous episode when the gap
       between them (start - previous end, seconds) is within merge_gap.
    3. Drop episodes shorter than min_duration and zero-length episodes.

reallocate_small_gaps (AreaBound / Remaining clean-up):
    Each pass pairs a "small" duration with a "merging" duration. A small
    Remaining episode squeezed between two AreaBound episodes that both last
    at least the merging duration is absorbed (the two AreaBound episodes
    become one), and vice versa. Small episodes with a single neighbour of the
    other kind are absorbed by that neighbour, preferring the earlier one.

Boundary conventions (strict=False / strict=True):
    merge when gap <= merge_gap   /  gap < merge_gap
    drop  when dur  <  min        /  dur <= min

All episode arrays are float (k, 2) in seconds, sorted by start.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from mousescore.errors import InvariantViolation

logger = logging.getLogger(__name__)

# Tolerance when matching episode bounds to frame times (bounds are stored in ms)
TIME_TOLERANCE = 5e-4


def empty_episodes() -> np.ndarray:
    return np.zeros((0, 2), dtype=float)


def find_runs(mask: np.ndarray) -> List[Tuple[int, int]]:
    """Inclusive (first, last) frame indices of every run of True."""
    mask = np.asarray(mask, dtype=bool)
    if mask.size == 0:
        return []
    padded = np.concatenate([[False], mask, [False]])
    edges = np.diff(padded.astype(np.int8))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1) - 1
    return list(zip(starts.tolist(), ends.tolist()))


def get_ranges(mask: np.ndarray, times: np.ndarray, merge_gap: Optional[float],
               min_duration: float, strict: bool = False) -> np.ndarray:
    """Convert a per-frame mask into merged, filtered episodes.

    Args:
        mask: (n,) bool
        times: (n,) frame times in seconds
        merge_gap: Maximum gap bridged between consecutive runs; None disables merging
        min_duration: Minimum episode duration
        strict: Use strict gap and non-strict duration comparisons (see module doc)

    Returns:
        (k, 2) array of [start, end] times
    """
    times = np.asarray(times, dtype=float)
    episodes: List[List[float]] = []
    for first, last in find_runs(mask):
        start, end = times[first], times[last]
        if episodes and merge_gap is not None:
            gap = start - episodes[-1][1]
            if (gap < merge_gap) if strict else (gap <= merge_gap):
                episodes[-1][1] = end
                continue
        episodes.append([start, end])

    kept = []
    for start, end in episodes:
        duration = end - start
        too_short = (duration <= min_duration) if strict else (duration < min_duration)
        if too_short or duration <= 0:
            continue
        kept.append([start, end])
    return np.array(kept, dtype=float).reshape(-1, 2)


def frame_span(times: np.ndarray, episode: Sequence[float]) -> Tuple[int, int]:
    """Indices of the first and last frame inside [start, end] (inclusive)."""
    first = int(np.searchsorted(times, episode[0] - TIME_TOLERANCE, side='left'))
    last = int(np.searchsorted(times, episode[1] + TIME_TOLERANCE, side='right')) - 1
    return first, last


def episodes_to_mask(episodes: np.ndarray, times: np.ndarray) -> np.ndarray:
    """Mark every frame whose time lies within an episode."""
    times = np.asarray(times, dtype=float)
    mask = np.zeros(len(times), dtype=bool)
    for episode in np.asarray(episodes, dtype=float).reshape(-1, 2):
        first, last = frame_span(times, episode)
        if last >= first:
            mask[first:last + 1] = True
    return mask


def check_episodes(episodes: np.ndarray, name: str = "") -> None:
    """Raise InvariantViolation if an episode does not satisfy start < end."""
    episodes = np.asarray(episodes, dtype=float).reshape(-1, 2)
    bad = episodes[:, 0] >= episodes[:, 1]
    if bad.any():
        raise InvariantViolation(
            f"{name or 'Episode'} has {bad.sum()} interval(s) with start >= end: "
            f"{episodes[bad][:3].tolist()}")


def normalize_intervals(intervals) -> np.ndarray:
    """Round to milliseconds, sort by start and merge intervals sharing a millisecond.

    Intervals that collapse to zero length after rounding are dropped.

    Used for every interval list that is written to disk (episodes and
    exclusion ranges).
    """
    values = np.asarray(intervals, dtype=float).reshape(-1, 2)
    if len(values) == 0:
        return empty_episodes()
    ms = np.round(values * 1000).astype(np.int64)
    ms = ms[ms[:, 0] < ms[:, 1]]
    if len(ms) == 0:
        return empty_episodes()
    ms = ms[np.argsort(ms[:, 0], kind='stable')]

    merged = [ms[0].tolist()]
    for start, end in ms[1:].tolist():
        if start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return np.array(merged, dtype=float) / 1000


def _adjacent_before(episodes: List[Optional[List[float]]], target: float) -> Optional[int]:
    for i, episode in enumerate(episodes):
        if episode is not None and abs(episode[1] - target) <= TIME_TOLERANCE:
            return i
    return None


def _adjacent_after(episodes: List[Optional[List[float]]], target: float) -> Optional[int]:
    for i, episode in enumerate(episodes):
        if episode is not None and abs(episode[0] - target) <= TIME_TOLERANCE:
            return i
    return None


def _duration(episode: List[float]) -> float:
    return episode[1] - episode[0]


def _absorb_between(small: List[Optional[List[float]]], large: List[Optional[List[float]]],
                    times: np.ndarray, small_limit: float, merge_limit: float) -> int:
    """Absorb small episodes enclosed by two long episodes of the other kind."""
    absorbed = 0
    for i, episode in enumerate(small):
        if episode is None or _duration(episode) > small_limit:
            continue
        first, last = frame_span(times, episode)
        if first == 0 or last >= len(times) - 1:
            continue
        before = _adjacent_before(large, times[first - 1])
        after = _adjacent_after(large, times[last + 1])
        if before is None or after is None or before == after:
            continue
        if _duration(large[before]) >= merge_limit and _duration(large[after]) >= merge_limit:
            large[before][1] = large[after][1]
            large[after] = None
            small[i] = None
            absorbed += 1
    return absorbed


def _absorb_one_sided(small: List[Optional[List[float]]], large: List[Optional[List[float]]],
                      times: np.ndarray, small_limit: float, merge_limit: float) -> int:
    """Absorb small episodes into a single long neighbour of the other kind."""
    absorbed = 0
    for i, episode in enumerate(small):
        if episode is None or _duration(episode) > small_limit:
            continue
        first, last = frame_span(times, episode)
        before = _adjacent_before(large, times[first - 1]) if first > 0 else None
        if before is not None and _duration(large[before]) >= merge_limit:
            large[before][1] = episode[1]
            small[i] = None
            absorbed += 1
            continue
        after = _adjacent_after(large, times[last + 1]) if last < len(times) - 1 else None
        if after is not None and _duration(large[after]) >= merge_limit:
            large[after][0] = episode[0]
            small[i] = None
            absorbed += 1
    return absorbed


def reallocate_small_gaps(area_bound: np.ndarray, remaining: np.ndarray, times: np.ndarray,
                          small_thresholds: Sequence[float] = (0.25, 0.1),
                          merging_thresholds: Sequence[float] = (0.5, np.inf)
                          ) -> Tuple[np.ndarray, np.ndarray]:
    """Clean up fragmented AreaBound / Remaining episodes.

    Args:
        area_bound, remaining: (k, 2) episodes
        times: Frame times
        small_thresholds: Per pass, longest episode considered for absorption
        merging_thresholds: Per pass, shortest neighbour allowed to absorb

    Returns:
        (area_bound, remaining) after all passes
    """
    times = np.asarray(times, dtype=float)
    ab = [list(e) for e in np.asarray(area_bound, dtype=float).reshape(-1, 2)]
    rem = [list(e) for e in np.asarray(remaining, dtype=float).reshape(-1, 2)]

    for small_limit, merge_limit in zip(small_thresholds, merging_thresholds):
        counts = (
            _absorb_between(rem, ab, times, small_limit, merge_limit),
            _absorb_between(ab, rem, times, small_limit, merge_limit),
            _absorb_one_sided(rem, ab, times, small_limit, merge_limit),
            _absorb_one_sided(ab, rem, times, small_limit, merge_limit),
        )
        logger.debug(f"Reallocation pass (small={small_limit}, merging={merge_limit}): "
                     f"{sum(counts)} episode(s) absorbed")

    return _finish(ab), _finish(rem)


def _finish(episodes: List[Optional[List[float]]]) -> np.ndarray:
    kept = [e for e in episodes if e is not None]
    kept.sort(key=lambda e: e[0])
    return np.array(kept, dtype=float).reshape(-1, 2)


def episode_summary(episodes: Dict) -> Dict[str, Dict[str, float]]:
    """Count and total duration per behaviour, keyed by display name."""
    summary = {}
    for behaviour, values in episodes.items():
        values = np.asarray(values, dtype=float).reshape(-1, 2)
        name = getattr(behaviour, 'value', str(behaviour))
        summary[name] = {
            'count': int(len(values)),
            'total_duration': float(np.sum(values[:, 1] - values[:, 0])) if len(values) else 0.0,
        }
    return summary
