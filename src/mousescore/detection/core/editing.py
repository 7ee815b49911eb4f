"""
Manual episode corrections.

Every operation takes the episode dictionary of a session and returns a new
one; nothing is modified in place. After an edit, refresh the masks with
pipeline.update_masks and, if needed, recompute the lower-priority stages
with pipeline.rerun_algorithm.

Resizing an episode keeps the timeline consistent:
    - shrinking the start: the episode that ended just before it is extended
      up to the frame before the new start
    - shrinking the end: the episode that started just after it is moved back
      to the frame after the new end
    - growing the start / end: episodes fully covered by the extension are
      deleted, episodes straddling the new bound are cut at it
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from mousescore.detection.core.behaviours import Behaviour
from mousescore.detection.core.episodes import TIME_TOLERANCE, empty_episodes

logger = logging.getLogger(__name__)

Episodes = Dict[Behaviour, np.ndarray]


def _copy(episodes: Episodes) -> Dict[Behaviour, np.ndarray]:
    return {b: np.asarray(v, dtype=float).reshape(-1, 2).copy() for b, v in episodes.items()}


def _sorted(values: np.ndarray) -> np.ndarray:
    return values[np.argsort(values[:, 0], kind='stable')] if len(values) else values


def _frame_before(times: np.ndarray, t: float) -> Optional[float]:
    earlier = times[times < t - TIME_TOLERANCE]
    return float(earlier[-1]) if earlier.size else None


def _frame_after(times: np.ndarray, t: float) -> Optional[float]:
    later = times[times > t + TIME_TOLERANCE]
    return float(later[0]) if later.size else None


def _same(a: float, b: float) -> bool:
    return abs(a - b) <= TIME_TOLERANCE


def insert_episode(episodes: Episodes, behaviour: Behaviour,
                   new_range: Sequence[float]) -> Episodes:
    """Add an episode (bounds are sorted)."""
    start, end = sorted(float(t) for t in new_range)
    if end <= start:
        raise ValueError(f"Episode must have start < end, got {new_range}")
    result = _copy(episodes)
    values = result.get(behaviour, empty_episodes())
    result[behaviour] = _sorted(np.vstack([values, [[start, end]]]))
    logger.info(f"Inserted {behaviour.value} episode [{start:.3f}, {end:.3f}]")
    return result


def delete_episode(episodes: Episodes, behaviour: Behaviour, index: int) -> Episodes:
    result = _copy(episodes)
    values = result[behaviour]
    removed = values[index]
    result[behaviour] = np.delete(values, index, axis=0)
    logger.info(f"Deleted {behaviour.value} episode [{removed[0]:.3f}, {removed[1]:.3f}]")
    return result


def reclassify_episode(episodes: Episodes, source: Behaviour, index: int,
                       target: Behaviour) -> Episodes:
    """Move one episode to another behaviour (e.g. Grooming -> OpenRearing)."""
    moved = np.asarray(episodes[source], dtype=float).reshape(-1, 2)[index]
    result = delete_episode(episodes, source, index)
    return insert_episode(result, target, moved)


def reconcile_adjacent(episodes: Episodes, behaviour: Behaviour, index: int,
                       new_range: Optional[Sequence[float]], times: np.ndarray) -> Episodes:
    """Resize (or, with new_range None, delete) an episode and fix its neighbours.

    Args:
        episodes: Current episodes per behaviour
        behaviour: Behaviour of the edited episode
        index: Row of the edited episode
        new_range: New [start, end]; None deletes the episode
        times: Frame times

    Returns:
        Updated episode dictionary
    """
    if new_range is None:
        return delete_episode(episodes, behaviour, index)

    times = np.asarray(times, dtype=float)
    result = _copy(episodes)
    orig_start, orig_end = result[behaviour][index]
    new_start, new_end = sorted(float(t) for t in new_range)
    if new_end <= new_start:
        raise ValueError(f"Episode must have start < end, got {new_range}")
    result[behaviour][index] = [new_start, new_end]

    def others():
        for b, values in result.items():
            for i in range(len(values)):
                if b is behaviour and i == index:
                    continue
                yield b, i

    if new_start > orig_start + TIME_TOLERANCE:
        previous = _frame_before(times, orig_start)
        fill_to = _frame_before(times, new_start)
        if previous is not None and fill_to is not None:
            for b, i in others():
                if _same(result[b][i, 1], previous):
                    result[b][i, 1] = fill_to
                    break
    elif new_start < orig_start - TIME_TOLERANCE:
        cut_at = _frame_before(times, new_start)
        drop = {b: [] for b in result}
        for b, i in others():
            start, end = result[b][i]
            if start >= new_start - TIME_TOLERANCE and end < orig_start - TIME_TOLERANCE:
                drop[b].append(i)
            elif start < new_start - TIME_TOLERANCE and end > new_start - TIME_TOLERANCE:
                if cut_at is None or cut_at <= start:
                    drop[b].append(i)
                else:
                    result[b][i, 1] = cut_at
        result = _drop(result, drop, behaviour, index)
        index = _track_index(result[behaviour], new_start, new_end)

    if new_end < orig_end - TIME_TOLERANCE:
        following = _frame_after(times, orig_end)
        fill_from = _frame_after(times, new_end)
        if following is not None and fill_from is not None:
            for b, i in others():
                if _same(result[b][i, 0], following):
                    result[b][i, 0] = fill_from
                    break
    elif new_end > orig_end + TIME_TOLERANCE:
        cut_at = _frame_after(times, new_end)
        drop = {b: [] for b in result}
        for b, i in others():
            start, end = result[b][i]
            if start > orig_end + TIME_TOLERANCE and end <= new_end + TIME_TOLERANCE:
                drop[b].append(i)
            elif start < new_end + TIME_TOLERANCE and end > new_end + TIME_TOLERANCE:
                if cut_at is None or cut_at >= end:
                    drop[b].append(i)
                else:
                    result[b][i, 0] = cut_at
        result = _drop(result, drop, behaviour, index)

    logger.info(f"Changed {behaviour.value} episode [{orig_start:.3f}, {orig_end:.3f}] "
                f"-> [{new_start:.3f}, {new_end:.3f}]")
    return {b: _sorted(v) for b, v in result.items()}


def _drop(result: Episodes, drop: Dict[Behaviour, list], behaviour: Behaviour,
          index: int) -> Episodes:
    for b, rows in drop.items():
        rows = [r for r in rows if not (b is behaviour and r == index)]
        if rows:
            result[b] = np.delete(result[b], rows, axis=0)
    return result


def _track_index(values: np.ndarray, start: float, end: float) -> int:
    for i, (s, e) in enumerate(values):
        if _same(s, start) and _same(e, end):
            return i
    raise ValueError("Edited episode lost during reconciliation")
