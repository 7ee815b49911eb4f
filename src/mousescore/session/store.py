"""
Behaviour file persistence.

<base>_behaviour.json holds everything needed to resume or audit a scored
session:

    {
        "session": "20240312_M0412_OF_Day1",
        "paradigm": "OF",
        "exclusion_ranges": [[12.5, 14.0]],
        "parameters": {... full DetectionParameters ..., "cross_checked": true},
        "detection_to_plot": ["Grooming", "Rearing", ...],
        "processing_history": [{"date": ..., "user": ..., "version": ...}],
        "episodes": {"Grooming": [[3.2, 5.87], ...], ...}
    }

Interval lists (episodes and exclusion ranges) are normalised on write:
rounded to milliseconds, sorted, and merged where they share a millisecond.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from mousescore.config import FilePatterns, OUTPUT_DIR
from mousescore.detection.core.behaviours import Behaviour, Paradigm
from mousescore.detection.core.episodes import empty_episodes, normalize_intervals
from mousescore.detection.core.parameters import DetectionParameters
from mousescore.detection.core.pipeline import SessionContext
from mousescore.utils.common import history_entry

logger = logging.getLogger(__name__)


@dataclass
class BehaviourRecord:
    """Contents of a behaviour file."""
    session: str
    paradigm: Optional[str]
    parameters: DetectionParameters
    episodes: Dict[Behaviour, np.ndarray]
    exclusion_ranges: np.ndarray = field(default_factory=empty_episodes)
    detection_to_plot: List[str] = field(default_factory=list)
    processing_history: List[dict] = field(default_factory=list)
    cross_checked: bool = False

    def missing_behaviours(self, paradigm: Paradigm) -> List[Behaviour]:
        """Behaviours of the paradigm absent from the file (computed fresh)."""
        return [b for b in paradigm.behaviours() if b not in self.episodes]


def behaviour_path(session: str, folder: Path) -> Path:
    return Path(folder) / f"{session}{FilePatterns.BEHAVIOUR_SUFFIX}"


def _intervals_to_list(intervals) -> List[List[float]]:
    return [[float(s), float(e)] for s, e in normalize_intervals(intervals)]


def save_session(ctx: SessionContext, output_dir: Optional[Path] = None) -> Path:
    """
    Write the behaviour file of a session.

    Args:
        ctx: Scored session
        output_dir: Target folder (default: configured output dir, else the
            folder of the input files)

    Returns:
        Path of the written file
    """
    folder = Path(output_dir or OUTPUT_DIR or ctx.source_dir or Path.cwd())
    folder.mkdir(parents=True, exist_ok=True)
    path = behaviour_path(ctx.name, folder)

    history = list(ctx.processing_history)
    if not history and path.exists():
        history = load_behaviour_file(path).processing_history
    history.append(history_entry())
    ctx.processing_history = history

    parameters = ctx.parameters.to_dict()
    parameters['cross_checked'] = True

    data = {
        'session': ctx.name,
        'paradigm': ctx.paradigm.value,
        'exclusion_ranges': _intervals_to_list(ctx.exclusion_ranges),
        'parameters': parameters,
        'detection_to_plot': [b.value for b in ctx.behaviours],
        'processing_history': history,
        'episodes': {b.value: _intervals_to_list(v) for b, v in ctx.episodes.items()},
    }

    with open(path, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info(f"Saved {path.name} ({sum(len(v) for v in data['episodes'].values())} episodes)")
    return path


def load_behaviour_file(path: Path) -> BehaviourRecord:
    """Read a behaviour file. Unknown behaviour names are skipped with a warning."""
    path = Path(path)
    with open(path) as f:
        data = json.load(f)

    raw_parameters = dict(data.get('parameters', {}))
    cross_checked = bool(raw_parameters.pop('cross_checked', False))

    episodes = {}
    for name, values in data.get('episodes', {}).items():
        try:
            behaviour = Behaviour.from_name(name)
        except ValueError:
            logger.warning(f"{path.name}: skipping unknown behaviour '{name}'")
            continue
        episodes[behaviour] = np.asarray(values, dtype=float).reshape(-1, 2)

    return BehaviourRecord(
        session=data.get('session', path.name[:-len(FilePatterns.BEHAVIOUR_SUFFIX)]),
        paradigm=data.get('paradigm'),
        parameters=DetectionParameters.from_dict(raw_parameters),
        episodes=episodes,
        exclusion_ranges=normalize_intervals(data.get('exclusion_ranges', [])),
        detection_to_plot=list(data.get('detection_to_plot', [])),
        processing_history=list(data.get('processing_history', [])),
        cross_checked=cross_checked,
    )


def apply_saved_session(ctx: SessionContext, record: BehaviourRecord) -> SessionContext:
    """Restore a saved session into a freshly loaded context (reprocessing)."""
    ctx.parameters = record.parameters
    ctx.episodes = {b: v for b, v in record.episodes.items() if b in ctx.behaviours}
    ctx.exclusion_ranges = record.exclusion_ranges
    ctx.processing_history = record.processing_history
    ctx.reprocessing = True

    missing = record.missing_behaviours(ctx.paradigm)
    if missing:
        logger.info(f"{ctx.name}: saved file lacks {[b.value for b in missing]}; "
                    f"these will be computed")
    return ctx


# =============================================================================
# EXCLUSION RANGES
# =============================================================================

def add_exclusion_range(ranges: np.ndarray, new_range: Sequence[float]) -> np.ndarray:
    start, end = sorted(float(t) for t in new_range)
    values = np.asarray(ranges, dtype=float).reshape(-1, 2)
    return normalize_intervals(np.vstack([values, [[start, end]]]))


def remove_exclusion_range(ranges: np.ndarray, index: int) -> np.ndarray:
    values = np.asarray(ranges, dtype=float).reshape(-1, 2)
    return normalize_intervals(np.delete(values, index, axis=0))


def update_exclusion_range(ranges: np.ndarray, index: int,
                           new_range: Sequence[float]) -> np.ndarray:
    values = np.asarray(ranges, dtype=float).reshape(-1, 2).copy()
    values[index] = sorted(float(t) for t in new_range)
    return normalize_intervals(values)
