"""
Shared fixtures: synthetic sessions with a straight, rigid mouse.

The mouse faces +x. Offsets (px, before scaling) from the contour centroid:
snout +45, ear midpoint +30, tail base -30; the body contour is an ellipse of
half-axes 40 x 16, so TotalLength = 6 cm and the mid-body width = 3.2 cm at
10 px/cm (stretch ratio 1.875).
"""

from typing import Optional

import numpy as np
import pandas as pd
import pytest

from mousescore.config import BodyParts
from mousescore.detection.core.tracking import (
    ArenaGeometry, ArenaShape, Track, TrackingData, invalidate_positions,
)

FRAME_SIZE = (480, 640)
ARENA = (40, 440, 40, 600)  # rows, cols of the floor mask

BODY_OFFSETS = {
    'Snout': (45, 0),
    'EarLeft': (30, -8),
    'EarRight': (30, 8),
    'ForePawLeft': (25, -10),
    'ForePawRight': (25, 10),
    'HindPawLeft': (-20, -10),
    'HindPawRight': (-20, 10),
    'TailBase': (-30, 0),
    'TailQuarterAnt': (-40, 0),
    'TailMiddle': (-50, 0),
    'TailQuarterPost': (-60, 0),
    'TailEnd': (-70, 0),
}
TUCKED_SNOUT = (31, 0)


def floor_mask(frame_size=FRAME_SIZE, arena=ARENA) -> np.ndarray:
    mask = np.zeros(frame_size, dtype=bool)
    r0, r1, c0, c1 = arena
    mask[r0:r1, c0:c1] = True
    return mask


def ellipse_contour(center, scale: float = 1.0, n_points: int = 360) -> np.ndarray:
    angles = np.deg2rad(np.arange(n_points) * 360.0 / n_points)
    return np.column_stack([center[0] + 40 * scale * np.cos(angles),
                            center[1] + 16 * scale * np.sin(angles)])


def body_positions(centers: np.ndarray, scale: float = 1.0,
                   tucked: Optional[np.ndarray] = None) -> dict:
    """Per-part (n, 2) positions for a rigid mouse following `centers`."""
    n = len(centers)
    tucked = np.zeros(n, dtype=bool) if tucked is None else tucked
    positions = {}
    for part, offset in BODY_OFFSETS.items():
        offsets = np.tile(np.asarray(offset, dtype=float), (n, 1))
        if part == 'Snout':
            offsets[tucked] = TUCKED_SNOUT
        positions[part] = centers + scale * offsets
    return positions


def build_tracking(centers: np.ndarray, fps: float = 30.0, scale: float = 1.0,
                   px_per_cm: float = 10.0, motion: Optional[np.ndarray] = None,
                   tucked: Optional[np.ndarray] = None, paw_score: float = 0.5,
                   geometry: Optional[ArenaGeometry] = None,
                   overrides: Optional[dict] = None) -> TrackingData:
    """TrackingData for a rigid mouse; `overrides` replaces part positions."""
    centers = np.asarray(centers, dtype=float)
    n = len(centers)
    positions = body_positions(centers, scale, tucked)
    positions.update(overrides or {})

    tracks = {}
    for part, xy in positions.items():
        score = np.full(n, paw_score if part in BodyParts.HIND_PAWS else 0.999)
        tracks[part] = Track(part, invalidate_positions(xy, score), score)

    return TrackingData(
        times=np.arange(n) / fps,
        fps=fps,
        tracks=tracks,
        center=centers,
        contours=[ellipse_contour(c, scale) for c in centers],
        motion=np.full(n, 5.0) if motion is None else np.asarray(motion, dtype=float),
        geometry=geometry or ArenaGeometry(px_per_cm, floor_mask(), ArenaShape.RECTANGLE),
    )


def jittered(n: int, center=(320.0, 240.0), sigma: float = 0.5, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return np.asarray(center) + rng.normal(0, sigma, size=(n, 2))


def dlc_frame(positions: dict, scores: dict) -> pd.DataFrame:
    """DeepLabCut-style table with the 3-row (scorer, bodyparts, coords) header."""
    columns, data = [], []
    for part, xy in positions.items():
        for coord, values in (('x', xy[:, 0]), ('y', xy[:, 1]), ('likelihood', scores[part])):
            columns.append(('DLC_resnet50', part, coord))
            data.append(values)
    index = pd.MultiIndex.from_tuples(columns, names=['scorer', 'bodyparts', 'coords'])
    return pd.DataFrame(np.column_stack(data), columns=index)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def stationary_tracking():
    """Still mouse in the middle of the arena, 20 s at 30 fps."""
    return build_tracking(jittered(600))


def scripted_session(scale: float = 1.0) -> TrackingData:
    """30 s open-field session: freezing, grooming, rearing, flight, then idle."""
    n = 900
    centers = jittered(n, seed=1)
    motion = np.full(n, 5.0)
    tucked = np.zeros(n, dtype=bool)

    motion[0:150] = 0.2                         # freezing
    tucked[150:300] = True                      # grooming
    centers[300:450] = jittered(150, center=(570.0, 240.0), seed=2)  # rearing at the wall
    angles = 0.1 * np.arange(150)               # flight: 10 px/frame on a circle
    centers[450:600] = np.column_stack([320 + 100 * np.cos(angles),
                                        240 + 100 * np.sin(angles)])
    motion[450:600] = 8.0
    return build_tracking(centers, scale=scale, motion=motion, tucked=tucked)


@pytest.fixture
def scripted_tracking():
    return scripted_session()


@pytest.fixture
def write_session(tmp_path):
    """Write the input files of a session to tmp_path and return the DLC path."""
    def _write(base: str = "20240312_M0412_OF_Day1", n: int = 300, fps: float = 30.0,
               movie: bool = True, tracking: bool = True, extra: Optional[dict] = None,
               drop: tuple = ()):
        centers = jittered(n)
        positions = body_positions(centers)
        scores = {p: np.full(n, 0.5 if p in BodyParts.HIND_PAWS else 0.999) for p in positions}
        dlc_path = tmp_path / f"{base}DLC_resnet50_MouseScoreJan1shuffle1_100000.csv"
        dlc_frame(positions, scores).to_csv(dlc_path)

        contours = [ellipse_contour(c) for c in centers]
        offsets = np.concatenate([[0], np.cumsum([len(c) for c in contours])])
        arrays = {
            'motion': np.full(n, 5.0),
            'center': centers,
            'contour_points': np.vstack(contours),
            'contour_offsets': offsets,
            'times': np.arange(n) / fps,
            'mask': floor_mask(),
            'shape': np.array('rectangle'),
            'calibration_line': np.array([[100.0, 100.0], [300.0, 100.0]]),
            'calibration_length': np.array(20.0),
            'frame_rate': np.array(fps),
        }
        arrays.update(extra or {})
        for key in drop:
            arrays.pop(key, None)
        if tracking:
            np.savez(tmp_path / f"{base}_tracking.npz", **arrays)
        if movie:
            (tmp_path / f"{base}.avi").write_bytes(b"")
        return dlc_path
    return _write
