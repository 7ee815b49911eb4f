"""
Tracking inputs: body-part tracks and arena geometry.

A Track is one DLC body part (x, y, likelihood per frame). Positions that are
unreliable are set to NaN once, here, before anything else sees them; the
rest of the pipeline only ever deals with NaN gaps.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from mousescore.config import TrackingLimits


@dataclass
class Track:
    """Per-frame position and DLC likelihood of one body part."""
    name: str
    xy: np.ndarray      # (n, 2) float, NaN where invalid
    score: np.ndarray   # (n,) float

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, bodypart: str) -> "Track":
        """Build a validated track from a flattened DLC table."""
        xy = df[[f'{bodypart}_x', f'{bodypart}_y']].to_numpy(dtype=float)
        score = df[f'{bodypart}_likelihood'].to_numpy(dtype=float)
        return cls(bodypart, invalidate_positions(xy, score), score)

    def __len__(self) -> int:
        return len(self.score)

    def truncate(self, n_frames: int) -> "Track":
        return Track(self.name, self.xy[:n_frames], self.score[:n_frames])


def invalidate_positions(xy: np.ndarray, score: np.ndarray) -> np.ndarray:
    """Set low-confidence or border positions to NaN.

    A position is dropped when its likelihood is below MIN_SCORE, when either
    coordinate is <= MIN_COORD, or when it touches the far border of the
    640x480 tracking frame.
    """
    xy = np.array(xy, dtype=float, copy=True)
    with np.errstate(invalid='ignore'):
        bad = (
            (score < TrackingLimits.MIN_SCORE)
            | np.any(xy <= TrackingLimits.MIN_COORD, axis=1)
            | (xy[:, 1] >= TrackingLimits.MAX_Y)
            | (xy[:, 0] >= TrackingLimits.MAX_X)
        )
    xy[bad] = np.nan
    return xy


class ArenaShape(Enum):
    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    POLYGON = "polygon"

    @classmethod
    def parse(cls, value: str) -> "ArenaShape":
        value = str(value).strip().lower()
        for shape in cls:
            if shape.value == value:
                return shape
        # Unknown shapes are handled like polygons (square structuring element)
        return cls.POLYGON


@dataclass
class ArenaGeometry:
    """Calibration and arena outline for one session."""
    px_per_cm: float
    mask: np.ndarray                          # (H, W) bool floor mask
    shape: ArenaShape = ArenaShape.RECTANGLE
    closed_arms: Optional[List[np.ndarray]] = None    # EPM: two (k, 2) polygons
    wall_vertices: Optional[np.ndarray] = None        # EPM: (4, 2) outer corners
    middle_walls: Optional[List[np.ndarray]] = None   # LDB: two (k, 2) polygons

    @property
    def frame_size(self) -> Tuple[int, int]:
        """(height, width) of the tracking frame."""
        return self.mask.shape[0], self.mask.shape[1]


@dataclass
class TrackingData:
    """Everything tracked for one session, aligned on the same frames."""
    times: np.ndarray                     # (n,) seconds
    fps: float
    tracks: Dict[str, Track]
    center: np.ndarray                    # (n, 2) contour centroid
    contours: List[np.ndarray]            # n arrays of (k, 2) contour points
    motion: np.ndarray                    # (n,) raw motion measure
    geometry: ArenaGeometry

    @property
    def n_frames(self) -> int:
        return len(self.times)

    def score(self, bodypart: str) -> np.ndarray:
        return self.tracks[bodypart].score

    def xy(self, bodypart: str) -> np.ndarray:
        return self.tracks[bodypart].xy
