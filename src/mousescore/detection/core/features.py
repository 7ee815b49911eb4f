"""
Per-frame kinematic and postural features.

ALGORITHM SUMMARY
=================
1. Motion: gaussian-smoothed raw motion measure.
2. Whole-body Speed / StepSpeed from the median-filtered contour centroid:
       Speed[S]     = path length over frames S-W..S / ((W+1)/fps)
       StepSpeed[S] = |p[S] - p[S-W]| / ((W+1)/fps)
   with W = round(fps * step_base). Both are NaN for the first W+1 frames.
   Tail body parts get the same speeds without median filtering.
3. Body-length distances from the ear midpoint (MidEars): to the centroid,
   the snout and the tail base. TotalLength = TailBase-Centroid +
   MidEars-Centroid.
4. Hind-paw extension: signed distance of each hind paw from the tail base
   along the body axis (positive towards the head).
5. Mid-body: body bend angle at the centroid and body width across the
   contour at the bisector of that angle (one contour scan per frame).
6. Grooming score: gaussian-smoothed sqrt(MidEars-Snout) * MidEars-TailBase,
   small when the head is tucked under the body.
7. TailMotion (RGB only): TailMiddle speed minus TailBase speed,
   interpolated over missing frames.
8. AreaExplored: minimum-area bounding box of the centroid over a sliding
   window, area = max(a, b) * a * b / pxcm^3.

KEY PARAMETERS
==============
| Parameter                     | Value | Description                          |
|-------------------------------|-------|--------------------------------------|
| speed.step_base               | 0.3 s | Displacement window for speeds       |
| speed.smoothing               | 150   | Gaussian window on body distances    |
| speed.center_median_window    | 10    | Median filter on the centroid        |
| grooming.score_window         | 40    | Gaussian window on the grooming score|
| area_bound.window             | 3 s   | Bounding-box window for AreaExplored |

OUTPUT FORMAT
=============
FeatureSeries with one (n,) float array per feature; NaN where undefined.

KNOWN LIMITATIONS
=================
- Mid-body width needs a closed body contour and a reliable tail base
  (likelihood > 0.9); other frames are NaN.
- Collinear or stationary centroid windows give NaN AreaExplored.
"""

import logging
import math
from dataclasses import dataclass, field
from multiprocessing import Pool
from pathlib import Path
from typing import Dict, Optional, Tuple

import cv2
import numpy as np
import pandas as pd

from mousescore.config import BodyParts
from mousescore.errors import DegenerateGeometryError
from mousescore.detection.core.parameters import DetectionParameters
from mousescore.detection.core.tracking import TrackingData
from mousescore.utils.smoothing import (
    gaussian_smooth, moving_median, interpolate_gaps,
)

logger = logging.getLogger(__name__)

# Likelihood needed on a hind paw and the tail base for an extension value
HIND_PAW_MIN_SCORE = 0.99
# Likelihood needed on the tail base for the mid-body scan
MID_BODY_MIN_SCORE = 0.9


@dataclass
class FeatureSeries:
    """All per-frame features of one session."""
    motion: np.ndarray
    speed: np.ndarray
    step_speed: np.ndarray
    mid_ears: np.ndarray                  # (n, 2)
    mid_ears_center: np.ndarray
    mid_ears_snout: np.ndarray
    mid_ears_tail_base: np.ndarray
    raw_total_length: np.ndarray          # cm, unsmoothed
    total_length: np.ndarray              # cm
    product: np.ndarray
    grooming: np.ndarray
    hind_paw_left: np.ndarray             # cm along the body axis
    hind_paw_right: np.ndarray
    mid_body_length: np.ndarray           # cm
    mid_body_angle: np.ndarray            # rad
    straight: np.ndarray                  # bool
    stretch_ratio: np.ndarray
    area_explored: np.ndarray
    part_speed: Dict[str, np.ndarray] = field(default_factory=dict)
    part_step_speed: Dict[str, np.ndarray] = field(default_factory=dict)
    tail_length: Optional[np.ndarray] = None
    tail_motion: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self.motion)

    def to_frame(self, times: Optional[np.ndarray] = None) -> pd.DataFrame:
        """Flatten to a DataFrame (one column per scalar feature)."""
        columns = {}
        for name, value in self.__dict__.items():
            if isinstance(value, dict):
                for part, series in value.items():
                    columns[f'{name}_{part}'] = series
            elif value is None:
                continue
            elif value.ndim == 2:
                columns[f'{name}_x'] = value[:, 0]
                columns[f'{name}_y'] = value[:, 1]
            else:
                columns[name] = value
        df = pd.DataFrame(columns)
        if times is not None:
            df.insert(0, 'time', times)
        return df

    def save_csv(self, path: Path, times: Optional[np.ndarray] = None) -> Path:
        path = Path(path)
        self.to_frame(times).to_csv(path, index=False)
        return path


def step_frames(fps: float, step_base: float) -> int:
    """Displacement window W in frames (at least one)."""
    return max(1, int(round(fps * step_base)))


def path_speeds(xy: np.ndarray, fps: float, step: int, px_per_cm: float,
                median_window: int = 1) -> Tuple[np.ndarray, np.ndarray]:
    """Speed and StepSpeed of a trajectory in cm/s.

    Args:
        xy: (n, 2) positions in pixels, NaN where missing
        fps: Frame rate
        step: Window W in frames
        px_per_cm: Calibration
        median_window: Moving-median window applied to positions first

    Returns:
        (speed, step_speed), both NaN for the first W+1 frames and wherever
        a position inside the window is missing.
    """
    n = len(xy)
    filtered = moving_median(xy, median_window)
    span = (step + 1) / fps

    distances = np.full(n, np.nan)
    if n > 1:
        distances[1:] = np.linalg.norm(np.diff(filtered, axis=0), axis=1) / px_per_cm
    speed = (pd.Series(distances).rolling(step + 1, min_periods=step + 1).sum()
             .to_numpy() / span)

    step_speed = np.full(n, np.nan)
    if n > step:
        displacement = np.linalg.norm(filtered[step:] - filtered[:-step], axis=1)
        step_speed[step:] = displacement / (px_per_cm * span)
    step_speed[:step + 1] = np.nan
    speed[:step + 1] = np.nan
    return speed, step_speed


def point_distance(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.linalg.norm(a - b, axis=1)


def hind_paw_extension(paw: np.ndarray, paw_score: np.ndarray,
                       tail_base: np.ndarray, tail_score: np.ndarray,
                       center: np.ndarray, px_per_cm: float) -> np.ndarray:
    """Paw position relative to the tail base, projected on the body axis.

    The body axis runs from the tail base to the centroid; the result is the
    paw offset along it in cm (positive: paw ahead of the tail base).
    """
    axis = center - tail_base
    with np.errstate(invalid='ignore', divide='ignore'):
        unit = axis / np.linalg.norm(axis, axis=1, keepdims=True)
    angle = np.arctan2(-unit[:, 0], unit[:, 1])
    offset = paw - tail_base
    along = -np.sin(angle) * offset[:, 0] + np.cos(angle) * offset[:, 1]

    ok = (paw_score >= HIND_PAW_MIN_SCORE) & (tail_score >= HIND_PAW_MIN_SCORE)
    return np.where(ok, along / px_per_cm, np.nan)


def _cross(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return a[..., 0] * b[..., 1] - a[..., 1] * b[..., 0]


def mid_body_frame(job: Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]
                   ) -> Tuple[float, float]:
    """Body width (px) and bend angle (rad) for one frame.

    The angle is taken at the centroid between the directions to the ear
    midpoint and to the tail base. The width is the distance between the two
    contour points lying on the bisector of that angle, one on each flank.
    """
    center, mid_ears, tail_base, contour = job
    if (contour is None or len(contour) == 0
            or not (np.all(np.isfinite(center)) and np.all(np.isfinite(mid_ears))
                    and np.all(np.isfinite(tail_base)))):
        return math.nan, math.nan

    v1 = center - mid_ears
    v2 = center - tail_base
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 == 0 or n2 == 0:
        return math.nan, math.nan
    v1 = v1 / n1
    v2 = v2 / n2
    bend = math.atan2(_cross(v1, v2), float(np.dot(v1, v2)))

    contour = np.asarray(contour, dtype=float)
    to_points = center - contour
    angles = np.arctan2(_cross(v1, to_points), to_points @ v1)
    first = np.argmin(np.mod(angles - bend / 2, 2 * np.pi))
    second = np.argmin(np.mod(angles - (2 * np.pi - bend / 2), 2 * np.pi))
    width = float(np.linalg.norm(contour[first] - contour[second]))
    return width, bend


def bounding_box_area(points: np.ndarray, px_per_cm: float) -> float:
    """max(a, b) * a * b of the minimum-area bounding box, in cm^3.

    Raises:
        DegenerateGeometryError: If the box has no extent on one side
    """
    (_, _), (a, b), _ = cv2.minAreaRect(np.asarray(points, dtype=np.float32))
    if min(a, b) <= 1e-6:
        raise DegenerateGeometryError(f"Collinear point set ({len(points)} points)")
    return max(a, b) * a * b / px_per_cm ** 3


class FeatureExtractor:
    """Compute the FeatureSeries of a session from its tracking data."""

    VERSION = "1.0.0"

    def __init__(self, params: Optional[DetectionParameters] = None, workers: int = 1):
        self.params = params or DetectionParameters()
        self.workers = max(1, int(workers))

    def extract(self, data: TrackingData, with_tail: bool = True) -> FeatureSeries:
        """
        Args:
            data: Validated tracking data of one session
            with_tail: Compute tail speeds, TailMotion and TailLength (RGB only)

        Returns:
            FeatureSeries aligned with data.times
        """
        sp = self.params.speed
        fps = data.fps
        px_per_cm = data.geometry.px_per_cm
        step = step_frames(fps, sp.step_base)

        motion = gaussian_smooth(data.motion, sp.motion_window)
        speed, step_speed = path_speeds(data.center, fps, step, px_per_cm,
                                        sp.center_median_window)

        part_speed, part_step_speed = {}, {}
        tail_parts = [p for p in (self.params.tail_rattling.reference,
                                  self.params.tail_rattling.motion)
                      if p in data.tracks]
        if with_tail:
            for part in tail_parts:
                part_speed[part], part_step_speed[part] = path_speeds(
                    data.xy(part), fps, step, px_per_cm)

        # Body-length distances
        center = data.center
        mid_ears = (data.xy('EarLeft') + data.xy('EarRight')) / 2
        tail_base = data.xy('TailBase')
        me_center_raw = point_distance(mid_ears, center)
        me_snout_raw = point_distance(mid_ears, data.xy('Snout'))
        me_tail_raw = point_distance(mid_ears, tail_base)
        tb_center_raw = point_distance(tail_base, center)

        mid_ears_center = gaussian_smooth(me_center_raw, 1) / px_per_cm
        mid_ears_snout = gaussian_smooth(me_snout_raw, sp.smoothing) / px_per_cm
        mid_ears_tail_base = gaussian_smooth(me_tail_raw, sp.smoothing) / px_per_cm
        raw_total_length = (tb_center_raw + me_center_raw) / px_per_cm
        total_length = gaussian_smooth(raw_total_length, sp.smoothing)

        tail_length = None
        if with_tail and all(p in data.tracks for p in BodyParts.TAIL):
            segments = [point_distance(data.xy(a), data.xy(b))
                        for a, b in zip(BodyParts.TAIL[:-1], BodyParts.TAIL[1:])]
            tail_length = np.sum(segments, axis=0) / px_per_cm

        # Grooming score
        with np.errstate(invalid='ignore'):
            product = np.sqrt(mid_ears_snout) * mid_ears_tail_base
        gp = self.params.grooming
        grooming = gaussian_smooth(product, gp.score_window)
        grooming[grooming == 0] = gp.zero_sentinel

        # Hind paws
        tail_score = data.score('TailBase')
        hind_paw_left = hind_paw_extension(
            data.xy('HindPawLeft'), data.score('HindPawLeft'),
            tail_base, tail_score, center, px_per_cm)
        hind_paw_right = hind_paw_extension(
            data.xy('HindPawRight'), data.score('HindPawRight'),
            tail_base, tail_score, center, px_per_cm)

        # Mid-body
        width_px, bend = self._mid_body(data, mid_ears, tail_score)
        mid_body_length = width_px / px_per_cm
        with np.errstate(invalid='ignore', divide='ignore'):
            straight = (np.pi - np.abs(bend)) < self.params.size.straight_tolerance
            stretch_ratio = raw_total_length / mid_body_length

        tail_motion = None
        tr = self.params.tail_rattling
        if with_tail and tr.reference in part_speed and tr.motion in part_speed:
            tail_motion = interpolate_gaps(
                part_speed[tr.motion] - part_speed[tr.reference], data.times)

        area_explored = self._area_explored(center, fps, px_per_cm)

        logger.debug(f"Extracted features for {data.n_frames} frames "
                     f"(W={step}, px/cm={px_per_cm:.2f})")

        return FeatureSeries(
            motion=motion,
            speed=speed,
            step_speed=step_speed,
            mid_ears=mid_ears,
            mid_ears_center=mid_ears_center,
            mid_ears_snout=mid_ears_snout,
            mid_ears_tail_base=mid_ears_tail_base,
            raw_total_length=raw_total_length,
            total_length=total_length,
            product=product,
            grooming=grooming,
            hind_paw_left=hind_paw_left,
            hind_paw_right=hind_paw_right,
            mid_body_length=mid_body_length,
            mid_body_angle=bend,
            straight=straight,
            stretch_ratio=stretch_ratio,
            area_explored=area_explored,
            part_speed=part_speed,
            part_step_speed=part_step_speed,
            tail_length=tail_length,
            tail_motion=tail_motion,
        )

    def _mid_body(self, data: TrackingData, mid_ears: np.ndarray,
                  tail_score: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        n = data.n_frames
        width = np.full(n, np.nan)
        bend = np.full(n, np.nan)

        frames = [i for i in range(n)
                  if tail_score[i] > MID_BODY_MIN_SCORE and np.all(np.isfinite(mid_ears[i]))]
        jobs = [(data.center[i], mid_ears[i], data.xy('TailBase')[i], data.contours[i])
                for i in frames]

        if self.workers > 1 and len(jobs) > 1000:
            chunksize = max(1, len(jobs) // (self.workers * 4))
            with Pool(processes=self.workers) as pool:
                results = pool.map(mid_body_frame, jobs, chunksize=chunksize)
        else:
            results = [mid_body_frame(job) for job in jobs]

        for i, (w, b) in zip(frames, results):
            width[i] = w
            bend[i] = b
        return width, bend

    def _area_explored(self, center: np.ndarray, fps: float,
                       px_per_cm: float) -> np.ndarray:
        ap = self.params.area_bound
        n = len(center)
        area = np.full(n, np.nan)
        filtered = moving_median(center, ap.center_median_window)

        step_area = int(round(fps) * ap.window)
        back = int(math.ceil((1 - ap.leading_fraction) * step_area))
        ahead = int(math.ceil(ap.leading_fraction * step_area))

        degenerate = 0
        for i in range(back, n - ahead):
            window = filtered[i - back:i + ahead + 1]
            window = window[np.all(np.isfinite(window), axis=1)]
            if len(window) < ap.min_points:
                continue
            try:
                area[i] = bounding_box_area(window, px_per_cm)
            except DegenerateGeometryError:
                degenerate += 1

        if degenerate:
            logger.warning(f"AreaExplored undefined on {degenerate} frames "
                           f"(collinear centroid windows)")
        return area


def extract_features(data: TrackingData, params: Optional[DetectionParameters] = None,
                     with_tail: bool = True, workers: int = 1) -> FeatureSeries:
    """Convenience wrapper around FeatureExtractor.extract."""
    return FeatureExtractor(params, workers).extract(data, with_tail=with_tail)
