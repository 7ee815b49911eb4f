"""
Spatial zones around arena features.

Rearing, wall rearing and head dips are detected from where the head and fore
paws are relative to the arena outline. Each zone set is a RingSet of four
masks built by morphological dilation/erosion of a region:

    zero   - band just outside the region (up to the third ring)
    first  - beyond the first ring radius, within the third
    second - beyond the second ring radius
    max    - region dilated by the third ring radius

Paradigms:
    Open-field style arenas: rings around the floor mask (rearing).
    Light/dark box: rings around the floor mask (rearing), plus rings inside
        each middle-wall polygon (wall rearing).
    Elevated plus maze: rings around the closed arms (rearing) and around the
        open arms (head dips), each restricted so the two never overlap and
        the centre square belongs to neither.

Ring radii are in cm and converted with the session calibration. Circular
arenas use disk structuring elements, everything else squares.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import cv2
import numpy as np

from mousescore.errors import MissingInputDataError
from mousescore.detection.core.behaviours import Paradigm
from mousescore.detection.core.parameters import DetectionParameters
from mousescore.detection.core.tracking import ArenaGeometry, ArenaShape

logger = logging.getLogger(__name__)

RING_NAMES = ("zero", "first", "second", "max")

# Distance the EPM outer corners are pushed away from the closed arms
EPM_WALL_EXTENSION = 5


@dataclass
class RingSet:
    zero: np.ndarray
    first: np.ndarray
    second: np.ndarray
    max: np.ndarray

    def mask(self, ring: str) -> np.ndarray:
        if ring not in RING_NAMES:
            raise ValueError(f"Unknown ring '{ring}'")
        return getattr(self, ring)

    def contains(self, ring: str, xy: np.ndarray) -> np.ndarray:
        """Per-frame membership of positions in a ring (False where NaN)."""
        mask = self.mask(ring)
        h, w = mask.shape
        xy = np.asarray(xy, dtype=float)
        inside = np.zeros(len(xy), dtype=bool)
        valid = np.all(np.isfinite(xy), axis=1)
        cols = np.round(xy[valid, 0]).astype(int)
        rows = np.round(xy[valid, 1]).astype(int)
        in_frame = (cols >= 0) & (cols < w) & (rows >= 0) & (rows < h)
        hits = np.zeros(valid.sum(), dtype=bool)
        hits[in_frame] = mask[rows[in_frame], cols[in_frame]]
        inside[valid] = hits
        return inside

    def contours(self) -> Dict[str, List[np.ndarray]]:
        """Outline of every ring as (k, 2) point arrays, for display."""
        outlines = {}
        for ring in RING_NAMES:
            found, _ = cv2.findContours(self.mask(ring).astype(np.uint8) * 255,
                                        cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
            outlines[ring] = [c.reshape(-1, 2) for c in found]
        return outlines

    def __or__(self, other: "RingSet") -> "RingSet":
        return RingSet(*(self.mask(r) | other.mask(r) for r in RING_NAMES))


@dataclass
class ZoneSet:
    """Zones used by the classifier for one session."""
    rearing: RingSet
    wall_rearing: Optional[RingSet] = None
    head_dips: Optional[RingSet] = None


def polygon_mask(vertices: np.ndarray, frame_size) -> np.ndarray:
    h, w = frame_size
    mask = np.zeros((h, w), dtype=np.uint8)
    pts = np.round(np.asarray(vertices, dtype=float)).astype(np.int32)
    cv2.fillPoly(mask, [pts], 255)
    return mask > 0


class SpatialZoneBuilder:
    """Build the RingSets of a session from its arena geometry."""

    def __init__(self, params: Optional[DetectionParameters] = None):
        self.params = params or DetectionParameters()

    def build(self, geometry: ArenaGeometry, paradigm: Paradigm) -> ZoneSet:
        if paradigm is Paradigm.ELEVATED_PLUS_MAZE:
            rearing, head_dips = self._plus_maze(geometry)
            return ZoneSet(rearing=rearing, head_dips=head_dips)

        rearing = self._outer_rings(geometry)
        wall_rearing = None
        if paradigm.supports_wall_rearing:
            wall_rearing = self._wall_rings(geometry)
        return ZoneSet(rearing=rearing, wall_rearing=wall_rearing)

    # -- morphology ----------------------------------------------------------

    def _kernel(self, geometry: ArenaGeometry, radius_cm: float) -> Optional[np.ndarray]:
        size = int(round(geometry.px_per_cm * radius_cm))
        if size < 1:
            return None
        if geometry.shape is ArenaShape.CIRCLE:
            return cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (2 * size + 1, 2 * size + 1))
        return cv2.getStructuringElement(cv2.MORPH_RECT, (size, size))

    def _dilate(self, mask: np.ndarray, geometry: ArenaGeometry, radius_cm: float) -> np.ndarray:
        kernel = self._kernel(geometry, radius_cm)
        if kernel is None:
            return mask.copy()
        return cv2.dilate(mask.astype(np.uint8), kernel) > 0

    def _erode(self, mask: np.ndarray, geometry: ArenaGeometry, radius_cm: float) -> np.ndarray:
        kernel = self._kernel(geometry, radius_cm)
        if kernel is None:
            return mask.copy()
        return cv2.erode(mask.astype(np.uint8), kernel) > 0

    def _rings(self, region: np.ndarray, geometry: ArenaGeometry, first: float,
               second: float, third: float, inner: Optional[np.ndarray] = None,
               excluded: Optional[np.ndarray] = None) -> RingSet:
        """Rings around `region`; `inner` replaces the region for the zero ring."""
        outer = self._dilate(region, geometry, third)
        first_ext = self._dilate(region, geometry, first)
        second_ext = self._dilate(region, geometry, second)
        keep = ~excluded if excluded is not None else np.ones_like(region)
        inner = region if inner is None else inner
        return RingSet(
            zero=~inner & outer & keep,
            first=~first_ext & outer & keep,
            second=~second_ext & keep,
            max=outer,
        )

    # -- paradigms -----------------------------------------------------------

    def _outer_rings(self, geometry: ArenaGeometry) -> RingSet:
        rp = self.params.rearing
        return self._rings(geometry.mask.astype(bool), geometry,
                           rp.first_ring, rp.second_ring, rp.third_ring)

    def _wall_rings(self, geometry: ArenaGeometry) -> RingSet:
        if not geometry.middle_walls:
            raise MissingInputDataError("Light/dark box session without middle-wall polygons")
        wp = self.params.wall_rearing
        rings = None
        for wall in geometry.middle_walls:
            region = polygon_mask(wall, geometry.frame_size)
            first = self._erode(region, geometry, wp.first_ring)
            second = self._erode(region, geometry, wp.second_ring)
            wall_rings = RingSet(zero=second, first=first, second=second, max=region)
            rings = wall_rings if rings is None else rings | wall_rings
        return rings

    def _plus_maze(self, geometry: ArenaGeometry):
        if not geometry.closed_arms or len(geometry.closed_arms) != 2 \
                or geometry.wall_vertices is None:
            raise MissingInputDataError("Elevated plus maze session without closed-arm "
                                        "polygons and wall vertices")
        size = geometry.frame_size
        arm_a = np.asarray(geometry.closed_arms[0], dtype=float)
        arm_b = np.asarray(geometry.closed_arms[1], dtype=float)
        walls = np.asarray(geometry.wall_vertices, dtype=float).copy()

        # Centre square: the two vertices of each closed arm nearest the other arm
        dist = np.linalg.norm(arm_a[:, None, :] - arm_b[None, :, :], axis=2)
        a1, a2 = np.argsort(dist.min(axis=1))[:2]
        b1, b2 = np.argmin(dist[a1]), np.argmin(dist[a2])
        centre = polygon_mask([arm_a[a1], arm_b[b1], arm_b[b2], arm_a[a2]], size)

        def push(vertex):
            i = np.argmin(np.linalg.norm(walls - vertex, axis=1))
            walls[i] = walls[i] + EPM_WALL_EXTENSION * (walls[i] - vertex)
            return walls[i].copy()

        w11, w12 = push(arm_a[a1]), push(arm_a[a2])
        limits_a = polygon_mask([arm_a[a1], w11, w12, arm_a[a2]], size)
        w21, w22 = push(arm_b[b1]), push(arm_b[b2])
        limits_b = polygon_mask([arm_b[b1], w21, w22, arm_b[b2]], size)

        others = np.array([w12, w21, w22])
        order = np.argsort(np.linalg.norm(others - w11, axis=1))
        outline = polygon_mask([w11, others[order[0]], others[order[2]], others[order[1]]], size)

        closed_limits = (limits_a | limits_b) & ~centre
        open_limits = outline & ~limits_a & ~limits_b & ~centre
        closed = polygon_mask(arm_a, size) | polygon_mask(arm_b, size)

        # Closed-arm rings always use square elements
        square = ArenaGeometry(geometry.px_per_cm, geometry.mask, ArenaShape.RECTANGLE)
        rp = self.params.rearing
        rearing = self._rings(closed, square, rp.first_ring, rp.second_ring,
                              rp.third_ring, excluded=open_limits | centre)

        open_arms = geometry.mask.astype(bool) & ~rearing.zero & ~closed & ~centre
        hp = self.params.head_dips
        eroded = self._erode(open_arms, square, hp.erosion_in) if hp.erosion_in else open_arms
        head_dips = self._rings(open_arms, square, hp.first_ring, hp.second_ring,
                                hp.third_ring, inner=eroded,
                                excluded=closed_limits | centre)
        logger.debug(f"Plus maze zones: {closed.sum()} px closed, {open_arms.sum()} px open")
        return rearing, head_dips
