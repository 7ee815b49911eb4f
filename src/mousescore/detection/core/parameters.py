"""
Detection parameters.

One dataclass per behaviour (plus the shared speed, size and reallocation
settings). Lengths are in cm, speeds in cm/s, durations in seconds. The full
set actually used is written to the behaviour file so a session can be
re-run with identical settings.

Defaults can be overridden from ~/.mousescore/config.json:

    "parameters": {"grooming": {"base_threshold": 6.0}}
"""

import logging
import math
from dataclasses import dataclass, field, asdict, fields
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class SpeedParams:
    step_base: float = 0.3          # Window for Speed/StepSpeed (s)
    smoothing: int = 150            # Gaussian window for body-length distances (frames)
    center_median_window: int = 10  # Moving median on the centroid (frames)
    motion_window: int = 10         # Gaussian window on the raw motion measure (frames)


@dataclass
class TailRattlingParams:
    reference: str = "TailBase"
    motion: str = "TailMiddle"
    threshold: float = 4.5
    max_step_speed_moving: float = 1.5   # Cap on the reference point StepSpeed
    max_step_speed_body: float = 1.5     # Cap on the whole-body StepSpeed
    merging: float = 0.1
    minimum_duration: float = 0.4


@dataclass
class GroomingParams:
    base_threshold: float = 6.5
    threshold: Optional[float] = None    # base_threshold * SizeCorrection once computed
    max_step_speed: float = 2.0
    low_motion: float = 0.01             # Below this it is freezing, not grooming
    score_window: int = 40               # Gaussian window on the product (frames)
    zero_sentinel: float = 15.0
    merging: float = 0.1
    minimum_duration: float = 0.5


@dataclass
class RearingParams:
    first_ring: float = 0.7
    second_ring: float = 0.8
    third_ring: float = 8.0
    merging: float = 0.1
    minimum_duration: float = 0.5
    rearing_over_stretch_attend: bool = True


@dataclass
class WallRearingParams:
    first_ring: float = 0.2
    second_ring: float = 0.3
    third_ring: float = 1.0


@dataclass
class HeadDipsParams:
    erosion_in: float = 1.2
    first_ring: float = 1.2
    second_ring: float = 3.5
    third_ring: float = 8.0
    merging: float = 0.1
    minimum_duration: float = 0.3


@dataclass
class StretchAttendParams:
    length: float = 6.0                  # Multiplied by SizeCorrection
    step_speed: float = 6.0
    step_speed_window: int = 5           # Gaussian window on StepSpeed (frames)
    both_hind_paws: float = 0.2
    single_hind_paw: float = 0.1
    paw_score: float = 0.9               # Below this a hind paw counts as untracked
    merging: float = 0.1
    minimum_duration: float = 0.5


@dataclass
class FreezingParams:
    threshold: float = 1.0
    smoothing_window: float = 0.33       # Moving mean on Motion (s); 10 frames at 30 fps
    merging: float = 0.15                # Merged when the gap is strictly shorter
    minimum_duration: float = 0.5        # Dropped when not strictly longer


@dataclass
class AreaBoundParams:
    threshold: Optional[float] = None    # None: paradigm default
    window: float = 3.0                  # Bounding-box window (s)
    leading_fraction: float = 0.25
    center_median_window: int = 5
    min_points: int = 4
    merging: float = 0.15


@dataclass
class FlightParams:
    step_speed: float = 20.0
    merging: float = 0.15
    minimum_duration: float = 0.2


@dataclass
class ReallocationParams:
    small_thresholds: Tuple[float, ...] = (0.25, 0.1)
    merging_thresholds: Tuple[float, ...] = (0.5, math.inf)


@dataclass
class SizeParams:
    reference_length: float = 6.8
    reference_snout: float = 1.525
    snout_weight: float = 0.75
    length_percentile: float = 85
    snout_percentile: float = 99.75
    ratio_band: Tuple[float, float] = (1.8, 2.0)
    straight_tolerance: float = 0.4      # rad away from a straight body axis
    paw_extension: float = 0.5
    paw_score: float = 0.95


@dataclass
class DetectionParameters:
    """Complete parameter set for one session."""
    speed: SpeedParams = field(default_factory=SpeedParams)
    tail_rattling: TailRattlingParams = field(default_factory=TailRattlingParams)
    grooming: GroomingParams = field(default_factory=GroomingParams)
    rearing: RearingParams = field(default_factory=RearingParams)
    wall_rearing: WallRearingParams = field(default_factory=WallRearingParams)
    head_dips: HeadDipsParams = field(default_factory=HeadDipsParams)
    stretch_attend: StretchAttendParams = field(default_factory=StretchAttendParams)
    freezing: FreezingParams = field(default_factory=FreezingParams)
    area_bound: AreaBoundParams = field(default_factory=AreaBoundParams)
    flight: FlightParams = field(default_factory=FlightParams)
    reallocation: ReallocationParams = field(default_factory=ReallocationParams)
    size: SizeParams = field(default_factory=SizeParams)
    size_correction: Optional[float] = None

    @classmethod
    def default(cls) -> "DetectionParameters":
        """Defaults with ~/.mousescore/config.json overrides applied."""
        from mousescore.config import get_parameter_overrides
        return cls.from_dict(get_parameter_overrides())

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "DetectionParameters":
        """Build a parameter set from a (possibly partial) dict.

        Missing groups and values keep their defaults; unknown keys are
        ignored with a warning so older behaviour files still load.
        """
        params = cls()
        for key, value in (data or {}).items():
            if key == "size_correction":
                params.size_correction = None if value is None else float(value)
                continue
            if key not in _GROUPS:
                logger.warning(f"Ignoring unknown parameter group '{key}'")
                continue
            group = getattr(params, key)
            known = {f.name for f in fields(group)}
            for name, item in value.items():
                if name not in known:
                    logger.warning(f"Ignoring unknown parameter '{key}.{name}'")
                    continue
                if isinstance(item, list):
                    item = tuple(item)
                setattr(group, name, item)
        return params


_GROUPS = {f.name for f in fields(DetectionParameters) if f.name != "size_correction"}
