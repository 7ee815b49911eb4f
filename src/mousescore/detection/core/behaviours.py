"""
Behaviour categories, their priority order, and arena paradigms.

The classifier evaluates behaviours in PRIORITY order; a frame claimed by an
earlier behaviour is never claimed by a later one. Paradigms carry the set of
optional behaviours that make sense in that arena and the AreaBound threshold.
"""

import logging
from enum import Enum
from typing import Dict, Tuple

logger = logging.getLogger(__name__)


class Behaviour(Enum):
    TAIL_RATTLING = "TailRattling"
    GROOMING = "Grooming"
    REARING = "Rearing"
    WALL_REARING = "WallRearing"
    OPEN_REARING = "OpenRearing"
    HEAD_DIPS = "HeadDips"
    STRETCH_ATTEND = "StretchAttend"
    FREEZING = "Freezing"
    AREA_BOUND = "AreaBound"
    FLIGHT = "Flight"
    REMAINING = "Remaining"

    @classmethod
    def from_name(cls, name: str) -> "Behaviour":
        """Look up a behaviour by its display name (as used in saved files)."""
        for behaviour in cls:
            if behaviour.value.lower() == name.lower():
                return behaviour
        raise ValueError(f"Unknown behaviour: {name}")


# OpenRearing is only ever assigned by hand and overrides detected rearing
PRIORITY: Tuple[Behaviour, ...] = (
    Behaviour.TAIL_RATTLING,
    Behaviour.GROOMING,
    Behaviour.OPEN_REARING,
    Behaviour.REARING,
    Behaviour.WALL_REARING,
    Behaviour.HEAD_DIPS,
    Behaviour.STRETCH_ATTEND,
    Behaviour.FREEZING,
    Behaviour.AREA_BOUND,
    Behaviour.FLIGHT,
    Behaviour.REMAINING,
)

# Stages recomputed after manual threshold or episode edits
CASCADE_TAIL: Tuple[Behaviour, ...] = (
    Behaviour.FREEZING,
    Behaviour.AREA_BOUND,
    Behaviour.FLIGHT,
    Behaviour.REMAINING,
)


def higher_priority(behaviour: Behaviour) -> Tuple[Behaviour, ...]:
    """All behaviours that take precedence over `behaviour`."""
    return PRIORITY[:PRIORITY.index(behaviour)]


class RecordingKey(Enum):
    """Camera the session was scored on. Tails are not tracked on thermal."""
    RGB = "RGB"
    THERMAL = "Thermal"


class Paradigm(Enum):
    OPEN_FIELD = "OF"
    CONTEXT_DISCRIMINATION = "CD"
    ELEVATED_PLUS_MAZE = "EPM"
    EXTINCTION = "Ext"
    PRE_EXPOSURE = "PreExp"
    LIGHT_DARK_BOX = "LDB"
    OPTO = "Opto"

    @classmethod
    def from_session_name(cls, name: str) -> "Paradigm":
        """Infer the paradigm from the session naming convention.

        Tags are tested in a fixed order and the first one contained in the
        name wins. Unrecognised names fall back to Extinction thresholds with a
        warning.
        """
        for tag in _DETECTION_ORDER:
            if tag in name:
                return cls(tag)
        logger.warning(f"No paradigm key in '{name}'; using {cls.EXTINCTION.value} "
                       f"thresholds. Check the session name.")
        return cls.EXTINCTION

    @property
    def recording_key(self) -> RecordingKey:
        if self is Paradigm.LIGHT_DARK_BOX:
            return RecordingKey.THERMAL
        return RecordingKey.RGB

    @property
    def supports_tail_rattling(self) -> bool:
        return self.recording_key is RecordingKey.RGB

    @property
    def supports_wall_rearing(self) -> bool:
        return self is Paradigm.LIGHT_DARK_BOX

    @property
    def supports_head_dips(self) -> bool:
        return self is Paradigm.ELEVATED_PLUS_MAZE

    @property
    def supports_open_rearing(self) -> bool:
        return self is Paradigm.ELEVATED_PLUS_MAZE

    @property
    def area_bound_threshold(self) -> float:
        return AREA_BOUND_THRESHOLDS[self]

    def behaviours(self) -> Tuple[Behaviour, ...]:
        """Behaviours scored for this paradigm, in priority order."""
        skipped = set()
        if not self.supports_tail_rattling:
            skipped.add(Behaviour.TAIL_RATTLING)
        if not self.supports_wall_rearing:
            skipped.add(Behaviour.WALL_REARING)
        if not self.supports_head_dips:
            skipped.add(Behaviour.HEAD_DIPS)
        if not self.supports_open_rearing:
            skipped.add(Behaviour.OPEN_REARING)
        return tuple(b for b in PRIORITY if b not in skipped)


_DETECTION_ORDER = ("OF", "CD", "EPM", "Ext", "PreExp", "LDB", "Opto")

# Explored-area ceiling for AreaBound (area formula units: cm^3)
AREA_BOUND_THRESHOLDS: Dict[Paradigm, float] = {
    Paradigm.OPEN_FIELD: 150,
    Paradigm.CONTEXT_DISCRIMINATION: 50,
    Paradigm.PRE_EXPOSURE: 50,
    Paradigm.EXTINCTION: 35,
    Paradigm.OPTO: 35,
    Paradigm.ELEVATED_PLUS_MAZE: 50,
    Paradigm.LIGHT_DARK_BOX: 50,
}
