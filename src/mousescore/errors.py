"""
Exception types shared across MouseScore.

Data-availability problems abort a session; geometry and confidence gaps are
handled per frame and never reach the caller; invariant violations are bugs.
"""


class MouseScoreError(Exception):
    """Base class for MouseScore errors."""
    pass


class MissingInputDataError(MouseScoreError):
    """A required input (tracking table, tracking file, movie, timestamps,
    calibration or arena mask) is absent. The session cannot be scored."""
    pass


class DegenerateGeometryError(MouseScoreError):
    """Too few or collinear points for a bounding-box computation."""
    pass


class InvariantViolation(MouseScoreError):
    """Overlapping behaviour masks or an episode with start >= end.

    Raised only when the pipeline itself is wrong.
    """
    pass
