"""
Per-animal size correction.

Body-size dependent thresholds (grooming score, stretch-attend length) are
tuned on a reference animal. The SizeCorrection factor scales them to the
animal in the session:

    SC = prctile(TotalLength[eligible], 85) / 6.8
         * (1 + 0.75 * (SupSnout / 1.525 - 1))

SupSnout is the 99.75th percentile of sqrt(MidEars-Snout). Eligible frames
show a straight, stretched body (1.8 < StretchRatio < 2) with both hind paws
either extended forward or untracked.
"""

import logging
from typing import Optional

import numpy as np

from mousescore.detection.core.features import FeatureSeries
from mousescore.detection.core.parameters import SizeParams

logger = logging.getLogger(__name__)


class SizeCalibrator:
    """Derive the SizeCorrection factor of one session."""

    FALLBACK = 1.0

    def __init__(self, params: Optional[SizeParams] = None):
        self.params = params or SizeParams()

    def eligible_frames(self, features: FeatureSeries, score_left: np.ndarray,
                        score_right: np.ndarray) -> np.ndarray:
        """Frames usable for body-length calibration."""
        p = self.params
        low, high = p.ratio_band
        with np.errstate(invalid='ignore'):
            stretched = ((features.stretch_ratio > low) & (features.stretch_ratio < high)
                         & features.straight)
            paws_extended = ((features.hind_paw_left > p.paw_extension)
                             & (features.hind_paw_right > p.paw_extension))
        paws_untracked = (score_left < p.paw_score) & (score_right < p.paw_score)
        return stretched & (paws_extended | paws_untracked)

    def sup_snout(self, features: FeatureSeries) -> float:
        with np.errstate(invalid='ignore'):
            snout = np.round(np.sqrt(features.mid_ears_snout), 2)
        snout = snout[np.isfinite(snout)]
        if snout.size == 0:
            return np.nan
        return float(np.percentile(snout, self.params.snout_percentile))

    def compute(self, features: FeatureSeries, score_left: np.ndarray,
                score_right: np.ndarray) -> float:
        """
        Args:
            features: Extracted features of the session
            score_left / score_right: Hind-paw DLC likelihoods

        Returns:
            SizeCorrection factor; 1.0 when no frame qualifies
        """
        p = self.params
        eligible = self.eligible_frames(features, score_left, score_right)
        lengths = features.raw_total_length[eligible]
        lengths = lengths[np.isfinite(lengths)]
        if lengths.size == 0:
            logger.warning("No straight, stretched frames for size calibration; "
                           f"using SizeCorrection = {self.FALLBACK}")
            return self.FALLBACK

        sup_snout = self.sup_snout(features)
        length_factor = np.percentile(lengths, p.length_percentile) / p.reference_length
        snout_factor = 1 + p.snout_weight * (sup_snout / p.reference_snout - 1)
        correction = float(length_factor * snout_factor)

        if not np.isfinite(correction) or correction <= 0:
            logger.warning(f"Invalid SizeCorrection ({correction}); "
                           f"using {self.FALLBACK}")
            return self.FALLBACK

        logger.info(f"SizeCorrection = {correction:.3f} "
                    f"({lengths.size} calibration frames, SupSnout = {sup_snout:.3f})")
        return correction
