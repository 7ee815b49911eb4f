"""
Gap-tolerant smoothing helpers.

Tracking series contain NaN wherever a body part was not reliably detected.
Every filter here treats NaN as missing: the output at a frame is computed from
the defined samples of its window, and is NaN only when the window holds no
defined sample at all.
"""

import numpy as np
import pandas as pd
from scipy.ndimage import convolve1d


def gaussian_smooth(values: np.ndarray, window: int) -> np.ndarray:
    """Gaussian-weighted moving average over `window` samples (sigma = window/5)."""
    values = np.asarray(values, dtype=float)
    if window <= 1 or values.size == 0:
        return values.copy()

    half = int(window) // 2
    offsets = np.arange(-half, half + 1)
    kernel = np.exp(-0.5 * (offsets / (window / 5.0)) ** 2)

    valid = np.isfinite(values)
    weighted = convolve1d(np.where(valid, values, 0.0), kernel, axis=0,
                          mode='constant', cval=0.0)
    weights = convolve1d(valid.astype(float), kernel, axis=0,
                         mode='constant', cval=0.0)

    out = np.full(values.shape, np.nan)
    ok = weights > 1e-12
    out[ok] = weighted[ok] / weights[ok]
    return out


def _rolling(values: np.ndarray, window: int):
    frame = pd.DataFrame(np.asarray(values, dtype=float))
    return frame.rolling(int(window), center=True, min_periods=1)


def moving_median(values: np.ndarray, window: int) -> np.ndarray:
    """Centred moving median. Works on 1-D series or (n, k) arrays column-wise."""
    values = np.asarray(values, dtype=float)
    if window <= 1 or values.size == 0:
        return values.copy()
    return _rolling(values, window).median().to_numpy().reshape(values.shape)


def moving_mean(values: np.ndarray, window: int) -> np.ndarray:
    """Centred moving mean. Works on 1-D series or (n, k) arrays column-wise."""
    values = np.asarray(values, dtype=float)
    if window <= 1 or values.size == 0:
        return values.copy()
    return _rolling(values, window).mean().to_numpy().reshape(values.shape)


def interpolate_gaps(values: np.ndarray, times: np.ndarray) -> np.ndarray:
    """Linearly interpolate a series over its NaN samples onto `times`.

    Samples before the first or after the last defined sample stay NaN.
    """
    values = np.asarray(values, dtype=float)
    valid = np.isfinite(values)
    if not valid.any():
        return np.full(len(times), np.nan)
    return np.interp(times, times[valid], values[valid], left=np.nan, right=np.nan)
