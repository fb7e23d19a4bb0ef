"""
Quality masks for behavioral time series.

A sample is acceptable when its timestamp falls inside at least one acceptable
period, boundaries included.
"""

import logging
from typing import Any, Sequence

import numpy as np

from infraslow_nwb.utils.exceptions import ConfigurationError, ShapeMismatchError


logger = logging.getLogger(__name__)


QUALITY_CONTROL_DESCRIPTION = [
    "low quality samples that should be excluded from analyses",
    "acceptable quality samples",
]


def normalize_intervals(intervals: Any) -> np.ndarray:
    """
    Normalize acceptable periods to an (n, 2) float array.

    Accepts None, a single [start, end] pair, an (n, 2) array, or a
    collection (list / object array) of pairs.

    Raises:
        ShapeMismatchError: If an interval does not have exactly two values
        ConfigurationError: If an interval starts after it ends
    """
    if intervals is None:
        return np.empty((0, 2), dtype=np.float64)

    if isinstance(intervals, np.ndarray) and intervals.dtype == object:
        items = list(intervals.ravel())
    elif isinstance(intervals, (list, tuple)) and any(np.ndim(item) > 0 for item in intervals):
        items = list(intervals)
    else:
        items = None

    if items is not None:
        # cell array of [start, end] vectors
        pairs = [np.asarray(item, dtype=np.float64).ravel() for item in items]
        if len(pairs) == 2 and all(p.size == 1 for p in pairs):
            pairs = [np.concatenate(pairs)]
        pairs = [p for p in pairs if p.size > 0]
        bad = [p for p in pairs if p.size != 2]
        if bad:
            raise ShapeMismatchError(
                f"Acceptable period must have 2 values, got {bad[0].size}",
                entity="acceptable_period",
                expected=2,
                actual=bad[0].size,
            )
        out = np.vstack(pairs) if pairs else np.empty((0, 2), dtype=np.float64)
    else:
        out = np.asarray(intervals, dtype=np.float64)
        if out.size == 0:
            return np.empty((0, 2), dtype=np.float64)
        if out.ndim == 1:
            if out.size != 2:
                raise ShapeMismatchError(
                    f"Acceptable period must have 2 values, got {out.size}",
                    entity="acceptable_period",
                    expected=2,
                    actual=out.size,
                )
            out = out.reshape(1, 2)
        elif out.ndim != 2 or out.shape[1] != 2:
            raise ShapeMismatchError(
                f"Acceptable periods must have shape (n, 2), got {out.shape}",
                entity="acceptable_period",
                expected="(n, 2)",
                actual=out.shape,
            )

    inverted = out[:, 0] > out[:, 1]
    if np.any(inverted):
        first = out[np.argmax(inverted)]
        raise ConfigurationError(f"Acceptable period starts after it ends: {first.tolist()}")

    return out


def build_quality_mask(timestamps: Sequence[float], intervals: Any) -> np.ndarray:
    """
    Mark samples that fall inside any acceptable period.

    Args:
        timestamps: Sample times in seconds
        intervals: Acceptable periods (see normalize_intervals)

    Returns:
        Boolean array, same length as timestamps. Empty when timestamps are
        empty; all False when no interval is given.

    Example:
        >>> build_quality_mask([0.0, 1.0, 2.0, 3.0], [1.0, 2.0])
        array([False,  True,  True, False])
    """
    times = np.asarray(timestamps, dtype=np.float64).ravel()
    mask = np.zeros(times.shape, dtype=bool)

    if times.size == 0:
        return mask

    periods = normalize_intervals(intervals)
    if len(periods) == 0:
        logger.debug("No acceptable periods given; all samples marked low quality")
        return mask

    for start, end in periods:
        mask |= (times >= start) & (times <= end)

    return mask
