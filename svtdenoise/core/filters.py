from __future__ import annotations
import logging
import numpy as np
from skimage import filters

from .multiproc import ParallelExecutor

logger = logging.getLogger(__name__)

# Consistency constant turning a median absolute deviation into a standard
# deviation for normally distributed data.
MAD_SCALE = 1.4826


def median_filter(frame: np.ndarray, size: int) -> np.ndarray:
    """Square ``size x size`` median filter with nearest-edge padding."""

    frame = np.asarray(frame, dtype=np.float64)
    if size <= 1:
        return frame.copy()
    footprint = np.ones((size, size), dtype=bool)
    return filters.median(frame, footprint=footprint, mode="nearest")


def _correct_frame(frame: np.ndarray, threshold: float) -> int:
    local = median_filter(frame, 3)
    resid = frame - local
    dev = np.abs(resid - np.median(resid))
    scale = MAD_SCALE * float(np.median(dev))
    # Flat neighbourhoods have zero MAD; any deviation is then an outlier.
    scale = max(scale, np.finfo(np.float64).eps * max(1.0, float(np.abs(local).max())))
    hot = dev > threshold * scale
    count = int(hot.sum())
    if count:
        frame[hot] = local[hot]
    return count


def correct_hot_pixels(
    sequence: np.ndarray,
    threshold: float,
    executor: ParallelExecutor | None = None,
) -> int:
    """Replace hot pixels of ``sequence`` in place.

    A sample is flagged when its deviation from the local 3x3 median exceeds
    ``threshold`` robust standard deviations, estimated from the median
    absolute deviation of the whole frame's residual. Flagged samples take the
    local median value.

    Parameters
    ----------
    sequence:
        Float array of shape ``(frames, height, width)``; modified in place.
    threshold:
        Rejection threshold in robust standard deviations. Values ``<= 0``
        disable the correction.
    executor:
        Optional executor used to process frames concurrently.

    Returns
    -------
    int
        Number of corrected samples.
    """

    if threshold <= 0:
        logger.info("Hot pixel correction disabled")
        return 0
    executor = executor or ParallelExecutor(1)
    counts = executor.map(
        lambda i: _correct_frame(sequence[i], threshold), 0, sequence.shape[0]
    )
    total = int(sum(counts))
    logger.info(
        "Corrected %d hot pixels across %d frames (threshold=%.2f)",
        total,
        sequence.shape[0],
        threshold,
    )
    return total
