from __future__ import annotations
import logging
import time
import numpy as np

from .filters import median_filter, correct_hot_pixels
from .multiproc import ParallelExecutor

logger = logging.getLogger(__name__)


def preprocess_sequence(
    raw: np.ndarray,
    median_size: int,
    hot_pixel_threshold: float,
    executor: ParallelExecutor,
) -> tuple[np.ndarray, np.ndarray]:
    """Build the hot-pixel corrected and median filtered sequences.

    ``raw`` is not modified. Median filtering runs on the raw frames, one task
    per frame; hot pixel correction then runs on a copy of ``raw``. Both
    passes have finished when this function returns.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        ``(corrected, filtered)``, both float64 with the shape of ``raw``.
    """

    t0 = time.perf_counter()
    corrected = np.array(raw, dtype=np.float64, copy=True)
    filtered = np.empty_like(corrected)

    def _filter(i: int) -> None:
        filtered[i] = median_filter(corrected[i], median_size)

    logger.info("Median filtering %d frames (size=%d)", corrected.shape[0], median_size)
    executor.run(_filter, 0, corrected.shape[0])
    correct_hot_pixels(corrected, hot_pixel_threshold, executor)
    logger.info("Preprocessing finished in %.2f s", time.perf_counter() - t0)
    return corrected, filtered
