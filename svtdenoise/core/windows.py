from __future__ import annotations
import numpy as np


def window_for(t: int, num_frames: int, length: int) -> tuple[int, int]:
    """Locate the temporal window used to denoise frame ``t``.

    Parameters
    ----------
    t:
        Target frame index, ``0 <= t < num_frames``.
    num_frames:
        Number of frames in the sequence.
    length:
        Window length ``T``; must not exceed ``num_frames``.

    Returns
    -------
    tuple[int, int]
        ``(start, local_index)`` such that the window is
        ``frames[start:start + length]`` and ``t == start + local_index``.
        Frames within ``length // 2`` of either end reuse the first or last
        full window, so every window holds exactly ``length`` frames.
    """

    half = length // 2
    start = min(max(t - half, 0), num_frames - length)
    return start, t - start


def normalize(window: np.ndarray) -> tuple[np.ndarray, float]:
    """Scale ``window`` by the reciprocal of its maximum.

    A window whose maximum is not positive is returned unscaled (as a copy)
    with a scale of ``1.0`` so that callers can always multiply back.
    """

    peak = float(window.max()) if window.size else 0.0
    if peak > 0:
        return window / peak, peak
    return window.astype(np.float64, copy=True), 1.0
