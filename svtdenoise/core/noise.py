from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Literal
import numpy as np
import cv2

from .filters import MAD_SCALE

logger = logging.getLogger(__name__)

NoiseMethod = Literal["regression", "gaussian"]

# var(y - box3(y)) = var(y) * 8/9 for white noise
_RESIDUAL_GAIN = 9.0 / 8.0


@dataclass(frozen=True)
class NoiseParams:
    """Mixed Poisson-Gaussian noise model ``var(y) = gain*(E[y]-offset) + sigma**2``.

    All three values are in the normalised [0, 1] scale of a window, not raw counts.
    """

    gain: float = 1.0
    offset: float = 0.0
    sigma: float = 0.0

    def variance(self, y: np.ndarray) -> np.ndarray:
        """Unbiased per-sample variance estimate, clipped at zero."""
        return np.maximum(self.gain * (y - self.offset) + self.sigma ** 2, 0.0)


def _robust_var(values: np.ndarray) -> float:
    dev = np.abs(values - np.median(values))
    return float((MAD_SCALE * np.median(dev)) ** 2)


def _local_stats(window: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    means = []
    resids = []
    for frame in window:
        f = np.ascontiguousarray(frame, dtype=np.float64)
        means.append(cv2.blur(f, (5, 5), borderType=cv2.BORDER_REFLECT))
        resids.append(f - cv2.blur(f, (3, 3), borderType=cv2.BORDER_REFLECT))
    return np.concatenate([m.ravel() for m in means]), np.concatenate(
        [r.ravel() for r in resids]
    )


def estimate_noise(
    window: np.ndarray,
    gain: float,
    offset: float,
    sigma: float,
    num_bins: int = 4,
    method: NoiseMethod = "regression",
) -> NoiseParams:
    """Refine noise parameters from a normalised window.

    Parameters
    ----------
    window:
        Array of shape ``(frames, height, width)``. It is only read.
    gain, offset, sigma:
        Starting parameters. ``offset`` is kept as given; it cannot be
        separated from ``sigma`` using a single variance/level relation.
    num_bins:
        Number of intensity bins used by the ``"regression"`` method.
    method:
        ``"regression"`` fits the variance/intensity line over ``num_bins``
        quantile bins of the local mean; ``"gaussian"`` only refines
        ``sigma`` from the robust spread of the high-pass residual.

    Returns
    -------
    NoiseParams
        Refined parameters. Constant windows return the inputs unchanged.
    """

    if method not in ("regression", "gaussian"):
        raise ValueError(f"Unknown noise estimation method {method!r}")
    start = NoiseParams(float(gain), float(offset), float(sigma))
    if window.size == 0 or float(window.max()) == float(window.min()):
        return start

    means, resids = _local_stats(window)

    if method == "gaussian":
        var = _robust_var(resids) * _RESIDUAL_GAIN
        return NoiseParams(start.gain, start.offset, float(np.sqrt(var)))

    edges = np.quantile(means, np.linspace(0.0, 1.0, max(num_bins, 1) + 1))
    bins = np.clip(np.searchsorted(edges, means, side="right") - 1, 0, len(edges) - 2)
    levels = []
    variances = []
    for b in range(len(edges) - 1):
        sel = bins == b
        if sel.sum() < 16:
            continue
        levels.append(float(np.median(means[sel])))
        variances.append(_robust_var(resids[sel]) * _RESIDUAL_GAIN)

    if len(levels) < 2 or np.ptp(levels) <= 0:
        var = _robust_var(resids) * _RESIDUAL_GAIN
        logger.debug("Noise regression degenerate; using global variance %.3g", var)
        return NoiseParams(start.gain, start.offset, float(np.sqrt(var)))

    slope, intercept = np.polyfit(levels, variances, 1)
    new_gain = max(float(slope), 0.0)
    sig2 = float(intercept) + new_gain * start.offset
    if sig2 <= 0:
        # intercept not resolvable; take the read-out noise from the darkest bin
        sig2 = variances[0] - new_gain * (levels[0] - start.offset)
        if sig2 <= 0:
            sig2 = variances[0]
        logger.debug(
            "Noise regression intercept %.3g not positive; sigma^2 from darkest bin %.3g",
            intercept,
            sig2,
        )
    return NoiseParams(new_gain, start.offset, float(np.sqrt(sig2)))
