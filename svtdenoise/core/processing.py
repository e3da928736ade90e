from __future__ import annotations
import logging
import threading
import time
from typing import Callable, Dict, List, Optional
import numpy as np
import pandas as pd

from ..models.config import DenoiseParams, FixedThreshold, AdaptiveThreshold
from .errors import ConfigurationError
from .motion import estimate_motion
from .multiproc import ParallelExecutor
from .noise import estimate_noise
from .pgure import SVTOptimizer
from .preprocessing import preprocess_sequence
from .windows import window_for, normalize

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

SUMMARY_COLUMNS = [
    "frame_index",
    "window_start",
    "local_index",
    "gain",
    "offset",
    "sigma",
    "lambda",
    "evaluations",
    "converged",
    "blank",
    "seconds",
]


class WindowPipeline:
    """Denoise single frames of a preprocessed sequence.

    ``process(t)`` reads the window around frame ``t`` from ``corrected`` and
    ``filtered`` and writes only ``output[t]`` and its own summary record, so
    calls for different frames may run concurrently.
    """

    def __init__(
        self,
        corrected: np.ndarray,
        filtered: np.ndarray,
        params: DenoiseParams,
        output: np.ndarray,
        progress: Optional[ProgressCallback] = None,
    ):
        self.corrected = corrected
        self.filtered = filtered
        self.params = params
        self.output = output
        self.num_frames = corrected.shape[0]
        self.records: List[Optional[Dict]] = [None] * self.num_frames
        # Resolved thresholds, used only as warm-start hints
        self._lambdas: List[Optional[float]] = [None] * self.num_frames
        self._progress = progress
        self._done = 0
        self._lock = threading.Lock()

    def initial_lambda(self, t: int, window: np.ndarray) -> float:
        """Starting point of the threshold search for frame ``t``."""
        if t > 0 and self.params.warm_start:
            hint = self._lambdas[t - 1]
            if hint is not None:
                return hint
        return float(window.mean())

    def process(self, t: int) -> None:
        t0 = time.perf_counter()
        p = self.params
        length = p.window_length
        start, local = window_for(t, self.num_frames, length)
        u, raw_max = normalize(self.corrected[start:start + length])
        ufilter, _ = normalize(self.filtered[start:start + length])
        blank = not np.any(u)
        if blank:
            logger.warning("Frame %d: window %d-%d is blank", t, start, start + length - 1)

        noise = p.noise
        if p.adaptive:
            noise = estimate_noise(
                u,
                noise.gain,
                noise.offset,
                noise.sigma,
                p.noise_bins,
                p.noise_method,
            )

        motion = estimate_motion(
            ufilter, t, length // 2, self.num_frames, p.patch_size, p.search_radius
        )
        optimizer = SVTOptimizer(
            u, motion, p.patch_size, p.patch_overlap, noise, seed=p.random_seed
        )

        mode = p.threshold
        if isinstance(mode, AdaptiveThreshold):
            lam = optimizer.optimize(
                mode.tolerance,
                self.initial_lambda(t, u),
                float(u.max()),
                mode.max_evaluations,
            )
        elif isinstance(mode, FixedThreshold):
            lam = mode.lam
        else:
            raise TypeError(f"Unknown threshold mode {mode!r}")
        self._lambdas[t] = lam

        v = optimizer.reconstruct(lam) * raw_max
        self.output[t] = v[local]

        elapsed = time.perf_counter() - t0
        self.records[t] = {
            "frame_index": t,
            "window_start": start,
            "local_index": local,
            "gain": noise.gain,
            "offset": noise.offset,
            "sigma": noise.sigma,
            "lambda": lam,
            "evaluations": optimizer.evaluations,
            "converged": optimizer.converged,
            "blank": blank,
            "seconds": elapsed,
        }
        logger.debug(
            "Frame %d: gain=%.4g offset=%.4g sigma=%.4g lambda=%.4g time=%.2fs",
            t,
            noise.gain,
            noise.offset,
            noise.sigma,
            lam,
            elapsed,
        )
        if self._progress is not None:
            with self._lock:
                self._done += 1
                done = self._done
            self._progress(done, self.num_frames)

    @property
    def nonconverged(self) -> int:
        return sum(1 for r in self.records if r is not None and not r["converged"])

    def summary(self) -> pd.DataFrame:
        rows = [r for r in self.records if r is not None]
        df = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
        return df.sort_values("frame_index").reset_index(drop=True)


def validate_sequence(raw: np.ndarray, params: DenoiseParams) -> None:
    if raw.ndim != 3:
        msg = f"Expected a (frames, height, width) sequence, got shape {raw.shape}"
        logger.error(msg)
        raise ConfigurationError(msg)
    params.validate(*raw.shape)


def denoise_into(
    raw: np.ndarray,
    output: np.ndarray,
    params: DenoiseParams,
    *,
    progress: Optional[ProgressCallback] = None,
) -> pd.DataFrame:
    """Denoise ``raw`` into the pre-allocated ``output``.

    Parameters
    ----------
    raw:
        Sequence of shape ``(frames, height, width)``. Not modified.
    output:
        Array with the shape of ``raw``; every frame is written exactly once.
    params:
        Denoising parameters, validated against ``raw`` before any work.
    progress:
        Optional ``progress(done, total)`` callback, called from worker
        threads after each frame.

    Returns
    -------
    pandas.DataFrame
        One row per frame with the noise parameters, threshold and timing.
    """

    validate_sequence(raw, params)
    if output.shape != raw.shape:
        msg = f"Output shape {output.shape} does not match input shape {raw.shape}"
        logger.error(msg)
        raise ConfigurationError(msg)

    n, h, w = raw.shape
    executor = ParallelExecutor(params.workers)
    mode = "adaptive" if params.adaptive else "fixed"
    logger.info(
        "Denoising %d frames of %dx%d with window=%d patch=%d overlap=%d mode=%s workers=%d",
        n,
        w,
        h,
        params.window_length,
        params.patch_size,
        params.patch_overlap,
        mode,
        executor.workers,
    )
    t0 = time.perf_counter()

    corrected, filtered = preprocess_sequence(
        raw, params.median_size, params.hot_pixel_threshold, executor
    )

    pipeline = WindowPipeline(corrected, filtered, params, output, progress)
    executor.run(pipeline.process, 0, n)

    if pipeline.nonconverged:
        logger.warning(
            "Threshold search did not converge for %d of %d frames",
            pipeline.nonconverged,
            n,
        )
    logger.info("Denoising finished in %.2f s", time.perf_counter() - t0)
    return pipeline.summary()


def denoise_sequence(
    raw: np.ndarray,
    params: DenoiseParams,
    *,
    progress: Optional[ProgressCallback] = None,
) -> tuple[np.ndarray, pd.DataFrame]:
    raw = np.asarray(raw)
    output = np.zeros(raw.shape, dtype=np.float64)
    summary = denoise_into(raw, output, params, progress=progress)
    return output, summary


def denoise_buffer(
    buffer: np.ndarray,
    out: np.ndarray,
    dims: tuple[int, int, int],
    params: DenoiseParams,
) -> pd.DataFrame:
    """Denoise a flat sample buffer into the flat buffer ``out``.

    ``dims`` is ``(width, height, frames)``; samples are stored with the width
    index varying fastest, then height, then frame.
    """

    width, height, frames = (int(d) for d in dims)
    expected = width * height * frames
    if min(width, height, frames) <= 0 or buffer.size != expected or out.size != expected:
        msg = (
            f"Buffer sizes {buffer.size}/{out.size} do not match dimensions "
            f"{width}x{height}x{frames}"
        )
        logger.error(msg)
        raise ConfigurationError(msg)
    raw = np.asarray(buffer, dtype=np.float64).reshape(frames, height, width)
    result = np.empty_like(raw)
    summary = denoise_into(raw, result, params)
    out.flat[:] = result.ravel()
    return summary
