from __future__ import annotations
import logging
import numpy as np
from scipy.optimize import minimize

from .motion import MotionField
from .noise import NoiseParams

logger = logging.getLogger(__name__)


class _BudgetExhausted(Exception):
    pass


def _patch_origins(extent: int, patch_size: int, stride: int) -> np.ndarray:
    origins = list(range(0, extent - patch_size + 1, stride))
    if origins[-1] != extent - patch_size:
        origins.append(extent - patch_size)
    return np.asarray(origins, dtype=np.int64)


class SVTOptimizer:
    """Singular value thresholding of motion-compensated patch groups.

    Each patch of the reference frame is tracked through the window with the
    motion field; the ``patch_size**2 x T`` matrix of tracked patches is
    decomposed once, and :meth:`reconstruct` soft-thresholds its singular
    values. :meth:`optimize` picks the threshold minimising :meth:`risk`, a
    Stein-type unbiased risk estimate under the Poisson-Gaussian model in
    ``noise``.

    Parameters
    ----------
    window:
        Normalised window of shape ``(T, height, width)``.
    motion:
        Motion field for ``window``.
    patch_size:
        Side length of a square patch.
    patch_overlap:
        Overlap in pixels between neighbouring patches; the patch grid stride
        is ``patch_size - patch_overlap``.
    noise:
        Noise parameters in the normalised scale of ``window``.
    seed:
        Seed of the Monte-Carlo probe used by :meth:`risk`.
    """

    def __init__(
        self,
        window: np.ndarray,
        motion: MotionField,
        patch_size: int,
        patch_overlap: int,
        noise: NoiseParams,
        seed: int = 0,
    ):
        self.window = np.asarray(window, dtype=np.float64)
        self.noise = noise
        self.evaluations = 0
        self.converged = True

        length, h, w = self.window.shape
        stride = max(patch_size - patch_overlap, 1)
        oy, ox = np.meshgrid(
            _patch_origins(h, patch_size, stride),
            _patch_origins(w, patch_size, stride),
            indexing="ij",
        )
        oy, ox = oy.ravel(), ox.ravel()
        offs = np.arange(patch_size)
        # Flat sample indices of every tracked patch: (T, groups, P*P)
        index = np.empty((length, oy.size, patch_size * patch_size), dtype=np.int64)
        for k in range(length):
            py = oy + motion.displacements[k, oy, ox, 0]
            px = ox + motion.displacements[k, oy, ox, 1]
            rows = py[:, None, None] + offs[None, :, None]
            cols = px[:, None, None] + offs[None, None, :]
            index[k] = (rows * w + cols).reshape(oy.size, -1)
        self._index = index
        self._shape = (h, w)
        self._weights = np.stack(
            [np.bincount(index[k].ravel(), minlength=h * w) for k in range(length)]
        ).reshape(self.window.shape)

        rng = np.random.default_rng(seed)
        self._probe = rng.standard_normal(self.window.shape)
        self._eps = 1e-3 * max(float(np.abs(self.window).max()), 1e-12)
        self._perturbed = self.window + self._eps * self._probe
        self._svd = self._decompose(self.window)
        self._svd_perturbed = None
        self._variance = noise.variance(self.window)

    def _gather(self, seq: np.ndarray) -> np.ndarray:
        flat = seq.reshape(seq.shape[0], -1)
        cols = [flat[k][self._index[k]] for k in range(seq.shape[0])]
        return np.stack(cols, axis=-1)  # (groups, P*P, T)

    def _decompose(self, seq: np.ndarray):
        return np.linalg.svd(self._gather(seq), full_matrices=False)

    def _rebuild(self, svd, lam: float, base: np.ndarray) -> np.ndarray:
        u, s, vt = svd
        groups = (u * np.maximum(s - lam, 0.0)[:, None, :]) @ vt
        h, w = self._shape
        out = np.empty_like(base)
        for k in range(base.shape[0]):
            acc = np.bincount(
                self._index[k].ravel(),
                weights=groups[:, :, k].ravel(),
                minlength=h * w,
            ).reshape(h, w)
            weight = self._weights[k]
            out[k] = np.where(weight > 0, acc / np.maximum(weight, 1), base[k])
        return out

    def reconstruct(self, lam: float) -> np.ndarray:
        """Denoised window for threshold ``lam``, in the scale of the input."""
        return self._rebuild(self._svd, float(lam), self.window)

    def risk(self, lam: float) -> float:
        y = self.window
        f = self._rebuild(self._svd, lam, y)
        if self._svd_perturbed is None:
            self._svd_perturbed = self._decompose(self._perturbed)
        fp = self._rebuild(self._svd_perturbed, lam, self._perturbed)
        v = self._variance
        div = float(np.sum(v * self._probe * (fp - f))) / self._eps
        return float(np.mean((f - y) ** 2) - np.mean(v) + 2.0 * div / y.size)

    def optimize(
        self,
        tolerance: float,
        initial: float,
        max_value: float,
        max_evaluations: int,
    ) -> float:
        """Search ``[0, max_value]`` for the threshold with the lowest risk.

        At most ``max_evaluations`` risk evaluations are made; when the budget
        runs out the best threshold seen so far is returned and
        :attr:`converged` is ``False``.
        """

        self.evaluations = 0
        upper = max(float(max_value), 0.0)
        lam0 = float(np.clip(initial, 0.0, upper))
        if upper <= 0:
            self.converged = True
            return lam0
        if max_evaluations <= 0:
            self.converged = False
            return lam0

        best = [lam0, np.inf]

        def objective(x: np.ndarray) -> float:
            if self.evaluations >= max_evaluations:
                raise _BudgetExhausted
            lam = float(np.clip(x[0], 0.0, upper))
            self.evaluations += 1
            r = self.risk(lam)
            if r < best[1]:
                best[0], best[1] = lam, r
            return r

        try:
            res = minimize(
                objective,
                x0=np.array([lam0]),
                method="Nelder-Mead",
                bounds=[(0.0, upper)],
                options={"xatol": tolerance, "fatol": tolerance, "maxfev": max_evaluations},
            )
            self.converged = bool(res.success)
        except _BudgetExhausted:
            self.converged = False
        if not self.converged:
            logger.debug(
                "Threshold search stopped after %d evaluations without converging",
                self.evaluations,
            )
        return float(best[0])
