from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from shared.config import OptimizerConfig
from shared.errors import CallSequenceError, InvalidInputError
from shared.types import BoundaryState, PathSample, wrap_pi

logger = logging.getLogger(__name__)

Coefficients = Tuple[float, float, float, float]

ORIGIN = BoundaryState(0.0, 0.0, 0.0, 0.0)


def knots_to_coefficients(
    p0: float, p1: float, p2: float, p3: float, length: float
) -> Coefficients:
    """Coefficients (a, b, c, d) of the cubic curvature through knots at 0, L/3, 2L/3, L."""
    if length <= 0.0:
        return (p0, 0.0, 0.0, 0.0)
    L = length
    a = p0
    b = -(11.0 * p0 - 18.0 * p1 + 9.0 * p2 - 2.0 * p3) / (2.0 * L)
    c = 9.0 * (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) / (2.0 * L * L)
    d = -9.0 * (p0 - 3.0 * p1 + 3.0 * p2 - p3) / (2.0 * L * L * L)
    return (a, b, c, d)


def _heading(coeffs: Coefficients, s):
    a, b, c, d = coeffs
    return s * (a + s * (b / 2.0 + s * (c / 3.0 + s * d / 4.0)))


def _curvature(coeffs: Coefficients, s):
    a, b, c, d = coeffs
    return a + s * (b + s * (c + s * d))


def _simpson_weights(intervals: int) -> np.ndarray:
    w = np.ones(intervals + 1)
    w[1:-1:2] = 4.0
    w[2:-1:2] = 2.0
    return w


def integrate(
    coeffs: Coefficients, stations, intervals: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Local-frame (x, y, heading) at each station.

    Heading is the closed-form integral of the curvature; position uses
    composite Simpson's rule over [0, s] with a fixed interval count.
    """
    s = np.atleast_1d(np.asarray(stations, dtype=float))
    nodes = s[:, None] * np.linspace(0.0, 1.0, intervals + 1)[None, :]
    theta = _heading(coeffs, nodes)
    w = _simpson_weights(intervals)
    h = s / intervals
    x = h / 3.0 * (np.cos(theta) @ w)
    y = h / 3.0 * (np.sin(theta) @ w)
    return x, y, _heading(coeffs, s)


@dataclass(frozen=True)
class CubicPath:
    """Solved cubic-curvature path, anchored at `origin` (x, y, heading)."""

    length: float
    coefficients: Coefficients
    origin: BoundaryState = ORIGIN
    intervals: int = 16

    def curvature_at(self, s: float) -> float:
        return float(_curvature(self.coefficients, s))

    def samples(self, n: int) -> List[PathSample]:
        """n samples evenly spaced over [0, length]; computed fresh on every call."""
        if n < 2:
            raise InvalidInputError(f"need at least 2 samples (got {n})")
        stations = np.linspace(0.0, self.length, n)
        lx, ly, lh = integrate(self.coefficients, stations, self.intervals)
        kappa = _curvature(self.coefficients, stations)

        o = self.origin
        c, s = math.cos(o.heading), math.sin(o.heading)
        xs = o.x + c * lx - s * ly
        ys = o.y + s * lx + c * ly
        return [
            PathSample(float(x), float(y), float(o.heading + h), float(k), float(st))
            for x, y, h, k, st in zip(xs, ys, lh, kappa, stations)
        ]

    def terminal(self) -> PathSample:
        return self.samples(2)[-1]


class CubicPathOptimizer:
    """Newton solver for a cubic-curvature path between two boundary states.

    Unknowns are (L, p1, p2): path length and the interior curvature knots at
    L/3 and 2L/3. The end knots are pinned to the start/goal curvatures.

    Typical usage:
        opt = CubicPathOptimizer()
        if opt.optimize(BoundaryState(0, 0, 0, 0), BoundaryState(20, 5, 0.3, 0)):
            samples = opt.build_path(100)
    """

    def __init__(self, cfg: OptimizerConfig | None = None) -> None:
        self.cfg = cfg or OptimizerConfig()
        self.cfg.validate()
        self._path: CubicPath | None = None
        self.converged = False
        self.iterations = 0
        self.residual = (math.inf, math.inf, math.inf)

    @property
    def path(self) -> CubicPath:
        if self._path is None:
            raise CallSequenceError("optimize() must be called before the path is available")
        return self._path

    def build_path(self, n: int) -> List[PathSample]:
        return self.path.samples(n)

    def intervals_for(self, length: float) -> int:
        """Even Simpson interval count keeping steps at or below `max_step`."""
        n = max(self.cfg.simpson_intervals, int(math.ceil(length / self.cfg.max_step)))
        return n + n % 2

    def optimize(self, start: BoundaryState, goal: BoundaryState) -> bool:
        if not (start.is_finite() and goal.is_finite()):
            raise InvalidInputError(f"non-finite boundary state: start={start} goal={goal}")

        # goal expressed in the start frame
        c, s = math.cos(start.heading), math.sin(start.heading)
        dx, dy = goal.x - start.x, goal.y - start.y
        target = np.array([c * dx + s * dy, -s * dx + c * dy, wrap_pi(goal.heading - start.heading)])
        p0, p3 = start.curvature, goal.curvature
        origin = BoundaryState(start.x, start.y, start.heading, start.curvature)

        dist = math.hypot(target[0], target[1])
        if dist < 1e-9 and abs(target[2]) < 1e-9 and abs(p3 - p0) < 1e-9:
            self._path = CubicPath(0.0, (p0, 0.0, 0.0, 0.0), origin, self.cfg.simpson_intervals)
            self.converged, self.iterations, self.residual = True, 0, (0.0, 0.0, 0.0)
            return True

        # fixed per solve so the residual stays smooth in L
        max_length = self.cfg.max_length_ratio * max(dist, self.cfg.min_length)
        n_int = self.intervals_for(max_length)

        def residual(params: np.ndarray, intervals: int = n_int) -> np.ndarray:
            coeffs = knots_to_coefficients(p0, params[1], params[2], p3, params[0])
            x, y, h = integrate(coeffs, [params[0]], intervals)
            return np.array([x[0] - target[0], y[0] - target[1], wrap_pi(h[0] - target[2])])

        # straight-line length, interior knots on the chord between end curvatures
        params = np.array(
            [max(dist, self.cfg.min_length), (2.0 * p0 + p3) / 3.0, (p0 + 2.0 * p3) / 3.0]
        )
        r = residual(params)
        converged = self._within_tolerance(r)
        it = 0
        while not converged and it < self.cfg.max_iterations:
            it += 1
            J = self._jacobian(residual, params)
            try:
                step = np.linalg.solve(J, -r)
            except np.linalg.LinAlgError:
                logger.debug("singular jacobian at iteration %d (params=%s)", it, params)
                break
            if not np.all(np.isfinite(step)):
                break
            params, r = self._damped_update(residual, params, step, r, max_length)
            if not np.all(np.isfinite(r)):
                break
            converged = self._within_tolerance(r)

        if converged and self.cfg.verify_factor > 1:
            fine = residual(params, n_int * self.cfg.verify_factor)
            if not self._within_tolerance(fine):
                logger.debug("rejected: fine re-integration residual=%s", fine)
                converged = False

        L = float(params[0])
        self._path = CubicPath(
            L, knots_to_coefficients(p0, float(params[1]), float(params[2]), p3, L), origin, n_int
        )
        self.converged = bool(converged)
        self.iterations = it
        self.residual = tuple(float(v) for v in r)
        if not converged:
            logger.debug("no convergence after %d iterations, residual=%s", it, self.residual)
        return self.converged

    def _within_tolerance(self, r: np.ndarray) -> bool:
        return (
            math.hypot(r[0], r[1]) < self.cfg.position_tolerance
            and abs(r[2]) < self.cfg.heading_tolerance
        )

    def _jacobian(self, residual, params: np.ndarray) -> np.ndarray:
        h = self.cfg.fd_step
        J = np.zeros((3, 3))
        for i in range(3):
            e = np.zeros(3)
            e[i] = h
            d = residual(params + e) - residual(params - e)
            d[2] = wrap_pi(d[2])
            J[:, i] = d / (2.0 * h)
        return J

    def _damped_update(self, residual, params, step, r, max_length: float):
        """Backtracking: halve the step while it does not reduce the residual."""
        norm0 = float(np.linalg.norm(r))
        alpha = 1.0
        for _ in range(self.cfg.max_backtracks + 1):
            cand = params + alpha * step
            cand[0] = min(max(cand[0], self.cfg.min_length), max_length)
            r_new = residual(cand)
            if np.all(np.isfinite(r_new)) and np.linalg.norm(r_new) < norm0:
                return cand, r_new
            alpha *= 0.5
        return cand, r_new


def solve(
    start: BoundaryState, goal: BoundaryState, n: int = 100, cfg: OptimizerConfig | None = None
) -> tuple[bool, List[PathSample]]:
    """One-shot solve; independent calls share no state."""
    opt = CubicPathOptimizer(cfg)
    converged = opt.optimize(start, goal)
    return converged, opt.build_path(n)
