from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np

from planners.grid_kernels import GridKernel, KernelRunner
from planning.lane_path import LanePathLike
from shared.config import PlannerConfig
from shared.errors import InvalidInputError, NoPlanError
from shared.types import CenterlineSample, Obstacle, Vec2

logger = logging.getLogger(__name__)

ObstacleLike = Union[Obstacle, Sequence[Sequence[float]]]

# Obstacle cost map:
#
# 1. Move centerline + obstacles into the frame of the first centerline sample
# 2. Rasterize obstacle polygons into an XY occupancy grid
# 3. Resample occupancy into SL (station, lateral) space at a finer resolution
# 4. Dilate in SL space, station pass then lateral pass (lethal + graded hazard)
# 5. Add lane-shoulder cost and map SL back to XY


@dataclass(frozen=True)
class XYGridGeometry:
    width: int
    height: int
    cell_size: float
    center: Vec2  # vehicle frame

    @property
    def origin(self) -> Vec2:
        return (
            self.center[0] - 0.5 * self.width * self.cell_size,
            self.center[1] - 0.5 * self.height * self.cell_size,
        )

    def cell_centers(self, rows, cols) -> Tuple[np.ndarray, np.ndarray]:
        ox, oy = self.origin
        return ox + (cols + 0.5) * self.cell_size, oy + (rows + 0.5) * self.cell_size

    def index_of(self, x, y) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        ox, oy = self.origin
        col = np.floor((x - ox) / self.cell_size).astype(np.int64)
        row = np.floor((y - oy) / self.cell_size).astype(np.int64)
        inside = (col >= 0) & (col < self.width) & (row >= 0) & (row < self.height)
        return row, col, inside

    def bounds(self) -> Tuple[float, float, float, float]:
        ox, oy = self.origin
        return ox, oy, ox + self.width * self.cell_size, oy + self.height * self.cell_size


@dataclass(frozen=True)
class SLGridGeometry:
    """Columns are stations in [0, horizon], rows are lateral offsets (left positive)."""

    width: int
    height: int
    cell_size: float

    def station(self, cols):
        return (cols + 0.5) * self.cell_size

    def lateral(self, rows):
        return (rows + 0.5 - 0.5 * self.height) * self.cell_size


@dataclass(frozen=True, eq=False)
class CostField:
    """XY cost grid, row = y, col = x in the frame rotated by `rotation` about `center`."""

    cost: np.ndarray
    cell_size: float
    center: Vec2  # world frame
    rotation: float  # reference heading (rad)

    @property
    def width(self) -> int:
        return int(self.cost.shape[1])

    @property
    def height(self) -> int:
        return int(self.cost.shape[0])

    def costs_at(self, xs, ys, default: float = math.inf) -> np.ndarray:
        xs, ys = np.broadcast_arrays(
            np.atleast_1d(np.asarray(xs, dtype=float)), np.atleast_1d(np.asarray(ys, dtype=float))
        )
        dx, dy = xs - self.center[0], ys - self.center[1]
        c, s = math.cos(self.rotation), math.sin(self.rotation)
        lx = c * dx + s * dy
        ly = -s * dx + c * dy
        col = np.floor(lx / self.cell_size + 0.5 * self.width).astype(np.int64)
        row = np.floor(ly / self.cell_size + 0.5 * self.height).astype(np.int64)
        inside = (col >= 0) & (col < self.width) & (row >= 0) & (row < self.height)
        out = np.full(xs.shape, default, dtype=float)
        out[inside] = self.cost[row[inside], col[inside]]
        return out

    def cost_at(self, x: float, y: float, default: float = math.inf) -> float:
        return float(self.costs_at(x, y, default)[0])


def _vertices(obstacle: ObstacleLike) -> np.ndarray:
    pts = obstacle.vertices if isinstance(obstacle, Obstacle) else obstacle
    arr = np.asarray(pts, dtype=float).reshape(-1, 2)
    if len(arr) < 2 or not np.all(np.isfinite(arr)):
        raise InvalidInputError("obstacle needs at least two finite vertices")
    return arr


def to_vehicle_frame(points: np.ndarray, anchor: Tuple[float, float, float]) -> np.ndarray:
    ax, ay, ah = anchor
    c, s = math.cos(ah), math.sin(ah)
    dx = points[..., 0] - ax
    dy = points[..., 1] - ay
    return np.stack([c * dx + s * dy, -s * dx + c * dy], axis=-1)


def _inside_polygon(poly: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Even-odd rule."""
    inside = np.zeros(np.broadcast(x, y).shape, dtype=bool)
    xj, yj = poly[-1]
    for xi, yi in poly:
        if yi != yj:
            crosses = (yi > y) != (yj > y)
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            inside ^= crosses & (x < x_cross)
        xj, yj = xi, yi
    return inside


def _near_edges(poly: np.ndarray, x: np.ndarray, y: np.ndarray, radius: float) -> np.ndarray:
    near = np.zeros(np.broadcast(x, y).shape, dtype=bool)
    r2 = radius * radius
    for (ax, ay), (bx, by) in zip(poly, np.roll(poly, -1, axis=0)):
        vx, vy = bx - ax, by - ay
        wx, wy = x - ax, y - ay
        L2 = vx * vx + vy * vy
        t = np.clip((wx * vx + wy * vy) / L2, 0.0, 1.0) if L2 > 0 else 0.0
        near |= (wx - t * vx) ** 2 + (wy - t * vy) ** 2 <= r2
    return near


def _grade(d, lethal: float, hazard: float) -> np.ndarray:
    """1 inside lethal, linear to 0 at lethal + hazard."""
    d = np.asarray(d, dtype=float)
    if hazard <= 0.0:
        return (d <= lethal).astype(float)
    return np.clip(1.0 - (d - lethal) / hazard, 0.0, 1.0)


class ObstacleCostFieldBuilder:
    """Builds a vehicle-relative cost field from a centerline and obstacle polygons.

    Typical usage:
        builder = ObstacleCostFieldBuilder(PlannerConfig(workers=4))
        field = builder.plan(LanePath(points), obstacles, station=lane.station_at(x, y))
        c = field.cost_at(wx, wy)
    """

    def __init__(self, cfg: PlannerConfig | None = None, runner: KernelRunner | None = None):
        self.cfg = cfg or PlannerConfig()
        self.cfg.validate()
        self.runner = runner or KernelRunner(self.cfg.workers, self.cfg.block_rows)

    def plan(
        self, lane_path: LanePathLike, obstacles: Iterable[ObstacleLike], station: float = 0.0
    ) -> CostField:
        # one extra sample so the centerline reaches the end of the horizon
        samples = lane_path.sample_stations(
            station, self.cfg.station_count + 1, self.cfg.station_interval
        )
        return self.plan_centerline(samples, obstacles)

    def plan_centerline(
        self, centerline: Sequence[CenterlineSample], obstacles: Iterable[ObstacleLike]
    ) -> CostField:
        if len(centerline) < 2:
            raise NoPlanError(f"centerline needs at least 2 samples (got {len(centerline)})")
        t0 = time.perf_counter()
        cfg = self.cfg

        # -- stage 1: frame transform
        raw = np.array([(c.x, c.y, c.heading, c.station) for c in centerline], dtype=float)
        if not np.all(np.isfinite(raw)):
            raise InvalidInputError("centerline contains non-finite values")
        stations = raw[:, 3] - raw[0, 3]
        if np.any(np.diff(stations) <= 0.0):
            raise InvalidInputError("centerline stations must be strictly increasing")
        anchor = (raw[0, 0], raw[0, 1], raw[0, 2])
        cl_xy = to_vehicle_frame(raw[:, :2], anchor)
        cl_heading = np.unwrap(raw[:, 2]) - raw[0, 2]
        polys = [to_vehicle_frame(_vertices(o), anchor) for o in obstacles]

        lo = cl_xy.min(axis=0)
        hi = cl_xy.max(axis=0)
        span = hi - lo
        xy = XYGridGeometry(
            width=int(math.ceil((span[0] + 2.0 * cfg.grid_margin) / cfg.xy_grid_cell_size)),
            height=int(math.ceil((span[1] + 2.0 * cfg.grid_margin) / cfg.xy_grid_cell_size)),
            cell_size=cfg.xy_grid_cell_size,
            center=(float(0.5 * (lo[0] + hi[0])), float(0.5 * (lo[1] + hi[1]))),
        )
        sl = SLGridGeometry(
            width=int(math.ceil(cfg.spatial_horizon / cfg.sl_grid_cell_size)),
            height=int(math.ceil((cfg.lane_width + 2.0 * cfg.grid_margin) / cfg.sl_grid_cell_size)),
            cell_size=cfg.sl_grid_cell_size,
        )

        occupancy_xy = self.runner.run(self._xy_obstacle_kernel(xy, self._visible(polys, xy)))
        occupancy_sl = self.runner.run(
            self._sl_obstacle_kernel(sl, xy, occupancy_xy, stations, cl_xy, cl_heading)
        )
        station_dist = self.runner.run(self._station_dilation_kernel(sl, occupancy_sl))
        obstacle_cost = self.runner.run(self._lateral_dilation_kernel(sl, station_dist))
        sl_cost = self.runner.run(self._lane_cost_kernel(sl, obstacle_cost))
        xy_cost = self.runner.run(
            self._xy_cost_kernel(xy, sl, sl_cost, stations, cl_xy, cl_heading)
        )

        # grid center back into the caller's frame
        ax, ay, ah = anchor
        c, s = math.cos(ah), math.sin(ah)
        gx, gy = xy.center
        center = (ax + c * gx - s * gy, ay + s * gx + c * gy)
        logger.debug(
            "cost field %dx%d (sl %dx%d, %d obstacles) in %.1f ms",
            xy.width,
            xy.height,
            sl.width,
            sl.height,
            len(polys),
            (time.perf_counter() - t0) * 1e3,
        )
        return CostField(cost=xy_cost, cell_size=xy.cell_size, center=center, rotation=ah)

    @staticmethod
    def _visible(polys: List[np.ndarray], xy: XYGridGeometry) -> List[np.ndarray]:
        x0, y0, x1, y1 = xy.bounds()
        kept = []
        for p in polys:
            if p[:, 0].max() < x0 or p[:, 0].min() > x1 or p[:, 1].max() < y0 or p[:, 1].min() > y1:
                logger.debug("obstacle outside cost grid ignored")
                continue
            kept.append(p)
        return kept

    # -- stage 2
    @staticmethod
    def _xy_obstacle_kernel(xy: XYGridGeometry, polys: List[np.ndarray]) -> GridKernel:
        half = 0.5 * xy.cell_size

        def fn(rows, cols):
            x, y = xy.cell_centers(rows, cols)
            x, y = np.broadcast_arrays(x, y)
            occ = np.zeros(x.shape, dtype=bool)
            y_lo, y_hi = y.min() - half, y.max() + half
            for p in polys:
                if p[:, 1].max() < y_lo or p[:, 1].min() > y_hi:
                    continue
                occ |= _inside_polygon(p, x, y) | _near_edges(p, x, y, half)
            return occ.astype(np.uint8)

        return GridKernel("xy_obstacle", xy.height, xy.width, fn, np.uint8)

    # -- stage 3
    @staticmethod
    def _sl_obstacle_kernel(sl, xy, occupancy_xy, stations, cl_xy, cl_heading) -> GridKernel:
        def fn(rows, cols):
            s = sl.station(cols)
            lat = sl.lateral(rows)
            cx = np.interp(s, stations, cl_xy[:, 0])
            cy = np.interp(s, stations, cl_xy[:, 1])
            ch = np.interp(s, stations, cl_heading)
            px = cx - lat * np.sin(ch)
            py = cy + lat * np.cos(ch)
            row, col, inside = xy.index_of(px, py)
            out = np.zeros(inside.shape, dtype=np.uint8)
            out[inside] = occupancy_xy[row[inside], col[inside]]
            return out

        return GridKernel("sl_obstacle", sl.height, sl.width, fn, np.uint8)

    # -- stage 4a: distance (m) along station to the nearest occupied cell
    def _station_dilation_kernel(self, sl: SLGridGeometry, occupancy_sl) -> GridKernel:
        cfg = self.cfg
        radius = int(math.ceil((cfg.lethal_dilation_s + cfg.hazard_dilation_s) / sl.cell_size))
        padded = np.pad(occupancy_sl, ((0, 0), (radius, radius)))

        def fn(rows, cols):
            dist = np.full(np.broadcast(rows, cols).shape, np.inf)
            for k in range(-radius, radius + 1):
                hit = padded[rows, cols + radius + k] > 0
                dist = np.where(hit, np.minimum(dist, abs(k) * sl.cell_size), dist)
            return dist

        return GridKernel("sl_dilate_station", sl.height, sl.width, fn)

    # -- stage 4b: combine with lateral distance into lethal / hazard cost
    def _lateral_dilation_kernel(self, sl: SLGridGeometry, station_dist) -> GridKernel:
        cfg = self.cfg
        radius = int(math.ceil((cfg.lethal_dilation_l + cfg.hazard_dilation_l) / sl.cell_size))
        padded = np.pad(station_dist, ((radius, radius), (0, 0)), constant_values=np.inf)

        def fn(rows, cols):
            grade = np.zeros(np.broadcast(rows, cols).shape)
            for k in range(-radius, radius + 1):
                g_s = _grade(padded[rows + radius + k, cols], cfg.lethal_dilation_s, cfg.hazard_dilation_s)
                g_l = _grade(abs(k) * sl.cell_size, cfg.lethal_dilation_l, cfg.hazard_dilation_l)
                grade = np.maximum(grade, np.minimum(g_s, g_l))
            return np.where(grade >= 1.0, cfg.lethal_cost, cfg.hazard_cost * grade)

        return GridKernel("sl_dilate_lateral", sl.height, sl.width, fn)

    # -- stage 5a
    def _lane_cost_kernel(self, sl: SLGridGeometry, obstacle_cost) -> GridKernel:
        cfg = self.cfg

        def fn(rows, cols):
            shoulder = np.maximum(0.0, np.abs(sl.lateral(rows)) - cfg.lane_shoulder_latitude)
            return obstacle_cost[rows, cols] + cfg.lane_cost_slope * shoulder

        return GridKernel("sl_lane_cost", sl.height, sl.width, fn)

    # -- stage 5b: XY -> (s, l) via nearest centerline sample, bilinear SL lookup.
    # Cells projecting more than half an SL cell outside the SL grid (behind the
    # anchor, past the horizon, beyond the lateral extent) get the lane cost only.
    def _xy_cost_kernel(self, xy, sl, sl_cost, stations, cl_xy, cl_heading) -> GridKernel:
        cfg = self.cfg
        tx, ty = np.cos(cl_heading), np.sin(cl_heading)
        half = 0.5 * sl.cell_size
        s_max = sl.width * sl.cell_size + half
        l_max = 0.5 * sl.height * sl.cell_size + half

        def fn(rows, cols):
            x, y = xy.cell_centers(rows, cols)
            x, y = np.broadcast_arrays(x, y)
            shape = x.shape
            x, y = x.reshape(-1, 1), y.reshape(-1, 1)
            d2 = (x - cl_xy[None, :, 0]) ** 2 + (y - cl_xy[None, :, 1]) ** 2
            k = np.argmin(d2, axis=1)
            dx = x[:, 0] - cl_xy[k, 0]
            dy = y[:, 0] - cl_xy[k, 1]
            s = stations[k] + dx * tx[k] + dy * ty[k]
            lat = -dx * ty[k] + dy * tx[k]

            u = np.clip(s / sl.cell_size - 0.5, 0.0, sl.width - 1)
            v = np.clip(lat / sl.cell_size + 0.5 * sl.height - 0.5, 0.0, sl.height - 1)
            c0 = np.floor(u).astype(np.int64)
            r0 = np.floor(v).astype(np.int64)
            c1 = np.minimum(c0 + 1, sl.width - 1)
            r1 = np.minimum(r0 + 1, sl.height - 1)
            fu = u - c0
            fv = v - r0
            # lerp form keeps uniform neighbourhoods exact
            top = sl_cost[r0, c0] + fu * (sl_cost[r0, c1] - sl_cost[r0, c0])
            bot = sl_cost[r1, c0] + fu * (sl_cost[r1, c1] - sl_cost[r1, c0])
            val = top + fv * (bot - top)

            outside = (s < -half) | (s > s_max) | (np.abs(lat) > l_max)
            if np.any(outside):
                lane = cfg.lane_cost_slope * np.maximum(
                    0.0, np.abs(lat[outside]) - cfg.lane_shoulder_latitude
                )
                val[outside] = lane
            return val.reshape(shape)

        return GridKernel("xy_cost", xy.height, xy.width, fn)
