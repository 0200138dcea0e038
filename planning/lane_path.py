from __future__ import annotations

from typing import List, Protocol, Sequence

import numpy as np

from shared.errors import InvalidInputError
from shared.types import CenterlineSample


class LanePathLike(Protocol):
    def sample_stations(
        self, start_station: float, count: int, interval: float
    ) -> List[CenterlineSample]:
        ...


class LanePath:
    """Polyline reference lane addressed by station (arc length).

    Heading is blended linearly between vertex headings to avoid normal
    jumps at polyline kinks; past either end the lane continues straight
    along the end segment.
    """

    def __init__(self, points: Sequence[Sequence[float]]) -> None:
        pts = np.asarray(points, dtype=float).reshape(-1, 2)
        if len(pts) >= 2:
            keep = np.ones(len(pts), dtype=bool)
            keep[1:] = np.hypot(*np.diff(pts, axis=0).T) > 1e-9
            pts = pts[keep]
        if len(pts) < 2:
            raise InvalidInputError("lane path needs at least two distinct points")

        seg = np.diff(pts, axis=0)
        self.seg_len = np.hypot(seg[:, 0], seg[:, 1])
        self.points = pts
        self.stations = np.concatenate(([0.0], np.cumsum(self.seg_len)))
        self.seg_heading = np.unwrap(np.arctan2(seg[:, 1], seg[:, 0]))

        n = len(pts)
        self.vertex_heading = np.empty(n)
        self.vertex_heading[0] = self.seg_heading[0]
        self.vertex_heading[-1] = self.seg_heading[-1]
        self.vertex_heading[1:-1] = 0.5 * (self.seg_heading[:-1] + self.seg_heading[1:])

        self.vertex_curvature = np.zeros(n)
        self.vertex_curvature[1:-1] = np.diff(self.seg_heading) / (
            0.5 * (self.seg_len[:-1] + self.seg_len[1:])
        )

    @property
    def length(self) -> float:
        return float(self.stations[-1])

    def sample_stations(
        self, start_station: float, count: int, interval: float
    ) -> List[CenterlineSample]:
        if count < 0 or interval <= 0:
            raise InvalidInputError("count must be >= 0 and interval > 0")
        st = start_station + interval * np.arange(count)
        x, y, h, k = self.sample(st)
        return [
            CenterlineSample(float(a), float(b), float(c), float(d), float(s))
            for a, b, c, d, s in zip(x, y, h, k, st)
        ]

    def sample(self, stations) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Vectorized (x, y, heading, curvature) at the given stations."""
        st = np.asarray(stations, dtype=float)
        x = np.interp(st, self.stations, self.points[:, 0])
        y = np.interp(st, self.stations, self.points[:, 1])
        h = np.interp(st, self.stations, self.vertex_heading)
        k = np.interp(st, self.stations, self.vertex_curvature)

        before = st < 0.0
        if np.any(before):
            h0 = self.seg_heading[0]
            x[before] = self.points[0, 0] + st[before] * np.cos(h0)
            y[before] = self.points[0, 1] + st[before] * np.sin(h0)
            h[before] = h0
            k[before] = 0.0
        after = st > self.length
        if np.any(after):
            h1 = self.seg_heading[-1]
            ds = st[after] - self.length
            x[after] = self.points[-1, 0] + ds * np.cos(h1)
            y[after] = self.points[-1, 1] + ds * np.sin(h1)
            h[after] = h1
            k[after] = 0.0
        return x, y, h, k

    def station_at(self, x: float, y: float) -> float:
        """Station of the closest point on the polyline to (x, y)."""
        p0 = self.points[:-1]
        v = np.diff(self.points, axis=0)
        w = np.array([x, y]) - p0
        t = np.clip(np.einsum("ij,ij->i", w, v) / (self.seg_len**2), 0.0, 1.0)
        closest = p0 + t[:, None] * v
        d2 = np.sum((closest - np.array([x, y])) ** 2, axis=1)
        i = int(np.argmin(d2))
        return float(self.stations[i] + t[i] * self.seg_len[i])
