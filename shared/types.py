from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

# Frames & units: x forward/east, y left/north, meters, radians, CCW positive.

Vec2 = Tuple[float, float]


@dataclass(frozen=True)
class BoundaryState:
    """Vehicle state used as start or goal of a trajectory solve."""

    x: float
    y: float
    heading: float = 0.0  # rad
    curvature: float = 0.0  # 1/m

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.heading, self.curvature))


@dataclass(frozen=True)
class PathSample:
    x: float
    y: float
    heading: float
    curvature: float
    station: float  # arc length from path start (m)


@dataclass(frozen=True)
class CenterlineSample:
    x: float
    y: float
    heading: float
    curvature: float
    station: float


@dataclass(frozen=True)
class Pose2D:
    x: float
    y: float
    heading: float = 0.0  # rad (rear axle reference)


@dataclass(frozen=True)
class SteeringCommand:
    wheel_angle: float  # target front wheel angle [rad], left positive
    steer: float  # same command normalized to [-1, 1]


NEUTRAL_COMMAND = SteeringCommand(0.0, 0.0)


@dataclass(frozen=True)
class Obstacle:
    """Closed polygon, vertices ordered, world frame."""

    vertices: Tuple[Vec2, ...]

    @classmethod
    def from_points(cls, points: Sequence[Sequence[float]]) -> "Obstacle":
        return cls(tuple((float(p[0]), float(p[1])) for p in points))

    @classmethod
    def rectangle(
        cls, cx: float, cy: float, length: float, width: float, heading: float = 0.0
    ) -> "Obstacle":
        c, s = math.cos(heading), math.sin(heading)
        hl, hw = 0.5 * length, 0.5 * width
        corners: List[Vec2] = []
        for lx, ly in ((hl, hw), (-hl, hw), (-hl, -hw), (hl, -hw)):
            corners.append((cx + c * lx - s * ly, cy + s * lx + c * ly))
        return cls(tuple(corners))


def wrap_pi(a: float) -> float:
    """Wrap an angle to [-pi, pi)."""
    return (a + math.pi) % (2.0 * math.pi) - math.pi
