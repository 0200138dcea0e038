from __future__ import annotations

import enum
import logging
import math
from typing import List, Sequence, Union

import numpy as np

from planning.cubic_path import CubicPath
from shared.config import TrackingConfig, VehicleGeometry
from shared.errors import InvalidInputError
from shared.types import NEUTRAL_COMMAND, PathSample, Pose2D, SteeringCommand, wrap_pi

logger = logging.getLogger(__name__)


def _clamp(v: float, lo: float, hi: float) -> float:
    return hi if v > hi else lo if v < lo else v


class TrackingState(enum.Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    COMPLETED = "completed"


class PathTrackingController:
    """Front-axle (Stanley-style) path tracker producing wheel-angle commands.

    Holds the only cross-tick state of the core: the active path, the last
    matched sample index and the last command. Progress only moves forward;
    assigning a new path resets it.

    Typical usage:
        ctrl = PathTrackingController(VehicleGeometry())
        ctrl.assign_path(samples)
        cmd = ctrl.control(pose, wheel_angle, speed, dt)
    """

    def __init__(self, vehicle: VehicleGeometry | None = None, cfg: TrackingConfig | None = None):
        self.vehicle = vehicle or VehicleGeometry()
        self.cfg = cfg or TrackingConfig()
        self.cfg.validate()
        self.reset()

    def reset(self) -> None:
        self._path: List[PathSample] = []
        self._xy = np.zeros((0, 2))
        self._index = 0
        self._state = TrackingState.IDLE
        self._last = NEUTRAL_COMMAND

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def progress(self) -> int:
        return self._index

    @property
    def path(self) -> List[PathSample]:
        return list(self._path)

    def assign_path(self, path: Union[CubicPath, Sequence[PathSample]]) -> None:
        samples = path.samples(self.cfg.path_samples) if isinstance(path, CubicPath) else list(path)
        if len(samples) < 2:
            raise InvalidInputError("path needs at least 2 samples")
        xy = np.array([(p.x, p.y) for p in samples], dtype=float)
        if not np.all(np.isfinite(xy)) or not np.any(np.hypot(*np.diff(xy, axis=0).T) > 0.0):
            raise InvalidInputError("path must be finite and of non-zero length")
        self._path = samples
        self._xy = xy
        self._index = 0
        self._state = TrackingState.TRACKING
        self._last = NEUTRAL_COMMAND
        logger.info("tracking new path: %d samples", len(samples))

    def _match(self, fx: float, fy: float) -> int:
        """Closest sample in [index, index + window]; never goes backwards."""
        hi = min(len(self._path), self._index + self.cfg.search_window + 1)
        d2 = np.sum((self._xy[self._index : hi] - (fx, fy)) ** 2, axis=1)
        return self._index + int(np.argmin(d2))

    def control(
        self, pose: Pose2D, wheel_angle: float, speed: float, dt: float
    ) -> SteeringCommand:
        if self._state is TrackingState.IDLE:
            return NEUTRAL_COMMAND
        if self._state is TrackingState.COMPLETED:
            return self._last

        L = self.vehicle.wheelbase
        fx = pose.x + L * math.cos(pose.heading)
        fy = pose.y + L * math.sin(pose.heading)
        self._index = self._match(fx, fy)
        ref = self._path[self._index]

        tx, ty = math.cos(ref.heading), math.sin(ref.heading)
        dx, dy = fx - ref.x, fy - ref.y
        if self._index == len(self._path) - 1 and dx * tx + dy * ty > 0.0:
            self._state = TrackingState.COMPLETED
            logger.info("path completed")
            return self._last

        lateral = -dx * ty + dy * tx  # left of the path is positive
        heading_err = wrap_pi(ref.heading - pose.heading)
        delta = (
            math.atan(L * ref.curvature)
            + heading_err
            + math.atan2(-self.cfg.gain * lateral, self.cfg.soft_speed + abs(speed))
        )

        max_angle = self.vehicle.max_wheel_angle
        delta = _clamp(delta, -max_angle, max_angle)
        if self.cfg.max_steer_rate > 0.0 and dt > 0.0:
            step = self.cfg.max_steer_rate * dt
            delta = _clamp(delta, wheel_angle - step, wheel_angle + step)
            delta = _clamp(delta, -max_angle, max_angle)

        self._last = SteeringCommand(wheel_angle=delta, steer=delta / max_angle)
        return self._last
