from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import yaml

from shared.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/planner.yaml"


@dataclass(frozen=True)
class VehicleGeometry:
    half_length: float = 2.25  # m
    half_width: float = 1.0  # m
    wheelbase: float = 2.8  # m
    max_wheel_angle: float = math.radians(40.0)  # rad


@dataclass(frozen=True)
class PlannerConfig:
    """Cost-field pipeline settings. Distances in meters, costs per meter where noted."""

    vehicle: VehicleGeometry = field(default_factory=VehicleGeometry)

    spatial_horizon: float = 100.0
    station_interval: float = 0.5

    xy_grid_cell_size: float = 0.3
    sl_grid_cell_size: float = 0.15
    grid_margin: float = 10.0

    # lethal = half vehicle dimension + margin, hazard extends beyond lethal
    lethal_margin_s: float = 0.6
    hazard_dilation_s: float = 2.0
    lethal_margin_l: float = 0.3
    hazard_dilation_l: float = 1.0

    lane_width: float = 3.7
    lane_cost_slope: float = 0.5  # cost / m
    shoulder_latitude: Optional[float] = None  # default: lane_width / 2 - half_width

    lethal_cost: float = 1000.0
    hazard_cost: float = 100.0

    max_grid_cells: int = 1_000_000
    workers: int = 1
    block_rows: int = 16

    @property
    def lethal_dilation_s(self) -> float:
        return self.vehicle.half_length + self.lethal_margin_s

    @property
    def lethal_dilation_l(self) -> float:
        return self.vehicle.half_width + self.lethal_margin_l

    @property
    def lane_shoulder_latitude(self) -> float:
        if self.shoulder_latitude is not None:
            return self.shoulder_latitude
        return self.lane_width / 2.0 - self.vehicle.half_width

    @property
    def station_count(self) -> int:
        return int(math.ceil(self.spatial_horizon / self.station_interval))

    def worst_case_cells(self) -> tuple[int, int]:
        """Upper bounds on (xy, sl) grid cell counts for this configuration."""
        xy_side = math.ceil((self.spatial_horizon + 2.0 * self.grid_margin) / self.xy_grid_cell_size)
        sl_w = math.ceil(self.spatial_horizon / self.sl_grid_cell_size)
        sl_h = math.ceil((self.lane_width + 2.0 * self.grid_margin) / self.sl_grid_cell_size)
        return xy_side * xy_side, sl_w * sl_h

    def validate(self) -> None:
        positive = (
            "spatial_horizon",
            "station_interval",
            "xy_grid_cell_size",
            "sl_grid_cell_size",
            "lane_width",
            "block_rows",
            "workers",
        )
        for name in positive:
            if not getattr(self, name) > 0:
                raise ConfigurationError(f"{name} must be > 0 (got {getattr(self, name)!r})")
        for name in ("grid_margin", "hazard_dilation_s", "hazard_dilation_l", "lane_cost_slope"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0 (got {getattr(self, name)!r})")
        if self.sl_grid_cell_size >= self.xy_grid_cell_size:
            raise ConfigurationError("sl_grid_cell_size must be finer than xy_grid_cell_size")
        if not 0.0 <= self.hazard_cost <= self.lethal_cost:
            raise ConfigurationError("need 0 <= hazard_cost <= lethal_cost")
        xy_cells, sl_cells = self.worst_case_cells()
        if max(xy_cells, sl_cells) > self.max_grid_cells:
            raise ConfigurationError(
                f"grid too large: xy<= {xy_cells}, sl={sl_cells} cells "
                f"(max_grid_cells={self.max_grid_cells})"
            )


@dataclass(frozen=True)
class OptimizerConfig:
    max_iterations: int = 50
    position_tolerance: float = 0.01  # m
    heading_tolerance: float = 0.001  # rad
    simpson_intervals: int = 16
    min_length: float = 0.1  # m
    max_length_ratio: float = 4.0  # L <= ratio * chord
    max_step: float = 0.5  # m per Simpson interval
    verify_factor: int = 4  # finer re-integration before reporting convergence
    fd_step: float = 1e-4
    max_backtracks: int = 4

    def validate(self) -> None:
        if self.simpson_intervals < 8 or self.simpson_intervals % 2:
            raise ConfigurationError("simpson_intervals must be even and >= 8")
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be >= 1")
        if self.min_length <= 0 or self.fd_step <= 0 or self.max_step <= 0:
            raise ConfigurationError("min_length, max_step and fd_step must be > 0")
        if self.max_length_ratio < 1.0 or self.verify_factor < 1:
            raise ConfigurationError("max_length_ratio must be >= 1 and verify_factor >= 1")


@dataclass(frozen=True)
class TrackingConfig:
    gain: float = 1.0  # cross-track gain
    soft_speed: float = 1.0  # m/s, keeps the law finite at standstill
    search_window: int = 50  # samples ahead of the last match
    max_steer_rate: float = 1.2  # rad/s, <= 0 disables rate limiting
    path_samples: int = 200  # used when a CubicPath is assigned

    def validate(self) -> None:
        if self.search_window < 1 or self.path_samples < 2:
            raise ConfigurationError("search_window >= 1 and path_samples >= 2 required")


@dataclass(frozen=True)
class CoreConfig:
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)


def _section(cls, raw: Dict[str, Any], **extra):
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{**raw, **extra})


def load_config(path: str | None = DEFAULT_CONFIG_PATH) -> CoreConfig:
    """Load a CoreConfig from YAML; defaults when the file is absent."""
    if not path or not os.path.exists(path):
        logger.info("config %s not found; using defaults", path)
        cfg = CoreConfig()
    else:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
        vehicle = _section(VehicleGeometry, raw.get("vehicle", {}) or {})
        cfg = CoreConfig(
            planner=_section(PlannerConfig, raw.get("planner", {}) or {}, vehicle=vehicle),
            optimizer=_section(OptimizerConfig, raw.get("optimizer", {}) or {}),
            tracking=_section(TrackingConfig, raw.get("tracking", {}) or {}),
        )
        logger.info("loaded config from %s", path)
    cfg.planner.validate()
    cfg.optimizer.validate()
    cfg.tracking.validate()
    return cfg
