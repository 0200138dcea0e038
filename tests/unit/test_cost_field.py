import math

import numpy as np
import pytest

from planners.cost_field import ObstacleCostFieldBuilder
from planners.grid_kernels import KernelRunner
from planning.lane_path import LanePath
from shared.config import PlannerConfig
from shared.errors import InvalidInputError, NoPlanError
from shared.types import CenterlineSample, Obstacle

CFG = PlannerConfig(spatial_horizon=40.0)
LANE = LanePath([(0.0, 0.0), (200.0, 0.0)])


@pytest.fixture
def builder():
    return ObstacleCostFieldBuilder(CFG)


def test_obstacle_on_centerline_gets_lethal_band_and_hazard_tail(builder):
    field = builder.plan(LANE, [Obstacle.rectangle(20.0, 0.0, 0.4, 0.4)])

    # lethal band: obstacle extent + half vehicle length + margin
    for x in np.arange(17.5, 22.6, 0.5):
        assert field.cost_at(x, 0.0) >= CFG.lethal_cost, x
    hazard = field.cost_at(24.0, 0.0)
    assert 0.0 < hazard < CFG.lethal_cost
    assert field.cost_at(27.0, 0.0) == 0.0
    assert field.cost_at(12.0, 0.0) == 0.0


def test_cost_never_increases_away_from_obstacle(builder):
    field = builder.plan(LANE, [Obstacle.rectangle(20.0, 0.0, 0.4, 0.4)])
    ahead = field.costs_at(np.linspace(20.0, 27.0, 40), 0.0)
    assert np.all(np.diff(ahead) <= 1e-9)
    behind = field.costs_at(np.linspace(20.0, 13.0, 40), 0.0)
    assert np.all(np.diff(behind) <= 1e-9)


def test_mirrored_obstacles_give_mirrored_fields(builder):
    a = builder.plan(LANE, [Obstacle.rectangle(30.0, 2.0, 1.0, 1.0)])
    b = builder.plan(LANE, [Obstacle.rectangle(30.0, -2.0, 1.0, 1.0)])
    assert a.cost.shape == b.cost.shape
    same = np.isclose(a.cost, np.flipud(b.cost), atol=1e-6)
    assert same.mean() > 0.99
    assert a.cost_at(30.0, 2.0) >= CFG.lethal_cost
    assert b.cost_at(30.0, -2.0) == pytest.approx(a.cost_at(30.0, 2.0))


def test_empty_scene_has_only_lane_cost(builder):
    field = builder.plan(LANE, [])
    assert field.cost_at(20.0, 0.0) == 0.0
    assert field.cost_at(20.0, 0.6) == 0.0  # inside the shoulder latitude
    c2, c4, c6 = (field.cost_at(20.0, y) for y in (2.0, 4.0, 6.0))
    assert 0.0 < c2 < c4 < c6
    shoulder = CFG.lane_shoulder_latitude
    assert c6 == pytest.approx(CFG.lane_cost_slope * (6.0 - shoulder), abs=0.05)
    assert field.cost_at(20.0, -6.0) == pytest.approx(c6, abs=1e-9)


def test_repeated_plans_are_identical(builder):
    obstacles = [Obstacle.rectangle(15.0, 1.0, 2.0, 1.0, 0.3), Obstacle.rectangle(32.0, -1.5, 0.5, 3.0)]
    a = builder.plan(LANE, obstacles)
    b = builder.plan(LANE, obstacles)
    assert np.array_equal(a.cost, b.cost)


def test_worker_count_does_not_change_the_result(builder):
    obstacles = [Obstacle.rectangle(15.0, 1.0, 2.0, 1.0, 0.3), Obstacle.rectangle(32.0, -1.5, 0.5, 3.0)]
    serial = builder.plan(LANE, obstacles)
    parallel = ObstacleCostFieldBuilder(CFG, KernelRunner(workers=3, block_rows=7)).plan(LANE, obstacles)
    assert np.array_equal(serial.cost, parallel.cost)


def test_obstacle_outside_grid_is_ignored(builder):
    empty = builder.plan(LANE, [])
    far = builder.plan(LANE, [Obstacle.rectangle(20.0, 80.0, 2.0, 2.0)])
    assert np.array_equal(empty.cost, far.cost)


def test_rotated_lane_maps_back_to_world(builder):
    lane = LanePath([(100.0, 50.0), (100.0, 250.0)])
    field = builder.plan(lane, [Obstacle.rectangle(100.0, 70.0, 0.4, 0.4)])
    assert field.rotation == pytest.approx(math.pi / 2)
    assert field.cost_at(100.0, 70.0) >= CFG.lethal_cost
    assert field.cost_at(100.0, 80.0) == 0.0
    side = field.cost_at(103.0, 70.0)
    assert 0.0 < side < CFG.hazard_cost


def test_plan_from_station_offset(builder):
    # planning from station 10 shifts the anchor along the lane
    field = builder.plan(LANE, [Obstacle.rectangle(30.0, 0.0, 0.4, 0.4)], station=10.0)
    assert field.cost_at(30.0, 0.0) >= CFG.lethal_cost
    assert math.isinf(field.cost_at(-5.0, 0.0))


def test_cost_lookup_outside_grid_returns_default(builder):
    field = builder.plan(LANE, [])
    assert math.isinf(field.cost_at(500.0, 500.0))
    assert field.cost_at(500.0, 500.0, default=-1.0) == -1.0
    vals = field.costs_at([20.0, 500.0], [0.0, 0.0], default=7.0)
    assert vals.tolist() == [0.0, 7.0]


def test_short_centerline_is_no_plan(builder):
    with pytest.raises(NoPlanError):
        builder.plan_centerline([], [])
    with pytest.raises(NoPlanError):
        builder.plan_centerline([CenterlineSample(0.0, 0.0, 0.0, 0.0, 0.0)], [])


def test_malformed_inputs(builder):
    backwards = [
        CenterlineSample(0.0, 0.0, 0.0, 0.0, 1.0),
        CenterlineSample(1.0, 0.0, 0.0, 0.0, 0.0),
    ]
    with pytest.raises(InvalidInputError):
        builder.plan_centerline(backwards, [])
    with pytest.raises(InvalidInputError):
        builder.plan(LANE, [[(1.0, 2.0)]])
    with pytest.raises(InvalidInputError):
        builder.plan(LANE, [[(1.0, 2.0), (float("nan"), 3.0)]])


def test_cells_outside_the_station_range_get_lane_cost_only(builder):
    near_anchor = builder.plan(LANE, [Obstacle.rectangle(1.0, 0.0, 0.4, 0.4)])
    assert near_anchor.cost_at(0.5, 0.0) >= CFG.lethal_cost
    # behind the anchor nothing is copied back from station 0
    assert near_anchor.cost_at(-3.0, 0.0) == 0.0
    assert near_anchor.cost_at(-8.0, 0.0) == 0.0
    assert near_anchor.cost_at(-8.0, 4.0) == pytest.approx(
        CFG.lane_cost_slope * (3.9 - CFG.lane_shoulder_latitude)
    )

    # nor forward from the last column past the horizon
    near_end = builder.plan(LANE, [Obstacle.rectangle(39.5, 0.0, 0.4, 0.4)])
    assert near_end.cost_at(39.5, 0.0) >= CFG.lethal_cost
    assert near_end.cost_at(45.0, 0.0) == 0.0
