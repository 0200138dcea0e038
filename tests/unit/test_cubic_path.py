import math

import numpy as np
import pytest

from planning.cubic_path import CubicPathOptimizer, knots_to_coefficients, solve
from scripts.evaluation.cubic_path_sweep import boundary_grid, terminal_error
from shared.config import OptimizerConfig
from shared.errors import CallSequenceError, InvalidInputError
from shared.types import BoundaryState, wrap_pi

ORIGIN = BoundaryState(0.0, 0.0, 0.0, 0.0)
POS_TOL, HEAD_TOL = 0.01, 0.001
# allowance for the re-integration of sampled headings itself
REINTEGRATION_SLACK = 1e-3


def reintegrated_end(samples):
    """Composite Simpson over the sampled headings (odd sample count)."""
    h = np.array([p.heading for p in samples])
    ds = samples[1].station - samples[0].station
    w = np.ones(len(h))
    w[1:-1:2] = 4.0
    w[2:-1:2] = 2.0
    x = samples[0].x + ds / 3.0 * float(w @ np.cos(h))
    y = samples[0].y + ds / 3.0 * float(w @ np.sin(h))
    return x, y


def test_knot_coefficients_hit_end_curvatures():
    a, b, c, d = knots_to_coefficients(0.05, 0.1, -0.02, 0.15, 12.0)
    L = 12.0
    assert abs(a - 0.05) < 1e-12
    assert abs(a + b * L + c * L**2 + d * L**3 - 0.15) < 1e-9
    s = L / 3
    assert abs(a + b * s + c * s**2 + d * s**3 - 0.1) < 1e-9


def test_straight_goal_converges_to_its_distance():
    opt = CubicPathOptimizer()
    assert opt.optimize(ORIGIN, BoundaryState(10.0, 0.0, 0.0, 0.0))
    assert abs(opt.path.length - 10.0) < 1e-3
    pts = opt.build_path(11)
    assert len(pts) == 11
    assert all(abs(p.y) < 1e-6 and abs(p.heading) < 1e-6 for p in pts)
    # evenly spaced stations
    assert all(abs(b.station - a.station - 1.0) < 1e-3 for a, b in zip(pts, pts[1:]))


def test_constant_curvature_arc():
    k, L = 0.1, 10.0
    goal = BoundaryState(math.sin(k * L) / k, (1.0 - math.cos(k * L)) / k, k * L, k)
    opt = CubicPathOptimizer()
    assert opt.optimize(BoundaryState(0.0, 0.0, 0.0, k), goal)
    assert abs(opt.path.length - L) < 0.01
    for p in opt.build_path(25):
        assert abs(p.curvature - k) < 1e-2


@pytest.mark.parametrize(
    "goal",
    [
        BoundaryState(20.0, 2.0, 0.2, 0.0),
        BoundaryState(30.0, -4.0, -0.2, 0.0),
        BoundaryState(25.0, 3.0, 0.1, 0.01),
    ],
)
def test_converged_path_reproduces_goal(goal):
    opt = CubicPathOptimizer()
    assert opt.optimize(ORIGIN, goal)
    e_pos, e_head = terminal_error(opt, goal)
    assert e_pos < POS_TOL and e_head < HEAD_TOL

    samples = opt.build_path(1001)
    x, y = reintegrated_end(samples)
    assert math.hypot(x - goal.x, y - goal.y) < POS_TOL + REINTEGRATION_SLACK
    assert abs(wrap_pi(samples[-1].heading - goal.heading)) < HEAD_TOL
    assert abs(samples[0].curvature - 0.0) < 1e-9
    assert abs(samples[-1].curvature - goal.curvature) < 1e-6


def test_round_trip_over_boundary_grid():
    cases = list(boundary_grid(steps=2))
    assert len(cases) == 3**5
    converged = 0
    for start, goal in cases:
        opt = CubicPathOptimizer()
        if not opt.optimize(start, goal):
            continue
        converged += 1
        chord = math.hypot(goal.x, goal.y)
        assert opt.path.length <= opt.cfg.max_length_ratio * chord + 1e-9, (start, goal)

        # the sampled path, integrated independently of the solver, lands on the goal
        samples = opt.build_path(2001)
        x, y = reintegrated_end(samples)
        assert math.hypot(x - goal.x, y - goal.y) < POS_TOL + REINTEGRATION_SLACK, (start, goal)
        assert abs(wrap_pi(samples[-1].heading - goal.heading)) < HEAD_TOL, (start, goal)
    assert converged / len(cases) >= 0.1


def test_long_looping_candidate_is_not_reported_converged():
    start = BoundaryState(0.0, 0.0, 0.0, -0.114)
    goal = BoundaryState(30.4, 50.0, 0.314, -0.19)
    opt = CubicPathOptimizer()
    if opt.optimize(start, goal):
        samples = opt.build_path(4001)
        x, y = reintegrated_end(samples)
        assert math.hypot(x - goal.x, y - goal.y) < POS_TOL + REINTEGRATION_SLACK
    assert opt.path.length <= opt.cfg.max_length_ratio * math.hypot(goal.x, goal.y) + 1e-9


def test_integration_resolution_follows_length():
    opt = CubicPathOptimizer()
    assert opt.intervals_for(1.0) == opt.cfg.simpson_intervals
    assert opt.intervals_for(100.0) == 200
    assert opt.intervals_for(100.2) % 2 == 0
    assert opt.optimize(ORIGIN, BoundaryState(40.0, 3.0, 0.1, 0.0))
    assert opt.path.length / opt.path.intervals <= opt.cfg.max_step


def test_start_equals_goal_is_trivial():
    state = BoundaryState(0.0, 0.0, 0.0, 0.05)
    opt = CubicPathOptimizer()
    assert opt.optimize(state, state)
    assert opt.iterations == 0
    assert opt.path.length == 0.0
    pts = opt.build_path(5)
    assert all(p.x == 0.0 and p.y == 0.0 for p in pts)


def test_non_origin_start_frame():
    start = BoundaryState(5.0, 5.0, math.pi / 2, 0.0)
    goal = BoundaryState(5.0, 15.0, math.pi / 2, 0.0)
    opt = CubicPathOptimizer()
    assert opt.optimize(start, goal)
    end = opt.build_path(10)[-1]
    assert abs(end.x - 5.0) < 0.01 and abs(end.y - 15.0) < 0.01
    assert abs(wrap_pi(end.heading - math.pi / 2)) < 0.001


def test_iteration_cap_reports_false_without_raising():
    opt = CubicPathOptimizer(OptimizerConfig(max_iterations=1))
    assert opt.optimize(ORIGIN, BoundaryState(5.0, 20.0, -1.5, 0.19)) is False
    assert opt.iterations == 1
    # an attempted solve still yields a path
    assert len(opt.build_path(10)) == 10


def test_extreme_curvature_pairs_do_not_crash():
    for k0, k1 in ((0.19, -0.19), (-0.19, 0.19), (0.19, 0.19)):
        opt = CubicPathOptimizer()
        result = opt.optimize(BoundaryState(0, 0, 0, k0), BoundaryState(1.0, 50.0, -math.pi / 2, k1))
        assert isinstance(result, bool)
        assert opt.iterations <= opt.cfg.max_iterations


def test_build_path_before_optimize_is_an_error():
    with pytest.raises(CallSequenceError):
        CubicPathOptimizer().build_path(10)


def test_invalid_inputs():
    opt = CubicPathOptimizer()
    with pytest.raises(InvalidInputError):
        opt.optimize(ORIGIN, BoundaryState(float("nan"), 0.0, 0.0, 0.0))
    opt.optimize(ORIGIN, BoundaryState(10.0, 0.0, 0.0, 0.0))
    with pytest.raises(InvalidInputError):
        opt.build_path(1)


def test_independent_solves_share_nothing():
    ok_a, a = solve(ORIGIN, BoundaryState(20.0, 2.0, 0.2, 0.0), n=20)
    ok_b, b = solve(ORIGIN, BoundaryState(10.0, 0.0, 0.0, 0.0), n=20)
    ok_c, c = solve(ORIGIN, BoundaryState(20.0, 2.0, 0.2, 0.0), n=20)
    assert ok_a and ok_b and ok_c
    assert a == c
    assert a != b
