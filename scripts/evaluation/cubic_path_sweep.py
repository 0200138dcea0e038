from __future__ import annotations

import argparse
import json
import math
import time
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple

from planning.cubic_path import CubicPathOptimizer
from shared.types import BoundaryState, wrap_pi

X_RANGE = (1.0, 50.0)
Y_RANGE = (-50.0, 50.0)
HEADING_RANGE = (-math.pi / 2, math.pi / 2)
CURVATURE_RANGE = (-0.19, 0.19)


def _linspace(lo: float, hi: float, steps: int) -> List[float]:
    if steps <= 0:
        return [lo]
    return [lo + (hi - lo) * i / steps for i in range(steps + 1)]


def boundary_grid(
    steps: int = 15, xs: Sequence[float] | None = None
) -> Iterator[Tuple[BoundaryState, BoundaryState]]:
    """(start, goal) pairs over the full boundary-condition box, start at the origin."""
    xs = _linspace(*X_RANGE, steps) if xs is None else xs
    ks = _linspace(*CURVATURE_RANGE, steps)
    for x in xs:
        for y in _linspace(*Y_RANGE, steps):
            for r in _linspace(*HEADING_RANGE, steps):
                for k0 in ks:
                    for k1 in ks:
                        yield BoundaryState(0.0, 0.0, 0.0, k0), BoundaryState(x, y, r, k1)


def terminal_error(opt: CubicPathOptimizer, goal: BoundaryState) -> Tuple[float, float]:
    end = opt.build_path(2)[-1]
    return math.hypot(end.x - goal.x, end.y - goal.y), abs(wrap_pi(end.heading - goal.heading))


def sweep_slice(x: float, steps: int) -> dict:
    count = failed = 0
    max_pos = max_head = 0.0
    iterations = 0
    for start, goal in boundary_grid(steps, xs=[x]):
        opt = CubicPathOptimizer()
        count += 1
        if not opt.optimize(start, goal):
            failed += 1
            continue
        iterations += opt.iterations
        e_pos, e_head = terminal_error(opt, goal)
        max_pos = max(max_pos, e_pos)
        max_head = max(max_head, e_head)
    return {
        "count": count,
        "failed": failed,
        "iterations": iterations,
        "max_pos_err": max_pos,
        "max_heading_err": max_head,
    }


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(
        description="Boundary-condition sweep for the cubic path optimizer."
    )
    ap.add_argument("--steps", type=int, default=15, help="subdivisions per dimension")
    ap.add_argument("--workers", type=int, default=1, help="process pool size")
    ap.add_argument("--out", default="artifacts/cubic_path_sweep.json")
    args = ap.parse_args(argv)

    t0 = time.time()
    xs = _linspace(*X_RANGE, args.steps)
    if args.workers > 1:
        with ProcessPoolExecutor(max_workers=args.workers) as pool:
            parts = list(pool.map(sweep_slice, xs, [args.steps] * len(xs)))
    else:
        parts = []
        for x in xs:
            parts.append(sweep_slice(x, args.steps))
            done = sum(p["count"] for p in parts)
            fails = sum(p["failed"] for p in parts)
            print(f"Count: {done} ({fails} failed)")

    count = sum(p["count"] for p in parts)
    failed = sum(p["failed"] for p in parts)
    converged = count - failed
    summary = {
        "steps": args.steps,
        "count": count,
        "failed": failed,
        "mean_iterations": (sum(p["iterations"] for p in parts) / converged) if converged else 0.0,
        "max_pos_err_m": max((p["max_pos_err"] for p in parts), default=0.0),
        "max_heading_err_rad": max((p["max_heading_err"] for p in parts), default=0.0),
        "seconds": round(time.time() - t0, 3),
    }

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(summary, indent=2))
    print(f"Final count: {count} ({failed} failed) in {summary['seconds']} seconds")
    print(f"Wrote: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
