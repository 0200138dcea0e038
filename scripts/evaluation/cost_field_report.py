from __future__ import annotations

import argparse
import logging
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List

import numpy as np

from planners.cost_field import CostField, ObstacleCostFieldBuilder
from planning.lane_path import LanePath
from shared.config import PlannerConfig, load_config
from shared.types import Obstacle


def parse_obstacle(text: str) -> Obstacle:
    """'cx,cy,length,width[,heading]' -> rectangle."""
    vals = [float(v) for v in text.split(",")]
    if len(vals) not in (4, 5):
        raise argparse.ArgumentTypeError(f"expected cx,cy,length,width[,heading]: {text!r}")
    return Obstacle.rectangle(*vals)


def lethal_band(field: CostField, cfg: PlannerConfig, step: float = 0.05):
    """Station extent of lethal cost along a straight centerline on the x axis."""
    xs = np.arange(0.0, cfg.spatial_horizon, step)
    costs = field.costs_at(xs, 0.0, default=0.0)
    hit = xs[costs >= cfg.lethal_cost]
    if hit.size == 0:
        return None
    return float(hit.min()), float(hit.max())


def time_plans(cfg: PlannerConfig, obstacles: List[Obstacle], repeats: int):
    builder = ObstacleCostFieldBuilder(cfg)
    lane = LanePath([(0.0, 0.0), (cfg.spatial_horizon * 2.0, 0.0)])
    field = None
    ts = []
    for _ in range(repeats):
        t0 = time.perf_counter()
        field = builder.plan(lane, obstacles)
        ts.append(time.perf_counter() - t0)
    return field, ts


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Cost field timing + lethal band report.")
    ap.add_argument("--config", default="configs/planner.yaml")
    ap.add_argument(
        "--obstacle",
        type=parse_obstacle,
        action="append",
        help="cx,cy,length,width[,heading]; repeatable (default: 0.4 m box at station 20)",
    )
    ap.add_argument("--workers", default="1,4", help="comma-separated worker counts")
    ap.add_argument("--repeats", type=int, default=3)
    ap.add_argument("--out", default="artifacts/cost_field_report.md")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging (stage timing)")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    base = load_config(args.config).planner
    obstacles = args.obstacle or [Obstacle.rectangle(20.0, 0.0, 0.4, 0.4)]
    worker_counts = [int(w) for w in args.workers.split(",")]

    rows = []
    reference = None
    for w in worker_counts:
        cfg = replace(base, workers=w)
        field, ts = time_plans(cfg, obstacles, max(1, args.repeats))
        if reference is None:
            reference = field
        same = bool(np.array_equal(field.cost, reference.cost))
        rows.append((w, float(np.mean(ts)), float(np.min(ts)), same))

    band = lethal_band(reference, base)
    lines = []
    stamp = datetime.now().isoformat(timespec="seconds")
    lines.append(f"# Cost Field Report ({stamp})\n")
    lines.append(f"- Grid: {reference.width} x {reference.height} cells @ {reference.cell_size} m")
    lines.append(f"- Obstacles: {len(obstacles)}")
    if band is None:
        lines.append("- Lethal band on centerline: none\n")
    else:
        lines.append(f"- Lethal band on centerline: [{band[0]:.2f}, {band[1]:.2f}] m\n")
    lines.append("| workers | mean[ms] | min[ms] | identical |")
    lines.append("|--------:|---------:|--------:|:---------:|")
    for w, mean_s, min_s, same in rows:
        lines.append(f"| {w:7d} | {mean_s * 1e3:8.1f} | {min_s * 1e3:7.1f} | {'yes' if same else 'NO'} |")
    lines.append("")

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text("\n".join(lines))
    print(f"Wrote: {out_path}")
    print("\n".join(lines))
    return 0 if all(r[3] for r in rows) else 1


if __name__ == "__main__":
    raise SystemExit(main())
