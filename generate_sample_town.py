#!/usr/bin/env python3
"""
Generate a sample settlement and print its diagnostics.

Uses a random star-shaped boundary unless --square is given.

Usage:
    python generate_sample_town.py [--seed N] [--seeds N] [--square SIZE]
"""

import argparse
import json
import sys

import numpy as np

from py_settlegen.core.boundary import Boundary, generate_boundary_polygon
from py_settlegen.core.errors import InputError
from py_settlegen.core.generator import GenerationOptions, SettlementGenerator
from py_settlegen.logging_setup import configure_logging
from py_settlegen.utils.random import STREAM_BOUNDARY, make_rng


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--seed", type=int, default=1512086461918454205, help="Random seed")
    parser.add_argument("--seeds", type=int, default=30, help="Number of Voronoi seeds")
    parser.add_argument("--radius", type=float, default=60.0, help="Boundary radius (meters)")
    parser.add_argument("--vertices", type=int, default=12, help="Boundary vertex count")
    parser.add_argument("--square", type=float, default=None, help="Use a square site of this size")
    parser.add_argument("--max-iterations", type=int, default=100)
    parser.add_argument("--roof", choices=["flat", "pyramid"], default="flat")
    parser.add_argument("--alley-chance", type=float, default=0.8)
    parser.add_argument("--empty-probability", type=float, default=0.05)
    parser.add_argument("--road-setback", action="store_true", help="Keep plots off the roads")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--log-format", choices=["json", "console"], default="console")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    if args.square:
        s = args.square
        boundary = Boundary.create([(0, 0), (s, 0), (s, s), (0, s)])
    else:
        boundary = generate_boundary_polygon(
            args.vertices, args.radius, make_rng(args.seed, STREAM_BOUNDARY)
        )

    try:
        options = GenerationOptions.coerce({
            "seedCount": args.seeds,
            "maxIterations": args.max_iterations,
            "roofStyle": args.roof,
            "alleyChance": args.alley_chance,
            "emptyProbability": args.empty_probability,
            "roadSetback": args.road_setback,
            "workers": args.workers,
        })
    except InputError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    result = SettlementGenerator(options).generate(boundary, seed=args.seed)

    summary = result.diagnostics.summary()
    summary["site_area"] = round(boundary.area, 3)
    summary["plot_area"] = round(float(np.sum([p.area for p in result.plots])), 3)
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
