#!/usr/bin/env python3
"""Print distributed statistics for one field of a dataset snapshot."""

from __future__ import annotations

import argparse
import os
import sys

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from meshquery import EngineConfig, MissingDataError, QueryEngine, load_snapshot, setup_logging  # noqa: E402
from meshquery.comm import MPIGroup, SerialGroup  # noqa: E402
from meshquery.config import add_engine_arguments  # noqa: E402


def _fmt_position(pos) -> str:
    return "(" + ", ".join(f"{x:.6e}" for x in pos) + ")"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print statistics of one field of a meshquery snapshot.")
    parser.add_argument("snapshot", help="Path to a snapshot written by meshquery.write_snapshot.")
    parser.add_argument("field", help="Field to summarize.")
    parser.add_argument(
        "--quantile",
        type=float,
        action="append",
        default=None,
        help="Quantile target in [0, 1]; may be repeated (default: 0.5).",
    )
    add_engine_arguments(parser)
    args = parser.parse_args(argv)

    config = EngineConfig.from_parsed_args(args)
    setup_logging(config.log_level)

    if not os.path.isfile(args.snapshot):
        print(f"Snapshot path does not exist: {args.snapshot}")
        return 1

    group = MPIGroup() if config.use_mpi else SerialGroup()
    dataset = load_snapshot(args.snapshot, group=group)
    engine = QueryEngine(dataset, group=group, config=config)
    root = group.rank == 0

    if not engine.has_field(args.field):
        if root:
            print(f"Field '{args.field}' is not defined on any domain")
        return 1

    lines = [
        f"Field '{args.field}': {engine.field_assoc(args.field)} {engine.field_type(args.field)}"
        f" on topology '{engine.field_topology(args.field)}'",
    ]
    summed = engine.sum(args.field)
    lines.append(f"  count={summed.count} sum={summed.value:.6e}")
    try:
        lines.append(f"  avg={engine.avg(args.field).value:.6e}")
        lo = engine.min(args.field)
        hi = engine.max(args.field)
    except MissingDataError as exc:
        if root:
            print("\n".join(lines))
            print(f"  {exc}")
        return 1
    lines.append(f"  min={lo.value:.6e} at {_fmt_position(lo.position)} (rank {lo.rank}, domain {lo.domain_id})")
    lines.append(f"  max={hi.value:.6e} at {_fmt_position(hi.position)} (rank {hi.rank}, domain {hi.domain_id})")
    lines.append(
        f"  nan={engine.nan_count(args.field).value} inf={engine.inf_count(args.field).value}"
    )

    try:
        hist = engine.histogram(args.field)
    except MissingDataError as exc:
        if root:
            print("\n".join(lines))
            print(f"  {exc}")
        return 1
    cdf = engine.cdf(hist)
    lines.append(f"  entropy={engine.entropy(hist).value:.6e} ({hist.num_bins} bins)")
    for target in args.quantile or [0.5]:
        value = engine.quantile(cdf, target).value
        lines.append(f"  q{target:g}={value:.6e}")

    if root:
        print("\n".join(lines))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
