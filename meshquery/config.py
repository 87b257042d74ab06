from __future__ import annotations

import argparse
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from .stats import INTERPOLATIONS

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineConfig:
    """Defaults a :class:`~meshquery.query.QueryEngine` falls back to."""

    default_topology: Optional[str] = None
    histogram_bins: int = 128
    quantile_interpolation: str = "linear"
    log_level: str = "WARNING"
    use_mpi: bool = False

    def __post_init__(self) -> None:
        if int(self.histogram_bins) <= 0:
            raise ValueError(f"histogram_bins must be positive, got {self.histogram_bins}")
        if self.quantile_interpolation not in INTERPOLATIONS:
            raise ValueError(
                f"unknown quantile interpolation '{self.quantile_interpolation}' "
                f"(expected one of {', '.join(INTERPOLATIONS)})"
            )
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"unknown log level '{self.log_level}'")

    @classmethod
    def from_parsed_args(cls, parsed_args: Any) -> "EngineConfig":
        defaults = cls()
        return cls(
            default_topology=getattr(parsed_args, "topology", None) or defaults.default_topology,
            histogram_bins=int(getattr(parsed_args, "bins", None) or defaults.histogram_bins),
            quantile_interpolation=getattr(parsed_args, "interpolation", None) or defaults.quantile_interpolation,
            log_level=getattr(parsed_args, "log_level", None) or defaults.log_level,
            use_mpi=bool(getattr(parsed_args, "mpi", False)),
        )


def load_config_from_dict(payload: Mapping[str, Any]) -> EngineConfig:
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"unknown engine config keys: {', '.join(unknown)}")
    kwargs = dict(payload)
    if "histogram_bins" in kwargs:
        kwargs["histogram_bins"] = int(kwargs["histogram_bins"])
    if "use_mpi" in kwargs:
        kwargs["use_mpi"] = bool(kwargs["use_mpi"])
    return EngineConfig(**kwargs)


def add_engine_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    group = parser.add_argument_group("engine")
    group.add_argument("--topology", type=str, default=None, help="Topology for location queries (default: first).")
    group.add_argument("--bins", type=int, default=None, help="Histogram bin count (default: 128).")
    group.add_argument(
        "--interpolation",
        choices=INTERPOLATIONS,
        default=None,
        help="Quantile interpolation mode (default: linear).",
    )
    group.add_argument("--log-level", choices=LOG_LEVELS, default=None, help="Log level (default: WARNING).")
    group.add_argument("--mpi", action="store_true", help="Distribute the query over MPI.COMM_WORLD.")
    return parser
