from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np


def histogram_edges(hist_range: tuple[float, float], bins: int) -> list[float]:
    lo, hi = float(hist_range[0]), float(hist_range[1])
    if not (np.isfinite(lo) and np.isfinite(hi)):
        raise ValueError("histogram range bounds must be finite")
    if bins <= 0:
        raise ValueError("bins must be positive")
    if hi <= lo:
        raise ValueError("histogram range must satisfy min < max")
    width = (hi - lo) / bins
    return [lo + i * width for i in range(bins)] + [hi]


@dataclass(frozen=True)
class ScalarResult:
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value}


@dataclass(frozen=True)
class SumResult:
    value: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "count": self.count}


@dataclass(frozen=True, eq=False)
class ExtremumResult:
    """Extreme value of a field with where and by whom it was found."""

    value: float
    rank: int
    domain_id: int
    position: Optional[np.ndarray]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "rank": self.rank,
            "domain_id": self.domain_id,
            "position": None if self.position is None else [float(x) for x in self.position],
        }


@dataclass(frozen=True, eq=False)
class Histogram:
    """Binned values over ``[min_val, max_val]``.

    Also used for pdf/cdf results, which share the binning of the histogram
    they were derived from.
    """

    value: np.ndarray
    min_val: float
    max_val: float
    num_bins: int

    @property
    def bin_width(self) -> float:
        return (self.max_val - self.min_val) / self.num_bins

    @property
    def edges(self) -> list[float]:
        return histogram_edges((self.min_val, self.max_val), self.num_bins)

    def bin_bounds(self, b: int) -> tuple[float, float]:
        width = self.bin_width
        return self.min_val + b * width, self.min_val + (b + 1) * width

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": [float(x) for x in self.value],
            "min_val": self.min_val,
            "max_val": self.max_val,
            "num_bins": self.num_bins,
        }
