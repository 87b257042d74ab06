from __future__ import annotations

from typing import Any

import numpy as np


def _as_flat(values: Any) -> np.ndarray:
    arr = np.asarray(values)
    if arr.ndim != 1:
        arr = arr.reshape(-1)
    return arr


def array_sum(values: Any) -> tuple[float, int]:
    """Sum and count of the non-NaN entries of a flat array."""
    arr = _as_flat(values)
    defined = ~np.isnan(arr) if arr.dtype.kind == "f" else np.ones(arr.shape, dtype=bool)
    count = int(np.count_nonzero(defined))
    if count == 0:
        return 0.0, 0
    return float(np.sum(arr[defined], dtype=np.float64)), count


def _arg_extremum(values: Any, *, use_max: bool) -> tuple[float, int]:
    arr = _as_flat(values)
    if arr.size == 0:
        return float("nan"), -1
    if arr.dtype.kind == "f":
        if np.all(np.isnan(arr)):
            return float("nan"), -1
        index = int(np.nanargmax(arr) if use_max else np.nanargmin(arr))
    else:
        index = int(np.argmax(arr) if use_max else np.argmin(arr))
    return float(arr[index]), index


def array_min(values: Any) -> tuple[float, int]:
    """Minimum value and its flat index; ``(nan, -1)`` when nothing is defined."""
    return _arg_extremum(values, use_max=False)


def array_max(values: Any) -> tuple[float, int]:
    """Maximum value and its flat index; ``(nan, -1)`` when nothing is defined."""
    return _arg_extremum(values, use_max=True)


def array_histogram(values: Any, min_val: float, max_val: float, num_bins: int) -> np.ndarray:
    """Equal-width histogram over ``[min_val, max_val]``.

    NaN entries are skipped. Values outside the range (including infinities)
    land in the first or last bin, so the bins always add up to the number
    of non-NaN values.
    """
    arr = _as_flat(values).astype(np.float64, copy=False)
    arr = arr[~np.isnan(arr)]
    bins = np.zeros(int(num_bins), dtype=np.float64)
    if arr.size == 0:
        return bins
    inv_width = num_bins / (max_val - min_val)
    pos = np.clip((arr - min_val) * inv_width, 0.0, float(num_bins - 1))
    idx = pos.astype(np.int64)
    np.add.at(bins, idx, 1.0)
    return bins


def array_nan_count(values: Any) -> int:
    arr = _as_flat(values)
    if arr.dtype.kind not in "fc":
        return 0
    return int(np.count_nonzero(np.isnan(arr)))


def array_inf_count(values: Any) -> int:
    arr = _as_flat(values)
    if arr.dtype.kind not in "fc":
        return 0
    return int(np.count_nonzero(np.isinf(arr)))
