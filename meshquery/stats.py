from __future__ import annotations

import logging
from typing import Iterator, Optional

import numpy as np

from .comm import ProcessGroup, resolve_group
from .errors import ConfigurationError, MissingDataError
from .kernels import (
    array_histogram,
    array_inf_count,
    array_max,
    array_min,
    array_nan_count,
    array_sum,
)
from .mesh import Dataset, Domain
from .results import ExtremumResult, Histogram, ScalarResult, SumResult, histogram_edges
from .topology import element_location, vertex_location

logger = logging.getLogger(__name__)

INTERPOLATIONS = ("linear", "lower", "higher", "midpoint", "nearest")


def _field_values(dataset: Dataset, field: str) -> Iterator[tuple[Domain, np.ndarray]]:
    for dom in dataset.domains_with_field(field):
        yield dom, dom.fields[field].scalar_values()


def field_sum(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> SumResult:
    group = resolve_group(group)
    total = 0.0
    count = 0
    for _, values in _field_values(dataset, field):
        a_sum, a_count = array_sum(values)
        total += a_sum
        count += a_count
    logger.debug("rank %d: local sum of '%s' over %d values", group.rank, field, count)
    total = float(group.allreduce(total, "sum"))
    count = int(group.allreduce(count, "sum"))
    return SumResult(value=total, count=count)


def field_avg(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> ScalarResult:
    summed = field_sum(dataset, field, group=group)
    if summed.count == 0:
        raise MissingDataError(f"field '{field}' has no values on any domain; its average is undefined")
    return ScalarResult(value=summed.value / summed.count)


def locate(domain: Domain, field: str, index: int) -> np.ndarray:
    """Position of entry ``index`` of ``field`` according to its association."""
    f = domain.get_field(field)
    topo = f.topology or None
    if f.association == "vertex":
        return vertex_location(domain, index, topo)
    if f.association == "element":
        return element_location(domain, index, topo)
    raise ConfigurationError(f"location for association '{f.association}' of field '{field}' not implemented")


def _field_extremum(
    dataset: Dataset,
    field: str,
    group: Optional[ProcessGroup],
    *,
    use_max: bool,
) -> ExtremumResult:
    group = resolve_group(group)
    kernel = array_max if use_max else array_min

    best = float("nan")
    best_index = -1
    best_domain: Optional[Domain] = None
    for dom, values in _field_values(dataset, field):
        value, index = kernel(values)
        if index < 0:
            continue
        if best_domain is None or (value > best if use_max else value < best):
            best, best_index, best_domain = value, index, dom

    present = best_domain is not None
    if use_max:
        value, winner = group.argmax(best, present)
    else:
        value, winner = group.argmin(best, present)
    if winner < 0:
        raise MissingDataError(f"field '{field}' has no defined values on any domain")

    payload = None
    if group.rank == winner and best_domain is not None:
        payload = [locate(best_domain, field, best_index), best_domain.domain_id]
    position, domain_id = group.broadcast(payload, winner)
    logger.debug(
        "%s of '%s' = %g on rank %d (domain %d)",
        "max" if use_max else "min",
        field,
        value,
        winner,
        domain_id,
    )
    return ExtremumResult(
        value=float(value),
        rank=int(winner),
        domain_id=int(domain_id),
        position=np.asarray(position, dtype=np.float64),
    )


def field_min(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> ExtremumResult:
    return _field_extremum(dataset, field, group, use_max=False)


def field_max(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> ExtremumResult:
    return _field_extremum(dataset, field, group, use_max=True)


def field_finite_range(
    dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None
) -> tuple[float, float]:
    """Global ``(min, max)`` of the finite values of ``field``; NaN and +/-Inf are skipped."""
    group = resolve_group(group)
    lo = np.inf
    hi = -np.inf
    for _, values in _field_values(dataset, field):
        finite = values[np.isfinite(values)]
        if finite.size:
            lo = min(lo, float(np.min(finite)))
            hi = max(hi, float(np.max(finite)))
    lo = float(group.allreduce(lo, "min"))
    hi = float(group.allreduce(hi, "max"))
    if lo > hi:
        raise MissingDataError(f"field '{field}' has no finite values on any domain")
    return lo, hi


def field_histogram(
    dataset: Dataset,
    field: str,
    min_val: float,
    max_val: float,
    num_bins: int,
    *,
    group: Optional[ProcessGroup] = None,
) -> Histogram:
    group = resolve_group(group)
    num_bins = int(num_bins)
    histogram_edges((min_val, max_val), num_bins)

    bins = np.zeros(num_bins, dtype=np.float64)
    for _, values in _field_values(dataset, field):
        bins += array_histogram(values, min_val, max_val, num_bins)
    bins = np.asarray(group.allreduce(bins, "sum"), dtype=np.float64)
    return Histogram(value=bins, min_val=float(min_val), max_val=float(max_val), num_bins=num_bins)


def _probabilities(hist: Histogram) -> np.ndarray:
    bins = np.asarray(hist.value, dtype=np.float64)
    total = float(np.sum(bins))
    if total == 0.0:
        return np.zeros_like(bins)
    return bins / total


def field_entropy(hist: Histogram) -> ScalarResult:
    p = _probabilities(hist)
    p = p[p > 0.0]
    return ScalarResult(value=float(-np.sum(p * np.log(p))))


def field_pdf(hist: Histogram) -> Histogram:
    return Histogram(
        value=_probabilities(hist),
        min_val=hist.min_val,
        max_val=hist.max_val,
        num_bins=hist.num_bins,
    )


def field_cdf(hist: Histogram) -> Histogram:
    return Histogram(
        value=np.cumsum(_probabilities(hist)),
        min_val=hist.min_val,
        max_val=hist.max_val,
        num_bins=hist.num_bins,
    )


def quantile(cdf: Histogram, target: float, interpolation: str = "linear") -> ScalarResult:
    """Value below which a ``target`` fraction of the binned values lies.

    Only meaningful on a cdf derived from a count histogram.
    """
    if interpolation not in INTERPOLATIONS:
        raise ValueError(
            f"unknown quantile interpolation '{interpolation}' (expected one of {', '.join(INTERPOLATIONS)})"
        )
    target = float(target)
    if not 0.0 <= target <= 1.0:
        raise ValueError(f"quantile target must lie in [0, 1], got {target}")

    values = np.asarray(cdf.value, dtype=np.float64)
    hits = np.nonzero(values >= target)[0]
    # rounding can leave the last cumulative value just under 1
    b = int(hits[0]) if hits.size else cdf.num_bins - 1
    lo, hi = cdf.bin_bounds(b)

    if interpolation == "linear":
        lower = float(values[b - 1]) if b > 0 else 0.0
        mass = float(values[b]) - lower
        if mass == 0.0:
            result = lo
        else:
            result = min(hi, lo + (hi - lo) * (target - lower) / mass)
    elif interpolation == "lower":
        result = lo
    elif interpolation == "higher":
        result = hi
    elif interpolation == "midpoint":
        result = 0.5 * (lo + hi)
    else:
        result = lo if target - lo < hi - target else hi
    return ScalarResult(value=float(result))


def field_nan_count(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> ScalarResult:
    group = resolve_group(group)
    count = sum(array_nan_count(values) for _, values in _field_values(dataset, field))
    return ScalarResult(value=int(group.allreduce(count, "sum")))


def field_inf_count(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> ScalarResult:
    group = resolve_group(group)
    count = sum(array_inf_count(values) for _, values in _field_values(dataset, field))
    return ScalarResult(value=int(group.allreduce(count, "sum")))
