from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

import numpy as np

from . import agreement, stats
from .comm import MPIGroup, ProcessGroup, SerialGroup
from .config import EngineConfig
from .mesh import Dataset, Domain
from .results import ExtremumResult, Histogram, ScalarResult, SumResult
from .topology import element_location, element_vertex_indices, num_cells, num_points, vertex_location

logger = logging.getLogger(__name__)

QUERY_NAMES = (
    "sum",
    "avg",
    "min",
    "max",
    "histogram",
    "entropy",
    "pdf",
    "cdf",
    "quantile",
    "nan_count",
    "inf_count",
    "field_assoc",
    "field_type",
    "field_topology",
    "spatial_dims",
    "has_field",
    "has_topology",
    "num_cells",
    "num_points",
    "vertex_location",
    "element_location",
    "element_vertex_indices",
    "coord_type",
    "topology_types",
    "is_scalar_field",
    "get_state_var",
)


class QueryEngine:
    """Answers field statistics and metadata queries over a (partitioned) dataset.

    ``dataset`` holds the domains owned by the calling process. Every query
    except the location queries is collective over ``group``: all processes
    must issue the same queries in the same order.
    """

    def __init__(
        self,
        dataset: Dataset,
        *,
        group: Optional[ProcessGroup] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.dataset = dataset
        self.config = config if config is not None else EngineConfig()
        if group is None:
            group = MPIGroup() if self.config.use_mpi else SerialGroup()
        self.group = group
        logger.debug(
            "query engine on rank %d of %d with %d local domains",
            group.rank,
            group.size,
            len(dataset),
        )

    def _domain(self, domain: int) -> Domain:
        try:
            return self.dataset[domain]
        except IndexError:
            raise IndexError(f"domain index {domain} is out of range for {len(self.dataset)} local domains") from None

    def _topology_name(self, topology: Optional[str]) -> Optional[str]:
        return topology if topology is not None else self.config.default_topology

    def _required_topology(self, topology: Optional[str]) -> str:
        name = self._topology_name(topology)
        if not name:
            raise ValueError("a topology name is required (pass one or set default_topology)")
        return name

    def _as_histogram(self, hist: Union[str, Histogram], num_bins: Optional[int] = None) -> Histogram:
        if isinstance(hist, Histogram):
            return hist
        return self.histogram(hist, num_bins=num_bins)

    # field statistics

    def sum(self, field: str) -> SumResult:
        return stats.field_sum(self.dataset, field, group=self.group)

    def avg(self, field: str) -> ScalarResult:
        return stats.field_avg(self.dataset, field, group=self.group)

    def min(self, field: str) -> ExtremumResult:
        return stats.field_min(self.dataset, field, group=self.group)

    def max(self, field: str) -> ExtremumResult:
        return stats.field_max(self.dataset, field, group=self.group)

    def histogram(
        self,
        field: str,
        *,
        num_bins: Optional[int] = None,
        min_val: Optional[float] = None,
        max_val: Optional[float] = None,
    ) -> Histogram:
        """Histogram of ``field``; an omitted bound is the field's global finite extremum."""
        bins = int(num_bins) if num_bins is not None else self.config.histogram_bins
        if min_val is None or max_val is None:
            lo, hi = stats.field_finite_range(self.dataset, field, group=self.group)
            min_val = lo if min_val is None else min_val
            max_val = hi if max_val is None else max_val
        if max_val == min_val:
            # constant field
            max_val = min_val + 1.0
        return stats.field_histogram(self.dataset, field, min_val, max_val, bins, group=self.group)

    def entropy(self, hist: Union[str, Histogram], *, num_bins: Optional[int] = None) -> ScalarResult:
        return stats.field_entropy(self._as_histogram(hist, num_bins))

    def pdf(self, hist: Union[str, Histogram], *, num_bins: Optional[int] = None) -> Histogram:
        return stats.field_pdf(self._as_histogram(hist, num_bins))

    def cdf(self, hist: Union[str, Histogram], *, num_bins: Optional[int] = None) -> Histogram:
        return stats.field_cdf(self._as_histogram(hist, num_bins))

    def quantile(
        self,
        cdf: Union[str, Histogram],
        target: float,
        *,
        interpolation: Optional[str] = None,
        num_bins: Optional[int] = None,
    ) -> ScalarResult:
        """Quantile from a cdf, or from the cdf of a field given by name."""
        if not isinstance(cdf, Histogram):
            cdf = self.cdf(cdf, num_bins=num_bins)
        mode = interpolation if interpolation is not None else self.config.quantile_interpolation
        return stats.quantile(cdf, target, mode)

    def nan_count(self, field: str) -> ScalarResult:
        return stats.field_nan_count(self.dataset, field, group=self.group)

    def inf_count(self, field: str) -> ScalarResult:
        return stats.field_inf_count(self.dataset, field, group=self.group)

    # metadata agreement

    def field_assoc(self, field: str) -> str:
        return agreement.field_assoc(self.dataset, field, group=self.group)

    def field_type(self, field: str) -> str:
        return agreement.field_type(self.dataset, field, group=self.group)

    def field_topology(self, field: str) -> str:
        return agreement.field_topology(self.dataset, field, group=self.group)

    def spatial_dims(self, topology: Optional[str] = None) -> int:
        return agreement.spatial_dims(self.dataset, self._required_topology(topology), group=self.group)

    def has_field(self, field: str) -> bool:
        return agreement.has_field(self.dataset, field, group=self.group)

    def has_topology(self, topology: str) -> bool:
        return agreement.has_topology(self.dataset, topology, group=self.group)

    def coord_type(self, topology: Optional[str] = None) -> str:
        return agreement.coord_type(self.dataset, self._required_topology(topology), group=self.group)

    def topology_types(self, topology: Optional[str] = None) -> Dict[str, int]:
        return agreement.topology_types(self.dataset, self._required_topology(topology), group=self.group)

    def is_scalar_field(self, field: str) -> bool:
        return agreement.is_scalar_field(self.dataset, field, group=self.group)

    def get_state_var(self, name: str) -> Any:
        return agreement.get_state_var(self.dataset, name, group=self.group)

    # mesh sizes and locations

    def _count(self, counter: Any, topology: Optional[str], domain: Optional[int]) -> int:
        name = self._topology_name(topology)
        if domain is not None:
            return counter(self._domain(domain), name)
        if name:
            local = sum(counter(dom, name) for dom in self.dataset.domains_with_topology(name))
        else:
            local = sum(counter(dom, None) for dom in self.dataset if dom.topologies)
        return int(self.group.allreduce(int(local), "sum"))

    def num_cells(self, topology: Optional[str] = None, *, domain: Optional[int] = None) -> int:
        """Element count of one local domain, or of the whole dataset when ``domain`` is None."""
        return self._count(num_cells, topology, domain)

    def num_points(self, topology: Optional[str] = None, *, domain: Optional[int] = None) -> int:
        return self._count(num_points, topology, domain)

    def vertex_location(self, index: int, *, domain: int = 0, topology: Optional[str] = None) -> np.ndarray:
        return vertex_location(self._domain(domain), index, self._topology_name(topology))

    def element_location(self, index: int, *, domain: int = 0, topology: Optional[str] = None) -> np.ndarray:
        return element_location(self._domain(domain), index, self._topology_name(topology))

    def element_vertex_indices(self, index: int, *, domain: int = 0, topology: Optional[str] = None) -> np.ndarray:
        return element_vertex_indices(self._domain(domain), index, self._topology_name(topology))

    def evaluate(self, name: str, *args: Any, **params: Any) -> Any:
        """Run the query called ``name``."""
        if name not in QUERY_NAMES:
            raise ValueError(f"unknown query '{name}'")
        return getattr(self, name)(*args, **params)
