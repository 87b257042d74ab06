from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import numpy as np

from .errors import ConfigurationError, MissingDataError

AXIS_NAMES = ("x", "y", "z")
DIM_NAMES = ("i", "j", "k")
SPACING_NAMES = ("dx", "dy", "dz")

# vertices per element for the supported unstructured shapes
ELEMENT_SHAPES: Dict[str, int] = {"point": 1, "tri": 3, "quad": 4, "tet": 4, "hex": 8}

TOPOLOGY_KINDS = ("points", "uniform", "rectilinear", "structured", "unstructured")
COORDSET_KINDS = ("uniform", "rectilinear", "explicit")


def num_indices(shape: str) -> int:
    try:
        return ELEMENT_SHAPES[shape]
    except KeyError:
        raise ConfigurationError(f"unsupported element type '{shape}'") from None


@dataclass(frozen=True)
class UniformCoords:
    dims: tuple[int, ...]
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0)
    spacing: tuple[float, float, float] = (1.0, 1.0, 1.0)
    kind: ClassVar[str] = "uniform"

    @property
    def is_3d(self) -> bool:
        return len(self.dims) == 3


@dataclass(frozen=True, eq=False)
class RectilinearCoords:
    values: tuple[np.ndarray, ...]
    kind: ClassVar[str] = "rectilinear"

    @property
    def is_3d(self) -> bool:
        return len(self.values) == 3

    @property
    def dims(self) -> tuple[int, ...]:
        return tuple(int(axis.shape[0]) for axis in self.values)


@dataclass(frozen=True, eq=False)
class ExplicitCoords:
    values: tuple[np.ndarray, ...]
    kind: ClassVar[str] = "explicit"

    @property
    def is_3d(self) -> bool:
        return len(self.values) == 3

    @property
    def num_points(self) -> int:
        return int(self.values[0].shape[0])


Coordset = Union[UniformCoords, RectilinearCoords, ExplicitCoords]


@dataclass(frozen=True)
class PointsTopology:
    coordset: str
    kind: ClassVar[str] = "points"


@dataclass(frozen=True)
class UniformTopology:
    coordset: str
    kind: ClassVar[str] = "uniform"


@dataclass(frozen=True)
class RectilinearTopology:
    coordset: str
    kind: ClassVar[str] = "rectilinear"


@dataclass(frozen=True)
class StructuredTopology:
    coordset: str
    element_dims: tuple[int, ...]
    kind: ClassVar[str] = "structured"

    @property
    def is_3d(self) -> bool:
        return len(self.element_dims) == 3


@dataclass(frozen=True, eq=False)
class UnstructuredTopology:
    coordset: str
    shape: str
    connectivity: np.ndarray
    kind: ClassVar[str] = "unstructured"

    @property
    def indices_per_element(self) -> int:
        return num_indices(self.shape)


Topology = Union[
    PointsTopology,
    UniformTopology,
    RectilinearTopology,
    StructuredTopology,
    UnstructuredTopology,
]

# coordset kinds each topology kind may reference
_COORDSET_FOR_TOPOLOGY: Dict[str, tuple[str, ...]] = {
    "points": COORDSET_KINDS,
    "uniform": ("uniform",),
    "rectilinear": ("rectilinear",),
    "structured": ("explicit",),
    "unstructured": ("explicit",),
}


@dataclass(frozen=True, eq=False)
class Field:
    name: str
    association: str
    topology: str
    values: Union[np.ndarray, Dict[str, np.ndarray]]

    @property
    def is_scalar(self) -> bool:
        return isinstance(self.values, np.ndarray)

    @property
    def dtype(self) -> np.dtype:
        if isinstance(self.values, np.ndarray):
            return self.values.dtype
        first = next(iter(self.values.values()), None)
        if first is None:
            raise ConfigurationError(f"field '{self.name}' has no components")
        return first.dtype

    def scalar_values(self) -> np.ndarray:
        if not isinstance(self.values, np.ndarray):
            components = ", ".join(self.values)
            raise ConfigurationError(
                f"field '{self.name}' has multiple components ({components}); a scalar field is required"
            )
        return self.values


@dataclass
class Domain:
    coordsets: Dict[str, Coordset] = field(default_factory=dict)
    topologies: Dict[str, Topology] = field(default_factory=dict)
    fields: Dict[str, Field] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def domain_id(self) -> int:
        return int(self.state.get("domain_id", -1))

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def has_topology(self, name: str) -> bool:
        return name in self.topologies

    def get_field(self, name: str) -> Field:
        try:
            return self.fields[name]
        except KeyError:
            raise MissingDataError(f"domain {self.domain_id} has no field '{name}'") from None

    def topology_name(self, name: Optional[str] = None) -> str:
        """Resolve ``name``, falling back to the first topology when unset."""
        if name:
            if name not in self.topologies:
                raise MissingDataError(f"domain {self.domain_id} has no topology '{name}'")
            return name
        if not self.topologies:
            raise MissingDataError(f"domain {self.domain_id} defines no topologies")
        return next(iter(self.topologies))

    def topology(self, name: Optional[str] = None) -> Topology:
        return self.topologies[self.topology_name(name)]

    def coordset_for(self, topo_name: Optional[str] = None) -> Coordset:
        name = self.topology_name(topo_name)
        topo = self.topologies[name]
        coords = self.coordsets.get(topo.coordset)
        if coords is None:
            raise MissingDataError(
                f"topology '{name}' references missing coordset '{topo.coordset}'"
            )
        if coords.kind not in _COORDSET_FOR_TOPOLOGY[topo.kind]:
            raise ConfigurationError(
                f"topology '{name}' of type '{topo.kind}' cannot use a '{coords.kind}' coordset"
            )
        return coords


@dataclass
class Dataset:
    domains: List[Domain] = field(default_factory=list)

    def __iter__(self) -> Iterator[Domain]:
        return iter(self.domains)

    def __len__(self) -> int:
        return len(self.domains)

    def __getitem__(self, index: int) -> Domain:
        return self.domains[index]

    def domains_with_field(self, name: str) -> Iterator[Domain]:
        for dom in self.domains:
            if dom.has_field(name):
                yield dom

    def domains_with_topology(self, name: str) -> Iterator[Domain]:
        for dom in self.domains:
            if dom.has_topology(name):
                yield dom


def _axis_arrays(values: Mapping[str, Any], what: str) -> tuple[np.ndarray, ...]:
    if "x" not in values or "y" not in values:
        raise ConfigurationError(f"{what} requires 'x' and 'y' values")
    names = AXIS_NAMES if "z" in values else AXIS_NAMES[:2]
    return tuple(np.asarray(values[axis]).reshape(-1) for axis in names)


def load_coordset_from_dict(payload: Mapping[str, Any]) -> Coordset:
    kind = payload.get("type")
    if kind == "uniform":
        n_dims = payload["dims"]
        names = DIM_NAMES if "k" in n_dims else DIM_NAMES[:2]
        dims = tuple(int(n_dims[d]) for d in names)
        n_origin = payload.get("origin", {})
        n_spacing = payload.get("spacing", {})
        origin = tuple(float(n_origin.get(axis, 0.0)) for axis in AXIS_NAMES)
        spacing = tuple(float(n_spacing.get(name, 1.0)) for name in SPACING_NAMES)
        return UniformCoords(dims=dims, origin=origin, spacing=spacing)
    if kind == "rectilinear":
        return RectilinearCoords(values=_axis_arrays(payload["values"], "rectilinear coordset"))
    if kind == "explicit":
        axes = _axis_arrays(payload["values"], "explicit coordset")
        if len({axis.shape[0] for axis in axes}) != 1:
            raise ConfigurationError("explicit coordset axes must all have one entry per vertex")
        return ExplicitCoords(values=axes)
    raise ConfigurationError(f"unknown coordset type: '{kind}'")


def load_topology_from_dict(payload: Mapping[str, Any]) -> Topology:
    kind = payload.get("type")
    coordset = str(payload.get("coordset", ""))
    if kind == "points":
        return PointsTopology(coordset=coordset)
    if kind == "uniform":
        return UniformTopology(coordset=coordset)
    if kind == "rectilinear":
        return RectilinearTopology(coordset=coordset)
    if kind == "structured":
        n_dims = payload["elements"]["dims"]
        names = DIM_NAMES if "k" in n_dims else DIM_NAMES[:2]
        return StructuredTopology(
            coordset=coordset,
            element_dims=tuple(int(n_dims[d]) for d in names),
        )
    if kind == "unstructured":
        n_elements = payload["elements"]
        conn = np.asarray(n_elements["connectivity"]).reshape(-1).astype(np.int64, copy=False)
        return UnstructuredTopology(coordset=coordset, shape=str(n_elements["shape"]), connectivity=conn)
    raise ConfigurationError(f"unknown topology type: '{kind}'")


def load_field_from_dict(name: str, payload: Mapping[str, Any]) -> Field:
    raw = payload["values"]
    values: Union[np.ndarray, Dict[str, np.ndarray]]
    if isinstance(raw, Mapping):
        values = {str(comp): np.asarray(arr).reshape(-1) for comp, arr in raw.items()}
    else:
        values = np.asarray(raw).reshape(-1)
    return Field(
        name=name,
        association=str(payload.get("association", "")),
        topology=str(payload.get("topology", "")),
        values=values,
    )


def load_domain_from_dict(payload: Mapping[str, Any]) -> Domain:
    return Domain(
        coordsets={
            str(name): load_coordset_from_dict(entry)
            for name, entry in payload.get("coordsets", {}).items()
        },
        topologies={
            str(name): load_topology_from_dict(entry)
            for name, entry in payload.get("topologies", {}).items()
        },
        fields={
            str(name): load_field_from_dict(str(name), entry)
            for name, entry in payload.get("fields", {}).items()
        },
        state=dict(payload.get("state", {})),
    )


def _is_domain_payload(payload: Mapping[str, Any]) -> bool:
    return any(key in payload for key in ("coordsets", "topologies", "fields", "state"))


def load_dataset_from_dict(payload: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]) -> Dataset:
    """Build a dataset from one domain, a list of domains, or a name->domain map."""
    if isinstance(payload, Mapping):
        entries = [payload] if _is_domain_payload(payload) else list(payload.values())
    else:
        entries = list(payload)
    return Dataset(domains=[load_domain_from_dict(entry) for entry in entries])


def _coordset_to_dict(coords: Coordset) -> Dict[str, Any]:
    if isinstance(coords, UniformCoords):
        ndim = len(coords.dims)
        return {
            "type": "uniform",
            "dims": {DIM_NAMES[a]: coords.dims[a] for a in range(ndim)},
            "origin": {AXIS_NAMES[a]: coords.origin[a] for a in range(ndim)},
            "spacing": {SPACING_NAMES[a]: coords.spacing[a] for a in range(ndim)},
        }
    if isinstance(coords, (RectilinearCoords, ExplicitCoords)):
        return {
            "type": coords.kind,
            "values": {AXIS_NAMES[a]: axis for a, axis in enumerate(coords.values)},
        }
    raise ConfigurationError(f"unknown coordset type: '{type(coords).__name__}'")


def _topology_to_dict(topo: Topology) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": topo.kind, "coordset": topo.coordset}
    if isinstance(topo, StructuredTopology):
        out["elements"] = {"dims": {DIM_NAMES[a]: n for a, n in enumerate(topo.element_dims)}}
    elif isinstance(topo, UnstructuredTopology):
        out["elements"] = {"shape": topo.shape, "connectivity": topo.connectivity}
    elif not isinstance(topo, (PointsTopology, UniformTopology, RectilinearTopology)):
        raise ConfigurationError(f"unknown topology type: '{type(topo).__name__}'")
    return out


def domain_to_dict(domain: Domain) -> Dict[str, Any]:
    return {
        "state": dict(domain.state),
        "coordsets": {name: _coordset_to_dict(c) for name, c in domain.coordsets.items()},
        "topologies": {name: _topology_to_dict(t) for name, t in domain.topologies.items()},
        "fields": {
            name: {
                "association": f.association,
                "topology": f.topology,
                "values": f.values if isinstance(f.values, np.ndarray) else dict(f.values),
            }
            for name, f in domain.fields.items()
        },
    }
