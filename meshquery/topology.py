from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .errors import ConfigurationError
from .mesh import (
    Coordset,
    Domain,
    ExplicitCoords,
    PointsTopology,
    RectilinearCoords,
    RectilinearTopology,
    StructuredTopology,
    Topology,
    UniformCoords,
    UniformTopology,
    UnstructuredTopology,
)


def logical_index_2d(index: int, dims: Sequence[int]) -> tuple[int, int, int]:
    return index % dims[0], index // dims[0], 0


def logical_index_3d(index: int, dims: Sequence[int]) -> tuple[int, int, int]:
    return (
        index % dims[0],
        (index // dims[0]) % dims[1],
        index // (dims[0] * dims[1]),
    )


def logical_index(index: int, dims: Sequence[int]) -> tuple[int, int, int]:
    """Split a flat index into ``(i, j, k)``; axis 0 varies fastest."""
    if len(dims) == 3:
        return logical_index_3d(index, dims)
    return logical_index_2d(index, dims)


def flat_index(ijk: Sequence[int], dims: Sequence[int]) -> int:
    """Inverse of :func:`logical_index`."""
    out = ijk[0] + ijk[1] * dims[0]
    if len(dims) == 3:
        out += ijk[2] * dims[0] * dims[1]
    return int(out)


def _check_index(index: int, count: int, what: str) -> int:
    index = int(index)
    if not 0 <= index < count:
        raise IndexError(f"{what} index {index} is out of range for {count} {what}s")
    return index


def _uniform_element_dims(coords: UniformCoords) -> tuple[int, ...]:
    return tuple(d - 1 for d in coords.dims)


def _rectilinear_element_dims(coords: RectilinearCoords) -> tuple[int, ...]:
    return tuple(d - 1 for d in coords.dims)


def _coordset_num_points(coords: Coordset) -> int:
    if isinstance(coords, UniformCoords):
        return int(np.prod(coords.dims))
    if isinstance(coords, RectilinearCoords):
        return int(np.prod(coords.dims))
    if isinstance(coords, ExplicitCoords):
        return coords.num_points
    raise ConfigurationError(f"unknown coordset type: '{type(coords).__name__}'")


def _uniform_vertex(coords: UniformCoords, index: int) -> np.ndarray:
    ijk = logical_index(index, coords.dims)
    pos = np.zeros(3, dtype=np.float64)
    for a in range(len(coords.dims)):
        pos[a] = coords.origin[a] + ijk[a] * coords.spacing[a]
    if not coords.is_3d:
        pos[2] = coords.origin[2]
    return pos


def _rectilinear_vertex(coords: RectilinearCoords, index: int) -> np.ndarray:
    ijk = logical_index(index, coords.dims)
    pos = np.zeros(3, dtype=np.float64)
    for a, axis in enumerate(coords.values):
        pos[a] = axis[ijk[a]]
    return pos


def _explicit_vertex(coords: ExplicitCoords, index: int) -> np.ndarray:
    pos = np.zeros(3, dtype=np.float64)
    for a, axis in enumerate(coords.values):
        pos[a] = axis[index]
    return pos


def coordset_vertex(coords: Coordset, index: int) -> np.ndarray:
    if isinstance(coords, UniformCoords):
        return _uniform_vertex(coords, index)
    if isinstance(coords, RectilinearCoords):
        return _rectilinear_vertex(coords, index)
    if isinstance(coords, ExplicitCoords):
        return _explicit_vertex(coords, index)
    raise ConfigurationError(f"unknown coordset type: '{type(coords).__name__}'")


def _uniform_element(coords: UniformCoords, index: int) -> np.ndarray:
    # the element's logical index addresses its lower-left vertex
    ijk = logical_index(index, _uniform_element_dims(coords))
    pos = np.zeros(3, dtype=np.float64)
    for a in range(len(coords.dims)):
        pos[a] = coords.origin[a] + ijk[a] * coords.spacing[a] + 0.5 * coords.spacing[a]
    if not coords.is_3d:
        pos[2] = coords.origin[2]
    return pos


def _rectilinear_element(coords: RectilinearCoords, index: int) -> np.ndarray:
    ijk = logical_index(index, _rectilinear_element_dims(coords))
    pos = np.zeros(3, dtype=np.float64)
    for a, axis in enumerate(coords.values):
        pos[a] = 0.5 * (float(axis[ijk[a]]) + float(axis[ijk[a] + 1]))
    return pos


def _structured_indices(element_dims: Sequence[int], index: int) -> np.ndarray:
    vw = element_dims[0] + 1
    vh = element_dims[1] + 1
    ei, ej, ek = logical_index(index, element_dims)
    v0 = (ek * vh + ej) * vw + ei
    quad = [v0, v0 + 1, v0 + 1 + vw, v0 + vw]
    if len(element_dims) == 3:
        quad += [v + vw * vh for v in quad]
    return np.asarray(quad, dtype=np.int64)


def topology_num_cells(topo: Topology, coords: Coordset) -> int:
    if isinstance(topo, PointsTopology):
        return _coordset_num_points(coords)
    if isinstance(topo, UniformTopology):
        return int(np.prod(_uniform_element_dims(coords)))  # type: ignore[arg-type]
    if isinstance(topo, RectilinearTopology):
        return int(np.prod(_rectilinear_element_dims(coords)))  # type: ignore[arg-type]
    if isinstance(topo, StructuredTopology):
        return int(np.prod(topo.element_dims))
    if isinstance(topo, UnstructuredTopology):
        return int(topo.connectivity.shape[0]) // topo.indices_per_element
    raise ConfigurationError(f"unknown topology type: '{type(topo).__name__}'")


def topology_element_indices(topo: Topology, coords: Coordset, index: int) -> np.ndarray:
    """Vertex indices incident to element ``index`` of ``topo``."""
    index = _check_index(index, topology_num_cells(topo, coords), "element")
    if isinstance(topo, UnstructuredTopology):
        per_element = topo.indices_per_element
        offset = index * per_element
        return np.asarray(topo.connectivity[offset : offset + per_element], dtype=np.int64)
    if isinstance(topo, StructuredTopology):
        return _structured_indices(topo.element_dims, index)
    if isinstance(topo, UniformTopology):
        return _structured_indices(_uniform_element_dims(coords), index)  # type: ignore[arg-type]
    if isinstance(topo, RectilinearTopology):
        return _structured_indices(_rectilinear_element_dims(coords), index)  # type: ignore[arg-type]
    if isinstance(topo, PointsTopology):
        return np.asarray([index], dtype=np.int64)
    raise ConfigurationError(f"unknown topology type: '{type(topo).__name__}'")


def element_vertex_indices(domain: Domain, index: int, topo_name: Optional[str] = None) -> np.ndarray:
    name = domain.topology_name(topo_name)
    return topology_element_indices(domain.topologies[name], domain.coordset_for(name), index)


def vertex_location(domain: Domain, index: int, topo_name: Optional[str] = None) -> np.ndarray:
    """Spatial position ``(x, y, z)`` of vertex ``index``.

    Without ``topo_name`` the domain's first topology is used. 2-D meshes
    report ``z`` as the coordset origin (0 for array coordsets).
    """
    coords = domain.coordset_for(topo_name)
    index = _check_index(index, _coordset_num_points(coords), "vertex")
    return coordset_vertex(coords, index)


def element_location(domain: Domain, index: int, topo_name: Optional[str] = None) -> np.ndarray:
    """Spatial position of the center of element ``index``."""
    name = domain.topology_name(topo_name)
    topo = domain.topologies[name]
    coords = domain.coordset_for(name)
    index = _check_index(index, topology_num_cells(topo, coords), "element")
    if isinstance(topo, PointsTopology):
        return coordset_vertex(coords, index)
    if isinstance(coords, UniformCoords):
        return _uniform_element(coords, index)
    if isinstance(coords, RectilinearCoords):
        return _rectilinear_element(coords, index)
    if isinstance(coords, ExplicitCoords):
        conn = topology_element_indices(topo, coords, index)
        pos = np.zeros(3, dtype=np.float64)
        for vert in conn:
            pos += _explicit_vertex(coords, int(vert))
        return pos / float(len(conn))
    raise ConfigurationError(f"unknown coordset type: '{type(coords).__name__}'")


def num_points(domain: Domain, topo_name: Optional[str] = None) -> int:
    return _coordset_num_points(domain.coordset_for(topo_name))


def num_cells(domain: Domain, topo_name: Optional[str] = None) -> int:
    name = domain.topology_name(topo_name)
    return topology_num_cells(domain.topologies[name], domain.coordset_for(name))


def is_3d(domain: Domain, topo_name: Optional[str] = None) -> bool:
    """Whether the coordset behind ``topo_name`` carries a third axis."""
    coords = domain.coordset_for(topo_name)
    if isinstance(coords, (UniformCoords, RectilinearCoords, ExplicitCoords)):
        return coords.is_3d
    raise ConfigurationError(f"unknown coordset type: '{type(coords).__name__}'")
