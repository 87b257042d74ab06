"""Dataset-wide answers to metadata questions.

Each process only sees its own domains. Every query here first computes a
local predicate, then globalizes it across the process group, and only then
branches, so consistency errors are raised on every process alike.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import numpy as np

from .comm import ProcessGroup, resolve_group
from .errors import ConfigurationError, ConsistencyError, MissingDataError
from .mesh import TOPOLOGY_KINDS, Dataset, UniformCoords
from .topology import is_3d

logger = logging.getLogger(__name__)


def someone_agrees(local: bool, *, group: Optional[ProcessGroup] = None) -> bool:
    """True when ``local`` is true on at least one process."""
    return bool(resolve_group(group).allreduce(bool(local), "lor"))


def exists_anywhere(local: bool, *, group: Optional[ProcessGroup] = None) -> bool:
    return someone_agrees(local, group=group)


def _shared_text(group: ProcessGroup, text: str) -> str:
    # the longest local answer wins; any non-empty one beats "no answer"
    _, root = group.argmax(float(len(text)), True)
    return str(group.broadcast(text, root))


def has_field(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> bool:
    local = any(dom.has_field(field) for dom in dataset)
    return exists_anywhere(local, group=group)


def has_topology(dataset: Dataset, topology: str, *, group: Optional[ProcessGroup] = None) -> bool:
    local = any(dom.has_topology(topology) for dom in dataset)
    return exists_anywhere(local, group=group)


def field_assoc(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> str:
    group = resolve_group(group)
    vertex = False
    element = False
    unknown = ""
    for dom in dataset.domains_with_field(field):
        association = dom.fields[field].association
        if association == "vertex":
            vertex = True
        elif association == "element":
            element = True
        elif not unknown:
            unknown = association or "unset"

    if someone_agrees(bool(unknown), group=group):
        unknown = _shared_text(group, unknown)
        logger.error("field '%s' has unsupported association '%s'", field, unknown)
        raise ConfigurationError(f"association '{unknown}' of field '{field}' not implemented")
    vertex_vote = someone_agrees(vertex, group=group)
    element_vote = someone_agrees(element, group=group)
    if vertex_vote and element_vote:
        logger.error("field '%s' is vertex-associated on some domains and element-associated on others", field)
        raise ConsistencyError(f"there is disagreement about the association of field '{field}'")
    if not (vertex_vote or element_vote):
        raise MissingDataError(f"field '{field}' is not defined on any domain")
    return "vertex" if vertex_vote else "element"


def field_type(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> str:
    """``"float"`` or ``"double"`` for the values of ``field``.

    Any other element type, or a mix of the two, is a :class:`ConsistencyError`.
    """
    group = resolve_group(group)
    has_float = False
    has_double = False
    bad_type = ""
    for dom in dataset.domains_with_field(field):
        dtype = dom.fields[field].dtype
        if dtype == np.float32:
            has_float = True
        elif dtype == np.float64:
            has_double = True
        elif not bad_type:
            bad_type = dtype.name

    if someone_agrees(bool(bad_type), group=group):
        type_name = _shared_text(group, bad_type)
        logger.error("field '%s' has values of type '%s'", field, type_name)
        raise ConsistencyError(f"field '{field}' is neither float nor double; type is '{type_name}'")

    float_vote = someone_agrees(has_float, group=group)
    double_vote = someone_agrees(has_double, group=group)
    if float_vote and double_vote:
        logger.error("field '%s' is float on some domains and double on others", field)
        raise ConsistencyError(f"there is disagreement about the type of field '{field}'")
    if not (float_vote or double_vote):
        raise MissingDataError(f"field '{field}' is not defined on any domain")
    return "float" if float_vote else "double"


def field_topology(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> str:
    """Name of the topology ``field`` is defined over, or ``""`` if unknown everywhere."""
    group = resolve_group(group)
    name = ""
    for dom in dataset.domains_with_field(field):
        name = dom.fields[field].topology
        break
    return _shared_text(group, name)


def spatial_dims(dataset: Dataset, topology: str, *, group: Optional[ProcessGroup] = None) -> int:
    group = resolve_group(group)
    has_3d = False
    has_2d = False
    for dom in dataset.domains_with_topology(topology):
        if is_3d(dom, topology):
            has_3d = True
        else:
            has_2d = True

    vote_3d = someone_agrees(has_3d, group=group)
    vote_2d = someone_agrees(has_2d, group=group)
    if vote_2d and vote_3d:
        logger.error("topology '%s' is 2-D on some domains and 3-D on others", topology)
        raise ConsistencyError(f"there is disagreement about the spatial dims of topology '{topology}'")
    if not (vote_2d or vote_3d):
        raise MissingDataError(f"topology '{topology}' is not defined on any domain")
    return 3 if vote_3d else 2


def coord_type(dataset: Dataset, topology: str, *, group: Optional[ProcessGroup] = None) -> str:
    """``"float"`` or ``"double"`` for the coordinates behind ``topology``.

    Uniform coordsets store no arrays and count as double. When any domain
    stores float32 coordinate arrays the answer is ``"float"``.
    """
    group = resolve_group(group)
    has_float = False
    bad_type = ""
    for dom in dataset.domains_with_topology(topology):
        coords = dom.coordset_for(topology)
        if isinstance(coords, UniformCoords):
            continue
        dtype = coords.values[0].dtype
        if dtype == np.float32:
            has_float = True
        elif dtype != np.float64 and not bad_type:
            bad_type = dtype.name

    if someone_agrees(bool(bad_type), group=group):
        type_name = _shared_text(group, bad_type)
        logger.error("coordinates of topology '%s' have type '%s'", topology, type_name)
        raise ConsistencyError(
            f"coordinates of topology '{topology}' are neither float nor double; type is '{type_name}'"
        )
    return "float" if someone_agrees(has_float, group=group) else "double"


def topology_types(dataset: Dataset, topology: str, *, group: Optional[ProcessGroup] = None) -> Dict[str, int]:
    """Number of domains defining ``topology`` with each topology kind."""
    group = resolve_group(group)
    counts = np.zeros(len(TOPOLOGY_KINDS), dtype=np.int64)
    for dom in dataset.domains_with_topology(topology):
        counts[TOPOLOGY_KINDS.index(dom.topologies[topology].kind)] += 1
    counts = np.asarray(group.allreduce(counts, "sum"), dtype=np.int64)
    return {kind: int(n) for kind, n in zip(TOPOLOGY_KINDS, counts)}


def is_scalar_field(dataset: Dataset, field: str, *, group: Optional[ProcessGroup] = None) -> bool:
    """Whether ``field`` stores a single value array rather than components.

    A field defined nowhere is not scalar.
    """
    group = resolve_group(group)
    scalar = False
    multi = False
    for dom in dataset.domains_with_field(field):
        if dom.fields[field].is_scalar:
            scalar = True
        else:
            multi = True

    scalar_vote = someone_agrees(scalar, group=group)
    multi_vote = someone_agrees(multi, group=group)
    if scalar_vote and multi_vote:
        logger.error("field '%s' is scalar on some domains and multi-component on others", field)
        raise ConsistencyError(f"there is disagreement about the number of components of field '{field}'")
    return scalar_vote


def get_state_var(dataset: Dataset, name: str, *, group: Optional[ProcessGroup] = None) -> Any:
    """Value of state variable ``name`` from the first domain defining it.

    Processes holding no such domain receive the value from the lowest rank
    that does.
    """
    group = resolve_group(group)
    value: Any = None
    present = False
    for dom in dataset:
        if name in dom.state:
            value = dom.state[name]
            present = True
            break

    _, root = group.argmax(0.0, present)
    if root < 0:
        raise MissingDataError(f"unable to retrieve state variable '{name}'")
    return group.broadcast(value, root)
