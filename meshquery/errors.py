from __future__ import annotations


class MeshQueryError(RuntimeError):
    """Base class for failures raised while answering a mesh query."""


class ConfigurationError(MeshQueryError):
    """Unknown topology/coordset kind, unsupported shape or association."""


class ConsistencyError(MeshQueryError):
    """Domains or processes disagree about metadata that must be uniform."""


class MissingDataError(MeshQueryError):
    """A requested field, topology or state variable is not defined anywhere."""
