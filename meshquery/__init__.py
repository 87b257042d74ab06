__all__ = [
    "QueryEngine",
    "EngineConfig",
    "load_config_from_dict",
    "Dataset",
    "Domain",
    "Field",
    "load_dataset_from_dict",
    "load_domain_from_dict",
    "ProcessGroup",
    "SerialGroup",
    "MPIGroup",
    "MeshQueryError",
    "ConfigurationError",
    "ConsistencyError",
    "MissingDataError",
    "setup_logging",
    "load_snapshot",
    "write_snapshot",
]


def __getattr__(name):
    if name == "QueryEngine":
        from .query import QueryEngine

        return QueryEngine
    if name in {"EngineConfig", "load_config_from_dict"}:
        from .config import EngineConfig, load_config_from_dict

        return EngineConfig if name == "EngineConfig" else load_config_from_dict
    if name in {"Dataset", "Domain", "Field", "load_dataset_from_dict", "load_domain_from_dict"}:
        from .mesh import Dataset, Domain, Field, load_dataset_from_dict, load_domain_from_dict

        return {
            "Dataset": Dataset,
            "Domain": Domain,
            "Field": Field,
            "load_dataset_from_dict": load_dataset_from_dict,
            "load_domain_from_dict": load_domain_from_dict,
        }[name]
    if name in {"ProcessGroup", "SerialGroup", "MPIGroup"}:
        from .comm import MPIGroup, ProcessGroup, SerialGroup

        return {"ProcessGroup": ProcessGroup, "SerialGroup": SerialGroup, "MPIGroup": MPIGroup}[name]
    if name in {"MeshQueryError", "ConfigurationError", "ConsistencyError", "MissingDataError"}:
        from . import errors

        return getattr(errors, name)
    if name == "setup_logging":
        from .log import setup_logging

        return setup_logging
    if name in {"load_snapshot", "write_snapshot"}:
        from .snapshot import load_snapshot, write_snapshot

        return load_snapshot if name == "load_snapshot" else write_snapshot
    raise AttributeError(name)
