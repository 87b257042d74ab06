"""msgpack snapshots of a dataset and their distribution over a process group."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from .codec import packb, unpackb
from .comm import ProcessGroup, resolve_group
from .mesh import Dataset, domain_to_dict, load_domain_from_dict

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = "meshquery-snapshot"
SNAPSHOT_VERSION = 1


def pack_dataset(dataset: Dataset) -> bytes:
    return packb(
        {
            "format": SNAPSHOT_FORMAT,
            "version": SNAPSHOT_VERSION,
            "domains": [domain_to_dict(dom) for dom in dataset],
        }
    )


def _snapshot_domains(raw: bytes) -> list[Any]:
    payload = unpackb(raw)
    if not isinstance(payload, dict) or payload.get("format") != SNAPSHOT_FORMAT:
        raise ValueError("payload is not a meshquery snapshot")
    version = payload.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported snapshot version {version} (expected {SNAPSHOT_VERSION})")
    return list(payload["domains"])


def unpack_dataset(raw: bytes, *, rank: int = 0, size: int = 1) -> Dataset:
    """Rebuild the domains of a snapshot owned by ``rank``.

    Domains are dealt round-robin: domain ``i`` belongs to rank ``i % size``.
    The default keeps every domain.
    """
    if size <= 0 or not 0 <= rank < size:
        raise ValueError(f"rank {rank} is outside a group of size {size}")
    entries = _snapshot_domains(raw)
    domains = [load_domain_from_dict(entry) for i, entry in enumerate(entries) if i % size == rank]
    logger.debug("rank %d of %d owns %d of %d snapshot domains", rank, size, len(domains), len(entries))
    return Dataset(domains=domains)


def write_snapshot(path: str | Path, dataset: Dataset) -> None:
    Path(path).write_bytes(pack_dataset(dataset))


def load_snapshot(path: str | Path, *, group: Optional[ProcessGroup] = None) -> Dataset:
    group = resolve_group(group)
    raw = Path(path).read_bytes()
    return unpack_dataset(raw, rank=group.rank, size=group.size)


def partition_dataset(dataset: Dataset, group: Optional[ProcessGroup] = None) -> Dataset:
    """Round-robin share of an in-memory dataset held by the calling rank."""
    group = resolve_group(group)
    return Dataset(domains=[dom for i, dom in enumerate(dataset) if i % group.size == group.rank])
