from __future__ import annotations

import functools
import logging
import operator
from typing import Any, Optional

import numpy as np

from .codec import packb, unpackb

logger = logging.getLogger(__name__)

REDUCE_OPS = ("sum", "min", "max", "lor", "land")


def _combine(values: list[Any], op: str) -> Any:
    if op == "sum":
        return functools.reduce(operator.add, values)
    if op == "min":
        return functools.reduce(np.minimum, values)
    if op == "max":
        return functools.reduce(np.maximum, values)
    if op == "lor":
        return any(bool(v) for v in values)
    if op == "land":
        return all(bool(v) for v in values)
    raise ValueError(f"unsupported reduce op '{op}' (expected one of {', '.join(REDUCE_OPS)})")


class ProcessGroup:
    """Collective operations over the processes taking part in a query.

    Every method is collective: all processes of the group must call it in
    the same order, or the group deadlocks.
    """

    @property
    def rank(self) -> int:
        raise NotImplementedError

    @property
    def size(self) -> int:
        raise NotImplementedError

    def allgather(self, value: Any) -> list[Any]:
        raise NotImplementedError

    def allreduce(self, value: Any, op: str = "sum") -> Any:
        return _combine(self.allgather(value), op)

    def broadcast(self, value: Any, root: int) -> Any:
        if not 0 <= root < self.size:
            raise ValueError(f"broadcast root {root} is outside a group of size {self.size}")
        payload = packb(value) if self.rank == root else None
        return unpackb(self.allgather(payload)[root])

    def _select(self, value: float, present: bool, *, use_max: bool) -> tuple[float, int]:
        entries = self.allgather((float(value), bool(present)))
        best = float("nan")
        best_rank = -1
        for rank, (candidate, has) in enumerate(entries):
            if not has:
                continue
            if best_rank < 0 or (candidate > best if use_max else candidate < best):
                best = candidate
                best_rank = rank
        return best, best_rank

    def argmin(self, value: float, present: bool = True) -> tuple[float, int]:
        """Smallest submitted value and the rank that submitted it.

        Ties go to the lowest rank. Ranks passing ``present=False`` never
        win; ``(nan, -1)`` is returned when no rank is present.
        """
        return self._select(value, present, use_max=False)

    def argmax(self, value: float, present: bool = True) -> tuple[float, int]:
        """Largest submitted value and its rank; same rules as :meth:`argmin`."""
        return self._select(value, present, use_max=True)


class SerialGroup(ProcessGroup):
    """Size-1 group used when running without MPI."""

    @property
    def rank(self) -> int:
        return 0

    @property
    def size(self) -> int:
        return 1

    def allgather(self, value: Any) -> list[Any]:
        return [value]

    def allreduce(self, value: Any, op: str = "sum") -> Any:
        return _combine([value], op)

    def broadcast(self, value: Any, root: int) -> Any:
        if root != 0:
            raise ValueError(f"broadcast root {root} is outside a group of size 1")
        return value


class MPIGroup(ProcessGroup):
    """Process group backed by an mpi4py communicator."""

    def __init__(self, comm: Any | None = None) -> None:
        try:
            from mpi4py import MPI  # type: ignore
        except ImportError as exc:
            raise ImportError(
                "mpi4py is required for MPIGroup. Install the 'mpi' extra: pip install meshquery[mpi]"
            ) from exc
        self._mpi = MPI
        self._comm = comm if comm is not None else MPI.COMM_WORLD
        self._ops = {
            "sum": MPI.SUM,
            "min": MPI.MIN,
            "max": MPI.MAX,
            "lor": MPI.LOR,
            "land": MPI.LAND,
        }
        logger.debug("MPI group rank %d of %d", self.rank, self.size)

    @property
    def comm(self) -> Any:
        return self._comm

    @property
    def rank(self) -> int:
        return int(self._comm.Get_rank())

    @property
    def size(self) -> int:
        return int(self._comm.Get_size())

    def allgather(self, value: Any) -> list[Any]:
        return self._comm.allgather(value)

    def allreduce(self, value: Any, op: str = "sum") -> Any:
        if op not in self._ops:
            raise ValueError(f"unsupported reduce op '{op}' (expected one of {', '.join(REDUCE_OPS)})")
        mpi_op = self._ops[op]
        if isinstance(value, np.ndarray):
            send = np.ascontiguousarray(value)
            recv = np.empty_like(send)
            self._comm.Allreduce(send, recv, op=mpi_op)
            return recv
        return self._comm.allreduce(value, op=mpi_op)

    def broadcast(self, value: Any, root: int) -> Any:
        if not 0 <= root < self.size:
            raise ValueError(f"broadcast root {root} is outside a group of size {self.size}")
        raw = self._comm.bcast(packb(value) if self.rank == root else None, root=root)
        return unpackb(raw)


def resolve_group(group: Optional[ProcessGroup]) -> ProcessGroup:
    return group if group is not None else SerialGroup()
