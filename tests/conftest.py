from __future__ import annotations

import threading
from typing import Any, Callable

import pytest

from meshquery.comm import ProcessGroup


class _Exchange:
    def __init__(self, size: int) -> None:
        self.size = size
        self.barrier = threading.Barrier(size, timeout=10.0)
        self.slots: list[Any] = [None] * size


class ThreadedGroup(ProcessGroup):
    """In-process group whose ranks are threads sharing one exchange."""

    def __init__(self, exchange: _Exchange, rank: int) -> None:
        self._exchange = exchange
        self._rank = rank

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._exchange.size

    def allgather(self, value: Any) -> list[Any]:
        ex = self._exchange
        ex.slots[self._rank] = value
        ex.barrier.wait()
        out = list(ex.slots)
        ex.barrier.wait()
        return out


def _run_ranks(size: int, fn: Callable[[ThreadedGroup], Any]) -> list[Any]:
    """Run ``fn`` once per simulated rank; each entry is a result or the raised exception."""
    exchange = _Exchange(size)
    outcomes: list[Any] = [None] * size

    def _target(rank: int) -> None:
        try:
            outcomes[rank] = fn(ThreadedGroup(exchange, rank))
        except BaseException as exc:  # collected for the test to inspect
            outcomes[rank] = exc

    threads = [threading.Thread(target=_target, args=(rank,)) for rank in range(size)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30.0)
    return outcomes


@pytest.fixture
def run_ranks() -> Callable[[int, Callable[[ThreadedGroup], Any]], list[Any]]:
    return _run_ranks
