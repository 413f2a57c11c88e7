from __future__ import annotations

from typing import Callable

import pytest

from beadflow.graph import DependencyGraph
from beadflow.lifecycle import BeadLifecycle
from beadflow.models import Bead, BeadKind, BeadStatus
from beadflow.store import InMemoryBeadStore


def bead(
    bead_id: str,
    *,
    depends_on: tuple[str, ...] = (),
    priority: int = 2,
    kind: BeadKind = BeadKind.IMPL,
    status: BeadStatus = BeadStatus.PENDING,
    group: str | None = None,
) -> Bead:
    return Bead(
        id=bead_id,
        title=f"bead {bead_id}",
        kind=kind,
        depends_on=frozenset(depends_on),
        priority=priority,
        status=status,
        group=group,
    )


@pytest.fixture
def make_bead() -> Callable[..., Bead]:
    return bead


@pytest.fixture
def seeded() -> Callable[..., tuple[InMemoryBeadStore, DependencyGraph, BeadLifecycle]]:
    """Put beads into a fresh in-memory store and wire graph + lifecycle over it."""

    def _seed(*beads: Bead) -> tuple[InMemoryBeadStore, DependencyGraph, BeadLifecycle]:
        store = InMemoryBeadStore()
        for item in beads:
            store.put(item)
        graph = DependencyGraph.build(store.list())
        return store, graph, BeadLifecycle(store, graph)

    return _seed
