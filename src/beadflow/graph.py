from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Iterable

from .models import Bead, BeadStatus

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """A bead set that cannot be scheduled at all. Raised before any dispatch."""


class CycleError(ConfigurationError):
    def __init__(self, bead_ids: list[str]) -> None:
        self.bead_ids = list(bead_ids)
        path = " -> ".join(self.bead_ids + self.bead_ids[:1])
        super().__init__(f"Dependency cycle detected: {path}")


class UnknownDependencyError(ConfigurationError):
    def __init__(self, bead_id: str, missing: str) -> None:
        self.bead_id = bead_id
        self.missing = missing
        super().__init__(f"Bead {bead_id} depends on unknown bead {missing}")


class DuplicateBeadError(ConfigurationError):
    def __init__(self, bead_id: str) -> None:
        self.bead_id = bead_id
        super().__init__(f"Duplicate bead id: {bead_id}")


@dataclass
class GraphNode:
    bead: Bead
    unresolved: set[str] = field(default_factory=set)
    dependents: set[str] = field(default_factory=set)
    schedulable: bool = True


def _sorted(beads: Iterable[Bead]) -> list[Bead]:
    return sorted(beads, key=lambda bead: bead.sort_key)


class DependencyGraph:
    """In-memory DAG over a bead selection with incremental readiness tracking.

    Built once per run with ``build``. Status changes flow in through
    ``set_status`` / ``on_completed`` so readiness never needs a full rebuild.
    Context beads (dependency targets outside the selection) count towards
    readiness but are never returned as ready, unreachable or waiting.
    """

    def __init__(self, nodes: dict[str, GraphNode], order: list[str]) -> None:
        self._nodes = nodes
        self._order = order

    @classmethod
    def build(cls, beads: Iterable[Bead], *, context: Iterable[Bead] = ()) -> "DependencyGraph":
        """Construct the graph or raise a ``ConfigurationError``.

        Args:
            beads: The selected beads; these are the only ones ever scheduled.
            context: Beads referenced as dependencies from outside the selection.

        Returns:
            A fully built graph.

        Raises:
            DuplicateBeadError: If two selected beads share an id.
            UnknownDependencyError: If a selected bead depends on an id that is
                neither selected nor supplied as context.
            CycleError: If the dependency edges contain a cycle.
        """
        nodes: dict[str, GraphNode] = {}
        for bead in beads:
            if bead.id in nodes:
                raise DuplicateBeadError(bead.id)
            nodes[bead.id] = GraphNode(bead=bead)
        for bead in context:
            if bead.id not in nodes:
                nodes[bead.id] = GraphNode(bead=bead, schedulable=False)

        edges: dict[str, list[str]] = {}
        for bead_id, node in nodes.items():
            deps: list[str] = []
            for dep in sorted(node.bead.depends_on):
                if dep == bead_id:
                    raise CycleError([bead_id])
                if dep not in nodes:
                    if node.schedulable:
                        raise UnknownDependencyError(bead_id, dep)
                    continue
                deps.append(dep)
            edges[bead_id] = deps

        order = _topological_order(edges)

        for bead_id, deps in edges.items():
            node = nodes[bead_id]
            for dep in deps:
                nodes[dep].dependents.add(bead_id)
                if nodes[dep].bead.status != BeadStatus.COMPLETED:
                    node.unresolved.add(dep)

        graph = cls(nodes, order)
        logger.debug(
            "Built dependency graph: %s beads, %s context beads",
            len(graph),
            len(nodes) - len(graph),
        )
        return graph

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return sum(1 for node in self._nodes.values() if node.schedulable)

    def __contains__(self, bead_id: object) -> bool:
        node = self._nodes.get(bead_id) if isinstance(bead_id, str) else None
        return node is not None and node.schedulable

    def _node(self, bead_id: str) -> GraphNode:
        try:
            return self._nodes[bead_id]
        except KeyError:
            raise KeyError(f"Bead {bead_id} is not part of this graph") from None

    def get(self, bead_id: str) -> Bead:
        return self._node(bead_id).bead

    def status(self, bead_id: str) -> BeadStatus:
        return self._node(bead_id).bead.status

    def beads(self) -> list[Bead]:
        return _sorted(node.bead for node in self._nodes.values() if node.schedulable)

    def with_status(self, status: BeadStatus) -> list[Bead]:
        return [bead for bead in self.beads() if bead.status == status]

    def dependents(self, bead_id: str) -> list[str]:
        return sorted(self._node(bead_id).dependents)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def is_ready(self, bead_id: str) -> bool:
        node = self._node(bead_id)
        return node.schedulable and node.bead.status == BeadStatus.PENDING and not node.unresolved

    def ready(self) -> list[Bead]:
        return _sorted(
            node.bead
            for node in self._nodes.values()
            if node.schedulable and node.bead.status == BeadStatus.PENDING and not node.unresolved
        )

    def set_status(self, bead_id: str, status: BeadStatus, reason: str | None = None) -> list[Bead]:
        """Apply a status change to the snapshot and return beads it made ready."""
        node = self._node(bead_id)
        previous = node.bead.status
        node.bead = node.bead.model_copy(update={"status": status, "status_reason": reason})

        newly_ready: list[Bead] = []
        if status == BeadStatus.COMPLETED and previous != BeadStatus.COMPLETED:
            for dependent_id in node.dependents:
                dependent = self._nodes[dependent_id]
                dependent.unresolved.discard(bead_id)
                if (
                    dependent.schedulable
                    and not dependent.unresolved
                    and dependent.bead.status == BeadStatus.PENDING
                ):
                    newly_ready.append(dependent.bead)
        elif previous == BeadStatus.COMPLETED and status != BeadStatus.COMPLETED:
            for dependent_id in node.dependents:
                self._nodes[dependent_id].unresolved.add(bead_id)
        elif status == BeadStatus.PENDING and node.schedulable and not node.unresolved:
            newly_ready.append(node.bead)
        return _sorted(newly_ready)

    def on_completed(self, bead_id: str, reason: str | None = None) -> list[Bead]:
        """Record that ``bead_id`` completed; return dependents that just became ready."""
        if self.status(bead_id) == BeadStatus.COMPLETED:
            return []
        return self.set_status(bead_id, BeadStatus.COMPLETED, reason)

    # ------------------------------------------------------------------
    # Stuck-state detection
    # ------------------------------------------------------------------

    def _doomed(self) -> dict[str, bool]:
        doomed: dict[str, bool] = {}
        for bead_id in self._order:
            node = self._nodes[bead_id]
            status = node.bead.status
            if status == BeadStatus.BLOCKED:
                doomed[bead_id] = True
            elif status == BeadStatus.PENDING:
                doomed[bead_id] = any(
                    doomed.get(dep, False) for dep in node.bead.depends_on if dep in self._nodes
                )
            else:
                doomed[bead_id] = False
        return doomed

    def unreachable(self) -> list[Bead]:
        """Pending beads that can never become ready in this pass."""
        doomed = self._doomed()
        return [
            bead
            for bead in self.with_status(BeadStatus.PENDING)
            if doomed[bead.id]
        ]

    def waiting(self) -> list[Bead]:
        """Pending beads that are neither ready nor unreachable."""
        doomed = self._doomed()
        return [
            bead
            for bead in self.with_status(BeadStatus.PENDING)
            if not doomed[bead.id] and self._nodes[bead.id].unresolved
        ]

    def blocked_by(self, bead_id: str) -> list[str]:
        """Blocked beads upstream of ``bead_id`` that keep it from running."""
        found: set[str] = set()
        seen: set[str] = set()
        queue: deque[str] = deque(self._node(bead_id).bead.depends_on)
        while queue:
            current = queue.popleft()
            if current in seen or current not in self._nodes:
                continue
            seen.add(current)
            bead = self._nodes[current].bead
            if bead.status == BeadStatus.BLOCKED:
                found.add(current)
            elif bead.status == BeadStatus.PENDING:
                queue.extend(bead.depends_on)
        return sorted(found)


def _topological_order(edges: dict[str, list[str]]) -> list[str]:
    indegree = {bead_id: len(deps) for bead_id, deps in edges.items()}
    dependents: dict[str, list[str]] = defaultdict(list)
    for bead_id, deps in edges.items():
        for dep in deps:
            dependents[dep].append(bead_id)

    queue = deque(sorted(bead_id for bead_id, degree in indegree.items() if degree == 0))
    order: list[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for nxt in sorted(dependents[current]):
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)

    if len(order) != len(edges):
        remaining = {bead_id for bead_id, degree in indegree.items() if degree > 0}
        raise CycleError(_find_cycle(edges, remaining))
    return order


def _find_cycle(edges: dict[str, list[str]], remaining: set[str]) -> list[str]:
    # Every node left over by Kahn's algorithm still has a dependency inside
    # ``remaining``, so following those edges must revisit a node.
    path: list[str] = []
    position: dict[str, int] = {}
    current = min(remaining)
    while current not in position:
        position[current] = len(path)
        path.append(current)
        current = min(dep for dep in edges[current] if dep in remaining)
    return path[position[current]:]
