from __future__ import annotations

import pytest
from pydantic import ValidationError

from beadflow.graph import CycleError, DependencyGraph, DuplicateBeadError, UnknownDependencyError
from beadflow.models import Bead, BeadKind, BeadStatus


def _ids(beads: list[Bead]) -> list[str]:
    return [item.id for item in beads]


def test_build_accepts_dag(make_bead) -> None:
    graph = DependencyGraph.build(
        [
            make_bead("A"),
            make_bead("B", depends_on=("A",)),
            make_bead("C", depends_on=("A", "B")),
        ]
    )
    assert len(graph) == 3
    assert "C" in graph
    assert graph.dependents("A") == ["B", "C"]


def test_self_dependency_is_rejected_by_model() -> None:
    with pytest.raises(ValidationError):
        Bead(id="A", title="self", depends_on=frozenset({"A"}))


def test_self_loop_built_without_validation_raises_cycle_error() -> None:
    looped = Bead.model_construct(
        id="A",
        title="self",
        kind=BeadKind.IMPL,
        status=BeadStatus.PENDING,
        depends_on=frozenset({"A"}),
        priority=1,
        payload=None,
        parent_id=None,
        group=None,
        status_reason=None,
    )
    with pytest.raises(CycleError) as excinfo:
        DependencyGraph.build([looped])
    assert excinfo.value.bead_ids == ["A"]


def test_two_node_cycle_names_participants(make_bead) -> None:
    with pytest.raises(CycleError) as excinfo:
        DependencyGraph.build([make_bead("A", depends_on=("B",)), make_bead("B", depends_on=("A",))])
    assert set(excinfo.value.bead_ids) == {"A", "B"}
    assert "A -> B -> A" in str(excinfo.value)


def test_longer_cycle_excludes_downstream_beads(make_bead) -> None:
    beads = [
        make_bead("root"),
        make_bead("X", depends_on=("root", "Z")),
        make_bead("Y", depends_on=("X",)),
        make_bead("Z", depends_on=("Y",)),
        make_bead("tail", depends_on=("Z",)),
    ]
    with pytest.raises(CycleError) as excinfo:
        DependencyGraph.build(beads)
    assert set(excinfo.value.bead_ids) == {"X", "Y", "Z"}


def test_unknown_dependency_is_configuration_error(make_bead) -> None:
    with pytest.raises(UnknownDependencyError) as excinfo:
        DependencyGraph.build([make_bead("A", depends_on=("ghost",))])
    assert excinfo.value.bead_id == "A"
    assert excinfo.value.missing == "ghost"
    assert isinstance(excinfo.value, ValueError)


def test_duplicate_ids_are_rejected(make_bead) -> None:
    with pytest.raises(DuplicateBeadError):
        DependencyGraph.build([make_bead("A"), make_bead("A")])


def test_ready_sorted_by_priority_then_id(make_bead) -> None:
    graph = DependencyGraph.build(
        [
            make_bead("c", priority=1),
            make_bead("b", priority=2),
            make_bead("a", priority=2),
            make_bead("d", priority=0, status=BeadStatus.IN_PROGRESS),
            make_bead("e", priority=0, depends_on=("b",)),
        ]
    )
    assert _ids(graph.ready()) == ["c", "a", "b"]


def test_ready_requires_every_dependency_completed(make_bead) -> None:
    graph = DependencyGraph.build(
        [
            make_bead("D1", status=BeadStatus.COMPLETED),
            make_bead("D2", status=BeadStatus.IN_PROGRESS),
            make_bead("B", depends_on=("D1", "D2")),
        ]
    )
    assert _ids(graph.ready()) == []
    assert _ids(graph.on_completed("D2")) == ["B"]
    assert _ids(graph.ready()) == ["B"]


def test_impl_never_ready_before_its_test(make_bead) -> None:
    graph = DependencyGraph.build(
        [
            make_bead("T1", kind=BeadKind.TEST),
            make_bead("I1", kind=BeadKind.IMPL, depends_on=("T1",), priority=0),
        ]
    )
    assert _ids(graph.ready()) == ["T1"]
    graph.set_status("T1", BeadStatus.IN_PROGRESS)
    assert _ids(graph.ready()) == []
    graph.set_status("T1", BeadStatus.BLOCKED, "tests did not compile")
    assert _ids(graph.ready()) == []
    assert _ids(graph.unreachable()) == ["I1"]


def test_on_completed_returns_only_newly_ready_dependents(make_bead) -> None:
    graph = DependencyGraph.build(
        [
            make_bead("A"),
            make_bead("B"),
            make_bead("C", depends_on=("A",)),
            make_bead("D", depends_on=("A", "B")),
        ]
    )
    assert _ids(graph.on_completed("A")) == ["C"]
    assert _ids(graph.on_completed("B")) == ["D"]
    # A second notification for the same bead unblocks nothing new.
    assert graph.on_completed("A") == []


def test_readiness_is_monotonic_until_dispatch(make_bead) -> None:
    graph = DependencyGraph.build([make_bead("A"), make_bead("B", depends_on=("A",)), make_bead("C")])
    graph.on_completed("A")
    for _ in range(3):
        assert "B" in _ids(graph.ready())
        graph.on_completed("C")
    graph.set_status("B", BeadStatus.IN_PROGRESS)
    assert "B" not in _ids(graph.ready())


def test_unreachable_is_transitive_and_reports_root_cause(make_bead) -> None:
    graph = DependencyGraph.build(
        [
            make_bead("A", status=BeadStatus.BLOCKED),
            make_bead("B", depends_on=("A",)),
            make_bead("C", depends_on=("B",)),
            make_bead("D"),
        ]
    )
    assert _ids(graph.unreachable()) == ["B", "C"]
    assert graph.blocked_by("C") == ["A"]
    assert _ids(graph.ready()) == ["D"]
    assert graph.waiting() == []


def test_waiting_covers_beads_behind_in_progress_work(make_bead) -> None:
    graph = DependencyGraph.build(
        [make_bead("A", status=BeadStatus.IN_PROGRESS), make_bead("B", depends_on=("A",))]
    )
    assert _ids(graph.waiting()) == ["B"]
    assert graph.unreachable() == []


def test_retry_makes_bead_ready_again(make_bead) -> None:
    graph = DependencyGraph.build([make_bead("A", status=BeadStatus.BLOCKED), make_bead("B", depends_on=("A",))])
    assert _ids(graph.set_status("A", BeadStatus.PENDING)) == ["A"]
    assert _ids(graph.ready()) == ["A"]
    assert graph.unreachable() == []


def test_context_beads_satisfy_dependencies_but_are_not_scheduled(make_bead) -> None:
    graph = DependencyGraph.build(
        [make_bead("B", depends_on=("X",))],
        context=[make_bead("X", status=BeadStatus.COMPLETED, depends_on=("outside",))],
    )
    assert len(graph) == 1
    assert "X" not in graph
    assert graph.get("X").status == BeadStatus.COMPLETED
    assert _ids(graph.ready()) == ["B"]


def test_blocked_context_bead_makes_dependent_unreachable(make_bead) -> None:
    graph = DependencyGraph.build(
        [make_bead("B", depends_on=("X",))],
        context=[make_bead("X", status=BeadStatus.BLOCKED)],
    )
    assert _ids(graph.unreachable()) == ["B"]
    assert [bead.id for bead in graph.beads()] == ["B"]


def test_unknown_bead_lookup_raises_key_error(make_bead) -> None:
    graph = DependencyGraph.build([make_bead("A")])
    with pytest.raises(KeyError):
        graph.get("missing")
