from __future__ import annotations

import asyncio

import pytest

from beadflow.bd_client import BdCliBeadStore
from beadflow.cancellation import CancellationCoordinator
from beadflow.executors import CommandExecutor
from beadflow.graph import CycleError, UnknownDependencyError
from beadflow.models import Bead, BeadFilter, BeadStatus, ExecutionResult
from beadflow.operator import OperatorDecision
from beadflow.report import RunOutcome
from beadflow.runner import Strategy, build_executor, load_graph, open_store, retry_bead, run_strategy
from beadflow.settings import RuntimeSettings
from beadflow.store import InMemoryBeadStore, JsonFileBeadStore


async def _succeed(bead: Bead) -> ExecutionResult:
    return ExecutionResult.success()


def _store(*beads: Bead) -> InMemoryBeadStore:
    store = InMemoryBeadStore()
    for item in beads:
        store.put(item)
    return store


def test_open_store_picks_backend() -> None:
    assert isinstance(open_store(RuntimeSettings()), JsonFileBeadStore)
    bd_store = open_store(RuntimeSettings(store_backend="bd", bd_binary="bd2", bd_timeout=3))
    assert isinstance(bd_store, BdCliBeadStore)
    assert (bd_store.binary, bd_store.timeout) == ("bd2", 3)


def test_build_executor_requires_a_command() -> None:
    with pytest.raises(ValueError):
        build_executor(RuntimeSettings())
    executor = build_executor(RuntimeSettings(worker_command="make", worker_timeout=5), timeout=9)
    assert isinstance(executor, CommandExecutor)
    assert (executor.command, executor.timeout) == ("make", 9)


def test_load_graph_attaches_out_of_selection_dependencies(make_bead) -> None:
    store = _store(
        make_bead("shared", status=BeadStatus.COMPLETED, group="core"),
        make_bead("ui-1", depends_on=("shared",), group="ui"),
    )
    graph = load_graph(store, BeadFilter(group="ui"))
    assert len(graph) == 1
    assert [bead.id for bead in graph.ready()] == ["ui-1"]


def test_load_graph_rejects_dangling_dependency(make_bead) -> None:
    store = _store(make_bead("A", depends_on=("gone",)))
    with pytest.raises(UnknownDependencyError):
        load_graph(store)


def test_cycle_is_rejected_before_any_dispatch(make_bead) -> None:
    calls: list[str] = []

    async def execute(bead: Bead) -> ExecutionResult:
        calls.append(bead.id)
        return ExecutionResult.success()

    store = _store(make_bead("A", depends_on=("B",)), make_bead("B", depends_on=("A",)), make_bead("C"))
    with pytest.raises(CycleError):
        asyncio.run(run_strategy(Strategy.SWARM, store=store, execute=execute, settings=RuntimeSettings()))
    assert calls == []
    assert store.get("C").status == BeadStatus.PENDING


@pytest.mark.parametrize("strategy", [Strategy.SWARM, Strategy.AUTO_LOOP])
def test_run_strategy_drives_selection_to_completion(make_bead, tmp_path, strategy: Strategy) -> None:
    store = _store(
        make_bead("A", group="api"),
        make_bead("B", depends_on=("A",), group="api"),
        make_bead("other", group="ui"),
    )
    settings = RuntimeSettings(cancel_file=str(tmp_path / "cancel"))

    report = asyncio.run(
        run_strategy(strategy, store=store, execute=_succeed, settings=settings, bead_filter=BeadFilter(group="api"))
    )

    assert report.strategy == strategy.value
    assert report.success
    assert sorted(report.dispatched) == ["A", "B"]
    assert store.get("B").status == BeadStatus.COMPLETED
    assert store.get("other").status == BeadStatus.PENDING


def test_loop_strategy_uses_given_operator(make_bead, tmp_path) -> None:
    prompts: list[str] = []

    class Operator:
        def prompt(self, checkpoint):
            prompts.append(checkpoint.bead.id)
            return OperatorDecision.stop()

    store = _store(make_bead("A", priority=0), make_bead("B"))
    report = asyncio.run(
        run_strategy(
            Strategy.LOOP,
            store=store,
            execute=_succeed,
            settings=RuntimeSettings(cancel_file=str(tmp_path / "cancel")),
            operator=Operator(),
        )
    )
    assert prompts == ["A"]
    assert report.outcome == RunOutcome.STOPPED


def test_resume_after_cancel_picks_up_remaining_beads(make_bead, tmp_path) -> None:
    store = _store(make_bead("A", priority=0), make_bead("B", depends_on=("A",)), make_bead("C"))
    settings = RuntimeSettings(cancel_file=str(tmp_path / "cancel"))
    cancellation = CancellationCoordinator()

    async def cancel_after_first(bead: Bead) -> ExecutionResult:
        cancellation.request_cancel("pause")
        return ExecutionResult.success()

    first = asyncio.run(
        run_strategy(
            Strategy.SWARM,
            store=store,
            execute=cancel_after_first,
            settings=settings,
            max_workers=1,
            cancellation=cancellation,
        )
    )
    assert first.outcome == RunOutcome.CANCELLED
    assert first.completed == ["A"]

    second = asyncio.run(run_strategy(Strategy.SWARM, store=store, execute=_succeed, settings=settings))
    assert second.success
    assert sorted(second.dispatched) == ["B", "C"]
    assert sorted(second.completed) == ["A", "B", "C"]


def test_default_coordinator_honours_cancel_file(make_bead, tmp_path) -> None:
    cancel_file = tmp_path / "cancel"
    cancel_file.touch()
    store = _store(make_bead("A"))
    report = asyncio.run(
        run_strategy(
            Strategy.SWARM,
            store=store,
            execute=_succeed,
            settings=RuntimeSettings(cancel_file=str(cancel_file)),
        )
    )
    assert report.outcome == RunOutcome.CANCELLED
    assert report.dispatched == []


def test_retry_bead_reopens_blocked_bead(make_bead) -> None:
    store = _store(make_bead("A", status=BeadStatus.COMPLETED), make_bead("B", depends_on=("A",), status=BeadStatus.BLOCKED))
    assert retry_bead(store, "B") is True
    assert store.get("B").status == BeadStatus.PENDING
