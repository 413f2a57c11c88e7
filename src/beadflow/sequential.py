from __future__ import annotations

import asyncio
import logging
from typing import Any, TypedDict

from langgraph.graph import END, START, StateGraph
from langgraph.types import Command

from .cancellation import CancellationCoordinator
from .executors import Executor, run_unit
from .graph import DependencyGraph
from .lifecycle import BeadLifecycle
from .models import Bead, ExecutionOutcome, ExecutionResult
from .operator import OperatorAction, OperatorChannel, StepCheckpoint
from .report import RunReport, build_report

logger = logging.getLogger(__name__)

# Graph steps taken per bead: select, execute, record, confirm.
_STEPS_PER_BEAD = 4


class SequentialState(TypedDict, total=False):
    current_bead_id: str | None
    outcome: str | None
    detail: str
    jump_to: str | None
    stopped: bool


class SequentialLoopController:
    """One-bead-at-a-time loop as a LangGraph StateGraph.

    select -> execute -> record -> (confirm) -> select ... until no bead is
    ready, cancellation is requested or the operator stops. With
    ``confirm_between_steps`` (Loop mode) the operator is consulted after
    every bead and must decide what happens to a failed one; without it
    (Auto-Loop) failures stay blocked and the loop moves on.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        lifecycle: BeadLifecycle,
        execute: Executor,
        *,
        confirm_between_steps: bool = True,
        operator: OperatorChannel | None = None,
        cancellation: CancellationCoordinator | None = None,
        recursion_limit: int = 1_000,
    ) -> None:
        if confirm_between_steps and operator is None:
            raise ValueError("Loop mode requires an operator channel")
        if lifecycle.graph is not graph:
            raise ValueError("lifecycle must operate on the controller's graph")
        self.graph = graph
        self.lifecycle = lifecycle
        self.execute = execute
        self.confirm_between_steps = confirm_between_steps
        self.operator = operator
        self.cancellation = cancellation if cancellation is not None else CancellationCoordinator()
        self.recursion_limit = recursion_limit
        self.dispatched: list[str] = []
        self._limit = recursion_limit
        self.workflow = self._build_workflow().compile()

    @property
    def strategy(self) -> str:
        return "loop" if self.confirm_between_steps else "auto-loop"

    def _build_workflow(self) -> StateGraph:
        workflow = StateGraph(SequentialState)
        workflow.add_node("select", self._select_node)
        workflow.add_node("execute", self._execute_node)
        workflow.add_node("record", self._record_node)
        workflow.add_node("confirm", self._confirm_node)

        workflow.add_edge(START, "select")
        workflow.add_conditional_edges(
            "select",
            self._select_route,
            {
                "execute": "execute",
                "end": END,
            },
        )
        workflow.add_edge("execute", "record")
        workflow.add_conditional_edges(
            "record",
            self._record_route,
            {
                "confirm": "confirm",
                "select": "select",
            },
        )
        return workflow

    def _pick(self, jump_to: str | None) -> Bead | None:
        if jump_to is not None:
            if jump_to in self.graph and self.graph.is_ready(jump_to):
                return self.graph.get(jump_to)
            logger.warning("Cannot jump to %s: it is not a ready bead in this selection", jump_to)
        ready = self.graph.ready()
        return ready[0] if ready else None

    def _step_budget_exhausted(self) -> bool:
        # One more bead costs select/execute/record/confirm plus the closing select.
        steps_needed = _STEPS_PER_BEAD * (len(self.dispatched) + 1) + 1
        return steps_needed > self._limit

    async def _select_node(self, state: SequentialState) -> dict[str, Any]:
        if self.cancellation.check():
            return {"current_bead_id": None, "jump_to": None}
        if self._step_budget_exhausted():
            logger.warning(
                "Stopping %s after %s dispatches: recursion limit %s reached",
                self.strategy,
                len(self.dispatched),
                self._limit,
            )
            return {"current_bead_id": None, "jump_to": None, "stopped": True}
        bead = self._pick(state.get("jump_to"))
        if bead is None:
            return {"current_bead_id": None, "jump_to": None}
        self.lifecycle.start(bead.id)
        self.dispatched.append(bead.id)
        return {"current_bead_id": bead.id, "jump_to": None, "outcome": None, "detail": ""}

    def _select_route(self, state: SequentialState) -> str:
        if state.get("current_bead_id"):
            return "execute"
        return "end"

    async def _execute_node(self, state: SequentialState) -> dict[str, Any]:
        bead = self.graph.get(state["current_bead_id"])
        result = await run_unit(self.execute, bead)
        return {"outcome": result.outcome.value, "detail": result.detail}

    async def _record_node(self, state: SequentialState) -> dict[str, Any]:
        bead_id = state["current_bead_id"]
        detail = state.get("detail", "")
        if state.get("outcome") == ExecutionOutcome.SUCCESS.value:
            self.lifecycle.complete(bead_id, detail)
        else:
            self.lifecycle.fail(bead_id, detail or "execution failed")
        return {}

    def _record_route(self, state: SequentialState) -> str:
        if not self.confirm_between_steps:
            return "select"
        if state.get("outcome") == ExecutionOutcome.SUCCESS.value and not self.graph.ready():
            return "select"
        return "confirm"

    async def _confirm_node(self, state: SequentialState) -> Command[str]:
        bead_id = state["current_bead_id"]
        checkpoint = StepCheckpoint(
            bead=self.graph.get(bead_id),
            result=ExecutionResult(outcome=ExecutionOutcome(state["outcome"]), detail=state.get("detail", "")),
            ready=self.graph.ready(),
        )
        decision = await asyncio.to_thread(self.operator.prompt, checkpoint)
        logger.info("Operator decision after %s: %s", bead_id, decision.action.value)

        if decision.action == OperatorAction.STOP:
            return Command(goto=END, update={"stopped": True})
        if decision.action == OperatorAction.JUMP_TO:
            return Command(goto="select", update={"jump_to": decision.bead_id})
        if decision.action == OperatorAction.RETRY:
            if checkpoint.failed:
                self.lifecycle.retry(bead_id)
                return Command(goto="select", update={"jump_to": bead_id})
            logger.warning("Ignoring retry for %s: it did not fail", bead_id)
        return Command(goto="select")

    async def run(self) -> RunReport:
        """Run beads one at a time until the loop ends.

        Returns:
            The end-of-run report. ``stopped`` outcomes come from the operator,
            ``cancelled`` from the cancellation coordinator.
        """
        self.dispatched = []
        logger.info(
            "%s starting: %s beads, %s ready",
            self.strategy,
            len(self.graph),
            len(self.graph.ready()),
        )
        self._limit = max(self.recursion_limit, _STEPS_PER_BEAD * 2 * len(self.graph) + 10)
        final_state = await self.workflow.ainvoke(
            {"current_bead_id": None, "jump_to": None, "stopped": False},
            config={"recursion_limit": self._limit},
        )
        report = build_report(
            self.graph,
            strategy=self.strategy,
            dispatched=self.dispatched,
            cancel_reason=self.cancellation.reason,
            stopped=bool(final_state.get("stopped")),
        )
        logger.info(
            "%s finished (%s): %s completed, %s blocked, %s unreachable",
            self.strategy,
            report.outcome.value,
            report.completed_count,
            report.blocked_count,
            report.unreachable_count,
        )
        return report
