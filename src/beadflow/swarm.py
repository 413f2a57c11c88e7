from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .cancellation import CancellationCoordinator
from .executors import Executor, run_unit
from .graph import DependencyGraph
from .lifecycle import BeadLifecycle
from .models import Bead, ExecutionResult
from .report import RunReport, build_report

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class WorkerSlot:
    bead_id: str
    task: asyncio.Task[ExecutionResult]


class SwarmScheduler:
    """Concurrent worker pool over the ready frontier of a dependency graph.

    Each tick fills free slots with the highest-priority ready beads, then
    waits for the first slot to finish (not all of them) and feeds the
    dependents it unblocked back into the ready queue.
    """

    strategy = "swarm"

    def __init__(
        self,
        graph: DependencyGraph,
        lifecycle: BeadLifecycle,
        execute: Executor,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cancellation: CancellationCoordinator | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got: {max_workers}")
        if lifecycle.graph is not graph:
            raise ValueError("lifecycle must operate on the scheduler's graph")
        self.graph = graph
        self.lifecycle = lifecycle
        self.execute = execute
        self.max_workers = max_workers
        self.cancellation = cancellation if cancellation is not None else CancellationCoordinator()
        self.active: dict[str, WorkerSlot] = {}
        self.dispatched: list[str] = []
        self._ready: list[Bead] = []

    def _enqueue(self, beads: list[Bead]) -> None:
        queued = {bead.id for bead in self._ready}
        self._ready.extend(bead for bead in beads if bead.id not in queued)
        self._ready.sort(key=lambda bead: bead.sort_key)

    def _pop_ready(self) -> Bead | None:
        while self._ready:
            bead = self._ready.pop(0)
            # The queue may hold an entry whose status moved on since it was queued.
            if self.graph.is_ready(bead.id):
                return bead
        return None

    def _dispatch(self, bead: Bead) -> None:
        started = self.lifecycle.start(bead.id)
        task = asyncio.create_task(run_unit(self.execute, started), name=f"bead-{bead.id}")
        self.active[bead.id] = WorkerSlot(bead_id=bead.id, task=task)
        self.dispatched.append(bead.id)
        logger.debug("Dispatched %s (%s/%s workers busy)", bead.id, len(self.active), self.max_workers)

    def _fill_slots(self) -> None:
        while len(self.active) < self.max_workers:
            bead = self._pop_ready()
            if bead is None:
                return
            self._dispatch(bead)

    def _record(self, bead_id: str, result: ExecutionResult) -> None:
        if result.succeeded:
            self._enqueue(self.lifecycle.complete(bead_id, result.detail))
        else:
            self.lifecycle.fail(bead_id, result.detail or "execution failed")

    async def _await_first(self) -> None:
        tasks = {slot.task: bead_id for bead_id, slot in self.active.items()}
        done, _ = await asyncio.wait(list(tasks), return_when=asyncio.FIRST_COMPLETED)
        for bead_id in sorted(tasks[task] for task in done):
            slot = self.active.pop(bead_id)
            self._record(bead_id, slot.task.result())

    async def run(self) -> RunReport:
        """Drive the graph until nothing is running and nothing is ready.

        Returns:
            The end-of-run report. Execution failures are reported there,
            never raised.

        Raises:
            IllegalTransitionError: If a bead is claimed twice.
            StoreError: If the bead store rejects a status write.
        """
        self.active.clear()
        self.dispatched = []
        self._ready = []
        self._enqueue(self.graph.ready())
        logger.info(
            "Swarm starting: %s beads, %s ready, max_workers=%s",
            len(self.graph),
            len(self._ready),
            self.max_workers,
        )

        try:
            while True:
                if not self.cancellation.check():
                    self._fill_slots()
                if not self.active:
                    break
                await self._await_first()
        finally:
            if self.active:
                # Error path: in-flight workers are awaited, never cancelled.
                await asyncio.gather(*(slot.task for slot in self.active.values()), return_exceptions=True)

        report = build_report(
            self.graph,
            strategy=self.strategy,
            dispatched=self.dispatched,
            cancel_reason=self.cancellation.reason,
        )
        logger.info(
            "Swarm finished (%s): %s completed, %s blocked, %s unreachable",
            report.outcome.value,
            report.completed_count,
            report.blocked_count,
            report.unreachable_count,
        )
        return report
