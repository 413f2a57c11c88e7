from __future__ import annotations

import logging
from contextlib import nullcontext
from enum import Enum

from .bd_client import BdCliBeadStore
from .cancellation import CancellationCoordinator
from .executors import CommandExecutor, Executor
from .graph import DependencyGraph, UnknownDependencyError
from .lifecycle import BeadLifecycle
from .models import Bead, BeadFilter
from .operator import ConsoleOperator, OperatorChannel
from .report import RunReport
from .sequential import SequentialLoopController
from .settings import RuntimeSettings
from .store import BeadNotFoundError, BeadStore, JsonFileBeadStore
from .swarm import SwarmScheduler

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    SWARM = "swarm"
    LOOP = "loop"
    AUTO_LOOP = "auto-loop"


def open_store(settings: RuntimeSettings) -> BeadStore:
    if settings.store_backend == "bd":
        return BdCliBeadStore(binary=settings.bd_binary, timeout=settings.bd_timeout)
    return JsonFileBeadStore(settings.store_file)


def build_executor(settings: RuntimeSettings, *, command: str | None = None, timeout: int | None = None) -> Executor:
    effective = command if command is not None else settings.worker_command
    if not effective:
        raise ValueError("No worker command configured (use --command or BEADFLOW_WORKER_COMMAND)")
    return CommandExecutor(effective, timeout=settings.worker_timeout if timeout is None else timeout)


def _fetch_context(store: BeadStore, beads: list[Bead]) -> list[Bead]:
    selected = {bead.id for bead in beads}
    context: list[Bead] = []
    for bead in beads:
        for dep in sorted(bead.depends_on - selected):
            if any(known.id == dep for known in context):
                continue
            try:
                context.append(store.get(dep))
            except BeadNotFoundError:
                raise UnknownDependencyError(bead.id, dep) from None
    return context


def load_graph(store: BeadStore, bead_filter: BeadFilter | None = None) -> DependencyGraph:
    """Build the dependency graph for a store selection.

    Dependencies that fall outside the selection are fetched from the store
    and attached as context beads; a dependency the store does not know is a
    configuration error.
    """
    beads = store.list(bead_filter or BeadFilter())
    return DependencyGraph.build(beads, context=_fetch_context(store, beads))


def retry_bead(store: BeadStore, bead_id: str) -> bool:
    """Operator retry of a single blocked bead. Returns True if it is ready again."""
    bead = store.get(bead_id)
    graph = DependencyGraph.build([bead], context=_fetch_context(store, [bead]))
    return BeadLifecycle(store, graph).retry(bead_id)


async def run_strategy(
    strategy: Strategy,
    *,
    store: BeadStore,
    execute: Executor,
    settings: RuntimeSettings,
    bead_filter: BeadFilter | None = None,
    max_workers: int | None = None,
    operator: OperatorChannel | None = None,
    cancellation: CancellationCoordinator | None = None,
    handle_signals: bool = False,
) -> RunReport:
    """Load the selection, build the chosen scheduler and run it to the end.

    Raises:
        ConfigurationError: Before anything is dispatched, for cycles, duplicate
            ids or unknown dependencies.
    """
    graph = load_graph(store, bead_filter)
    lifecycle = BeadLifecycle(store, graph)
    coordinator = cancellation if cancellation is not None else CancellationCoordinator(
        cancel_file=settings.cancel_path
    )

    scheduler: SwarmScheduler | SequentialLoopController
    if strategy == Strategy.SWARM:
        scheduler = SwarmScheduler(
            graph,
            lifecycle,
            execute,
            max_workers=max_workers if max_workers is not None else settings.max_workers,
            cancellation=coordinator,
        )
    else:
        confirm = strategy == Strategy.LOOP
        scheduler = SequentialLoopController(
            graph,
            lifecycle,
            execute,
            confirm_between_steps=confirm,
            operator=(operator or ConsoleOperator()) if confirm else operator,
            cancellation=coordinator,
            recursion_limit=settings.recursion_limit,
        )

    guard = coordinator.install_signal_handlers() if handle_signals else nullcontext()
    with guard:
        return await scheduler.run()
