from importlib.metadata import version

from .bd_client import BdCliBeadStore
from .cancellation import CancellationCoordinator
from .executors import CommandExecutor, Executor
from .graph import ConfigurationError, CycleError, DependencyGraph, DuplicateBeadError, UnknownDependencyError
from .lifecycle import BeadLifecycle, IllegalTransitionError
from .models import (
    Bead,
    BeadFilter,
    BeadKind,
    BeadStatus,
    ExecutionOutcome,
    ExecutionResult,
    NewBead,
    TransitionRecord,
)
from .operator import ConsoleOperator, OperatorAction, OperatorChannel, OperatorDecision, StepCheckpoint
from .report import RunOutcome, RunReport, build_report, render_report
from .runner import Strategy, load_graph, retry_bead, run_strategy
from .sequential import SequentialLoopController
from .settings import RuntimeSettings
from .store import (
    BeadNotFoundError,
    BeadStore,
    InMemoryBeadStore,
    JsonFileBeadStore,
    StatusConflictError,
    StoreError,
)
from .swarm import SwarmScheduler


def get_version() -> str:
    try:
        return version(__name__)
    except Exception:
        return "0.0.0"


__all__ = [
    "BdCliBeadStore",
    "Bead",
    "BeadFilter",
    "BeadKind",
    "BeadLifecycle",
    "BeadNotFoundError",
    "BeadStatus",
    "BeadStore",
    "CancellationCoordinator",
    "CommandExecutor",
    "ConfigurationError",
    "ConsoleOperator",
    "CycleError",
    "DependencyGraph",
    "DuplicateBeadError",
    "ExecutionOutcome",
    "ExecutionResult",
    "Executor",
    "IllegalTransitionError",
    "InMemoryBeadStore",
    "JsonFileBeadStore",
    "NewBead",
    "OperatorAction",
    "OperatorChannel",
    "OperatorDecision",
    "RunOutcome",
    "RunReport",
    "RuntimeSettings",
    "SequentialLoopController",
    "StatusConflictError",
    "StepCheckpoint",
    "StoreError",
    "Strategy",
    "SwarmScheduler",
    "TransitionRecord",
    "UnknownDependencyError",
    "build_report",
    "get_version",
    "load_graph",
    "render_report",
    "retry_bead",
    "run_strategy",
]
