from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from .models import Bead, ExecutionResult

logger = logging.getLogger(__name__)


class OperatorAction(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"
    JUMP_TO = "jump_to"
    RETRY = "retry"
    SKIP = "skip"


@dataclass(frozen=True)
class OperatorDecision:
    action: OperatorAction
    bead_id: str | None = None

    def __post_init__(self) -> None:
        if self.action == OperatorAction.JUMP_TO and not self.bead_id:
            raise ValueError("jump_to requires a bead_id")

    @classmethod
    def proceed(cls) -> "OperatorDecision":
        return cls(OperatorAction.CONTINUE)

    @classmethod
    def stop(cls) -> "OperatorDecision":
        return cls(OperatorAction.STOP)

    @classmethod
    def jump_to(cls, bead_id: str) -> "OperatorDecision":
        return cls(OperatorAction.JUMP_TO, bead_id)

    @classmethod
    def retry(cls) -> "OperatorDecision":
        return cls(OperatorAction.RETRY)

    @classmethod
    def skip(cls) -> "OperatorDecision":
        return cls(OperatorAction.SKIP)


@dataclass(frozen=True)
class StepCheckpoint:
    """What the operator sees between two sequential steps."""

    bead: Bead
    result: ExecutionResult
    ready: list[Bead] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return not self.result.succeeded

    @property
    def allowed_actions(self) -> frozenset[OperatorAction]:
        if self.failed:
            return frozenset({OperatorAction.RETRY, OperatorAction.SKIP, OperatorAction.STOP, OperatorAction.JUMP_TO})
        return frozenset({OperatorAction.CONTINUE, OperatorAction.STOP, OperatorAction.JUMP_TO})


class OperatorChannel(Protocol):
    def prompt(self, checkpoint: StepCheckpoint) -> OperatorDecision:
        ...


_SHORTCUTS = {
    "c": OperatorAction.CONTINUE,
    "continue": OperatorAction.CONTINUE,
    "s": OperatorAction.STOP,
    "stop": OperatorAction.STOP,
    "r": OperatorAction.RETRY,
    "retry": OperatorAction.RETRY,
    "k": OperatorAction.SKIP,
    "skip": OperatorAction.SKIP,
    "j": OperatorAction.JUMP_TO,
    "jump": OperatorAction.JUMP_TO,
}


def parse_decision(text: str) -> OperatorDecision:
    """Parse ``c``, ``s``, ``r``, ``k`` or ``j <bead-id>`` (long forms accepted)."""
    parts = text.strip().split()
    if not parts:
        raise ValueError("empty operator input")
    action = _SHORTCUTS.get(parts[0].lower())
    if action is None:
        raise ValueError(f"unknown operator command: {parts[0]!r}")
    if action == OperatorAction.JUMP_TO:
        if len(parts) != 2:
            raise ValueError("jump requires exactly one bead id")
        return OperatorDecision.jump_to(parts[1])
    return OperatorDecision(action)


class ConsoleOperator:
    """Interactive operator reading decisions from a terminal.

    The sequential controller calls ``prompt`` from a worker thread. While a
    run's signal handlers are installed, SIGINT only sets the cancel flag, and
    the loop ends once the pending ``input()`` returns: any answer (or EOF via
    Ctrl-D) lets it observe the cancellation. Without those handlers a
    Ctrl-C at the prompt is treated as ``stop``.
    """

    def __init__(
        self,
        *,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ) -> None:
        self._input = input_fn
        self._output = output_fn

    def _describe(self, checkpoint: StepCheckpoint) -> str:
        bead = checkpoint.bead
        if checkpoint.failed:
            head = f"FAILED {bead.id} ({bead.title}): {checkpoint.result.detail}"
            options = "[r]etry, s[k]ip, [s]top, [j]ump <id>"
        else:
            head = f"Completed {bead.id} ({bead.title})"
            options = "[c]ontinue, [s]top, [j]ump <id>"
        ready = ", ".join(candidate.id for candidate in checkpoint.ready) or "none"
        return f"{head}\nReady next: {ready}\n{options} > "

    def prompt(self, checkpoint: StepCheckpoint) -> OperatorDecision:
        message = self._describe(checkpoint)
        while True:
            try:
                decision = parse_decision(self._input(message))
            except (EOFError, KeyboardInterrupt):
                logger.warning("Operator input closed or interrupted; stopping")
                return OperatorDecision.stop()
            except ValueError as exc:
                self._output(f"Invalid choice: {exc}")
                continue
            if decision.action not in checkpoint.allowed_actions:
                self._output(f"'{decision.action.value}' is not available here")
                continue
            return decision
