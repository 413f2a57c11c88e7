from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from .graph import DependencyGraph
from .models import BeadStatus


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    BLOCKED = "blocked"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"
    STOPPED = "stopped"


class BlockedEntry(BaseModel):
    bead_id: str
    title: str
    reason: str | None = None


class UnreachableEntry(BaseModel):
    bead_id: str
    title: str
    blocked_by: list[str] = Field(default_factory=list)


class RunReport(BaseModel):
    """End-of-run summary. Distinguishes finished, stuck and interrupted runs."""

    strategy: str
    outcome: RunOutcome
    completed: list[str] = Field(default_factory=list)
    blocked: list[BlockedEntry] = Field(default_factory=list)
    unreachable: list[UnreachableEntry] = Field(default_factory=list)
    in_progress: list[str] = Field(default_factory=list)
    waiting: list[str] = Field(default_factory=list)
    ready: list[str] = Field(default_factory=list)
    dispatched: list[str] = Field(default_factory=list)
    cancel_reason: str | None = None

    @property
    def completed_count(self) -> int:
        return len(self.completed)

    @property
    def blocked_count(self) -> int:
        return len(self.blocked)

    @property
    def unreachable_count(self) -> int:
        return len(self.unreachable)

    @property
    def remaining_count(self) -> int:
        return len(self.in_progress) + len(self.waiting) + len(self.ready)

    @property
    def success(self) -> bool:
        return self.outcome == RunOutcome.COMPLETED


def build_report(
    graph: DependencyGraph,
    *,
    strategy: str,
    dispatched: list[str] | None = None,
    cancel_reason: str | None = None,
    stopped: bool = False,
) -> RunReport:
    """Summarize the graph snapshot after a run (or without one, for ``report``)."""
    blocked = [
        BlockedEntry(bead_id=bead.id, title=bead.title, reason=bead.status_reason)
        for bead in graph.with_status(BeadStatus.BLOCKED)
    ]
    unreachable = [
        UnreachableEntry(bead_id=bead.id, title=bead.title, blocked_by=graph.blocked_by(bead.id))
        for bead in graph.unreachable()
    ]
    report = RunReport(
        strategy=strategy,
        outcome=RunOutcome.COMPLETED,
        completed=[bead.id for bead in graph.with_status(BeadStatus.COMPLETED)],
        blocked=blocked,
        unreachable=unreachable,
        in_progress=[bead.id for bead in graph.with_status(BeadStatus.IN_PROGRESS)],
        waiting=[bead.id for bead in graph.waiting()],
        ready=[bead.id for bead in graph.ready()],
        dispatched=list(dispatched or []),
        cancel_reason=cancel_reason,
    )

    if cancel_reason is not None and report.remaining_count:
        report.outcome = RunOutcome.CANCELLED
    elif stopped and report.remaining_count:
        report.outcome = RunOutcome.STOPPED
    elif report.remaining_count:
        report.outcome = RunOutcome.INCOMPLETE
    elif report.blocked or report.unreachable:
        report.outcome = RunOutcome.BLOCKED
    return report


_HEADLINES = {
    RunOutcome.COMPLETED: "All {total} beads completed.",
    RunOutcome.BLOCKED: "Stuck: no bead can make progress; {blocked} blocked, {unreachable} unreachable.",
    RunOutcome.INCOMPLETE: "Incomplete: {remaining} beads still pending or in progress.",
    RunOutcome.CANCELLED: "Cancelled ({reason}); {remaining} beads left for the next run.",
    RunOutcome.STOPPED: "Stopped by operator; {remaining} beads left for the next run.",
}


def render_report(report: RunReport) -> str:
    total = (
        report.completed_count
        + report.blocked_count
        + report.unreachable_count
        + report.remaining_count
    )
    headline = _HEADLINES[report.outcome].format(
        total=total,
        blocked=report.blocked_count,
        unreachable=report.unreachable_count,
        remaining=report.remaining_count,
        reason=report.cancel_reason,
    )
    lines = [
        f"[{report.strategy}] {headline}",
        f"  completed:   {report.completed_count}",
        f"  blocked:     {report.blocked_count}",
    ]
    for entry in report.blocked:
        lines.append(f"    - {entry.bead_id} {entry.title}: {entry.reason or 'no reason recorded'}")
    lines.append(f"  unreachable: {report.unreachable_count}")
    for entry in report.unreachable:
        lines.append(f"    - {entry.bead_id} {entry.title} (waits on {', '.join(entry.blocked_by)})")
    lines.append(f"  remaining:   {report.remaining_count}")
    if report.in_progress:
        lines.append(f"    in progress: {', '.join(report.in_progress)}")
    if report.ready:
        lines.append(f"    ready:       {', '.join(report.ready)}")
    if report.waiting:
        lines.append(f"    waiting:     {', '.join(report.waiting)}")
    return "\n".join(lines)
