from __future__ import annotations

import logging

from .graph import DependencyGraph
from .models import Bead, BeadStatus, TransitionRecord
from .store import BeadStore, StatusConflictError

logger = logging.getLogger(__name__)

BEAD_STATUS_TRANSITIONS: dict[BeadStatus, frozenset[BeadStatus]] = {
    BeadStatus.PENDING: frozenset({BeadStatus.IN_PROGRESS}),
    BeadStatus.IN_PROGRESS: frozenset({BeadStatus.COMPLETED, BeadStatus.BLOCKED}),
    BeadStatus.BLOCKED: frozenset({BeadStatus.PENDING}),
    BeadStatus.COMPLETED: frozenset(),
}


class IllegalTransitionError(RuntimeError):
    """A status change the lifecycle does not allow. Signals a scheduler bug."""

    def __init__(self, bead_id: str, current: BeadStatus, target: BeadStatus) -> None:
        self.bead_id = bead_id
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal transition for bead {bead_id}: {current.value} -> {target.value}"
        )


class BeadLifecycle:
    """The only path through which bead status changes.

    Every transition is written to the store first and only then applied to
    the graph snapshot, so a store failure leaves the snapshot untouched.
    The write carries the status the snapshot expects; if the store holds a
    different one (another run claimed the bead), ``IllegalTransitionError``
    is raised and nothing changes.
    """

    def __init__(self, store: BeadStore, graph: DependencyGraph) -> None:
        self.store = store
        self.graph = graph
        self.history: list[TransitionRecord] = []

    def _transition(self, bead_id: str, target: BeadStatus, reason: str | None) -> list[Bead]:
        current = self.graph.status(bead_id)
        if target not in BEAD_STATUS_TRANSITIONS[current]:
            raise IllegalTransitionError(bead_id, current, target)

        try:
            if target == BeadStatus.COMPLETED:
                self.store.close(bead_id, reason or "", expected=current)
            else:
                self.store.update_status(bead_id, target, reason, expected=current)
        except StatusConflictError as exc:
            # Another run moved the bead since this graph was loaded.
            logger.warning("Stored status of %s changed underneath this run: %s", bead_id, exc)
            raise IllegalTransitionError(bead_id, exc.actual, target) from exc

        if target == BeadStatus.COMPLETED:
            newly_ready = self.graph.on_completed(bead_id, reason)
        else:
            newly_ready = self.graph.set_status(bead_id, target, reason)

        self.history.append(
            TransitionRecord(bead_id=bead_id, from_status=current, to_status=target, reason=reason)
        )
        return newly_ready

    def start(self, bead_id: str) -> Bead:
        """Claim a pending bead for execution."""
        self._transition(bead_id, BeadStatus.IN_PROGRESS, None)
        logger.info("Started %s: %s", bead_id, self.graph.get(bead_id).title)
        return self.graph.get(bead_id)

    def complete(self, bead_id: str, reason: str = "") -> list[Bead]:
        """Mark an in-progress bead completed and return the beads it unblocked."""
        newly_ready = self._transition(bead_id, BeadStatus.COMPLETED, reason)
        logger.info("Completed %s", bead_id)
        if newly_ready:
            logger.debug("Newly ready after %s: %s", bead_id, [bead.id for bead in newly_ready])
        return newly_ready

    def fail(self, bead_id: str, reason: str) -> None:
        self._transition(bead_id, BeadStatus.BLOCKED, reason)
        logger.warning("Blocked %s: %s", bead_id, reason)

    def retry(self, bead_id: str) -> bool:
        """Return a blocked bead to pending. Operator action only.

        Returns:
            True if the bead is immediately ready again.
        """
        self._transition(bead_id, BeadStatus.PENDING, None)
        ready = self.graph.is_ready(bead_id)
        logger.info("Retry requested for %s (ready=%s)", bead_id, ready)
        return ready
