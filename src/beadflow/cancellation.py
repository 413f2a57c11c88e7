from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

_HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationCoordinator:
    """Cooperative stop flag shared by the schedulers.

    Schedulers call ``check()`` at the top of every tick. Cancelling never
    interrupts work that is already running; it only stops new dispatches.
    An optional flag file lets another process request the stop.
    """

    def __init__(self, *, cancel_file: Path | None = None) -> None:
        self.cancel_file = cancel_file
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def request_cancel(self, reason: str = "cancel requested") -> None:
        if self._reason is None:
            self._reason = reason
            logger.warning("Cancellation requested: %s; in-flight beads will finish", reason)

    def check(self) -> bool:
        """Return True once cancellation has been requested by any channel."""
        if not self.cancelled and self.cancel_file is not None and self.cancel_file.exists():
            self.request_cancel(f"cancel file {self.cancel_file} present")
        return self.cancelled

    def clear_cancel_file(self) -> None:
        if self.cancel_file is not None:
            self.cancel_file.unlink(missing_ok=True)

    @contextmanager
    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> Iterator[None]:
        """Route SIGINT/SIGTERM to ``request_cancel`` while the context is active."""
        target = loop if loop is not None else asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in _HANDLED_SIGNALS:
            try:
                target.add_signal_handler(sig, self.request_cancel, f"received {sig.name}")
            except (NotImplementedError, RuntimeError, ValueError):
                logger.debug("Signal handler for %s unavailable on this platform", sig.name)
                continue
            installed.append(sig)
        try:
            yield
        finally:
            for sig in installed:
                target.remove_signal_handler(sig)


def touch_cancel_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()
