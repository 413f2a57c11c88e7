from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable

from .models import Bead, ExecutionResult

logger = logging.getLogger(__name__)

Executor = Callable[[Bead], Awaitable[ExecutionResult]]

_DETAIL_TAIL_CHARS = 500


async def run_unit(execute: Executor, bead: Bead) -> ExecutionResult:
    """Await one unit of work, turning an executor exception into a failure result."""
    try:
        result = await execute(bead)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Executor raised for bead %s", bead.id)
        return ExecutionResult.failure(f"{type(exc).__name__}: {exc}")
    if not isinstance(result, ExecutionResult):
        return ExecutionResult.failure(f"executor returned {type(result).__name__}, expected ExecutionResult")
    return result


def _tail(text: str) -> str:
    text = text.strip()
    return text[-_DETAIL_TAIL_CHARS:]


class CommandExecutor:
    """Runs a shell command per bead and maps its exit status to a result.

    The bead is written to the command's stdin as JSON and exposed through
    ``BEAD_ID``, ``BEAD_KIND`` and ``BEAD_TITLE``. A positive ``timeout``
    kills the process and resolves as a failure so the scheduler always gets
    an answer.
    """

    def __init__(self, command: str, *, timeout: int = 0, cwd: str | None = None) -> None:
        if not command.strip():
            raise ValueError("command must be non-empty")
        if timeout < 0:
            raise ValueError(f"timeout must be >= 0, got: {timeout}")
        self.command = command
        self.timeout = timeout
        self.cwd = cwd

    def _env(self, bead: Bead) -> dict[str, str]:
        env = os.environ.copy()
        env.update(
            {
                "BEAD_ID": bead.id,
                "BEAD_KIND": bead.kind.value,
                "BEAD_TITLE": bead.title,
            }
        )
        return env

    async def __call__(self, bead: Bead) -> ExecutionResult:
        process = await asyncio.create_subprocess_shell(
            self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=self._env(bead),
        )
        communicate = process.communicate(bead.model_dump_json().encode("utf-8"))
        try:
            if self.timeout > 0:
                stdout, stderr = await asyncio.wait_for(communicate, timeout=self.timeout)
            else:
                stdout, stderr = await communicate
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Worker command for %s timed out after %ss", bead.id, self.timeout)
            return ExecutionResult.failure(f"timed out after {self.timeout}s")

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if process.returncode == 0:
            return ExecutionResult.success(_tail(out))
        return ExecutionResult.failure(_tail(err) or f"command exited {process.returncode}")
