from __future__ import annotations

import asyncio
import json

import pytest

from beadflow.executors import CommandExecutor, run_unit
from beadflow.models import Bead, BeadKind, ExecutionOutcome, ExecutionResult


def _bead() -> Bead:
    return Bead(id="bd-7", title="Add login form", kind=BeadKind.TEST, payload={"files": ["login.py"]})


def test_run_unit_passes_results_through() -> None:
    async def ok(bead: Bead) -> ExecutionResult:
        return ExecutionResult.success("fine")

    assert asyncio.run(run_unit(ok, _bead())) == ExecutionResult.success("fine")


def test_run_unit_turns_exceptions_into_failures() -> None:
    async def broken(bead: Bead) -> ExecutionResult:
        raise ValueError("bad input")

    result = asyncio.run(run_unit(broken, _bead()))
    assert result.outcome == ExecutionOutcome.FAILURE
    assert result.detail == "ValueError: bad input"


def test_run_unit_rejects_wrong_return_type() -> None:
    async def sloppy(bead: Bead):
        return True

    result = asyncio.run(run_unit(sloppy, _bead()))
    assert not result.succeeded
    assert "bool" in result.detail


def test_command_executor_validates_arguments() -> None:
    with pytest.raises(ValueError):
        CommandExecutor("   ")
    with pytest.raises(ValueError):
        CommandExecutor("true", timeout=-1)


def test_command_success_exposes_bead_to_the_process() -> None:
    executor = CommandExecutor('echo "$BEAD_ID/$BEAD_KIND"; cat')
    result = asyncio.run(executor(_bead()))

    assert result.succeeded
    first_line, payload = result.detail.split("\n", 1)
    assert first_line == "bd-7/test"
    assert json.loads(payload)["payload"] == {"files": ["login.py"]}


def test_command_failure_reports_stderr() -> None:
    result = asyncio.run(CommandExecutor("echo broken >&2; exit 3")(_bead()))
    assert result.outcome == ExecutionOutcome.FAILURE
    assert result.detail == "broken"


def test_command_failure_without_stderr_reports_exit_code() -> None:
    result = asyncio.run(CommandExecutor("exit 4")(_bead()))
    assert result.detail == "command exited 4"


def test_command_timeout_is_a_failure() -> None:
    result = asyncio.run(CommandExecutor("sleep 5", timeout=1)(_bead()))
    assert result.outcome == ExecutionOutcome.FAILURE
    assert result.detail == "timed out after 1s"


def test_command_runs_in_configured_directory(tmp_path) -> None:
    result = asyncio.run(CommandExecutor("pwd", cwd=str(tmp_path))(_bead()))
    assert result.detail.endswith(tmp_path.name)
