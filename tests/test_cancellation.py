from __future__ import annotations

import asyncio
import os
import signal

from beadflow.cancellation import CancellationCoordinator, touch_cancel_file


def test_request_cancel_is_sticky_and_keeps_first_reason() -> None:
    coordinator = CancellationCoordinator()
    assert coordinator.check() is False
    coordinator.request_cancel("first")
    coordinator.request_cancel("second")
    assert coordinator.cancelled
    assert coordinator.check() is True
    assert coordinator.reason == "first"


def test_cancel_file_is_picked_up_by_check(tmp_path) -> None:
    cancel_file = tmp_path / "run" / "cancel"
    coordinator = CancellationCoordinator(cancel_file=cancel_file)
    assert coordinator.check() is False

    touch_cancel_file(cancel_file)
    assert coordinator.check() is True
    assert str(cancel_file) in (coordinator.reason or "")

    coordinator.clear_cancel_file()
    assert not cancel_file.exists()
    # Clearing the file does not un-cancel a run already in flight.
    assert coordinator.check() is True


def test_clear_cancel_file_tolerates_missing_file(tmp_path) -> None:
    CancellationCoordinator(cancel_file=tmp_path / "absent").clear_cancel_file()
    CancellationCoordinator().clear_cancel_file()


def test_sigint_requests_cancel_while_handlers_installed() -> None:
    coordinator = CancellationCoordinator()

    async def scenario() -> None:
        with coordinator.install_signal_handlers():
            os.kill(os.getpid(), signal.SIGINT)
            for _ in range(50):
                if coordinator.cancelled:
                    break
                await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert coordinator.cancelled
    assert coordinator.reason == "received SIGINT"
