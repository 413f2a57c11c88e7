from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

STORE_BACKENDS = frozenset({"file", "bd"})


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    max_workers: int = 4
    store_backend: str = "file"
    store_path: str = ".beadflow/beads.json"
    bd_binary: str = "bd"
    bd_timeout: int = 10
    worker_command: str = ""
    worker_timeout: int = 0
    cancel_file: str = ".beadflow/cancel"
    recursion_limit: int = 1_000

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            max_workers=_get_env_int("BEADFLOW_MAX_WORKERS", default=4, minimum=1, maximum=64),
            store_backend=os.getenv("BEADFLOW_STORE_BACKEND", "file"),
            store_path=os.getenv("BEADFLOW_STORE_PATH", ".beadflow/beads.json"),
            bd_binary=os.getenv("BEADFLOW_BD_BINARY", "bd"),
            bd_timeout=_get_env_int("BEADFLOW_BD_TIMEOUT", default=10, minimum=1, maximum=600),
            worker_command=os.getenv("BEADFLOW_WORKER_COMMAND", ""),
            worker_timeout=_get_env_int("BEADFLOW_WORKER_TIMEOUT", default=0, minimum=0),
            cancel_file=os.getenv("BEADFLOW_CANCEL_FILE", ".beadflow/cancel"),
            recursion_limit=_get_env_int("BEADFLOW_RECURSION_LIMIT", default=1_000, minimum=25),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        store_backend = self.store_backend.strip().lower()
        if store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"BEADFLOW_STORE_BACKEND must be one of: {', '.join(sorted(STORE_BACKENDS))}, got: {self.store_backend!r}"
            )
        if not self.store_path.strip():
            raise ValueError("BEADFLOW_STORE_PATH must be non-empty")
        if not self.bd_binary.strip():
            raise ValueError("BEADFLOW_BD_BINARY must be non-empty")
        if not self.cancel_file.strip():
            raise ValueError("BEADFLOW_CANCEL_FILE must be non-empty")
        if self.max_workers < 1:
            raise ValueError(f"BEADFLOW_MAX_WORKERS must be >= 1, got: {self.max_workers}")
        if self.worker_timeout < 0:
            raise ValueError(f"BEADFLOW_WORKER_TIMEOUT must be >= 0, got: {self.worker_timeout}")
        return replace(
            self,
            store_backend=store_backend,
            store_path=self.store_path.strip(),
            bd_binary=self.bd_binary.strip(),
            worker_command=self.worker_command.strip(),
            cancel_file=self.cancel_file.strip(),
        )

    @property
    def store_file(self) -> Path:
        return Path(self.store_path)

    @property
    def cancel_path(self) -> Path:
        return Path(self.cancel_file)


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
