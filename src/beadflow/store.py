from __future__ import annotations

import fcntl
import logging
import os
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol

from pydantic import BaseModel, Field, ValidationError

from .models import Bead, BeadFilter, BeadStatus, NewBead

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """The bead store could not complete an operation."""


class BeadNotFoundError(StoreError, KeyError):
    def __init__(self, bead_id: str) -> None:
        self.bead_id = bead_id
        super().__init__(f"Bead not found: {bead_id}")

    def __str__(self) -> str:
        return RuntimeError.__str__(self)


class StatusConflictError(StoreError):
    """The stored status is not the one the caller expected to move away from."""

    def __init__(self, bead_id: str, expected: BeadStatus, actual: BeadStatus) -> None:
        self.bead_id = bead_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Bead {bead_id} is {actual.value} in the store, expected {expected.value}"
        )


def _check_expected(bead: Bead, expected: BeadStatus | None) -> None:
    if expected is not None and bead.status != expected:
        raise StatusConflictError(bead.id, expected, bead.status)


class BeadStore(Protocol):
    """Command surface the scheduler needs from the issue store.

    Status writes accept an ``expected`` status; when given, the store must
    refuse the write with ``StatusConflictError`` if the stored status differs.
    """

    def create(self, bead: NewBead) -> str:
        ...

    def get(self, bead_id: str) -> Bead:
        ...

    def list(self, bead_filter: BeadFilter | None = None) -> list[Bead]:
        ...

    def update_status(
        self,
        bead_id: str,
        status: BeadStatus,
        reason: str | None = None,
        *,
        expected: BeadStatus | None = None,
    ) -> None:
        ...

    def close(self, bead_id: str, reason: str = "", *, expected: BeadStatus | None = None) -> None:
        ...

    def add_dependency(self, bead_id: str, depends_on_id: str) -> None:
        ...


class InMemoryBeadStore:
    """Dictionary-backed store. Handy for tests and embedding."""

    def __init__(self, *, id_prefix: str = "bd") -> None:
        self.id_prefix = id_prefix
        self._beads: dict[str, Bead] = {}

    # Subclasses persisting elsewhere override these two hooks.
    def _load(self) -> dict[str, Bead]:
        return self._beads

    def _save(self, beads: dict[str, Bead]) -> None:
        self._beads = beads

    @contextmanager
    def _editing(self) -> Iterator[dict[str, Bead]]:
        beads = self._load()
        yield beads
        self._save(beads)

    def _new_id(self, existing: dict[str, Bead]) -> str:
        while True:
            candidate = f"{self.id_prefix}-{uuid.uuid4().hex[:6]}"
            if candidate not in existing:
                return candidate

    def create(self, bead: NewBead) -> str:
        with self._editing() as beads:
            for dep in bead.depends_on:
                if dep not in beads:
                    raise BeadNotFoundError(dep)
            bead_id = self._new_id(beads)
            beads[bead_id] = Bead(id=bead_id, **bead.model_dump())
        logger.debug("Created bead %s: %s", bead_id, bead.title)
        return bead_id

    def put(self, bead: Bead) -> None:
        """Insert or replace a bead exactly as given, id and status included."""
        with self._editing() as beads:
            beads[bead.id] = bead.model_copy()

    def get(self, bead_id: str) -> Bead:
        beads = self._load()
        if bead_id not in beads:
            raise BeadNotFoundError(bead_id)
        return beads[bead_id].model_copy()

    def list(self, bead_filter: BeadFilter | None = None) -> list[Bead]:
        selected = bead_filter or BeadFilter()
        return [
            bead.model_copy()
            for bead in sorted(self._load().values(), key=lambda item: item.sort_key)
            if selected.matches(bead)
        ]

    def update_status(
        self,
        bead_id: str,
        status: BeadStatus,
        reason: str | None = None,
        *,
        expected: BeadStatus | None = None,
    ) -> None:
        with self._editing() as beads:
            if bead_id not in beads:
                raise BeadNotFoundError(bead_id)
            _check_expected(beads[bead_id], expected)
            beads[bead_id] = beads[bead_id].model_copy(update={"status": status, "status_reason": reason})

    def close(self, bead_id: str, reason: str = "", *, expected: BeadStatus | None = None) -> None:
        self.update_status(bead_id, BeadStatus.COMPLETED, reason or None, expected=expected)

    def add_dependency(self, bead_id: str, depends_on_id: str) -> None:
        if bead_id == depends_on_id:
            raise ValueError(f"bead {bead_id} cannot depend on itself")
        with self._editing() as beads:
            for required in (bead_id, depends_on_id):
                if required not in beads:
                    raise BeadNotFoundError(required)
            bead = beads[bead_id]
            beads[bead_id] = bead.model_copy(update={"depends_on": bead.depends_on | {depends_on_id}})


# ---------------------------------------------------------------------------
# JSON file store
# ---------------------------------------------------------------------------

_LOCK_SUFFIX = ".lock"


class BeadStoreDocument(BaseModel):
    version: int = 1
    beads: dict[str, Bead] = Field(default_factory=dict)


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive lock on a ``.lock`` sidecar of *path*.

    The sidecar keeps the lock handle stable while the data file itself is
    swapped out with ``os.replace``.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class JsonFileBeadStore(InMemoryBeadStore):
    """Bead store persisted as one JSON document.

    Every mutation is a locked read-modify-write followed by an atomic
    temp-file rename, so several scheduler processes can share one file.
    The ``expected`` status check runs under the same lock, which makes a
    claim through ``BeadLifecycle.start`` exclusive across processes.
    """

    def __init__(self, path: Path, *, id_prefix: str = "bd") -> None:
        super().__init__(id_prefix=id_prefix)
        self.path = Path(path)

    def _load(self) -> dict[str, Bead]:
        if not self.path.is_file():
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreError(f"bead store at {self.path} is unreadable: {exc}") from exc
        if not text.strip():
            return {}
        try:
            return dict(BeadStoreDocument.model_validate_json(text).beads)
        except ValidationError as exc:
            raise StoreError(f"bead store at {self.path} failed validation: {exc}") from exc

    def _save(self, beads: dict[str, Bead]) -> None:
        document = BeadStoreDocument(beads=dict(sorted(beads.items())))
        _atomic_write_text(self.path, document.model_dump_json(indent=2))

    @contextmanager
    def _editing(self) -> Iterator[dict[str, Bead]]:
        with _locked_file(self.path):
            beads = self._load()
            yield beads
            self._save(beads)
