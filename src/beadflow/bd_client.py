"""Bead store backed by the ``bd`` issue tracker command line."""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

from .graph import CycleError
from .models import Bead, BeadFilter, BeadKind, BeadStatus, NewBead
from .store import BeadNotFoundError, StatusConflictError, StoreError

logger = logging.getLogger(__name__)

BD_STATUS_TO_BEAD = {
    "open": BeadStatus.PENDING,
    "in_progress": BeadStatus.IN_PROGRESS,
    "blocked": BeadStatus.BLOCKED,
    "closed": BeadStatus.COMPLETED,
}
BEAD_STATUS_TO_BD = {status: name for name, status in BD_STATUS_TO_BEAD.items()}

KIND_LABELS = {
    "type:test": BeadKind.TEST,
    "type:impl": BeadKind.IMPL,
    "type:non-testable": BeadKind.NON_TESTABLE,
}
NO_TEST_PREFIX = "no-test"
BLOCKING_DEPENDENCY_TYPES = {None, "", "blocks"}
PARENT_DEPENDENCY_TYPE = "parent-child"


def _is_kind_label(label: str) -> bool:
    return label in KIND_LABELS or label.startswith(NO_TEST_PREFIX)


def kind_from_labels(labels: list[str]) -> BeadKind:
    for label in labels:
        if label in KIND_LABELS:
            return KIND_LABELS[label]
        if label.startswith(NO_TEST_PREFIX):
            return BeadKind.NON_TESTABLE
    return BeadKind.IMPL


def _parse_payload(description: Any) -> Any:
    if not isinstance(description, str) or not description.strip():
        return description or None
    try:
        return json.loads(description)
    except ValueError:
        return description


def parse_bd_record(record: dict[str, Any], *, group: str | None = None) -> Bead:
    """Translate one ``bd --json`` issue record into a ``Bead``.

    Args:
        record: The decoded JSON object for a single issue.
        group: The label the record was selected by, if any. When omitted the
            first label that does not encode the bead kind is used.

    Raises:
        StoreError: If the record is missing an id or carries a status the
            scheduler does not model.
        CycleError: If the issue blocks on itself.
    """
    bead_id = record.get("id")
    if not bead_id:
        raise StoreError(f"bd record without id: {record!r}")
    raw_status = record.get("status", "open")
    if raw_status not in BD_STATUS_TO_BEAD:
        raise StoreError(f"bd issue {bead_id} has unsupported status {raw_status!r}")

    labels = [str(label) for label in record.get("labels") or []]
    if group is None or group not in labels:
        group = next((label for label in labels if not _is_kind_label(label)), None)

    depends_on: set[str] = set()
    parent_id = record.get("parent")
    for dep in record.get("dependencies") or []:
        dep_id = dep.get("depends_on_id") or dep.get("id")
        if not dep_id:
            continue
        dep_type = dep.get("dependency_type", dep.get("type"))
        if dep_type == PARENT_DEPENDENCY_TYPE:
            parent_id = parent_id or dep_id
        elif dep_type in BLOCKING_DEPENDENCY_TYPES:
            if dep_id == bead_id:
                raise CycleError([bead_id])
            depends_on.add(dep_id)

    return Bead(
        id=bead_id,
        title=record.get("title") or bead_id,
        kind=kind_from_labels(labels),
        status=BD_STATUS_TO_BEAD[raw_status],
        depends_on=frozenset(depends_on),
        priority=int(record.get("priority", 2)),
        payload=_parse_payload(record.get("description")),
        parent_id=parent_id,
        group=group,
        status_reason=record.get("close_reason") or None,
    )


class BdCliBeadStore:
    """``BeadStore`` implementation that shells out to ``bd``.

    Failures are raised as ``StoreError``; the scheduler must never act on a
    status write that did not land.
    """

    def __init__(self, *, binary: str = "bd", timeout: int = 10) -> None:
        self.binary = binary
        self.timeout = timeout

    def _run(self, args: list[str]) -> str:
        cmd = [self.binary, *args]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (subprocess.SubprocessError, OSError) as exc:
            raise StoreError(f"{' '.join(cmd[:3])} failed: {exc}") from exc
        if result.returncode != 0:
            raise StoreError(f"{' '.join(cmd[:3])} exited {result.returncode}: {result.stderr.strip()}")
        return result.stdout

    def _run_json(self, args: list[str]) -> Any:
        output = self._run([*args, "--json"])
        if not output.strip():
            return []
        try:
            return json.loads(output)
        except ValueError as exc:
            raise StoreError(f"bd {args[0]} returned invalid JSON") from exc

    def _show(self, bead_id: str) -> dict[str, Any]:
        try:
            data = self._run_json(["show", bead_id])
        except StoreError as exc:
            if "not found" in str(exc).lower():
                raise BeadNotFoundError(bead_id) from exc
            raise
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise BeadNotFoundError(bead_id)
        return data

    def create(self, bead: NewBead) -> str:
        args = ["create", bead.title, "-p", str(bead.priority)]
        labels = [label for label, kind in KIND_LABELS.items() if kind == bead.kind]
        if bead.group:
            labels.append(bead.group)
        args.extend(["-l", ",".join(labels)])
        if bead.payload is not None:
            payload = bead.payload if isinstance(bead.payload, str) else json.dumps(bead.payload)
            args.extend(["-d", payload])
        if bead.parent_id:
            args.extend(["--parent", bead.parent_id])
        data = self._run_json(args)
        if isinstance(data, list):
            data = data[0] if data else {}
        bead_id = data.get("id") if isinstance(data, dict) else None
        if not bead_id:
            raise StoreError("bd create did not return an issue id")
        for dep in sorted(bead.depends_on):
            self.add_dependency(bead_id, dep)
        logger.debug("Created bd issue %s: %s", bead_id, bead.title)
        return bead_id

    def get(self, bead_id: str) -> Bead:
        return parse_bd_record(self._show(bead_id))

    def list(self, bead_filter: BeadFilter | None = None) -> list[Bead]:
        selected = bead_filter or BeadFilter()
        args = ["list", "--limit", "0"]
        if selected.group:
            args.extend(["--label", selected.group])
        if selected.status:
            args.extend(["--status", BEAD_STATUS_TO_BD[selected.status]])
        else:
            args.append("--all")
        if selected.parent_id:
            args.extend(["--parent", selected.parent_id])
        data = self._run_json(args)
        if not isinstance(data, list):
            raise StoreError("bd list did not return a list")

        beads: list[Bead] = []
        for record in data:
            if "dependencies" not in record and record.get("id"):
                record = self._show(record["id"])
            if record.get("status", "open") not in BD_STATUS_TO_BEAD:
                logger.warning("Skipping bd issue %s with status %s", record.get("id"), record.get("status"))
                continue
            bead = parse_bd_record(record, group=selected.group)
            if selected.matches(bead):
                beads.append(bead)
        return sorted(beads, key=lambda bead: bead.sort_key)

    def _check_expected(self, bead_id: str, expected: BeadStatus | None) -> None:
        # Not atomic: bd has no compare-and-set.
        if expected is None:
            return
        actual = self.get(bead_id).status
        if actual != expected:
            raise StatusConflictError(bead_id, expected, actual)

    def update_status(
        self,
        bead_id: str,
        status: BeadStatus,
        reason: str | None = None,
        *,
        expected: BeadStatus | None = None,
    ) -> None:
        if status == BeadStatus.COMPLETED:
            self.close(bead_id, reason or "", expected=expected)
            return
        self._check_expected(bead_id, expected)
        self._run(["update", bead_id, "--status", BEAD_STATUS_TO_BD[status]])
        if reason:
            self._run(["comment", bead_id, reason])

    def close(self, bead_id: str, reason: str = "", *, expected: BeadStatus | None = None) -> None:
        self._check_expected(bead_id, expected)
        args = ["close", bead_id]
        if reason:
            args.extend(["--reason", reason])
        self._run(args)

    def add_dependency(self, bead_id: str, depends_on_id: str) -> None:
        if bead_id == depends_on_id:
            raise ValueError(f"bead {bead_id} cannot depend on itself")
        self._run(["dep", "add", bead_id, depends_on_id])
