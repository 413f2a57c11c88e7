from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator


class BeadStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"


class BeadKind(str, Enum):
    TEST = "test"
    IMPL = "impl"
    NON_TESTABLE = "non-testable"


class ExecutionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class _BeadFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    kind: BeadKind = BeadKind.IMPL
    depends_on: frozenset[str] = Field(default_factory=frozenset)
    priority: int = 2
    payload: Any = None
    parent_id: str | None = None
    group: str | None = None

    @field_validator("title")
    @classmethod
    def _title_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must be non-empty")
        return value

    @field_serializer("depends_on", when_used="json")
    def _sorted_dependencies(self, value: frozenset[str]) -> list[str]:
        return sorted(value)


class NewBead(_BeadFields):
    """Creation payload handed to a bead store; the store assigns the id."""


class Bead(_BeadFields):
    """An atomic, dependency-aware unit of work."""

    id: str
    status: BeadStatus = BeadStatus.PENDING
    status_reason: str | None = None

    @model_validator(mode="after")
    def _no_self_dependency(self) -> "Bead":
        if self.id in self.depends_on:
            raise ValueError(f"bead {self.id} cannot depend on itself")
        return self

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.id)


class BeadFilter(BaseModel):
    """Selection predicate for ``BeadStore.list``. Unset fields match everything."""

    model_config = ConfigDict(frozen=True)

    group: str | None = None
    status: BeadStatus | None = None
    parent_id: str | None = None

    def matches(self, bead: Bead) -> bool:
        if self.group is not None and bead.group != self.group:
            return False
        if self.status is not None and bead.status != self.status:
            return False
        if self.parent_id is not None and bead.parent_id != self.parent_id:
            return False
        return True


class ExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: ExecutionOutcome
    detail: str = ""

    @classmethod
    def success(cls, detail: str = "") -> "ExecutionResult":
        return cls(outcome=ExecutionOutcome.SUCCESS, detail=detail)

    @classmethod
    def failure(cls, detail: str) -> "ExecutionResult":
        return cls(outcome=ExecutionOutcome.FAILURE, detail=detail)

    @property
    def succeeded(self) -> bool:
        return self.outcome == ExecutionOutcome.SUCCESS


@dataclass(frozen=True)
class TransitionRecord:
    bead_id: str
    from_status: BeadStatus
    to_status: BeadStatus
    reason: str | None = None
    at: datetime = field(default_factory=lambda: datetime.now(UTC))
