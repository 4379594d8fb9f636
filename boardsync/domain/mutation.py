"""Intents and optimistic mutation records."""

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from boardsync.domain.task import User


NAME_FIELD = "name"
COMPLETED_FIELD = "completed"
NOTES_FIELD = "notes"
ASSIGNEE_FIELD = "assignee"
DUE_ON_FIELD = "due_on"
SECTION_FIELD = "section"
CUSTOM_FIELD_PREFIX = "custom_fields."


def custom_field_key(field_gid: str) -> str:
    """Field key used to track mutations of one custom field."""
    return f"{CUSTOM_FIELD_PREFIX}{field_gid}"


class SetTaskName(BaseModel):
    """Rename a task."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["set_name"] = "set_name"
    task_gid: str
    name: str

    @property
    def field_key(self) -> str:
        return NAME_FIELD


class SetTaskCompleted(BaseModel):
    """Mark a task complete or incomplete."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["set_completed"] = "set_completed"
    task_gid: str
    completed: bool

    @property
    def field_key(self) -> str:
        return COMPLETED_FIELD


class SetTaskNotes(BaseModel):
    """Replace a task's description."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["set_notes"] = "set_notes"
    task_gid: str
    notes: str

    @property
    def field_key(self) -> str:
        return NOTES_FIELD


class SetTaskAssignee(BaseModel):
    """Assign a task to a workspace user, or unassign it with None."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["set_assignee"] = "set_assignee"
    task_gid: str
    assignee: User | None = None

    @property
    def field_key(self) -> str:
        return ASSIGNEE_FIELD


class SetTaskDueOn(BaseModel):
    """Set a task's due date (YYYY-MM-DD), or clear it with None."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["set_due_on"] = "set_due_on"
    task_gid: str
    due_on: str | None = None

    @property
    def field_key(self) -> str:
        return DUE_ON_FIELD


class SetCustomField(BaseModel):
    """Set one custom field; value is in wire form (option GID, list of GIDs, text, number, ISO date, None)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["set_custom_field"] = "set_custom_field"
    task_gid: str
    field_gid: str
    value: Any = None

    @property
    def field_key(self) -> str:
        return custom_field_key(self.field_gid)


class MoveTask(BaseModel):
    """Move a task to a column, optionally at a position (end of column when index is None)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["move_task"] = "move_task"
    task_gid: str
    section_gid: str
    index: int | None = None

    @property
    def field_key(self) -> str:
        return SECTION_FIELD


Intent = SetTaskName | SetTaskCompleted | SetTaskNotes | SetTaskAssignee | SetTaskDueOn | SetCustomField | MoveTask

# Fields stored directly as task attributes of the same name
TASK_ATTRIBUTE_FIELDS = frozenset({NAME_FIELD, COMPLETED_FIELD, NOTES_FIELD, ASSIGNEE_FIELD, DUE_ON_FIELD})


class Placement(BaseModel):
    """Position of a task on the board."""

    model_config = ConfigDict(frozen=True)

    section_gid: str
    index: int


class MutationStatus(StrEnum):
    """Lifecycle of an optimistic mutation."""

    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    FAILED = "failed"


class PendingMutation(BaseModel):
    """Optimistic local change awaiting remote confirmation."""

    sequence: int = Field(..., description="Monotonic local sequence number")
    task_gid: str = Field(..., description="Task being changed")
    field_key: str = Field(..., description="name, completed, section or custom_fields.<gid>")
    intent: Intent = Field(..., discriminator="kind", description="Intent that produced this mutation")
    optimistic_value: Any = Field(default=None, description="Value shown while the call is in flight")
    prior_value: Any = Field(default=None, description="Value restored on rollback")
    status: MutationStatus = Field(default=MutationStatus.IN_FLIGHT, description="Current lifecycle state")
    failure_code: str | None = Field(default=None, description="ErrorCode when failed")
    failure_reason: str | None = Field(default=None, description="Short user-facing failure reason")
    superseded_by: int | None = Field(default=None, description="Sequence of the intent that replaced this one")

    @property
    def key(self) -> tuple[str, str]:
        return (self.task_gid, self.field_key)
