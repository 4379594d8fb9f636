"""Task, section and workspace domain models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from boardsync.domain.custom_field import CustomFieldValue


class User(BaseModel):
    """Asana user."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="User GID")
    name: str = Field(default="", description="Display name")
    email: str = Field(default="", description="Email address")


class Workspace(BaseModel):
    """Asana workspace the user belongs to."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="Workspace GID")
    name: str = Field(default="", description="Workspace name")


class Project(BaseModel):
    """Asana project (one kanban board)."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="Project GID")
    name: str = Field(default="", description="Project name")
    archived: bool = Field(default=False, description="Whether the project is archived")
    color: str | None = Field(default=None, description="Asana color name")
    notes: str = Field(default="", description="Project description")


class Section(BaseModel):
    """Board column with its locally tracked task order."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="Section GID")
    name: str = Field(default="", description="Column title")
    task_gids: tuple[str, ...] = Field(default=(), description="Task GIDs in column order")


class Story(BaseModel):
    """Entry in a task's activity feed: a user comment or a system event."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="Story GID")
    text: str = Field(default="", description="Story text; empty for some system events")
    created_at: str | None = Field(default=None, description="Creation timestamp (ISO)")
    created_by: User | None = Field(default=None, description="Author, when Asana reports one")
    resource_subtype: str | None = Field(default=None, description="comment_added for comments")

    @property
    def is_comment(self) -> bool:
        return self.resource_subtype == "comment_added"


class DegradedField(BaseModel):
    """A custom field value that failed schema coercion; the task is kept."""

    model_config = ConfigDict(frozen=True)

    reason: str = Field(..., description="Why the value could not be coerced")
    category: str = Field(..., description="ErrorCategory value (schema_mismatch or unknown_option)")
    wire_value: Any = Field(default=None, description="Raw value as received, kept for re-coercion")


class Task(BaseModel):
    """Task data transfer object."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="Task GID")
    name: str = Field(default="", description="Task name")
    completed: bool = Field(default=False, description="Completion flag")
    notes: str = Field(default="", description="Plain-text description")
    assignee: User | None = Field(default=None, description="Assigned user, if any")
    due_on: str | None = Field(default=None, description="Due date (YYYY-MM-DD)")
    section_gid: str | None = Field(default=None, description="Section (column) the task belongs to")
    custom_fields: tuple[CustomFieldValue, ...] = Field(default=(), description="Custom field values in order")
    modified_at: str | None = Field(default=None, description="Remote revision marker (ISO timestamp)")
    degraded_fields: dict[str, DegradedField] = Field(
        default_factory=dict,
        description="Custom fields shown degraded, keyed by field GID",
    )

    def custom_field(self, field_gid: str) -> CustomFieldValue | None:
        """Return the value of a custom field, if the task carries one."""
        for value in self.custom_fields:
            if value.field_gid == field_gid:
                return value
        return None

    def with_custom_field(self, value: CustomFieldValue) -> "Task":
        """Return a copy with the value set in place (or appended) and the field no longer degraded."""
        fields = list(self.custom_fields)
        for index, existing in enumerate(fields):
            if existing.field_gid == value.field_gid:
                fields[index] = value
                break
        else:
            fields.append(value)
        degraded = {gid: d for gid, d in self.degraded_fields.items() if gid != value.field_gid}
        return self.model_copy(update={"custom_fields": tuple(fields), "degraded_fields": degraded})

    def without_custom_field(self, field_gid: str) -> "Task":
        """Return a copy without any value for the field."""
        fields = tuple(v for v in self.custom_fields if v.field_gid != field_gid)
        return self.model_copy(update={"custom_fields": fields})

    def with_degraded_field(self, field_gid: str, degraded: DegradedField) -> "Task":
        """Return a copy where the field is shown degraded instead of holding a value."""
        task = self.without_custom_field(field_gid)
        return task.model_copy(update={"degraded_fields": {**self.degraded_fields, field_gid: degraded}})
