"""Domain models and DTOs."""

from boardsync.domain.board import Board, BoardSnapshot, KanbanColumn, derive_columns
from boardsync.domain.custom_field import (
    CustomFieldDefinition,
    CustomFieldType,
    CustomFieldValue,
    DateValue,
    EmptyValue,
    EnumOption,
    EnumValue,
    MultiEnumValue,
    NumberValue,
    TextValue,
)
from boardsync.domain.mutation import (
    Intent,
    MoveTask,
    MutationStatus,
    PendingMutation,
    Placement,
    SetCustomField,
    SetTaskAssignee,
    SetTaskCompleted,
    SetTaskDueOn,
    SetTaskName,
    SetTaskNotes,
)
from boardsync.domain.task import DegradedField, Project, Section, Story, Task, User, Workspace


__all__ = [
    "Board",
    "BoardSnapshot",
    "CustomFieldDefinition",
    "CustomFieldType",
    "CustomFieldValue",
    "DateValue",
    "DegradedField",
    "EmptyValue",
    "EnumOption",
    "EnumValue",
    "Intent",
    "KanbanColumn",
    "MoveTask",
    "MultiEnumValue",
    "MutationStatus",
    "NumberValue",
    "PendingMutation",
    "Placement",
    "Project",
    "Section",
    "SetCustomField",
    "SetTaskAssignee",
    "SetTaskCompleted",
    "SetTaskDueOn",
    "SetTaskName",
    "SetTaskNotes",
    "Story",
    "Task",
    "TextValue",
    "User",
    "Workspace",
    "derive_columns",
]
