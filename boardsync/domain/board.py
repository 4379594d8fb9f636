"""Board state: sections, tasks and definitions for one project, plus kanban derivation."""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from boardsync.core.errors import InvalidIntentError
from boardsync.domain.custom_field import CustomFieldDefinition
from boardsync.domain.mutation import PendingMutation, Placement
from boardsync.domain.task import Section, Task


logger = logging.getLogger(__name__)


class KanbanColumn(BaseModel):
    """One derived board column."""

    model_config = ConfigDict(frozen=True)

    section: Section
    tasks: tuple[Task, ...] = ()


def derive_columns(sections: Iterable[Section], tasks: Mapping[str, Task]) -> list[KanbanColumn]:
    """Group tasks into columns using each section's tracked order."""
    return [
        KanbanColumn(section=section, tasks=tuple(tasks[gid] for gid in section.task_gids if gid in tasks))
        for section in sections
    ]


class BoardSnapshot(BaseModel):
    """Read-only view of the board handed to the UI layer."""

    model_config = ConfigDict(frozen=True)

    project_gid: str | None = Field(default=None, description="Project shown on the board")
    sections: tuple[Section, ...] = Field(default=(), description="Columns in board order")
    tasks: dict[str, Task] = Field(default_factory=dict, description="Tasks keyed by GID")
    definitions: dict[str, CustomFieldDefinition] = Field(default_factory=dict, description="Field definitions")
    pending: tuple[PendingMutation, ...] = Field(default=(), description="In-flight mutations by sequence")
    last_error: str | None = Field(default=None, description="Most recent failure reason")
    loaded_at: datetime | None = Field(default=None, description="When the last reload completed")
    reloading: bool = Field(default=False, description="Whether a reload is in progress")
    orphaned_tasks: int = Field(default=0, description="Tasks dropped because their section was unknown")

    def columns(self) -> list[KanbanColumn]:
        return derive_columns(self.sections, self.tasks)


class Board:
    """Mutable board state. Only its single owner (the reconciler or a reload in progress) touches it."""

    def __init__(self, project_gid: str | None = None) -> None:
        self.project_gid = project_gid
        self.sections: dict[str, Section] = {}
        self.tasks: dict[str, Task] = {}
        self.definitions: dict[str, CustomFieldDefinition] = {}
        self.orphaned_tasks = 0

    def set_definitions(self, definitions: Mapping[str, CustomFieldDefinition]) -> None:
        self.definitions = dict(definitions)

    def set_sections(self, sections: Iterable[Section]) -> None:
        """Replace the column list; task order is rebuilt as tasks are merged."""
        self.sections = {section.gid: section.model_copy(update={"task_gids": ()}) for section in sections}
        self.tasks = {}

    def merge_tasks(self, tasks: Iterable[Task]) -> int:
        """Merge one page of tasks, appending each to its section's order.

        Tasks whose section is unknown are dropped. A task seen again replaces the
        earlier copy and keeps its position unless its section changed.

        Returns:
            Number of tasks merged
        """
        merged = 0
        for task in tasks:
            if task.section_gid not in self.sections:
                self.orphaned_tasks += 1
                logger.warning(
                    "task_without_section",
                    extra={"task_gid": task.gid, "section_gid": task.section_gid, "project_gid": self.project_gid},
                )
                continue

            existing = self.tasks.get(task.gid)
            if existing is not None and existing.section_gid != task.section_gid:
                self._remove_from_section(task.gid, existing.section_gid)
            self.tasks[task.gid] = task
            if existing is None or existing.section_gid != task.section_gid:
                section = self.sections[task.section_gid]
                self.sections[section.gid] = section.model_copy(update={"task_gids": (*section.task_gids, task.gid)})
            merged += 1
        return merged

    def get_task(self, task_gid: str) -> Task:
        task = self.tasks.get(task_gid)
        if task is None:
            raise InvalidIntentError(f"Task {task_gid} is not on the board")
        return task

    def get_section(self, section_gid: str) -> Section:
        section = self.sections.get(section_gid)
        if section is None:
            raise InvalidIntentError(f"Section {section_gid} is not on the board")
        return section

    def put_task(self, task: Task) -> None:
        """Replace a task's fields; section membership changes go through move_task."""
        existing = self.get_task(task.gid)
        self.tasks[task.gid] = task.model_copy(update={"section_gid": existing.section_gid})

    def placement(self, task_gid: str) -> Placement:
        task = self.get_task(task_gid)
        section = self.get_section(task.section_gid)
        return Placement(section_gid=section.gid, index=section.task_gids.index(task_gid))

    def move_task(self, task_gid: str, section_gid: str, index: int | None = None) -> Placement:
        """Move a task, updating its section reference and both order lists together.

        Returns:
            The placement the task ended up at (index clamped to the column)
        """
        task = self.get_task(task_gid)
        destination = self.get_section(section_gid)

        self._remove_from_section(task_gid, task.section_gid)
        destination = self.sections[destination.gid]
        order = list(destination.task_gids)
        position = len(order) if index is None else max(0, min(index, len(order)))
        order.insert(position, task_gid)

        self.sections[destination.gid] = destination.model_copy(update={"task_gids": tuple(order)})
        self.tasks[task_gid] = task.model_copy(update={"section_gid": destination.gid})
        return Placement(section_gid=destination.gid, index=position)

    def neighbors(self, task_gid: str) -> tuple[str | None, str | None]:
        """Return the task GIDs directly before and after a task in its column."""
        placement = self.placement(task_gid)
        order = self.sections[placement.section_gid].task_gids
        before = order[placement.index - 1] if placement.index > 0 else None
        after = order[placement.index + 1] if placement.index + 1 < len(order) else None
        return before, after

    def columns(self) -> list[KanbanColumn]:
        return derive_columns(self.sections.values(), self.tasks)

    def snapshot(
        self,
        *,
        pending: Iterable[PendingMutation] = (),
        last_error: str | None = None,
        loaded_at: datetime | None = None,
        reloading: bool = False,
    ) -> BoardSnapshot:
        return BoardSnapshot(
            project_gid=self.project_gid,
            sections=tuple(self.sections.values()),
            tasks=dict(self.tasks),
            definitions=dict(self.definitions),
            pending=tuple(mutation.model_copy() for mutation in pending),
            last_error=last_error,
            loaded_at=loaded_at,
            reloading=reloading,
            orphaned_tasks=self.orphaned_tasks,
        )

    def _remove_from_section(self, task_gid: str, section_gid: str | None) -> None:
        section = self.sections.get(section_gid) if section_gid else None
        if section is None or task_gid not in section.task_gids:
            return
        order = tuple(gid for gid in section.task_gids if gid != task_gid)
        self.sections[section.gid] = section.model_copy(update={"task_gids": order})
