"""Typed Asana operations used by the board: listing, decoding and task updates."""

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from boardsync.core.api_client import AsanaClient, QueryParams
from boardsync.core.config import settings
from boardsync.core.errors import CustomFieldError, PermanentError
from boardsync.core.logging import span
from boardsync.domain.custom_field import CustomFieldDefinition
from boardsync.domain.task import Project, Section, Story, Task, User, Workspace
from boardsync.services.custom_field_service import degrade, extract_wire_value, parse_definition, validate_and_coerce


logger = logging.getLogger(__name__)

TASK_OPT_FIELDS = ",".join(
    [
        "name",
        "completed",
        "notes",
        "due_on",
        "assignee.name",
        "assignee.email",
        "modified_at",
        "memberships.project.gid",
        "memberships.section.gid",
        "memberships.section.name",
        "custom_fields.gid",
        "custom_fields.resource_subtype",
        "custom_fields.text_value",
        "custom_fields.number_value",
        "custom_fields.date_value",
        "custom_fields.enum_value.gid",
        "custom_fields.multi_enum_values.gid",
    ]
)

DEFINITION_OPT_FIELDS = ",".join(
    f"custom_field.{name}"
    for name in [
        "gid",
        "name",
        "resource_subtype",
        "representation_type",
        "id_prefix",
        "precision",
        "is_formula_field",
        "enum_options.gid",
        "enum_options.name",
        "enum_options.enabled",
        "enum_options.color",
    ]
)


STORY_OPT_FIELDS = "text,created_at,created_by.name,resource_subtype"


def _decode_user(wire: Any) -> User | None:  # noqa: ANN401
    if not isinstance(wire, Mapping) or not wire.get("gid"):
        return None
    return User(gid=str(wire["gid"]), name=wire.get("name") or "", email=wire.get("email") or "")


def _section_gid(wire: Mapping[str, Any], project_gid: str | None) -> str | None:
    """Find the task's section within the project from its memberships."""
    for membership in wire.get("memberships") or []:
        if not isinstance(membership, Mapping):
            continue
        project = membership.get("project") or {}
        if project_gid and project.get("gid") not in (None, project_gid):
            continue
        section = membership.get("section")
        if isinstance(section, Mapping) and section.get("gid"):
            return str(section["gid"])
    return None


def decode_task(
    wire: Mapping[str, Any],
    definitions: Mapping[str, CustomFieldDefinition],
    project_gid: str | None = None,
) -> Task:
    """Decode a task payload, coercing custom fields at the boundary.

    Fields without a loaded definition (unsupported types such as people) are
    skipped. Fields that fail coercion are kept on the task as degraded.

    Raises:
        PermanentError: If the payload has no GID
    """
    gid = wire.get("gid")
    if not gid:
        raise PermanentError("Task payload has no gid")

    values = []
    degraded = {}
    for entry in wire.get("custom_fields") or []:
        if not isinstance(entry, Mapping):
            continue
        definition = definitions.get(entry.get("gid"))
        if definition is None:
            continue
        wire_value = extract_wire_value(definition, entry)
        try:
            values.append(validate_and_coerce(definition, wire_value))
        except CustomFieldError as e:
            logger.warning(
                "custom_field_degraded",
                extra={"task_gid": gid, "field_gid": definition.gid, "reason": e.detail, "category": e.category.value},
            )
            degraded[definition.gid] = degrade(e, wire_value)

    return Task(
        gid=str(gid),
        name=wire.get("name") or "",
        completed=bool(wire.get("completed", False)),
        notes=wire.get("notes") or "",
        assignee=_decode_user(wire.get("assignee")),
        due_on=wire.get("due_on"),
        section_gid=_section_gid(wire, project_gid),
        custom_fields=tuple(values),
        modified_at=wire.get("modified_at"),
        degraded_fields=degraded,
    )


class AsanaService:
    """Asana resources needed by the kanban board."""

    def __init__(self, client: AsanaClient) -> None:
        self.client = client

    async def get_me(self) -> tuple[User, list[Workspace]]:
        """Return the authenticated user and their workspaces."""
        with span("asana_service.get_me"):
            data = await self.client.get_data("users/me", {"opt_fields": "name,email,workspaces.name"})
        user = User(gid=str(data["gid"]), name=data.get("name") or "", email=data.get("email") or "")
        workspaces = [
            Workspace(gid=str(w["gid"]), name=w.get("name") or "") for w in data.get("workspaces") or [] if w.get("gid")
        ]
        return user, workspaces

    async def list_projects(self, workspace_gid: str) -> list[Project]:
        """List non-archived projects in a workspace."""
        params: QueryParams = {"workspace": workspace_gid, "archived": "false", "opt_fields": "name,archived,color,notes"}
        projects = []
        with span("asana_service.list_projects", workspace_gid=workspace_gid):
            async for page in self.client.paginate("projects", params):
                projects.extend(
                    Project(
                        gid=str(item["gid"]),
                        name=item.get("name") or "",
                        archived=bool(item.get("archived", False)),
                        color=item.get("color"),
                        notes=item.get("notes") or "",
                    )
                    for item in page.items
                )
        return projects

    async def list_workspace_users(self, workspace_gid: str) -> list[User]:
        """List the users of a workspace, for choosing an assignee."""
        params: QueryParams = {"workspace": workspace_gid, "opt_fields": "name,email"}
        users = []
        with span("asana_service.list_workspace_users", workspace_gid=workspace_gid):
            async for page in self.client.paginate("users", params):
                users.extend(user for user in map(_decode_user, page.items) if user is not None)
        return users

    async def list_sections(self, project_gid: str) -> list[Section]:
        """List a project's sections in board order."""
        sections = []
        with span("asana_service.list_sections", project_gid=project_gid):
            async for page in self.client.paginate(f"projects/{project_gid}/sections", {"opt_fields": "name"}):
                sections.extend(Section(gid=str(item["gid"]), name=item.get("name") or "") for item in page.items)
        logger.debug("sections_loaded", extra={"project_gid": project_gid, "count": len(sections)})
        return sections

    async def list_custom_field_definitions(self, project_gid: str) -> dict[str, CustomFieldDefinition]:
        """Fetch the project's custom field definitions, skipping unsupported types."""
        definitions: dict[str, CustomFieldDefinition] = {}
        params: QueryParams = {"opt_fields": DEFINITION_OPT_FIELDS}
        with span("asana_service.list_custom_field_definitions", project_gid=project_gid):
            async for page in self.client.paginate(f"projects/{project_gid}/custom_field_settings", params):
                for item in page.items:
                    wire = item.get("custom_field")
                    if not isinstance(wire, Mapping):
                        continue
                    try:
                        definition = parse_definition(wire)
                    except CustomFieldError as e:
                        logger.info("custom_field_skipped", extra={"field_gid": e.field_gid, "reason": e.detail})
                        continue
                    definitions[definition.gid] = definition
        return definitions

    async def iter_task_pages(
        self,
        project_gid: str,
        definitions: Mapping[str, CustomFieldDefinition],
        *,
        include_completed: bool | None = None,
    ) -> AsyncIterator[list[Task]]:
        """Yield decoded tasks one page at a time, in project order."""
        if include_completed is None:
            include_completed = settings.include_completed_tasks
        params: QueryParams = {"project": project_gid, "opt_fields": TASK_OPT_FIELDS}
        if not include_completed:
            params["completed_since"] = "now"

        async for page in self.client.paginate("tasks", params):
            tasks = []
            for item in page.items:
                try:
                    tasks.append(decode_task(item, definitions, project_gid))
                except PermanentError:
                    logger.warning("task_payload_skipped", extra={"project_gid": project_gid, "page": page.number})
            yield tasks

    async def get_task(self, task_gid: str, definitions: Mapping[str, CustomFieldDefinition]) -> Task:
        """Fetch one task with its section and custom fields."""
        with span("asana_service.get_task", task_gid=task_gid):
            data = await self.client.get_data(f"tasks/{task_gid}", {"opt_fields": TASK_OPT_FIELDS})
        return decode_task(data, definitions)

    async def update_task(
        self,
        task_gid: str,
        fields: dict[str, Any],
        definitions: Mapping[str, CustomFieldDefinition],
    ) -> Task:
        """Apply a full-value update to a task and return the server's copy.

        Setting fields to explicit values is naturally idempotent, so the call is
        retried on transient failures.
        """
        with span("asana_service.update_task", task_gid=task_gid):
            data = await self.client.put_data(f"tasks/{task_gid}", fields, {"opt_fields": TASK_OPT_FIELDS})
        return decode_task(data, definitions)

    async def move_task_to_section(
        self,
        task_gid: str,
        section_gid: str,
        *,
        insert_before: str | None = None,
        insert_after: str | None = None,
    ) -> None:
        """Place a task in a section, optionally next to a neighbor.

        Placing a task at a position is idempotent, so this call is retried.
        """
        data: dict[str, Any] = {"task": task_gid}
        if insert_before:
            data["insert_before"] = insert_before
        elif insert_after:
            data["insert_after"] = insert_after
        with span("asana_service.move_task_to_section", task_gid=task_gid, section_gid=section_gid):
            await self.client.post_data(f"sections/{section_gid}/addTask", data, idempotent=True)

    async def list_stories(self, task_gid: str) -> list[Story]:
        """List a task's comments and system activity, oldest first.

        Some story kinds (reminders, reactions) carry no text; they are kept with an
        empty one.
        """
        stories = []
        with span("asana_service.list_stories", task_gid=task_gid):
            async for page in self.client.paginate(f"tasks/{task_gid}/stories", {"opt_fields": STORY_OPT_FIELDS}):
                stories.extend(
                    Story(
                        gid=str(item["gid"]),
                        text=item.get("text") or "",
                        created_at=item.get("created_at"),
                        created_by=_decode_user(item.get("created_by")),
                        resource_subtype=item.get("resource_subtype"),
                    )
                    for item in page.items
                    if item.get("gid")
                )
        return stories

    async def add_comment(self, task_gid: str, text: str) -> str:
        """Append a comment to a task and return the new story GID.

        Appending is not idempotent; the call is attempted once.
        """
        with span("asana_service.add_comment", task_gid=task_gid):
            data = await self.client.post_data(f"tasks/{task_gid}/stories", {"text": text}, idempotent=False)
        return str(data.get("gid", ""))
