"""Unit tests for the Asana resource service."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from boardsync.core.api_client import AsanaClient
from boardsync.core.errors import PermanentError
from boardsync.core.retry_handler import RetryConfig, RetryHandler
from boardsync.domain.custom_field import CustomFieldType, EnumValue, NumberValue, TextValue
from boardsync.domain.task import User
from boardsync.services.asana_service import AsanaService, decode_task


@pytest.fixture(autouse=True)
def mock_asyncio_sleep():
    with patch("boardsync.core.retry_handler.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


class RecordingRoutes:
    """MockTransport handler answering by method and path."""

    def __init__(self, routes: dict[tuple[str, str], list[list[dict]] | dict | int]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/1.0/")
        answer = self.routes[(request.method, path)]
        if isinstance(answer, list):
            offset = request.url.params.get("offset")
            index = int(offset) if offset else 0
            body = {"data": answer[index]}
            if index + 1 < len(answer):
                body["next_page"] = {"offset": str(index + 1)}
            return httpx.Response(200, json=body)
        if isinstance(answer, int):
            return httpx.Response(answer)
        return httpx.Response(200, json={"data": answer})


def make_service(routes: RecordingRoutes) -> AsanaService:
    client = AsanaClient(
        credential_provider=lambda: "test-token",
        base_url="https://asana.test/api/1.0",
        retry_handler=RetryHandler(RetryConfig(max_attempts=2, base_delay=0.01)),
        transport=httpx.MockTransport(routes),
    )
    return AsanaService(client)


def task_payload(gid: str = "t1", **overrides) -> dict:
    payload = {
        "gid": gid,
        "name": "Write docs",
        "completed": False,
        "modified_at": "2026-02-01T10:00:00.000Z",
        "memberships": [
            {"project": {"gid": "other"}, "section": {"gid": "s_elsewhere"}},
            {"project": {"gid": "p1"}, "section": {"gid": "s_todo", "name": "To do"}},
        ],
        "custom_fields": [
            {"gid": "cf_priority", "resource_subtype": "enum", "enum_value": {"gid": "opt_high"}},
            {"gid": "cf_estimate", "resource_subtype": "number", "number_value": 2.5},
            {"gid": "cf_notes", "resource_subtype": "text", "text_value": "  raw  "},
            {"gid": "cf_people", "resource_subtype": "people", "people_value": []},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.mark.unit
class TestDecodeTask:
    """Tests for decoding task payloads."""

    def test_decodes_fields_and_section_for_project(self, definitions):
        """Test the section comes from the membership of the requested project."""
        task = decode_task(task_payload(), definitions, "p1")

        assert task.gid == "t1"
        assert task.section_gid == "s_todo"
        assert task.modified_at == "2026-02-01T10:00:00.000Z"
        assert task.custom_fields == (
            EnumValue(field_gid="cf_priority", option_gid="opt_high"),
            NumberValue(field_gid="cf_estimate", number=Decimal("2.5")),
            TextValue(field_gid="cf_notes", text="  raw  "),
        )

    def test_unknown_option_degrades_field_not_task(self, definitions, caplog):
        """Test a stale option keeps the task and marks the field degraded."""
        payload = task_payload(
            custom_fields=[{"gid": "cf_priority", "enum_value": {"gid": "opt_brand_new"}}],
        )

        task = decode_task(payload, definitions, "p1")

        assert task.custom_field("cf_priority") is None
        assert task.degraded_fields["cf_priority"].category == "unknown_option"
        assert task.degraded_fields["cf_priority"].wire_value == {"gid": "opt_brand_new"}
        assert "custom_field_degraded" in caplog.text

    def test_type_mismatch_degrades_field(self, definitions):
        """Test a value of the wrong shape is shown degraded."""
        payload = task_payload(custom_fields=[{"gid": "cf_estimate", "number_value": "lots"}])

        task = decode_task(payload, definitions)

        assert task.degraded_fields["cf_estimate"].category == "schema_mismatch"

    def test_decodes_notes_assignee_and_due_date(self, definitions):
        """Test the description, assignee and due date are read from the payload."""
        payload = task_payload(
            notes="Line one\nLine two",
            assignee={"gid": "u1", "name": "Ada", "email": "ada@example.com"},
            due_on="2026-11-02",
        )

        task = decode_task(payload, definitions, "p1")

        assert task.notes == "Line one\nLine two"
        assert task.assignee == User(gid="u1", name="Ada", email="ada@example.com")
        assert task.due_on == "2026-11-02"

    def test_unassigned_task_without_due_date(self, definitions):
        task = decode_task(task_payload(assignee=None, due_on=None), definitions)

        assert task.assignee is None
        assert task.due_on is None
        assert task.notes == ""

    def test_missing_gid_raises(self, definitions):
        with pytest.raises(PermanentError):
            decode_task({"name": "no id"}, definitions)


@pytest.mark.unit
class TestAsanaService:
    """Tests for service calls against a canned transport."""

    @pytest.mark.asyncio
    async def test_list_custom_field_definitions_skips_unsupported(self):
        """Test definitions are parsed and people fields skipped."""
        routes = RecordingRoutes(
            {
                ("GET", "projects/p1/custom_field_settings"): [
                    [
                        {"custom_field": {"gid": "cf1", "name": "Stage", "resource_subtype": "enum", "enum_options": []}},
                        {"custom_field": {"gid": "cf2", "name": "Owner", "resource_subtype": "people"}},
                    ],
                    [{"custom_field": {"gid": "cf3", "name": "Size", "resource_subtype": "number", "precision": 1}}],
                ]
            }
        )
        service = make_service(routes)

        definitions = await service.list_custom_field_definitions("p1")

        assert list(definitions) == ["cf1", "cf3"]
        assert definitions["cf3"].field_type == CustomFieldType.NUMBER
        assert definitions["cf3"].precision == 1
        assert len(routes.requests) == 2

    @pytest.mark.asyncio
    async def test_iter_task_pages_skips_completed_tasks(self, definitions):
        """Test task pages decode incrementally and request only incomplete tasks."""
        routes = RecordingRoutes(
            {("GET", "tasks"): [[task_payload("t1"), task_payload("t2")], [task_payload("t3"), {"name": "broken"}]]}
        )
        service = make_service(routes)

        pages = [page async for page in service.iter_task_pages("p1", definitions, include_completed=False)]

        assert [[task.gid for task in page] for page in pages] == [["t1", "t2"], ["t3"]]
        params = routes.requests[0].url.params
        assert params["project"] == "p1"
        assert params["completed_since"] == "now"
        assert "custom_fields.enum_value.gid" in params["opt_fields"]

    @pytest.mark.asyncio
    async def test_iter_task_pages_can_include_completed(self, definitions):
        routes = RecordingRoutes({("GET", "tasks"): [[]]})
        service = make_service(routes)

        _ = [page async for page in service.iter_task_pages("p1", definitions, include_completed=True)]

        assert "completed_since" not in routes.requests[0].url.params

    @pytest.mark.asyncio
    async def test_list_sections_in_order(self):
        routes = RecordingRoutes(
            {("GET", "projects/p1/sections"): [[{"gid": "s1", "name": "Backlog"}, {"gid": "s2", "name": "Doing"}]]}
        )
        service = make_service(routes)

        sections = await service.list_sections("p1")

        assert [(s.gid, s.name) for s in sections] == [("s1", "Backlog"), ("s2", "Doing")]

    @pytest.mark.asyncio
    async def test_update_task_puts_fields_and_decodes_echo(self, definitions):
        """Test updates send a full-value PUT and return the server's copy."""
        routes = RecordingRoutes({("PUT", "tasks/t1"): task_payload("t1", name="Server name")})
        service = make_service(routes)

        task = await service.update_task("t1", {"name": "Server name "}, definitions)

        assert task.name == "Server name"
        request = routes.requests[0]
        assert json.loads(request.content) == {"data": {"name": "Server name "}}
        assert "opt_fields" in request.url.params

    @pytest.mark.asyncio
    async def test_move_task_to_section_places_after_neighbor(self):
        routes = RecordingRoutes({("POST", "sections/s2/addTask"): {}})
        service = make_service(routes)

        await service.move_task_to_section("t1", "s2", insert_after="t7")

        assert json.loads(routes.requests[0].content) == {"data": {"task": "t1", "insert_after": "t7"}}

    @pytest.mark.asyncio
    async def test_add_comment_is_not_retried(self):
        """Test appending a comment is attempted once even on a transient failure."""
        routes = RecordingRoutes({("POST", "tasks/t1/stories"): 503})
        service = make_service(routes)

        with pytest.raises(PermanentError):
            await service.add_comment("t1", "hello")

        assert len(routes.requests) == 1

    @pytest.mark.asyncio
    async def test_get_me_and_projects(self):
        """Test the user, workspaces and projects used to pick a board."""
        routes = RecordingRoutes(
            {
                ("GET", "users/me"): {
                    "gid": "u1",
                    "name": "Sam",
                    "email": "sam@example.com",
                    "workspaces": [{"gid": "w1", "name": "Acme"}],
                },
                ("GET", "projects"): [[{"gid": "p1", "name": "Roadmap", "color": "dark-blue"}]],
            }
        )
        service = make_service(routes)

        user, workspaces = await service.get_me()
        projects = await service.list_projects("w1")

        assert user.gid == "u1"
        assert [w.gid for w in workspaces] == ["w1"]
        assert [(p.gid, p.name, p.color) for p in projects] == [("p1", "Roadmap", "dark-blue")]
        assert routes.requests[1].url.params["workspace"] == "w1"

    @pytest.mark.asyncio
    async def test_get_task_decodes_detail(self, definitions):
        routes = RecordingRoutes({("GET", "tasks/t9"): task_payload("t9", completed=True)})
        service = make_service(routes)

        task = await service.get_task("t9", definitions)

        assert task.gid == "t9"
        assert task.completed is True
        assert routes.requests[0].url.params["opt_fields"].startswith("name,completed")
        assert "assignee.name" in routes.requests[0].url.params["opt_fields"]

    @pytest.mark.asyncio
    async def test_list_stories_keeps_comments_and_activity(self):
        """Test stories are listed in order, including system events without text."""
        routes = RecordingRoutes(
            {
                ("GET", "tasks/t1/stories"): [
                    [
                        {
                            "gid": "st1",
                            "text": "Looks good",
                            "created_at": "2026-03-01T09:00:00.000Z",
                            "created_by": {"gid": "u1", "name": "Ada"},
                            "resource_subtype": "comment_added",
                        },
                        {"gid": "st2", "text": None, "created_by": None, "resource_subtype": "due_date_changed"},
                    ],
                    [{"gid": "st3", "text": "Moved to Doing", "resource_subtype": "section_changed"}],
                ]
            }
        )
        service = make_service(routes)

        stories = await service.list_stories("t1")

        assert [s.gid for s in stories] == ["st1", "st2", "st3"]
        assert stories[0].is_comment
        assert stories[0].created_by == User(gid="u1", name="Ada")
        assert stories[1].text == ""
        assert stories[1].created_by is None
        assert not stories[2].is_comment
        assert "created_by.name" in routes.requests[0].url.params["opt_fields"]

    @pytest.mark.asyncio
    async def test_list_workspace_users_follows_pages(self):
        """Test every page of workspace users is collected for assignee selection."""
        routes = RecordingRoutes(
            {
                ("GET", "users"): [
                    [{"gid": "u1", "name": "Ada", "email": "ada@example.com"}],
                    [{"gid": "u2", "name": "Grace", "email": "grace@example.com"}, {"name": "no gid"}],
                ]
            }
        )
        service = make_service(routes)

        users = await service.list_workspace_users("w1")

        assert [(u.gid, u.name) for u in users] == [("u1", "Ada"), ("u2", "Grace")]
        assert routes.requests[0].url.params["workspace"] == "w1"
        assert len(routes.requests) == 2
