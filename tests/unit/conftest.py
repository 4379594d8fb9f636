"""Pytest configuration and fixtures for unit tests."""

import pytest

from boardsync.domain.custom_field import CustomFieldDefinition, CustomFieldType, EnumOption
from boardsync.domain.task import Section, Task
from boardsync.services.reconciler import Reconciler
from tests.unit.fakes import FakeAsanaService


PROJECT_GID = "p1"


@pytest.fixture
def priority_field() -> CustomFieldDefinition:
    """Enum field with one disabled option."""
    return CustomFieldDefinition(
        gid="cf_priority",
        name="Priority",
        field_type=CustomFieldType.ENUM,
        enum_options=(
            EnumOption(gid="opt_high", name="High", color="red"),
            EnumOption(gid="opt_low", name="Low", color="green"),
            EnumOption(gid="opt_old", name="Legacy", enabled=False),
        ),
    )


@pytest.fixture
def tags_field() -> CustomFieldDefinition:
    return CustomFieldDefinition(
        gid="cf_tags",
        name="Tags",
        field_type=CustomFieldType.MULTI_ENUM,
        enum_options=(
            EnumOption(gid="tag_a", name="Backend"),
            EnumOption(gid="tag_b", name="Frontend"),
            EnumOption(gid="tag_c", name="Docs"),
        ),
    )


@pytest.fixture
def notes_field() -> CustomFieldDefinition:
    return CustomFieldDefinition(gid="cf_notes", name="Notes", field_type=CustomFieldType.TEXT)


@pytest.fixture
def estimate_field() -> CustomFieldDefinition:
    return CustomFieldDefinition(gid="cf_estimate", name="Estimate", field_type=CustomFieldType.NUMBER, precision=2)


@pytest.fixture
def due_field() -> CustomFieldDefinition:
    return CustomFieldDefinition(gid="cf_due", name="Due", field_type=CustomFieldType.DATE)


@pytest.fixture
def ticket_field() -> CustomFieldDefinition:
    """Custom ID field; Asana computes it, so it is read-only."""
    return CustomFieldDefinition(gid="cf_ticket", name="Ticket", field_type=CustomFieldType.TEXT, read_only=True)


@pytest.fixture
def definitions(
    priority_field, tags_field, notes_field, estimate_field, due_field, ticket_field
) -> dict[str, CustomFieldDefinition]:
    """Every definition on the test project, keyed by GID."""
    fields = [priority_field, tags_field, notes_field, estimate_field, due_field, ticket_field]
    return {field.gid: field for field in fields}


@pytest.fixture
def sections() -> list[Section]:
    return [
        Section(gid="s_todo", name="To do"),
        Section(gid="s_doing", name="Doing"),
        Section(gid="s_done", name="Done"),
    ]


@pytest.fixture
def tasks() -> list[Task]:
    """Five tasks spread over the first two columns."""
    return [
        Task(gid="t1", name="Write docs", section_gid="s_todo", modified_at="2026-01-01T00:00:00.000Z"),
        Task(gid="t2", name="Fix login", section_gid="s_todo"),
        Task(gid="t3", name="Ship release", section_gid="s_todo"),
        Task(gid="t4", name="Review PR", section_gid="s_doing"),
        Task(gid="t5", name="Plan sprint", section_gid="s_doing"),
    ]


@pytest.fixture
def fake_service(sections, tasks, definitions) -> FakeAsanaService:
    """In-memory service serving the test project."""
    return FakeAsanaService(sections, tasks, definitions)


@pytest.fixture
def reconciler(fake_service) -> Reconciler:
    """Reconciler for the test project; call load_board before applying intents."""
    return Reconciler(fake_service, PROJECT_GID)

