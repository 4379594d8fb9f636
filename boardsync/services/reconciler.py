"""Reconciler: single owner of the board model.

Intents are applied optimistically and synchronously; the matching API call runs
as an independent asyncio task that posts its outcome to the reconciler's inbox.
Only inbox handling (and apply_intent itself) mutates the board, always from the
event loop thread, so the model never sees concurrent writers.
"""

import asyncio
import itertools
import logging
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from boardsync.core.errors import (
    ErrorCode,
    ErrorCategory,
    InvalidIntentError,
    SchemaMismatchError,
    UnknownOptionError,
    describe_failure,
)
from boardsync.core.logging import log_with_task_context, span
from boardsync.domain.board import Board, BoardSnapshot
from boardsync.domain.custom_field import CustomFieldDefinition, EmptyValue
from boardsync.domain.mutation import (
    CUSTOM_FIELD_PREFIX,
    NAME_FIELD,
    SECTION_FIELD,
    TASK_ATTRIBUTE_FIELDS,
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
from boardsync.domain.task import DegradedField, Task
from boardsync.services.asana_service import AsanaService
from boardsync.services.custom_field_service import build_custom_fields_payload, revalidate_task, validate_and_coerce


logger = logging.getLogger(__name__)


class StateChangeKind(StrEnum):
    """What happened to the board."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    RELOADED = "reloaded"
    RELOAD_FAILED = "reload_failed"
    DEFINITIONS_REFRESHED = "definitions_refreshed"
    COMMENT_ADDED = "comment_added"
    COMMENT_FAILED = "comment_failed"


class StateChange(BaseModel):
    """Notification sent to subscribers after the board changes."""

    model_config = ConfigDict(frozen=True)

    kind: StateChangeKind
    snapshot: BoardSnapshot
    mutation: PendingMutation | None = None
    reason: str | None = None
    task_gid: str | None = None


Listener = Callable[[StateChange], None]


# Inbox messages


@dataclass(frozen=True)
class MutationSucceeded:
    sequence: int
    echo: Task | None


@dataclass(frozen=True)
class MutationFailed:
    sequence: int
    error: Exception


@dataclass(frozen=True)
class MutationCancelled:
    sequence: int


@dataclass(frozen=True)
class ReloadSucceeded:
    generation: int
    board: Board


@dataclass(frozen=True)
class ReloadFailed:
    generation: int
    error: Exception


@dataclass(frozen=True)
class DefinitionsFetched:
    definitions: dict[str, CustomFieldDefinition]


@dataclass(frozen=True)
class CommentFinished:
    task_gid: str
    error: Exception | None = None


Message = (
    MutationSucceeded
    | MutationFailed
    | MutationCancelled
    | ReloadSucceeded
    | ReloadFailed
    | DefinitionsFetched
    | CommentFinished
)


class Reconciler:
    """Owns the board for one project and reconciles local intents with Asana."""

    def __init__(
        self,
        service: AsanaService,
        project_gid: str,
        *,
        include_completed: bool | None = None,
    ) -> None:
        self._service = service
        self._include_completed = include_completed
        self._board = Board(project_gid)
        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[Listener] = []
        self._sequence = itertools.count(1)

        # In-flight mutations by sequence, and the latest sequence per (task, field)
        self._pending: dict[int, PendingMutation] = {}
        self._latest: dict[tuple[str, str], int] = {}
        # Superseded sequence -> (successor sequence, superseded optimistic value)
        self._superseded: dict[int, tuple[int, Any]] = {}
        # Unfinished remote calls per (task, field), oldest first
        self._calls: dict[tuple[str, str], list[asyncio.Task[None]]] = {}

        self._reload_generation = 0
        self._reloading = False
        self._last_error: str | None = None
        self._loaded_at: datetime | None = None

    @property
    def project_gid(self) -> str:
        return self._board.project_gid

    # UI boundary

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for state changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def current_state(self) -> BoardSnapshot:
        """Return a read-only snapshot of sections, tasks, definitions and pending mutations."""
        return self._board.snapshot(
            pending=sorted(self._pending.values(), key=lambda m: m.sequence),
            last_error=self._last_error,
            loaded_at=self._loaded_at,
            reloading=self._reloading,
        )

    def apply_intent(self, intent: Intent) -> PendingMutation:
        """Apply an intent optimistically and schedule the remote call.

        Raises:
            InvalidIntentError: If the task, section or field is not on the board
            SchemaMismatchError: If a custom field value does not fit its definition
            UnknownOptionError: If an enum option is not in the cached definition;
                a definition refresh is scheduled before raising
        """
        task = self._board.get_task(intent.task_gid)
        try:
            optimistic, prior = self._prepare(intent, task)
        except UnknownOptionError:
            self.request_definition_refresh()
            raise

        key = (intent.task_gid, intent.field_key)
        sequence = next(self._sequence)

        previous_sequence = self._latest.get(key)
        if previous_sequence is not None:
            previous = self._pending.pop(previous_sequence)
            prior = previous.prior_value
            previous.status = MutationStatus.FAILED
            previous.failure_code = ErrorCode.ERR_SUPERSEDED
            previous.failure_reason = "Superseded by a newer edit"
            previous.superseded_by = sequence
            self._superseded[previous_sequence] = (sequence, previous.optimistic_value)
            log_with_task_context(
                logger,
                "info",
                "mutation_superseded",
                task_gid=intent.task_gid,
                field_key=intent.field_key,
                sequence=previous_sequence,
                superseded_by=sequence,
            )

        optimistic = self._apply_value(intent.task_gid, intent.field_key, optimistic)
        mutation = PendingMutation(
            sequence=sequence,
            task_gid=intent.task_gid,
            field_key=intent.field_key,
            intent=intent,
            optimistic_value=optimistic,
            prior_value=prior,
        )
        self._pending[sequence] = mutation
        self._latest[key] = sequence

        log_with_task_context(
            logger,
            "info",
            "mutation_applied",
            task_gid=intent.task_gid,
            field_key=intent.field_key,
            sequence=sequence,
        )

        # Earlier writes to this field stop retrying, and this one is sent once they have settled
        earlier = self._calls.get(key, [])
        for call in earlier:
            call.cancel()
        remote = self._spawn(self._run_mutation(sequence, self._remote_call(intent), after=tuple(earlier)))
        self._track_call(key, sequence, remote)
        return mutation

    def add_comment(self, task_gid: str, text: str) -> asyncio.Task[None]:
        """Post a comment. Comments are appends and are never retried.

        Raises:
            InvalidIntentError: If the task is unknown or the text is blank
        """
        self._board.get_task(task_gid)
        if not text.strip():
            raise InvalidIntentError("Comment text is empty")
        return self._spawn(self._run_comment(task_gid, text))

    def request_reload(self) -> asyncio.Task[None]:
        """Start a full reload. A newer request makes any older one obsolete."""
        self._reload_generation += 1
        self._reloading = True
        return self._spawn(self._run_reload(self._reload_generation))

    def request_definition_refresh(self) -> asyncio.Task[None]:
        """Refetch custom field definitions and revalidate task values against them."""
        return self._spawn(self._run_definition_refresh())

    # Inbox processing

    async def run(self) -> None:
        """Apply inbox messages as they arrive, until cancelled."""
        while True:
            message = await self._inbox.get()
            self._handle(message)

    def process_inbox(self) -> int:
        """Apply every message currently queued; returns how many were handled."""
        handled = 0
        while True:
            try:
                message = self._inbox.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            self._handle(message)
            handled += 1

    async def settle(self) -> None:
        """Wait for all scheduled calls to finish or be cancelled, then apply their results."""
        while running := [task for task in self._tasks if not task.done()]:
            await asyncio.wait(running)
        self.process_inbox()

    def _handle(self, message: Message) -> None:
        match message:
            case MutationSucceeded():
                self._on_mutation_succeeded(message)
            case MutationFailed():
                self._on_mutation_failed(message)
            case MutationCancelled():
                self._on_mutation_cancelled(message)
            case ReloadSucceeded():
                self._on_reload_succeeded(message)
            case ReloadFailed():
                self._on_reload_failed(message)
            case DefinitionsFetched():
                self._on_definitions_fetched(message)
            case CommentFinished():
                self._on_comment_finished(message)

    # Intent preparation

    def _prepare(self, intent: Intent, task: Task) -> tuple[Any, Any]:
        """Validate an intent and return (optimistic value, prior value)."""
        match intent:
            case SetTaskName():
                # Blank names are never sent
                if not intent.name.strip():
                    raise InvalidIntentError("Task name cannot be empty")
                return intent.name, task.name
            case SetTaskCompleted():
                return intent.completed, task.completed
            case SetTaskNotes():
                return intent.notes, task.notes
            case SetTaskAssignee():
                return intent.assignee, task.assignee
            case SetTaskDueOn():
                if intent.due_on is not None:
                    try:
                        date.fromisoformat(intent.due_on)
                    except ValueError as e:
                        raise InvalidIntentError(f"Due date {intent.due_on!r} is not YYYY-MM-DD") from e
                return intent.due_on, task.due_on
            case SetCustomField():
                definition = self._board.definitions.get(intent.field_gid)
                if definition is None:
                    raise InvalidIntentError(f"Custom field {intent.field_gid} is not defined on this project")
                if definition.read_only:
                    raise SchemaMismatchError(definition.gid, "field is read-only")
                value = validate_and_coerce(definition, intent.value, allow_disabled=False)
                prior = task.custom_field(intent.field_gid) or task.degraded_fields.get(intent.field_gid)
                return value, prior
            case MoveTask():
                self._board.get_section(intent.section_gid)
                return Placement(section_gid=intent.section_gid, index=intent.index if intent.index is not None else -1), (
                    self._board.placement(task.gid)
                )
        raise InvalidIntentError(f"Unsupported intent {intent!r}")

    def _apply_value(self, task_gid: str, field_key: str, value: Any) -> Any:  # noqa: ANN401
        """Write a field value into the board; returns the value as applied.

        A custom field value may also be None (no value) or a DegradedField, which
        restores the degraded display the field had before an edit.
        """
        if field_key == SECTION_FIELD:
            index = value.index if value.index >= 0 else None
            return self._board.move_task(task_gid, value.section_gid, index)

        task = self._board.get_task(task_gid)
        if field_key in TASK_ATTRIBUTE_FIELDS:
            task = task.model_copy(update={field_key: value})
        else:
            field_gid = field_key.removeprefix(CUSTOM_FIELD_PREFIX)
            if value is None:
                task = task.without_custom_field(field_gid)
            elif isinstance(value, DegradedField):
                task = task.with_degraded_field(field_gid, value)
            else:
                task = task.with_custom_field(value)
        self._board.put_task(task)
        return value

    def _remote_call(self, intent: Intent) -> Callable[[], Coroutine[Any, Any, Task | None]]:
        """Build the API call for an intent, using the board as it is after the optimistic change."""
        definitions = dict(self._board.definitions)
        match intent:
            case SetTaskName():
                fields: dict[str, Any] = {"name": intent.name}
            case SetTaskCompleted():
                fields = {"completed": intent.completed}
            case SetTaskNotes():
                fields = {"notes": intent.notes}
            case SetTaskAssignee():
                fields = {"assignee": intent.assignee.gid if intent.assignee else None}
            case SetTaskDueOn():
                fields = {"due_on": intent.due_on}
            case SetCustomField():
                value = self._board.get_task(intent.task_gid).custom_field(intent.field_gid)
                fields = {
                    "custom_fields": build_custom_fields_payload(
                        [value or EmptyValue(field_gid=intent.field_gid)], definitions
                    )
                }
            case MoveTask():
                before, after = self._board.neighbors(intent.task_gid)
                placement = self._board.placement(intent.task_gid)

                async def move() -> None:
                    # Asana places relative to a neighbor; "after the previous task" wins when both exist
                    await self._service.move_task_to_section(
                        intent.task_gid,
                        placement.section_gid,
                        insert_after=before,
                        insert_before=None if before else after,
                    )

                return move

        async def update() -> Task:
            return await self._service.update_task(intent.task_gid, fields, definitions)

        return update

    # Background calls

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _track_call(self, key: tuple[str, str], sequence: int, call: asyncio.Task[None]) -> None:
        """Remember an unfinished call; a cancelled one is reported so its bookkeeping is dropped."""
        self._calls.setdefault(key, []).append(call)

        def finished(task: asyncio.Task[None]) -> None:
            calls = self._calls.get(key, [])
            if task in calls:
                calls.remove(task)
            if not calls:
                self._calls.pop(key, None)
            if task.cancelled():
                self._inbox.put_nowait(MutationCancelled(sequence=sequence))

        call.add_done_callback(finished)

    async def _run_mutation(
        self,
        sequence: int,
        call: Callable[[], Coroutine[Any, Any, Task | None]],
        *,
        after: tuple[asyncio.Task[None], ...] = (),
    ) -> None:
        if after:
            await asyncio.wait(after)
        try:
            echo = await call()
        except Exception as e:
            logger.warning("mutation_call_failed", extra={"sequence": sequence, "error_type": type(e).__name__})
            await self._inbox.put(MutationFailed(sequence=sequence, error=e))
        else:
            await self._inbox.put(MutationSucceeded(sequence=sequence, echo=echo))

    async def _run_comment(self, task_gid: str, text: str) -> None:
        try:
            await self._service.add_comment(task_gid, text)
        except Exception as e:
            logger.warning("comment_failed", extra={"task_gid": task_gid, "error_type": type(e).__name__})
            await self._inbox.put(CommentFinished(task_gid=task_gid, error=e))
        else:
            await self._inbox.put(CommentFinished(task_gid=task_gid))

    async def _run_reload(self, generation: int) -> None:
        try:
            board = await self._fetch_board()
        except Exception as e:
            logger.warning("reload_failed", extra={"generation": generation, "error_type": type(e).__name__})
            await self._inbox.put(ReloadFailed(generation=generation, error=e))
        else:
            await self._inbox.put(ReloadSucceeded(generation=generation, board=board))

    async def _run_definition_refresh(self) -> None:
        try:
            definitions = await self._service.list_custom_field_definitions(self.project_gid)
        except Exception as e:
            logger.warning("definition_refresh_failed", extra={"error_type": type(e).__name__})
            return
        await self._inbox.put(DefinitionsFetched(definitions=definitions))

    async def _fetch_board(self) -> Board:
        """Build a fresh board from Asana, merging task pages as they arrive.

        The staging board belongs to this call alone until it is posted to the inbox.
        """
        project_gid = self.project_gid
        with span("reconciler.reload", project_gid=project_gid):
            definitions = await self._service.list_custom_field_definitions(project_gid)
            sections = await self._service.list_sections(project_gid)

            staging = Board(project_gid)
            staging.set_definitions(definitions)
            staging.set_sections(sections)
            async for tasks in self._service.iter_task_pages(
                project_gid,
                definitions,
                include_completed=self._include_completed,
            ):
                staging.merge_tasks(tasks)

            stale = any(
                degraded.category == ErrorCategory.UNKNOWN_OPTION.value
                for task in staging.tasks.values()
                for degraded in task.degraded_fields.values()
            )
            if stale:
                logger.info("definitions_stale_during_reload", extra={"project_gid": project_gid})
                staging.set_definitions(await self._service.list_custom_field_definitions(project_gid))
                _revalidate_board(staging)

        logger.info(
            "reload_fetched",
            extra={"project_gid": project_gid, "sections": len(staging.sections), "tasks": len(staging.tasks)},
        )
        return staging

    # Message handlers

    def _on_mutation_succeeded(self, message: MutationSucceeded) -> None:
        mutation = self._pending.pop(message.sequence, None)
        if mutation is None:
            self._on_stale_success(message.sequence)
            return

        self._latest.pop(mutation.key, None)
        mutation.status = MutationStatus.COMMITTED
        if message.echo is not None and mutation.task_gid in self._board.tasks:
            self._apply_echo(mutation, message.echo)

        log_with_task_context(
            logger, "info", "mutation_committed", task_gid=mutation.task_gid, sequence=mutation.sequence
        )
        self._notify(StateChangeKind.COMMITTED, mutation=mutation, task_gid=mutation.task_gid)

    def _on_stale_success(self, sequence: int) -> None:
        """A superseded or cancelled call succeeded; its value is ignored.

        The server now holds the superseded value, so it becomes the successor's
        rollback baseline.
        """
        entry = self._superseded.pop(sequence, None)
        if entry is None:
            logger.info("mutation_result_ignored", extra={"sequence": sequence, "reason": "cancelled"})
            return

        successor_sequence, value = entry
        while successor_sequence not in self._pending and successor_sequence in self._superseded:
            successor_sequence = self._superseded[successor_sequence][0]
        successor = self._pending.get(successor_sequence)
        if successor is not None:
            successor.prior_value = value
        logger.info("mutation_result_ignored", extra={"sequence": sequence, "reason": "superseded"})

    def _apply_echo(self, mutation: PendingMutation, echo: Task) -> None:
        """Let the server's copy of the committed field win over the optimistic one."""
        task = self._board.get_task(mutation.task_gid)
        updates: dict[str, Any] = {}
        if echo.modified_at:
            updates["modified_at"] = echo.modified_at
        if mutation.field_key == NAME_FIELD:
            if echo.name:
                updates["name"] = echo.name
        elif mutation.field_key in TASK_ATTRIBUTE_FIELDS:
            updates[mutation.field_key] = getattr(echo, mutation.field_key)
        if updates:
            task = task.model_copy(update=updates)

        if mutation.field_key.startswith(CUSTOM_FIELD_PREFIX):
            echoed = echo.custom_field(mutation.field_key.removeprefix(CUSTOM_FIELD_PREFIX))
            if echoed is not None:
                task = task.with_custom_field(echoed)
        self._board.put_task(task)

    def _on_mutation_cancelled(self, message: MutationCancelled) -> None:
        """A superseded call was stopped before it finished; its successor keeps the baseline it inherited."""
        self._superseded.pop(message.sequence, None)
        logger.info("mutation_call_cancelled", extra={"sequence": message.sequence})

    def _on_mutation_failed(self, message: MutationFailed) -> None:
        mutation = self._pending.pop(message.sequence, None)
        self._superseded.pop(message.sequence, None)
        if mutation is None:
            logger.info("mutation_failure_ignored", extra={"sequence": message.sequence})
            return

        self._latest.pop(mutation.key, None)
        response = describe_failure(message.error)
        self._roll_back(mutation, code=response.code, reason=response.message)
        self._last_error = response.message
        self._notify(StateChangeKind.ROLLED_BACK, mutation=mutation, reason=response.message, task_gid=mutation.task_gid)

    def _roll_back(self, mutation: PendingMutation, *, code: str, reason: str) -> None:
        mutation.status = MutationStatus.FAILED
        mutation.failure_code = code
        mutation.failure_reason = reason
        if mutation.task_gid in self._board.tasks:
            self._apply_value(mutation.task_gid, mutation.field_key, mutation.prior_value)
        log_with_task_context(
            logger,
            "warning",
            "mutation_rolled_back",
            task_gid=mutation.task_gid,
            sequence=mutation.sequence,
            failure_code=code,
        )

    def _on_reload_succeeded(self, message: ReloadSucceeded) -> None:
        if message.generation != self._reload_generation:
            logger.info("reload_result_ignored", extra={"generation": message.generation})
            return

        # Server is the source of truth: discard every optimistic value first
        cancelled = sorted(self._pending.values(), key=lambda m: m.sequence)
        for mutation in cancelled:
            self._roll_back(mutation, code=ErrorCode.ERR_CANCELLED_BY_RELOAD, reason="Cancelled by reload")
        self._pending.clear()
        self._latest.clear()
        self._superseded.clear()
        for mutation in cancelled:
            self._notify(
                StateChangeKind.ROLLED_BACK,
                mutation=mutation,
                reason=mutation.failure_reason,
                task_gid=mutation.task_gid,
            )

        self._board = message.board
        self._reloading = False
        self._last_error = None
        self._loaded_at = datetime.now(UTC)
        logger.info("reload_applied", extra={"project_gid": self.project_gid, "cancelled": len(cancelled)})
        self._notify(StateChangeKind.RELOADED)

    def _on_reload_failed(self, message: ReloadFailed) -> None:
        if message.generation != self._reload_generation:
            logger.info("reload_failure_ignored", extra={"generation": message.generation})
            return
        self._reloading = False
        self._last_error = describe_failure(message.error).message
        self._notify(StateChangeKind.RELOAD_FAILED, reason=self._last_error)

    def _on_definitions_fetched(self, message: DefinitionsFetched) -> None:
        self._board.set_definitions(message.definitions)
        # Pending custom field mutations keep their optimistic values
        pending_fields = {m.key for m in self._pending.values() if m.field_key.startswith(CUSTOM_FIELD_PREFIX)}
        _revalidate_board(self._board, skip=pending_fields)
        self._notify(StateChangeKind.DEFINITIONS_REFRESHED)

    def _on_comment_finished(self, message: CommentFinished) -> None:
        if message.error is None:
            self._notify(StateChangeKind.COMMENT_ADDED, task_gid=message.task_gid)
            return
        reason = describe_failure(message.error).message
        self._last_error = reason
        self._notify(StateChangeKind.COMMENT_FAILED, reason=reason, task_gid=message.task_gid)

    def _notify(
        self,
        kind: StateChangeKind,
        *,
        mutation: PendingMutation | None = None,
        reason: str | None = None,
        task_gid: str | None = None,
    ) -> None:
        change = StateChange(
            kind=kind,
            snapshot=self.current_state(),
            mutation=mutation.model_copy() if mutation else None,
            reason=reason,
            task_gid=task_gid,
        )
        for listener in list(self._listeners):
            listener(change)


def _revalidate_board(board: Board, skip: set[tuple[str, str]] | frozenset[tuple[str, str]] = frozenset()) -> None:
    """Recheck every task's custom fields against the board's current definitions."""
    definitions: Mapping[str, CustomFieldDefinition] = board.definitions
    for task in list(board.tasks.values()):
        if any(key[0] == task.gid for key in skip):
            continue
        board.put_task(revalidate_task(task, definitions))
