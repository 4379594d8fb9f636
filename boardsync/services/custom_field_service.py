"""Custom field schema validation and value coercion.

Wire values come in two shapes:
- write form, as sent in ``custom_fields`` of a task update: option GID, list of
  option GIDs, text, number, ``{"date": "YYYY-MM-DD"}`` or ``None``;
- read form, a task's ``custom_fields[]`` entry carrying ``enum_value``,
  ``multi_enum_values``, ``text_value``, ``number_value`` or ``date_value``.

``validate_and_coerce`` accepts the write form and ``serialize`` produces it, so
``validate_and_coerce(definition, serialize(value)) == value`` for every legal
value. Nothing here trims or normalizes text.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from boardsync.core.config import Constants
from boardsync.core.errors import CustomFieldError, SchemaMismatchError, UnknownOptionError
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
    value_matches_type,
)
from boardsync.domain.task import DegradedField, Task


logger = logging.getLogger(__name__)

READ_ONLY_REPRESENTATIONS = {"custom_id", "formula"}


def parse_definition(wire: Mapping[str, Any]) -> CustomFieldDefinition:
    """Decode a custom field definition from an Asana ``custom_field`` object.

    Raises:
        SchemaMismatchError: If the definition has no GID or an unsupported type
    """
    gid = wire.get("gid")
    if not isinstance(gid, str) or not gid:
        raise SchemaMismatchError("<missing>", "definition has no gid")

    subtype = wire.get("resource_subtype") or wire.get("type")
    try:
        field_type = CustomFieldType(subtype)
    except ValueError as e:
        raise SchemaMismatchError(gid, f"unsupported field type {subtype!r}") from e

    options = tuple(
        EnumOption(
            gid=str(option["gid"]),
            name=option.get("name") or "",
            enabled=option.get("enabled", True) is not False,
            color=option.get("color"),
        )
        for option in wire.get("enum_options") or []
        if isinstance(option, Mapping) and option.get("gid")
    )

    read_only = (
        wire.get("representation_type") in READ_ONLY_REPRESENTATIONS
        or wire.get("id_prefix") is not None
        or wire.get("is_formula_field") is True
    )

    return CustomFieldDefinition(
        gid=gid,
        name=wire.get("name") or "",
        field_type=field_type,
        enum_options=options,
        precision=wire.get("precision"),
        read_only=read_only,
    )


def _option_gid(raw: Any) -> Any:  # noqa: ANN401
    """Accept an option either as its GID or as an ``{"gid": ...}`` object."""
    if isinstance(raw, Mapping):
        return raw.get("gid")
    return raw


def _resolve_options(
    definition: CustomFieldDefinition,
    option_gids: list[str],
    *,
    allow_disabled: bool,
) -> None:
    unknown = [gid for gid in option_gids if definition.option(gid) is None]
    if unknown:
        raise UnknownOptionError(definition.gid, unknown)
    if not allow_disabled:
        disabled = [gid for gid in option_gids if not definition.option(gid).enabled]
        if disabled:
            raise SchemaMismatchError(definition.gid, f"option(s) {', '.join(disabled)} are disabled")


def _coerce_enum(definition: CustomFieldDefinition, raw: Any, *, allow_disabled: bool) -> EnumValue:  # noqa: ANN401
    option_gid = _option_gid(raw)
    if not isinstance(option_gid, str) or not option_gid:
        raise SchemaMismatchError(definition.gid, f"expected an option gid, got {raw!r}")
    _resolve_options(definition, [option_gid], allow_disabled=allow_disabled)
    return EnumValue(field_gid=definition.gid, option_gid=option_gid)


def _coerce_multi_enum(
    definition: CustomFieldDefinition,
    raw: Any,  # noqa: ANN401
    *,
    allow_disabled: bool,
) -> MultiEnumValue | EmptyValue:
    if isinstance(raw, str | bytes | Mapping) or not isinstance(raw, Iterable):
        raise SchemaMismatchError(definition.gid, f"expected a list of option gids, got {raw!r}")

    option_gids: list[str] = []
    for item in raw:
        option_gid = _option_gid(item)
        if not isinstance(option_gid, str) or not option_gid:
            raise SchemaMismatchError(definition.gid, f"expected an option gid, got {item!r}")
        if option_gid not in option_gids:
            option_gids.append(option_gid)

    if not option_gids:
        return EmptyValue(field_gid=definition.gid)
    _resolve_options(definition, option_gids, allow_disabled=allow_disabled)
    return MultiEnumValue(field_gid=definition.gid, option_gids=tuple(option_gids))


def _coerce_number(definition: CustomFieldDefinition, raw: Any) -> NumberValue:  # noqa: ANN401
    if isinstance(raw, bool):
        raise SchemaMismatchError(definition.gid, f"expected a number, got {raw!r}")

    try:
        if isinstance(raw, Decimal):
            number = raw
        elif isinstance(raw, int):
            number = Decimal(raw)
        elif isinstance(raw, float | str):
            # str(float) is the shortest repr, so 0.1 stays 0.1
            number = Decimal(str(raw))
        else:
            raise SchemaMismatchError(definition.gid, f"expected a number, got {raw!r}")
    except InvalidOperation as e:
        raise SchemaMismatchError(definition.gid, f"expected a number, got {raw!r}") from e

    if not number.is_finite():
        raise SchemaMismatchError(definition.gid, f"number must be finite, got {raw!r}")
    if number != number.to_integral_value() and len(number.as_tuple().digits) > Constants.MAX_EXACT_NUMBER_DIGITS:
        raise SchemaMismatchError(definition.gid, f"{raw!r} has more significant digits than the API keeps")
    return NumberValue(field_gid=definition.gid, number=number)


def _coerce_date(definition: CustomFieldDefinition, raw: Any) -> DateValue | EmptyValue:  # noqa: ANN401
    if isinstance(raw, Mapping):
        raw = raw.get("date")
        if raw is None:
            return EmptyValue(field_gid=definition.gid)
    if isinstance(raw, date):
        return DateValue(field_gid=definition.gid, day=raw)
    if not isinstance(raw, str):
        raise SchemaMismatchError(definition.gid, f"expected an ISO date, got {raw!r}")
    try:
        return DateValue(field_gid=definition.gid, day=date.fromisoformat(raw))
    except ValueError as e:
        raise SchemaMismatchError(definition.gid, f"expected an ISO date, got {raw!r}") from e


def validate_and_coerce(
    definition: CustomFieldDefinition,
    raw: Any,  # noqa: ANN401
    *,
    allow_disabled: bool = True,
) -> CustomFieldValue:
    """Coerce a write-form wire value into a typed value for the definition.

    Args:
        definition: Field definition the value belongs to
        raw: Wire value (option GID, list of GIDs, text, number, ISO date or None)
        allow_disabled: Accept disabled enum options. Values read from the server
            may reference them; values chosen by the user may not.

    Raises:
        UnknownOptionError: If an enum value references an option the definition lacks
        SchemaMismatchError: If the value does not fit the declared type
    """
    if raw is None:
        return EmptyValue(field_gid=definition.gid)

    match definition.field_type:
        case CustomFieldType.TEXT:
            if not isinstance(raw, str):
                raise SchemaMismatchError(definition.gid, f"expected text, got {raw!r}")
            return TextValue(field_gid=definition.gid, text=raw)
        case CustomFieldType.NUMBER:
            return _coerce_number(definition, raw)
        case CustomFieldType.DATE:
            return _coerce_date(definition, raw)
        case CustomFieldType.ENUM:
            return _coerce_enum(definition, raw, allow_disabled=allow_disabled)
        case CustomFieldType.MULTI_ENUM:
            return _coerce_multi_enum(definition, raw, allow_disabled=allow_disabled)

    raise SchemaMismatchError(definition.gid, f"unsupported field type {definition.field_type!r}")


def serialize(value: CustomFieldValue) -> Any:  # noqa: ANN401
    """Return the write-form wire value for a typed value."""
    match value:
        case EnumValue():
            return value.option_gid
        case MultiEnumValue():
            return list(value.option_gids)
        case TextValue():
            return value.text
        case NumberValue():
            return value.number
        case DateValue():
            return {"date": value.day.isoformat()}
        case EmptyValue():
            return None
    raise TypeError(f"Not a custom field value: {value!r}")


def extract_wire_value(definition: CustomFieldDefinition, entry: Mapping[str, Any]) -> Any:  # noqa: ANN401
    """Pull the write-form value out of a read-form task ``custom_fields[]`` entry."""
    match definition.field_type:
        case CustomFieldType.TEXT:
            return entry.get("text_value")
        case CustomFieldType.NUMBER:
            return entry.get("number_value")
        case CustomFieldType.DATE:
            return entry.get("date_value")
        case CustomFieldType.ENUM:
            return entry.get("enum_value")
        case CustomFieldType.MULTI_ENUM:
            return entry.get("multi_enum_values")
    return None


def coerce_task_field(definition: CustomFieldDefinition, entry: Mapping[str, Any]) -> CustomFieldValue:
    """Coerce a read-form task custom field entry."""
    return validate_and_coerce(definition, extract_wire_value(definition, entry))


def degrade(error: CustomFieldError, wire_value: Any) -> DegradedField:  # noqa: ANN401
    """Build the degraded marker for a value that failed coercion."""
    return DegradedField(reason=error.detail, category=error.category.value, wire_value=wire_value)


def revalidate_task(task: Task, definitions: Mapping[str, CustomFieldDefinition]) -> Task:
    """Re-check a task's custom fields against a refreshed definition set.

    Values whose definition disappeared are dropped, values that no longer fit become
    degraded, and degraded fields that now fit are restored.
    """
    for value in task.custom_fields:
        definition = definitions.get(value.field_gid)
        if definition is None:
            task = task.without_custom_field(value.field_gid)
            continue
        wire_value = serialize(value)
        try:
            coerced = validate_and_coerce(definition, wire_value)
        except CustomFieldError as e:
            task = task.with_degraded_field(value.field_gid, degrade(e, wire_value))
        else:
            task = task.with_custom_field(coerced)

    for field_gid, degraded in task.degraded_fields.items():
        definition = definitions.get(field_gid)
        if definition is None:
            continue
        try:
            coerced = validate_and_coerce(definition, degraded.wire_value)
        except CustomFieldError:
            continue
        task = task.with_custom_field(coerced)
    return task


def build_custom_fields_payload(
    values: Iterable[CustomFieldValue],
    definitions: Mapping[str, CustomFieldDefinition],
) -> dict[str, Any]:
    """Build the ``custom_fields`` object of a task update.

    Raises:
        SchemaMismatchError: If a field is not defined on the project, is read-only,
            or the value's tag does not match the declared type
    """
    payload: dict[str, Any] = {}
    for value in values:
        definition = definitions.get(value.field_gid)
        if definition is None:
            raise SchemaMismatchError(value.field_gid, "not defined on this project")
        if definition.read_only:
            raise SchemaMismatchError(value.field_gid, "field is read-only")
        if not value_matches_type(value, definition.field_type):
            raise SchemaMismatchError(
                value.field_gid,
                f"{value.type} value does not fit a {definition.field_type.value} field",
            )
        payload[value.field_gid] = serialize(value)
    return payload
