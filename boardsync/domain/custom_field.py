"""Custom field domain models: definitions and type-tagged values."""

from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class CustomFieldType(StrEnum):
    """Declared type of a custom field (Asana resource_subtype)."""

    ENUM = "enum"
    MULTI_ENUM = "multi_enum"
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"


class EnumOption(BaseModel):
    """One selectable option of an enum or multi-enum field."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="Option GID")
    name: str = Field(default="", description="Display label")
    enabled: bool = Field(default=True, description="Disabled options stay readable but cannot be chosen")
    color: str | None = Field(default=None, description="Asana color name")


class CustomFieldDefinition(BaseModel):
    """Custom field definition as configured on a project."""

    model_config = ConfigDict(frozen=True)

    gid: str = Field(..., description="Custom field GID")
    name: str = Field(default="", description="Display name")
    field_type: CustomFieldType = Field(..., description="Declared value type")
    enum_options: tuple[EnumOption, ...] = Field(default=(), description="Options in display order")
    precision: int | None = Field(default=None, description="Decimal places shown for number fields")
    read_only: bool = Field(default=False, description="Custom ID and formula fields cannot be edited")

    def option(self, option_gid: str) -> EnumOption | None:
        """Return the option with the given GID, if defined."""
        for option in self.enum_options:
            if option.gid == option_gid:
                return option
        return None

    def option_label(self, option_gid: str) -> str:
        """Return the display label for an option, or the GID itself if unknown."""
        option = self.option(option_gid)
        return option.name if option else option_gid


class EnumValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["enum"] = "enum"
    field_gid: str
    option_gid: str


class MultiEnumValue(BaseModel):
    """Selected options of a multi-enum field.

    Selection is a set; option_gids keeps first-occurrence order for display.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["multi_enum"] = "multi_enum"
    field_gid: str
    option_gids: tuple[str, ...]

    @property
    def option_set(self) -> frozenset[str]:
        return frozenset(self.option_gids)


class TextValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    field_gid: str
    text: str


class NumberValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["number"] = "number"
    field_gid: str
    number: Decimal


class DateValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["date"] = "date"
    field_gid: str
    day: date


class EmptyValue(BaseModel):
    """Unset value; legal for every field type."""

    model_config = ConfigDict(frozen=True)

    type: Literal["empty"] = "empty"
    field_gid: str


CustomFieldValue = Annotated[
    EnumValue | MultiEnumValue | TextValue | NumberValue | DateValue | EmptyValue,
    Field(discriminator="type"),
]


def value_matches_type(value: CustomFieldValue, field_type: CustomFieldType) -> bool:
    """Return True if a value's tag is legal for the declared field type."""
    return value.type in (field_type.value, "empty")
