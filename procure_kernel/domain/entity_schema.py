"""
Entity schema descriptors.

Immutable snapshots of the UI configuration rows (entity types and field
definitions) used by the filter compiler, permission resolver, data service
and view generator.  Loaded once per cache window by the configuration
provider; never mutated at request time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID


class ViewKind(str, Enum):
    """Which permission/template variant applies."""

    LIST = "list"
    FORM_CREATE = "form_create"
    FORM_EDIT = "form_edit"
    FORM_VIEW = "form_view"
    ROW_PARTIAL = "row_partial"

    @property
    def is_form(self) -> bool:
        return self in (ViewKind.FORM_CREATE, ViewKind.FORM_EDIT, ViewKind.FORM_VIEW)

    @property
    def required_action(self) -> str:
        """Action a user needs to open this view."""
        if self is ViewKind.FORM_CREATE:
            return "create"
        if self is ViewKind.FORM_EDIT:
            return "edit"
        return "read"


class ValueKind(str, Enum):
    """Validation/coercion class of a field's values."""

    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    UUID = "uuid"


class FieldType(str, Enum):
    """Declared data type of a field definition."""

    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    SELECT = "select"
    MULTISELECT = "multiselect"
    RADIO = "radio"
    PASSWORD = "password"
    HIDDEN = "hidden"
    TIME = "time"
    NUMBER = "number"
    DECIMAL = "decimal"
    DATE = "date"
    DATETIME = "datetime"
    CHECKBOX = "checkbox"
    LOOKUP = "lookup"

    @property
    def value_kind(self) -> ValueKind:
        return _VALUE_KINDS.get(self, ValueKind.TEXT)


_VALUE_KINDS: dict[FieldType, ValueKind] = {
    FieldType.NUMBER: ValueKind.INTEGER,
    FieldType.DECIMAL: ValueKind.DECIMAL,
    FieldType.DATE: ValueKind.DATE,
    FieldType.DATETIME: ValueKind.DATETIME,
    FieldType.CHECKBOX: ValueKind.BOOLEAN,
    FieldType.LOOKUP: ValueKind.UUID,
}


@dataclass(frozen=True)
class FieldSpec:
    """One field definition of an entity."""

    id: UUID
    field_name: str
    display_label: str
    field_type: FieldType
    field_order: int = 0
    is_required: bool = False
    is_readonly: bool = False
    lookup_entity: str | None = None
    lookup_display_field: str | None = None
    placeholder: str | None = None
    help_text: str | None = None

    @property
    def value_kind(self) -> ValueKind:
        return self.field_type.value_kind

    @property
    def is_lookup(self) -> bool:
        return self.field_type is FieldType.LOOKUP and bool(self.lookup_entity)

    @property
    def lookup_key(self) -> str:
        """Record key of the nested display object: ``supplier_id`` -> ``supplier``."""
        if self.field_name.endswith("_id") and len(self.field_name) > 3:
            return self.field_name[:-3]
        return f"{self.field_name}_display"

    def to_template_data(self) -> dict:
        return {
            "field_name": self.field_name,
            "display_label": self.display_label,
            "data_type": self.field_type.value,
            "is_required": self.is_required,
            "placeholder": self.placeholder,
            "help_text": self.help_text,
        }


@dataclass(frozen=True)
class EntitySpec:
    """An entity type plus its ordered field definitions."""

    id: UUID
    entity_name: str
    display_name: str
    primary_table: str
    fields: tuple[FieldSpec, ...] = ()
    mutable_fields: frozenset[str] = field(default_factory=frozenset)

    def get_field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.field_name == name:
                return spec
        return None

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(f.field_name for f in self.fields)

    @property
    def fields_by_name(self) -> dict[str, FieldSpec]:
        return {f.field_name: f for f in self.fields}
