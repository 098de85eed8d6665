"""
Capability value objects returned by the permission resolver.

FieldCapabilitySet is the only shape in which field permissions leave the
resolver.  Its constructor clips ``editable`` to ``visible`` so no caller can
observe an editable-but-invisible field, whatever the stored flags say.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from procure_kernel.domain.entity_schema import FieldSpec, ViewKind
from procure_kernel.domain.row_conditions import InvalidRowCondition, RowCondition


@dataclass(frozen=True)
class FieldCapability:
    """Visibility/editability of one field for one role and view kind."""

    field: FieldSpec
    visible: bool
    editable: bool

    def __post_init__(self) -> None:
        if self.editable and not self.visible:
            object.__setattr__(self, "editable", False)

    @property
    def field_name(self) -> str:
        return self.field.field_name

    def to_template_data(self) -> dict[str, Any]:
        data = self.field.to_template_data()
        data["visible"] = self.visible
        data["editable"] = self.editable
        return data


@dataclass(frozen=True)
class FieldCapabilitySet:
    """Ordered field capabilities for (role, entity, view kind)."""

    entity_type: str
    view_kind: ViewKind
    capabilities: tuple[FieldCapability, ...] = ()

    def __iter__(self) -> Iterator[FieldCapability]:
        return iter(self.capabilities)

    def __len__(self) -> int:
        return len(self.capabilities)

    def get(self, field_name: str) -> FieldCapability | None:
        for cap in self.capabilities:
            if cap.field_name == field_name:
                return cap
        return None

    def visible_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(c.field for c in self.capabilities if c.visible)

    def editable_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(c.field for c in self.capabilities if c.editable)

    def visible_names(self) -> frozenset[str]:
        return frozenset(c.field_name for c in self.capabilities if c.visible)

    def editable_names(self) -> frozenset[str]:
        return frozenset(c.field_name for c in self.capabilities if c.editable)

    def can_see(self, field_name: str) -> bool:
        cap = self.get(field_name)
        return cap is not None and cap.visible

    def can_edit(self, field_name: str) -> bool:
        cap = self.get(field_name)
        return cap is not None and cap.editable

    def summary(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "view_kind": self.view_kind.value,
            "total_fields": len(self.capabilities),
            "visible_count": sum(1 for c in self.capabilities if c.visible),
            "editable_count": sum(1 for c in self.capabilities if c.editable),
            "hidden_fields": [c.field_name for c in self.capabilities if not c.visible],
        }


@dataclass(frozen=True)
class FieldPermissionFlags:
    """Stored per-view flags of one field permission row."""

    list_visible: bool = True
    list_editable: bool = False
    form_create_visible: bool = True
    form_create_editable: bool = True
    form_edit_visible: bool = True
    form_edit_editable: bool = True
    form_view_visible: bool = True

    def for_view(self, view_kind: ViewKind) -> tuple[bool, bool]:
        if view_kind is ViewKind.FORM_CREATE:
            return self.form_create_visible, self.form_create_editable
        if view_kind is ViewKind.FORM_EDIT:
            return self.form_edit_visible, self.form_edit_editable
        if view_kind is ViewKind.FORM_VIEW:
            return self.form_view_visible, False
        return self.list_visible, self.list_editable


DEFAULT_FIELD_FLAGS = FieldPermissionFlags()


@dataclass(frozen=True)
class ActionRule:
    """One (role, entity, action) permission row."""

    action_name: str
    is_allowed: bool
    condition: RowCondition | InvalidRowCondition | None = None

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None


@dataclass(frozen=True)
class RolePermissions:
    """Everything the resolver needs about one role on one entity."""

    role_id: UUID
    role_name: str
    field_flags: Mapping[str, FieldPermissionFlags] = field(default_factory=dict)
    action_rules: Mapping[str, ActionRule] = field(default_factory=dict)
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.is_active and self.role_name == "admin"


@dataclass(frozen=True)
class UserIdentity:
    """Resolved user row."""

    user_id: UUID
    username: str
    role_id: UUID | None
    is_active: bool
