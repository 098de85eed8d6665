"""
Module: procure_kernel.models.ui_config
Responsibility: ORM persistence for the configuration that drives rendering
    and authorization: entity types, field definitions, templates, roles,
    users, field permissions and action permissions.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain descriptors it converts to.  MUST NOT import from services/,
    selectors/, or outer layers.

Invariants enforced:
    - entity_name, role_name, username are unique.
    - (entity_type_id, field_name) is unique.
    - At most one active template per (entity_type_id, view_kind); a partial
      unique index enforces it on PostgreSQL and SQLite.
    - (role_id, field_id) and (role_id, entity_type_id, action_name) are
      unique, so permission lookup is a function.

Failure modes:
    - IntegrityError on any uniqueness violation above.

Audit relevance:
    These rows are read-only at request time.  Provisioning writes go through
    an external tool; the configuration provider must be invalidated after.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procure_kernel.db.base import TrackedBase
from procure_kernel.domain.capabilities import FieldPermissionFlags
from procure_kernel.domain.entity_schema import EntitySpec, FieldSpec, FieldType


class RoleModel(TrackedBase):
    """A named permission bundle.  The role named ``admin`` bypasses action rules."""

    __tablename__ = "roles"

    __table_args__ = (
        UniqueConstraint("role_name", name="uq_role_name"),
    )

    role_name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<RoleModel {self.role_name}>"


class UserModel(TrackedBase):
    """An application user; holds a non-owning reference to exactly one role."""

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("username", name="uq_username"),
        Index("idx_user_role", "role_id"),
    )

    username: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role_id: Mapped[UUID | None] = mapped_column(ForeignKey("roles.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<UserModel {self.username}>"


class EntityTypeModel(TrackedBase):
    """
    A named domain object and where it is stored.

    ``mutable_fields`` is the comma-separated allow-list generic record
    updates may write; workflow-owned columns never belong here.
    """

    __tablename__ = "ui_entity_types"

    __table_args__ = (
        UniqueConstraint("entity_name", name="uq_entity_name"),
    )

    entity_name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    primary_table: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    mutable_fields: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    fields: Mapped[list[FieldDefinitionModel]] = relationship(
        "FieldDefinitionModel",
        back_populates="entity_type",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def mutable_field_names(self) -> frozenset[str]:
        if not self.mutable_fields:
            return frozenset()
        return frozenset(
            part.strip() for part in self.mutable_fields.split(",") if part.strip()
        )

    def to_spec(self) -> EntitySpec:
        return EntitySpec(
            id=self.id,
            entity_name=self.entity_name,
            display_name=self.display_name,
            primary_table=self.primary_table,
            fields=tuple(
                f.to_spec()
                for f in sorted(self.fields, key=lambda f: (f.field_order, f.field_name))
            ),
            mutable_fields=self.mutable_field_names(),
        )

    def __repr__(self) -> str:
        return f"<EntityTypeModel {self.entity_name} -> {self.primary_table}>"


class FieldDefinitionModel(TrackedBase):
    """One field of an entity; drives rendering and filter validation."""

    __tablename__ = "ui_field_definitions"

    __table_args__ = (
        UniqueConstraint("entity_type_id", "field_name", name="uq_field_per_entity"),
        Index("idx_field_entity_order", "entity_type_id", "field_order"),
    )

    entity_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("ui_entity_types.id"), nullable=False,
    )
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_label: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    field_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_readonly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    lookup_entity: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lookup_display_field: Mapped[str | None] = mapped_column(String(100), nullable=True)
    default_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    placeholder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    help_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    entity_type: Mapped[EntityTypeModel] = relationship(
        "EntityTypeModel", back_populates="fields",
    )

    def to_spec(self) -> FieldSpec:
        return FieldSpec(
            id=self.id,
            field_name=self.field_name,
            display_label=self.display_label,
            field_type=FieldType(self.data_type),
            field_order=self.field_order,
            is_required=self.is_required,
            is_readonly=self.is_readonly,
            lookup_entity=self.lookup_entity,
            lookup_display_field=self.lookup_display_field,
            placeholder=self.placeholder,
            help_text=self.help_text,
        )

    def __repr__(self) -> str:
        return f"<FieldDefinitionModel {self.field_name} [{self.data_type}]>"


class TemplateModel(TrackedBase):
    """Stored placeholder-bearing markup for one (entity, view kind) version."""

    __tablename__ = "ui_templates"

    __table_args__ = (
        UniqueConstraint("entity_type_id", "view_kind", "version", name="uq_template_version"),
        Index(
            "uq_template_active",
            "entity_type_id",
            "view_kind",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    entity_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("ui_entity_types.id"), nullable=False,
    )
    view_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    template_name: Mapped[str] = mapped_column(String(255), nullable=False)
    template_html: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<TemplateModel {self.template_name} v{self.version}>"


class FieldPermissionModel(TrackedBase):
    """Per-view visibility/editability of one field for one role."""

    __tablename__ = "field_permissions"

    __table_args__ = (
        UniqueConstraint("role_id", "field_id", name="uq_field_permission"),
        Index("idx_field_permission_role", "role_id"),
    )

    role_id: Mapped[UUID] = mapped_column(ForeignKey("roles.id"), nullable=False)
    field_id: Mapped[UUID] = mapped_column(
        ForeignKey("ui_field_definitions.id"), nullable=False,
    )
    list_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    list_editable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    form_create_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    form_create_editable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    form_edit_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    form_edit_editable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    form_view_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_flags(self) -> FieldPermissionFlags:
        return FieldPermissionFlags(
            list_visible=self.list_visible,
            list_editable=self.list_editable,
            form_create_visible=self.form_create_visible,
            form_create_editable=self.form_create_editable,
            form_edit_visible=self.form_edit_visible,
            form_edit_editable=self.form_edit_editable,
            form_view_visible=self.form_view_visible,
        )


class ActionPermissionModel(TrackedBase):
    """
    (role, entity, action) grant with an optional JSON row condition.

    Absence of a row means deny.
    """

    __tablename__ = "action_permissions"

    __table_args__ = (
        UniqueConstraint(
            "role_id", "entity_type_id", "action_name", name="uq_action_permission",
        ),
        Index("idx_action_permission_lookup", "role_id", "entity_type_id"),
    )

    role_id: Mapped[UUID] = mapped_column(ForeignKey("roles.id"), nullable=False)
    entity_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("ui_entity_types.id"), nullable=False,
    )
    action_name: Mapped[str] = mapped_column(String(50), nullable=False)
    is_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    condition_rule: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<ActionPermissionModel {self.action_name} allowed={self.is_allowed}>"
