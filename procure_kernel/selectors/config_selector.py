"""
Module: procure_kernel.selectors.config_selector
Responsibility: Read UI/permission configuration rows and return immutable
    descriptors suitable for caching (EntitySpec, TemplateRecord,
    UserIdentity, RolePermissions).
Architecture position: Kernel > Selectors.  Consumed only by the
    configuration provider in services/config_cache.py.

Invariants enforced:
    - Only active entity types and templates are returned.
    - When several templates are active for one (entity, view kind) the
      highest version wins, so a provisioning overlap never breaks rendering.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from procure_kernel.domain.capabilities import ActionRule, RolePermissions, UserIdentity
from procure_kernel.domain.entity_schema import EntitySpec
from procure_kernel.domain.row_conditions import parse_row_condition
from procure_kernel.models.ui_config import (
    ActionPermissionModel,
    EntityTypeModel,
    FieldDefinitionModel,
    FieldPermissionModel,
    RoleModel,
    TemplateModel,
    UserModel,
)
from procure_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class TemplateRecord:
    """An active template row."""

    template_id: UUID
    entity_type_id: UUID
    view_kind: str
    template_name: str
    version: int
    template_html: str


@dataclass(frozen=True)
class RoleRecord:
    role_id: UUID
    role_name: str
    is_active: bool


class ConfigSelector(BaseSelector):
    """Read-only access to configuration tables."""

    def get_entity(self, entity_name: str) -> EntitySpec | None:
        model = self.session.execute(
            select(EntityTypeModel).where(
                EntityTypeModel.entity_name == entity_name,
                EntityTypeModel.is_active.is_(True),
            )
        ).scalar_one_or_none()
        return model.to_spec() if model is not None else None

    def list_entity_names(self) -> list[str]:
        rows = self.session.execute(
            select(EntityTypeModel.entity_name)
            .where(EntityTypeModel.is_active.is_(True))
            .order_by(EntityTypeModel.entity_name)
        ).scalars()
        return list(rows)

    def get_active_template(self, entity_type_id: UUID, view_kind: str) -> TemplateRecord | None:
        model = self.session.execute(
            select(TemplateModel)
            .where(
                TemplateModel.entity_type_id == entity_type_id,
                TemplateModel.view_kind == view_kind,
                TemplateModel.is_active.is_(True),
            )
            .order_by(TemplateModel.version.desc())
            .limit(1)
        ).scalar_one_or_none()
        if model is None:
            return None
        return TemplateRecord(
            template_id=model.id,
            entity_type_id=model.entity_type_id,
            view_kind=model.view_kind,
            template_name=model.template_name,
            version=model.version,
            template_html=model.template_html,
        )

    def get_user(self, user_id: UUID) -> UserIdentity | None:
        model = self.session.get(UserModel, user_id)
        if model is None:
            return None
        return UserIdentity(
            user_id=model.id,
            username=model.username,
            role_id=model.role_id,
            is_active=model.is_active,
        )

    def get_role(self, role_id: UUID) -> RoleRecord | None:
        model = self.session.get(RoleModel, role_id)
        if model is None:
            return None
        return RoleRecord(role_id=model.id, role_name=model.role_name, is_active=model.is_active)

    def get_role_permissions(self, role: RoleRecord, entity: EntitySpec) -> RolePermissions:
        field_rows = self.session.execute(
            select(FieldDefinitionModel.field_name, FieldPermissionModel)
            .join(FieldPermissionModel, FieldPermissionModel.field_id == FieldDefinitionModel.id)
            .where(
                FieldPermissionModel.role_id == role.role_id,
                FieldDefinitionModel.entity_type_id == entity.id,
            )
        ).all()
        field_flags = {name: perm.to_flags() for name, perm in field_rows}

        action_rows = self.session.execute(
            select(ActionPermissionModel).where(
                ActionPermissionModel.role_id == role.role_id,
                ActionPermissionModel.entity_type_id == entity.id,
            )
        ).scalars()
        action_rules = {
            row.action_name: ActionRule(
                action_name=row.action_name,
                is_allowed=row.is_allowed,
                condition=parse_row_condition(row.condition_rule),
            )
            for row in action_rows
        }

        return RolePermissions(
            role_id=role.role_id,
            role_name=role.role_name,
            field_flags=field_flags,
            action_rules=action_rules,
            is_active=role.is_active,
        )
